"""
Persistence of the per-database backup state (the binlog baseline of the last full backup).
"""
from pathlib import Path
from typing import Optional

from loguru import logger

from mysql_backup.backends.disk import write_atomic
from mysql_backup.utils.datatypes import LogCoordinate
from mysql_backup.utils.exceptions import StateCorruptedError, StateInconsistencyError

STATE_FILE_NAME = 'full_start.txt'


class PositionStore:
    """
    Key-value store for the baseline coordinate of each database.
    Stored as "<segment> <offset>" in <backup_dir>/<database>/full_start.txt
    """

    def __init__(self, backup_dir: Path):
        """
        :param backup_dir: main dir for backups
        """
        self.backup_dir = Path(backup_dir).expanduser()

    def path(self, database: str) -> Path:
        return self.backup_dir / database / STATE_FILE_NAME

    def load(self, database: str) -> Optional[LogCoordinate]:
        """
        Load the baseline of the database.
        :param database: database name
        :return: the coordinate or None if no full backup has recorded one yet
        :raises StateCorruptedError: the record exists but is not a valid coordinate
        """
        try:
            with open(self.path(database), encoding='utf-8') as f:
                text = f.read()
        except FileNotFoundError:
            return None
        try:
            return LogCoordinate.parse(text)
        except ValueError as e:
            raise StateCorruptedError(
                database, f'{self.path(database)} is corrupted: {e}') from e

    def save(self, database: str, coordinate: LogCoordinate, allow_regression: bool = False):
        """
        Persist the baseline of the database and replace the previous one.
        :param database: database name
        :param coordinate: binlog coordinate of the new full backup
        :param allow_regression: accept a coordinate lower than the stored one
            (first full backup of a new chain after the binlog was reset)
        :raises StateInconsistencyError: the coordinate is lower than the stored one
        """
        previous = self.load(database) if not allow_regression else None
        if previous and coordinate < previous:
            raise StateInconsistencyError(
                database,
                f'New baseline {coordinate} is lower than the recorded baseline {previous}. '
                'Was the binary log reset?')
        write_atomic(self.path(database), coordinate.format() + '\n')
        logger.debug(f'Stored baseline {coordinate} for {database}')
