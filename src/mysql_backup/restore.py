"""
Restores databases from the newest full backup and the newest incremental backup.
"""
from datetime import datetime
from typing import List, Optional, Sequence, Type

from loguru import logger

from mysql_backup.backends.base import Backend
from mysql_backup.capture import ArtifactHeader, parse_header
from mysql_backup.mysql.client import DUMP_HEAD_SIZE, Client
from mysql_backup.utils.converters import parse_file_name
from mysql_backup.utils.datatypes import Backup, FullBackup, IncrementalBackup, LogCoordinate
from mysql_backup.utils.exceptions import RestoreArtifactMissing, StateInconsistencyError


class ArtifactSelector:
    """
    Finds the newest artifacts of a database by the timestamp in their file names.
    """

    def __init__(self, backend: Backend):
        self.backend = backend

    def _latest(self, database: str, kind: str, cls: Type[Backup]) -> Optional[Backup]:
        newest: Optional[datetime] = None
        file_type = None
        for file in self.backend.get_existing_backups(database):
            try:
                data = parse_file_name(file)
            except ValueError:
                logger.warning(f'Invalid file name in backup dir of {database}: {file}')
                continue
            if data['database'] != database or data['kind'] != kind:
                continue
            if newest is None or data['timestamp'] > newest:
                newest = data['timestamp']
                file_type = data['file_type']
        if newest is None:
            return None
        return cls(database, newest, file_type)

    def latest_full(self, database: str) -> Optional[FullBackup]:
        """
        :return: newest full backup of the database or None
        """
        return self._latest(database, 'full', FullBackup)

    def latest_incremental(self, database: str) -> Optional[IncrementalBackup]:
        """
        :return: newest incremental backup of the database or None
        """
        return self._latest(database, 'inc', IncrementalBackup)


class RestoreOrchestrator:
    """
    Drops, recreates and reloads databases. Destructive!
    """

    def __init__(self, client: Client, backend: Backend,
                 selector: Optional[ArtifactSelector] = None):
        self.client = client
        self.backend = backend
        self.selector = selector or ArtifactSelector(backend)

    def run(self, databases: Sequence[str]) -> bool:
        """
        Restore the given databases one after another.
        Databases without full backup are skipped.
        :param databases: databases to restore
        :return: False if an incremental backup had to be refused for a database
        """
        failed: List[str] = []
        for database in databases:
            logger.info(f'Checking backup for database: {database}')
            try:
                self.restore_database(database)
            except RestoreArtifactMissing:
                logger.error(f'No full backup found for {database}. Skipping restore.')
            except StateInconsistencyError as e:
                logger.error(str(e))
                failed.append(database)
        if failed:
            logger.error(f'Restore incomplete for: {", ".join(failed)}')
            return False
        logger.success('Restore process completed.')
        return True

    def _read_header(self, backup: IncrementalBackup) -> Optional[ArtifactHeader]:
        with self.backend.reader(backup) as f:
            return parse_header(f.readline())

    def _read_coordinate(self, backup: FullBackup) -> Optional[LogCoordinate]:
        with self.backend.reader(backup) as f:
            return LogCoordinate.from_dump(f.read(DUMP_HEAD_SIZE))

    def check_incremental(self, full: FullBackup,
                          incremental: Optional[IncrementalBackup]) -> Optional[IncrementalBackup]:
        """
        Check whether the incremental backup can be applied on top of the full backup.
        :param full: full backup that will be restored
        :param incremental: newest incremental backup
        :return: the incremental backup or None if there is nothing to apply
        :raises StateInconsistencyError: the incremental backup does not start at the
            coordinate of the full backup
        """
        if not incremental:
            return None
        if incremental.timestamp < full.timestamp:
            logger.info(f'{incremental.path} is older than {full.path}. Not applying it.')
            return None
        coordinate = self._read_coordinate(full)
        incremental_header = self._read_header(incremental)
        if not coordinate or not incremental_header:
            logger.warning(f'{full.path} or {incremental.path} has no binlog coordinates. '
                           'Applying the incremental backup without validation.')
            return incremental
        if incremental_header.start != coordinate:
            raise StateInconsistencyError(
                full.database,
                f'{incremental.path} starts at binlog {incremental_header.start} but '
                f'{full.path} was taken at {coordinate}. '
                'Not applying the incremental backup.')
        return incremental

    def restore_database(self, database: str):
        """
        Restore one database: recreate it, load the newest full backup and
        then the newest incremental backup.
        :param database: database name
        :raises RestoreArtifactMissing: there is no full backup
        :raises StateInconsistencyError: the newest incremental backup does not fit the
            full backup. The full backup has been restored anyway.
        """
        full = self.selector.latest_full(database)
        if not full:
            raise RestoreArtifactMissing(database)
        error = None
        try:
            incremental = self.check_incremental(full, self.selector.latest_incremental(database))
        except StateInconsistencyError as e:
            incremental, error = None, e

        logger.info(f'Restoring full backup for {database}: {full.path}')
        self.client.recreate_database(database)
        with self.backend.reader(full) as f:
            self.client.load_sql(database, f)

        if error:
            raise error
        if incremental:
            logger.info(f'Restoring incremental backup for {database}: {incremental.path}')
            with self.backend.reader(incremental) as f:
                self.client.load_sql(database, f)
        logger.success(f'Restored {database}')
