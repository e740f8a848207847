"""
Creates full backups (logical dumps) and incremental backups (binlog extracts).
"""
import re
from datetime import datetime, timedelta
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple, Type

from loguru import logger

from mysql_backup.backends.base import Backend
from mysql_backup.mysql.client import Client
from mysql_backup.utils.datatypes import (Backup, FullBackup, IncrementalBackup,
                                          LogCoordinate, TableCensus)

CENSUS_FILE_NAME = 'table_info_full.txt'
CENSUS_HEADER = ('database_name', 'table_name', 'table_rows')

# first line of every incremental artifact. a plain SQL comment, ignored by mysql on replay.
# full artifacts carry the CHANGE REPLICATION SOURCE comment of mysqldump instead.
INCREMENTAL_HEADER = '-- mysql-backup inc start={start} stop={stop}\n'
HEADER_PATTERN = re.compile(
    r'^-- mysql-backup inc start=(?P<start>\S+ \d+) '
    r'stop=(?P<stop>\S+ \d+)\s*$'
)


class ArtifactHeader(NamedTuple):
    """
    Binlog window recorded in an incremental artifact.
    """
    start: LogCoordinate
    stop: LogCoordinate


def parse_header(line: bytes) -> Optional[ArtifactHeader]:
    """
    Parse the first line of an incremental artifact.
    :param line: first line
    :return: header or None if the artifact has none (e.g. created by the shell scripts)
    """
    match = HEADER_PATTERN.match(line.decode('utf-8', errors='replace'))
    if not match:
        return None
    return ArtifactHeader(LogCoordinate.parse(match['start']), LogCoordinate.parse(match['stop']))


def format_census(census: Sequence[TableCensus]) -> str:
    lines = ['\t'.join(CENSUS_HEADER)]
    lines += [f'{row.database}\t{row.table}\t{row.row_count}' for row in census]
    return '\n'.join(lines) + '\n'


class CaptureEngine:
    """
    Writes backup artifacts. Never modifies the source database.
    """

    def __init__(self, client: Client, backend: Backend, compress: bool = True,
                 clock: Callable[[], datetime] = datetime.now):
        """
        :param client: MySQL client
        :param backend: storage for the artifacts
        :param compress: gzip the artifacts
        :param clock: source of the artifact timestamps
        """
        self.client = client
        self.backend = backend
        self.file_type = 'sql.gz' if compress else 'sql'
        self.clock = clock

    def _new_backup(self, cls: Type[Backup], database: str) -> Backup:
        # file names only have a resolution of one second
        backup = cls(database, self.clock(), self.file_type)
        while self.backend.exists(backup):
            backup.timestamp += timedelta(seconds=1)
        return backup

    def capture_full(self, database: str) -> Tuple[FullBackup, LogCoordinate, List[TableCensus]]:
        """
        Create a full backup of the database.
        The binlog coordinate is the one mysqldump records for its single-transaction
        snapshot. Everything up to the coordinate is part of the dump.
        :param database: database name
        :return: 3-tuple (backup, coordinate, table census)
        """
        census = self.client.table_row_counts(database)
        logger.info(f'Table census of {database}: {len(census)} tables')

        backup = self._new_backup(FullBackup, database)
        with self.backend.writer(backup) as f:
            coordinate = self.client.export_database(database, f)
        logger.debug(f'{backup} starts at binlog coordinate {coordinate}')
        return backup, coordinate, census

    def capture_incremental(self, database: str, segments: Sequence[str], start_offset: int,
                            stop: LogCoordinate) -> IncrementalBackup:
        """
        Create an incremental backup from the binlog.
        An empty extract is a valid backup.
        :param database: database name
        :param segments: resolved segments, the last one has to be stop.segment
        :param start_offset: start position within the first segment
        :param stop: stop coordinate within the last segment
        :return: created backup
        """
        if not segments or segments[-1] != stop.segment:
            raise ValueError(f'Segments {segments} do not end with {stop.segment}')
        start = LogCoordinate(segments[0], start_offset)
        backup = self._new_backup(IncrementalBackup, database)
        with self.backend.writer(backup) as f:
            f.write(INCREMENTAL_HEADER.format(start=start.format(), stop=stop.format()).encode())
            self.client.extract_binlog(database, segments, start_offset, stop.offset, f)
        logger.debug(f'{backup} covers binlog {start} - {stop} ({len(segments)} segments)')
        return backup
