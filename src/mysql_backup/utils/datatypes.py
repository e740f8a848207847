"""
Contains classes representing log positions and backup artifacts.
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from functools import total_ordering
from pathlib import Path
from typing import List, NamedTuple, Optional

from .converters import format_timestamp

COORDINATE_PATTERN = re.compile(r'^(?P<segment>\S+) (?P<offset>\d+)$')
# written by mysqldump --source-data=2 (--master-data=2 before 8.0.26)
DUMP_COORDINATE_PATTERN = re.compile(
    rb"CHANGE (?:MASTER|REPLICATION SOURCE) TO (?:MASTER|SOURCE)_LOG_FILE='(?P<segment>[^']+)',"
    rb"\s*(?:MASTER|SOURCE)_LOG_POS=(?P<offset>\d+)"
)


@total_ordering
@dataclass(frozen=True)
class LogCoordinate:
    """
    Position in the binary log: segment file name + byte offset.
    Ordered by the numeric suffix of the segment, then by the offset.
    """
    segment: str
    offset: int

    def __post_init__(self):
        if self.offset < 0:
            raise ValueError(f'Negative binlog offset: {self.offset}')
        # raises for segment names without a numeric suffix
        _ = self.sequence

    @property
    def sequence(self) -> int:
        """
        Sequence number of the segment. mysql-bin.000042 -> 42
        """
        suffix = self.segment.rsplit('.', 1)[-1]
        if not suffix.isdigit():
            raise ValueError(f'Binlog segment without sequence number: {self.segment}')
        return int(suffix)

    def __lt__(self, other):
        if not isinstance(other, LogCoordinate):
            return NotImplemented
        return (self.sequence, self.offset) < (other.sequence, other.offset)

    def __str__(self):
        return f'{self.segment}:{self.offset}'

    @classmethod
    def parse(cls, text: str) -> 'LogCoordinate':
        """
        Parse a coordinate in the "<segment> <offset>" form used by full_start.txt.
        :param text: text to parse. surrounding whitespace is ignored.
        :return: parsed coordinate
        :raises ValueError: malformed text
        """
        match = COORDINATE_PATTERN.match(text.strip())
        if not match:
            raise ValueError(f'Invalid log coordinate: {text!r}')
        return cls(match.group('segment'), int(match.group('offset')))

    def format(self) -> str:
        return f'{self.segment} {self.offset}'

    @classmethod
    def from_dump(cls, head: bytes) -> Optional['LogCoordinate']:
        """
        Find the binlog coordinate mysqldump recorded at its snapshot.
        :param head: beginning of the dump
        :return: coordinate or None if the dump has none
        """
        match = DUMP_COORDINATE_PATTERN.search(head)
        if not match:
            return None
        return cls(match.group('segment').decode(), int(match.group('offset')))


@dataclass(frozen=True)
class LogWindow:
    """
    Closed interval of the binary log covered by an incremental backup.
    """
    start: LogCoordinate
    stop: LogCoordinate

    def __str__(self):
        return f'[{self.start}, {self.stop}]'


class TableCensus(NamedTuple):
    database: str
    table: str
    row_count: int


class Backup(ABC):
    """
    Abstract base class for backup artifacts.
    """

    def __init__(self, database: str, timestamp: Optional[datetime] = None,
                 file_type: str = 'sql.gz'):
        """
        :param database: name of the backed up database
        :param timestamp: timestamp of the backup. now by default.
        :param file_type: sql.gz for compressed artifacts, sql for plain ones.
        """
        self.database = database
        # second precision. the timestamp is embedded in the file name
        self.timestamp = (timestamp if timestamp else datetime.now()).replace(microsecond=0)
        self.file_type = file_type

    def __str__(self):
        return f'Backup {self.path}'

    @property
    @abstractmethod
    def kind(self) -> str:
        """
        full or inc
        """

    @property
    def compressed(self) -> bool:
        return self.file_type.endswith('.gz')

    @property
    def path(self) -> Path:
        """
        file name of the backup file (relative to the database directory)
        """
        return Path(
            f'{self.database}_{self.kind}_{format_timestamp(self.timestamp)}.{self.file_type}')

    @property
    def timestamp_str(self) -> str:
        """
        timestamp as human-readable string
        :return: timestamp as string
        """
        return self.timestamp.strftime('%Y-%m-%d %H:%M:%S')


class IncrementalBackup(Backup):
    """
    Represents incremental backups (binlog extracts).
    """

    kind = 'inc'

    def __init__(self, database: str, timestamp: Optional[datetime] = None,
                 file_type: str = 'sql.gz', base_backup: Optional['FullBackup'] = None):
        """
        :param base_backup: full backup this incremental applies on top of, if known
        """
        super().__init__(database, timestamp, file_type)
        self.base_backup = base_backup

    def __str__(self):
        return f'Incremental Backup {self.path}'


class FullBackup(Backup):
    """
    Represents full backups (logical dumps).
    """

    kind = 'full'

    def __init__(self, database: str, timestamp: Optional[datetime] = None,
                 file_type: str = 'sql.gz'):
        super().__init__(database, timestamp, file_type)
        self.incremental_backups: List[IncrementalBackup] = []

    def __str__(self):
        return f'Full Backup {self.path}'
