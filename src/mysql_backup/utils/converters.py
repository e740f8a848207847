"""
helpers for converting values from one format to a different one
"""
import re
from datetime import datetime
from pathlib import Path

TIMESTAMP_FORMAT = '%Y%m%d%H%M%S'

FILE_NAME_PATTERN = re.compile(
    r'^(?P<database>.+)_(?P<kind>full|inc)_(?P<timestamp>\d{14})\.(?P<file_type>sql(?:\.gz)?)$'
)


def parse_timestamp(timestamp: str) -> datetime:
    """
    Convert the given timestamp string to a datetime object.
    Format: TIMESTAMP_FORMAT
    :param timestamp: timestamp to parse
    :return: parsed timestamp
    """
    return datetime.strptime(timestamp, TIMESTAMP_FORMAT)


def format_timestamp(timestamp: datetime) -> str:
    """
    Convert the given datetime object to the correct string.
    :param timestamp: datetime object
    :return: formatted time
    """
    return timestamp.strftime(TIMESTAMP_FORMAT)


def parse_file_name(file_path: str or Path) -> dict:
    """
    Parse the given file_path.
    <db>_full_<timestamp>.sql.gz or <db>_inc_<timestamp>.sql.gz
    :param file_path:
    :return: Dictionary with keys: database, kind, timestamp, file_type, path
    """
    match = FILE_NAME_PATTERN.match(Path(file_path).name)
    if not match:
        raise ValueError(f'Invalid file name: {file_path}')
    return {
        'database': match.group('database'),
        'kind': match.group('kind'),
        'timestamp': parse_timestamp(match.group('timestamp')),
        'file_type': match.group('file_type'),
        'path': Path(file_path),
    }
