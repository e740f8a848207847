from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Sequence

import pytest
from loguru import logger

from mysql_backup.backends.disk import DiskBackend
from mysql_backup.backup import BackupOrchestrator
from mysql_backup.capture import CaptureEngine
from mysql_backup.state import PositionStore
from mysql_backup.utils.datatypes import LogCoordinate, TableCensus
from mysql_backup.utils.exceptions import CaptureError


def dump_head(coordinate: LogCoordinate) -> bytes:
    return (f"-- CHANGE REPLICATION SOURCE TO SOURCE_LOG_FILE='{coordinate.segment}', "
            f"SOURCE_LOG_POS={coordinate.offset};\n").encode()


class FakeClient:
    """
    In-memory stand-in for mysql_backup.mysql.client.Client.
    """

    def __init__(self) -> None:
        self.databases: List[str] = ['shop']
        self.coordinate = LogCoordinate('mysql-bin.000005', 1542)
        # coordinate of the dump snapshot. None: same as coordinate
        self.dump_coordinate: Optional[LogCoordinate] = None
        self.segments: List[str] = ['mysql-bin.000004', 'mysql-bin.000005']
        self.tables: Dict[str, Dict[str, int]] = {'shop': {'customers': 2, 'orders': 3}}
        self.binlog_statements = b'INSERT INTO orders VALUES (4);\n'
        self.fail_export: set[str] = set()
        self.extract_calls: List[tuple] = []
        self.exported: List[str] = []
        self.recreated: List[str] = []
        self.loaded: List[tuple[str, bytes]] = []
        self.closed = False

    def list_databases(self, ignored_databases: Optional[Sequence[str]] = None) -> List[str]:
        return [x for x in self.databases if x not in (ignored_databases or [])]

    def current_coordinate(self) -> LogCoordinate:
        return self.coordinate

    def list_segments(self) -> List[str]:
        return list(self.segments)

    def table_row_counts(self, database: str) -> List[TableCensus]:
        return [TableCensus(database, table, rows)
                for table, rows in sorted(self.tables.get(database, {}).items())]

    def export_database(self, database: str, output: BinaryIO) -> LogCoordinate:
        if database in self.fail_export:
            raise CaptureError(f'mysqldump failed for {database}', 2)
        self.exported.append(database)
        coordinate = self.dump_coordinate or self.coordinate
        output.write(dump_head(coordinate) + f'CREATE DATABASE `{database}`;\n'.encode())
        return coordinate

    def extract_binlog(self, database: str, segments: Sequence[str], start_offset: int,
                       stop_offset: int, output: BinaryIO) -> None:
        self.extract_calls.append((database, list(segments), start_offset, stop_offset))
        output.write(self.binlog_statements)

    def recreate_database(self, database: str) -> None:
        self.recreated.append(database)

    def load_sql(self, database: str, source: BinaryIO) -> None:
        self.loaded.append((database, source.read()))

    def close(self) -> None:
        self.closed = True


class StepClock:
    """
    Returns a new timestamp on every call.
    """

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0),
                 step: timedelta = timedelta(hours=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.now
        self.now += self.step
        return now


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    # the cli replaces the handlers with sinks bound to its captured streams
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def backend(backup_dir: Path) -> DiskBackend:
    return DiskBackend(backup_dir)


@pytest.fixture
def store(backup_dir: Path) -> PositionStore:
    return PositionStore(backup_dir)


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def engine(client: FakeClient, backend: DiskBackend, clock: StepClock) -> CaptureEngine:
    return CaptureEngine(client, backend, compress=True, clock=clock)


@pytest.fixture
def make_orchestrator(client: FakeClient, backend: DiskBackend, store: PositionStore,
                      engine: CaptureEngine):
    def _make(**kwargs) -> BackupOrchestrator:
        return BackupOrchestrator(client, backend, store, engine, **kwargs)

    return _make
