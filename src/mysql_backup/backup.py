"""
Backup state machine: decides per database between a full and an incremental backup.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from loguru import logger

from mysql_backup.backends.base import Backend
from mysql_backup.capture import CENSUS_FILE_NAME, CaptureEngine, format_census
from mysql_backup.mysql.client import Client
from mysql_backup.segments import resolve_segments
from mysql_backup.state import STATE_FILE_NAME, PositionStore
from mysql_backup.utils.converters import parse_file_name
from mysql_backup.utils.datatypes import Backup, FullBackup, IncrementalBackup, LogWindow
from mysql_backup.utils.exceptions import PreflightError, StateInconsistencyError


class DatabaseState(Enum):
    """
    Backup state of a database.
    """
    NO_FULL = 'NoFull'
    HAS_FULL = 'HasFull'


class BackupAction(Enum):
    FULL = 'full'
    INCREMENTAL = 'incremental'


def next_action(state: DatabaseState, force_full: bool = False,
                incremental_backups: int = 0,
                max_incremental_backups: int = 0) -> BackupAction:
    """
    Decide which kind of backup to create next.
    :param state: current state of the database
    :param force_full: always create a full backup
    :param incremental_backups: number of incremental backups on top of the newest full backup
    :param max_incremental_backups: create a new full backup once the newest full backup has
        this many incremental backups. 0: never
    :return: backup action
    """
    if force_full or state == DatabaseState.NO_FULL:
        return BackupAction.FULL
    if 0 < max_incremental_backups <= incremental_backups:
        return BackupAction.FULL
    return BackupAction.INCREMENTAL


def parse_existing_backups(backend: Backend, database: str) -> Dict[datetime, FullBackup]:
    """
    Get all existing backups of the database grouped into chains.
    An incremental backup belongs to the newest full backup that is not newer than itself.
    :param backend: storage backend
    :param database: database name
    :return: dict of all full backups by timestamp
    """
    backups: Dict[datetime, FullBackup] = {}
    incremental: List[dict] = []
    for file in backend.get_existing_backups(database):
        try:
            data = parse_file_name(file)
        except ValueError:
            logger.warning(f'Invalid file name in backup dir of {database}: {file}')
            continue
        if data['database'] != database:
            logger.warning(f'Backup of a different database in the backup dir of {database}: '
                           f'{file}')
            continue
        if data['kind'] == 'full':
            backups[data['timestamp']] = FullBackup(database, data['timestamp'],
                                                    data['file_type'])
        else:
            incremental.append(data)

    for data in sorted(incremental, key=lambda x: x['timestamp']):
        bases = [x for x in backups if x <= data['timestamp']]
        if not bases:
            logger.warning(f'Full base backup for {data["path"]} is missing!')
            continue
        full_backup = backups[max(bases)]
        full_backup.incremental_backups.append(
            IncrementalBackup(database, data['timestamp'], data['file_type'],
                              base_backup=full_backup)
        )
    return backups


def get_database_state(existing_backups: Dict[datetime, FullBackup]) -> DatabaseState:
    return DatabaseState.HAS_FULL if existing_backups else DatabaseState.NO_FULL


def clean_old_backups(backend: Backend, existing_backups: Dict[datetime, FullBackup],
                      max_full_backups: int):
    """
    Remove old backup chains.
    If we have n > max_full_backups, the oldest full backup + its
    incremental backups are deleted.
    :param backend: storage backend
    :param existing_backups: dict containing existing backups
    :param max_full_backups: max full backups to keep. 0: keep everything
    """
    if max_full_backups == 0:
        return
    for timestamp in sorted(existing_backups.keys()):
        if len(existing_backups) <= max_full_backups:
            break
        x = existing_backups.pop(timestamp)
        logger.info(f'Deleting a full backup: {x} (Max {max_full_backups} full backups)')
        for inc in x.incremental_backups:
            backend.remove(inc)
        backend.remove(x)


class BackupOrchestrator:
    """
    Backs up all user databases one after another.
    """

    def __init__(self, client: Client, backend: Backend, store: PositionStore,
                 engine: CaptureEngine,
                 ignored_databases: Optional[Sequence[str]] = None,
                 force_full: bool = False,
                 max_incremental_backups: int = 0,
                 max_full_backups: int = 0,
                 continue_on_error: bool = False):
        """
        :param client: MySQL client
        :param backend: storage backend
        :param store: baseline store
        :param engine: capture engine
        :param ignored_databases: databases to skip (system databases are always skipped)
        :param force_full: create full backups for all databases
        :param max_incremental_backups: see next_action
        :param max_full_backups: see clean_old_backups
        :param continue_on_error: continue with the next database if a backup fails.
            Inconsistent backup states always abort the batch.
        """
        self.client = client
        self.backend = backend
        self.store = store
        self.engine = engine
        self.ignored_databases = ignored_databases
        self.force_full = force_full
        self.max_incremental_backups = max_incremental_backups
        self.max_full_backups = max_full_backups
        self.continue_on_error = continue_on_error

    def run(self) -> bool:
        """
        Back up all databases.
        :return: True if every database has been backed up
        :raises StateInconsistencyError: always fatal for the batch
        :raises Exception: the first failed backup unless continue_on_error is set
        """
        databases = self.client.list_databases(self.ignored_databases)
        logger.info(f'User databases found ({len(databases)}): {", ".join(databases)}')
        failed = []
        for database in databases:
            try:
                self.backup_database(database)
            except (StateInconsistencyError, PreflightError):
                raise
            except Exception as e:
                if not self.continue_on_error:
                    raise
                logger.error(f'Backup of {database} failed: {e}')
                failed.append(database)
        if failed:
            logger.error(f'Backups failed for: {", ".join(failed)}')
            return False
        logger.success('All backups completed successfully.')
        return True

    def backup_database(self, database: str) -> Backup:
        """
        Create the next backup of the database.
        :param database: database name
        :return: the created backup
        """
        existing_backups = parse_existing_backups(self.backend, database)
        state = get_database_state(existing_backups)
        newest_full_backup = (existing_backups[max(existing_backups.keys())]
                              if existing_backups else None)
        action = next_action(
            state,
            force_full=self.force_full,
            incremental_backups=(len(newest_full_backup.incremental_backups)
                                 if newest_full_backup else 0),
            max_incremental_backups=self.max_incremental_backups,
        )
        logger.debug(f'{database}: state {state.value}, next backup: {action.value}')
        if action == BackupAction.FULL:
            return self._full_backup(database, state, existing_backups)
        return self._incremental_backup(database, newest_full_backup)

    def _full_backup(self, database: str, state: DatabaseState,
                     existing_backups: Dict[datetime, FullBackup]) -> FullBackup:
        logger.info(f"Starting full backup for '{database}'...")
        backup, coordinate, census = self.engine.capture_full(database)
        try:
            # a database without full backup starts a new chain
            self.store.save(database, coordinate,
                            allow_regression=state == DatabaseState.NO_FULL)
        except StateInconsistencyError:
            logger.error(f'Removing {backup.path}: baseline regression')
            self.backend.remove(backup)
            raise
        self.backend.write_metadata(database, CENSUS_FILE_NAME, format_census(census))
        logger.success(f'Full backup complete: {backup.path} (binlog {coordinate})')
        existing_backups[backup.timestamp] = backup
        clean_old_backups(self.backend, existing_backups, self.max_full_backups)
        return backup

    def _incremental_backup(self, database: str,
                            base_backup: FullBackup) -> IncrementalBackup:
        logger.info(f"Starting incremental backup for '{database}'...")
        baseline = self.store.load(database)
        if baseline is None:
            raise StateInconsistencyError(
                database,
                f'No {STATE_FILE_NAME} found but full backup {base_backup.path} exists. '
                'Cannot proceed with incremental backup.')
        stop = self.client.current_coordinate()
        window = LogWindow(baseline, stop)
        segments = resolve_segments(self.client.list_segments(), window)
        logger.info(f'Binlog window {window}: {", ".join(segments)}')
        backup = self.engine.capture_incremental(database, segments, baseline.offset, stop)
        backup.base_backup = base_backup
        base_backup.incremental_backups.append(backup)
        logger.success(f'Incremental backup complete: {backup.path}')
        return backup
