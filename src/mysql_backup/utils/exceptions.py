"""
Exceptions raised by the backup and restore engine.
"""
from typing import Optional


class BackupError(Exception):
    """
    Base class for all errors of mysql-backup.
    """


class PreflightError(BackupError):
    """
    The environment is not usable (missing binaries, bad credentials, binlog disabled, ...).
    Aborts the whole run before any database is touched.
    """


class StateInconsistencyError(BackupError):
    """
    The persisted backup state of a database does not match its artifacts.
    Never healed automatically.
    """

    def __init__(self, database: str, message: str):
        super().__init__(f'{database}: {message}')
        self.database = database


class StateCorruptedError(StateInconsistencyError):
    """
    The position record of a database exists but cannot be parsed.
    """


class LogWindowError(BackupError):
    """
    Base class for errors while resolving an incremental window against the binlog.
    """


class SegmentNotFound(LogWindowError):
    """
    The start segment of the window is not in the binlog anymore (purged or rotated away).
    A new full backup is required.
    """

    def __init__(self, segment: str):
        super().__init__(f'Binlog segment {segment} not found. It was probably purged. '
                         'Create a new full backup with --force-full.')
        self.segment = segment


class WindowUnresolved(LogWindowError):
    """
    The stop bound of the window cannot be reached from its start.
    """


class CaptureError(BackupError):
    """
    An external dump / extraction / load process failed.
    """

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class RestoreArtifactMissing(BackupError):
    """
    No full backup exists for a database that should be restored.
    """

    def __init__(self, database: str):
        super().__init__(f'No full backup found for {database}')
        self.database = database
