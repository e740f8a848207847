import gzip
import os
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, List

from loguru import logger

from mysql_backup.backends.base import Backend
from mysql_backup.utils.datatypes import Backup


def write_atomic(path: Path, text: str):
    """
    Write text to path. Readers either see the old or the complete new content.
    :param path: target file
    :param text: content
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f'.{path.name}.tmp')
    try:
        with open(temp_path, 'w', encoding='utf-8', newline='\n') as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


class DiskBackend(Backend):
    """
    Disk backend for handling file based backups on a local disk.
    Layout: <backup_dir>/<database>/<artifact>
    """

    def __init__(self, backup_dir: Path):
        """
        :param backup_dir: main dir for backups
        """
        self.backup_dir = Path(backup_dir).expanduser()

    def database_dir(self, database: str) -> Path:
        return self.backup_dir / database

    def artifact_path(self, backup: Backup) -> Path:
        return self.database_dir(backup.database) / backup.path

    def get_existing_backups(self, database: str) -> List[str]:
        """
        Get all existing backups of the database.
        :return: list with existing backup files.
        """
        db_dir = self.database_dir(database)
        if not db_dir.is_dir():
            return []
        return [x for x in os.listdir(db_dir)
                if (x.endswith('.sql') or x.endswith('.sql.gz')) and (db_dir / x).is_file()]

    def get_databases(self) -> List[str]:
        """
        Databases with a folder in the backup dir.
        """
        if not self.backup_dir.is_dir():
            return []
        return sorted(x.name for x in self.backup_dir.iterdir() if x.is_dir())

    def exists(self, backup: Backup) -> bool:
        return self.artifact_path(backup).exists()

    def write_metadata(self, database: str, name: str, text: str) -> None:
        write_atomic(self.database_dir(database) / name, text)

    def remove(self, backup: Backup) -> None:
        path = self.artifact_path(backup)
        logger.debug(f'Removing {path}')
        os.remove(path)

    @contextmanager
    def writer(self, backup: Backup) -> Iterator[BinaryIO]:
        path = self.artifact_path(backup)
        if path.exists():
            raise FileExistsError(f'Backup {path} already exists!')
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f'.{path.name}.tmp')
        try:
            with open(temp_path, 'wb') as raw:
                if backup.compressed:
                    with gzip.GzipFile(filename=backup.path.stem, mode='wb', fileobj=raw) as f:
                        yield f
                else:
                    yield raw
                raw.flush()
                os.fsync(raw.fileno())
            os.replace(temp_path, path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

    @contextmanager
    def reader(self, backup: Backup) -> Iterator[BinaryIO]:
        path = self.artifact_path(backup)
        if backup.compressed:
            with gzip.open(path, 'rb') as f:
                yield f
        else:
            with open(path, 'rb') as f:
                yield f
