from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import BinaryIO, Iterator, List

from mysql_backup.utils.datatypes import Backup


class Backend(ABC):
    """
    ABC for backend implementations.
    Implements how to list, write, read and delete backup artifacts.
    """

    @abstractmethod
    def get_existing_backups(self, database: str) -> List[str]:
        """
        Returns the file names of all artifacts of the database.
        """
        pass

    @abstractmethod
    def exists(self, backup: Backup) -> bool:
        """
        Whether an artifact with the name of the backup exists.
        """
        pass

    @abstractmethod
    def write_metadata(self, database: str, name: str, text: str) -> None:
        """
        Store a small text file next to the artifacts of the database.
        Readers either see the old or the complete new content.
        :param database: database name
        :param name: file name
        :param text: content
        """
        pass

    @abstractmethod
    def remove(self, backup: Backup) -> None:
        """
        Removes the backup artifact.
        :param backup: The backup to remove.
        """
        pass

    @abstractmethod
    @contextmanager
    def writer(self, backup: Backup) -> Iterator[BinaryIO]:
        """
        Open a new artifact for writing (compressed if the backup is compressed).
        The artifact must only become visible once the block exits without an error.
        :param backup: backup to create
        """
        pass

    @abstractmethod
    @contextmanager
    def reader(self, backup: Backup) -> Iterator[BinaryIO]:
        """
        Open an artifact for reading. Compressed artifacts are decompressed on the fly.
        :param backup: backup to read
        """
        pass
