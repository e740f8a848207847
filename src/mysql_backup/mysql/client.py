"""
MySQL client / db actions / interactions
"""
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence

import pymysql
from loguru import logger

from mysql_backup.utils.datatypes import LogCoordinate, TableCensus
from mysql_backup.utils.exceptions import CaptureError

SYSTEM_DATABASES = ('information_schema', 'performance_schema', 'mysql', 'sys')
# the coordinate comment is written before the first table
DUMP_HEAD_SIZE = 1024 * 1024


def quote_identifier(name: str) -> str:
    return '`' + name.replace('`', '``') + '`'


class _CoordinateScanner:
    """
    Passes the dump through and looks for the binlog coordinate in its head.
    """

    def __init__(self, output: BinaryIO):
        self.output = output
        self.head = b''
        self.coordinate: Optional[LogCoordinate] = None

    def write(self, data: bytes) -> int:
        if not self.coordinate and len(self.head) < DUMP_HEAD_SIZE:
            self.head += data
            self.coordinate = LogCoordinate.from_dump(self.head)
        return self.output.write(data)


class Client:
    """
    MySQL client. Queries go through PyMySQL, dumps / binlog extraction / SQL replay
    through the mysql command line tools.
    """

    def __init__(self, defaults_file: Optional[str] = '~/.my.cnf',
                 host: Optional[str] = None, port: Optional[int] = None,
                 user: Optional[str] = 'root', password: Optional[str] = None,
                 client_binary: str = 'mysql',
                 dump_binary: str = 'mysqldump',
                 dump_coordinate_option: str = '--source-data=2',
                 binlog_binary: str = 'mysqlbinlog'):
        """
        Init a new client.
        :param defaults_file: option file with the credentials. default: ~/.my.cnf
        :param host: default: from the option file
        :param port: default: from the option file
        :param user: default: root
        :param password: default: from the option file
        :param client_binary: default: mysql
        :param dump_binary: default: mysqldump
        :param dump_coordinate_option: default: --source-data=2. --master-data=2 for
            mysqldump before 8.0.26
        :param binlog_binary: default: mysqlbinlog
        """
        self.defaults_file = os.path.expanduser(defaults_file) if defaults_file else None
        self._host = host
        self._port = int(port) if port else None
        self._user = user
        self._password = password
        self._connection: Optional[pymysql.connections.Connection] = None

        self.client_binary = client_binary
        self.dump_binary = dump_binary
        self.dump_coordinate_option = dump_coordinate_option
        self.binlog_binary = binlog_binary

    @property
    def connection(self) -> pymysql.connections.Connection:
        """
        Open a new connection to MySQL.
        :return: driver connection
        """
        if not self._connection:
            logger.debug('Connecting to MySQL...')
            self._connection = pymysql.connect(
                read_default_file=self.defaults_file,
                host=self._host,
                port=self._port or 0,
                user=self._user,
                password=self._password or '',
                autocommit=True,
            )
        return self._connection

    def close(self):
        if self._connection:
            self._connection.close()
            self._connection = None

    def execute(self, query: str, args=None) -> list:
        """
        Run a query and fetch all rows.
        :param query: SQL query with %s placeholders
        :param args: query arguments
        :return: list of row tuples
        """
        with self.connection.cursor() as cursor:
            cursor.execute(query, args)
            return list(cursor.fetchall())

    def server_version(self) -> str:
        return self.execute('SELECT VERSION()')[0][0]

    def get_variable(self, name: str) -> Optional[str]:
        """
        Get a server variable.
        :param name: variable name, e.g. log_bin
        :return: value or None if the variable does not exist
        """
        rows = self.execute('SHOW VARIABLES LIKE %s', (name,))
        return rows[0][1] if rows else None

    def binlog_dir(self) -> Path:
        """
        Folder containing the binlog segments.
        """
        basename = self.get_variable('log_bin_basename')
        if not basename:
            raise CaptureError('log_bin_basename is not set. Is binary logging enabled?')
        return Path(basename).parent

    def list_databases(self, ignored_databases: Optional[Sequence[str]] = None) -> List[str]:
        """
        Get all non-system databases.
        :param ignored_databases: additional databases to skip
        :return: database names
        """
        ignored = set(SYSTEM_DATABASES) | set(ignored_databases or [])
        return [row[0] for row in self.execute('SHOW DATABASES') if row[0] not in ignored]

    def current_coordinate(self) -> LogCoordinate:
        """
        Current write position of the binary log.
        """
        try:
            rows = self.execute('SHOW MASTER STATUS')
        except pymysql.err.ProgrammingError:
            # removed in MySQL 8.4
            rows = self.execute('SHOW BINARY LOG STATUS')
        if not rows:
            raise CaptureError('No binary log status. Is binary logging enabled?')
        return LogCoordinate(rows[0][0], int(rows[0][1]))

    def list_segments(self) -> List[str]:
        """
        All binlog segments known to the server, oldest first.
        """
        return [row[0] for row in self.execute('SHOW BINARY LOGS')]

    def table_row_counts(self, database: str) -> List[TableCensus]:
        """
        Count the rows of every base table of the database.
        :param database: database name
        :return: one entry per table
        """
        tables = self.execute(
            'SELECT table_name FROM information_schema.tables '
            "WHERE table_schema = %s AND table_type = 'BASE TABLE' ORDER BY table_name",
            (database,)
        )
        census = []
        for (table,) in tables:
            rows = self.execute(
                f'SELECT COUNT(*) FROM {quote_identifier(database)}.{quote_identifier(table)}')
            census.append(TableCensus(database, table, int(rows[0][0])))
        return census

    def recreate_database(self, database: str):
        """
        Drop the database (if it exists) and create it empty again.
        """
        logger.debug(f'Recreating database {database}')
        self.execute(f'DROP DATABASE IF EXISTS {quote_identifier(database)}')
        self.execute(f'CREATE DATABASE {quote_identifier(database)}')

    def _base_args(self, binary: str) -> List[str]:
        # --defaults-file has to be the first option
        args = [binary]
        if self.defaults_file:
            args.append(f'--defaults-file={self.defaults_file}')
        if self._host:
            args.append(f'--host={self._host}')
        if self._port:
            args.append(f'--port={self._port}')
        if self._user:
            args.append(f'--user={self._user}')
        return args

    def _environment(self) -> dict:
        env = os.environ.copy()
        if self._password:
            env['MYSQL_PWD'] = self._password
        return env

    def _run(self, command: List[str], stdout: Optional[BinaryIO] = None,
             stdin: Optional[BinaryIO] = None):
        """
        Run an external command and stream stdout to / stdin from the given file objects.
        :raises CaptureError: the command failed
        """
        logger.debug(f'Running {" ".join(command)}')
        with tempfile.TemporaryFile() as stderr:
            try:
                process = subprocess.Popen(
                    command,
                    stdin=subprocess.PIPE if stdin else subprocess.DEVNULL,
                    stdout=subprocess.PIPE if stdout else subprocess.DEVNULL,
                    stderr=stderr,
                    env=self._environment(),
                )
            except OSError as e:
                raise CaptureError(f'Failed to run {command[0]}: {e}') from e
            try:
                if stdin:
                    with process.stdin:
                        shutil.copyfileobj(stdin, process.stdin)
                if stdout:
                    shutil.copyfileobj(process.stdout, stdout)
                    process.stdout.close()
            except BrokenPipeError:
                pass
            returncode = process.wait()
            if returncode != 0:
                stderr.seek(0)
                message = stderr.read().decode(errors='replace').strip()
                raise CaptureError(f'{command[0]} failed with exit code {returncode}: {message}',
                                   returncode)

    def export_database(self, database: str, output: BinaryIO) -> LogCoordinate:
        """
        Dump schema and data of the database with a single consistent transaction.
        mysqldump records the binlog coordinate of its snapshot in the dump.
        :param database: database name
        :param output: binary file object for the SQL dump
        :return: binlog coordinate of the snapshot
        :raises CaptureError: the dump failed or contains no binlog coordinate
        """
        command = self._base_args(self.dump_binary) + [
            '--single-transaction',
            self.dump_coordinate_option,
            '--set-gtid-purged=OFF',
            '--routines', '--triggers', '--events',
            '--databases', database,
        ]
        scanner = _CoordinateScanner(output)
        self._run(command, stdout=scanner)
        if not scanner.coordinate:
            raise CaptureError(f'{self.dump_binary} did not record a binlog coordinate '
                               f'({self.dump_coordinate_option}). Is binary logging enabled?')
        return scanner.coordinate

    def extract_binlog(self, database: str, segments: Sequence[str],
                       start_offset: int, stop_offset: int, output: BinaryIO):
        """
        Extract the statements of the database from the binlog.
        :param database: only statements for this database
        :param segments: binlog segments to read, oldest first
        :param start_offset: start position in the first segment
        :param stop_offset: stop position in the last segment
        :param output: binary file object for the SQL statements
        """
        binlog_dir = self.binlog_dir()
        command = [
            self.binlog_binary,
            f'--start-position={start_offset}',
            f'--stop-position={stop_offset}',
            f'--database={database}',
            # replayed as new transactions on the restore target
            '--skip-gtids',
        ] + [str(binlog_dir / segment) for segment in segments]
        self._run(command, stdout=output)

    def load_sql(self, database: str, source: BinaryIO):
        """
        Replay an SQL stream into the database.
        :param database: target database
        :param source: binary file object with SQL statements
        """
        self._run(self._base_args(self.client_binary) + [database], stdin=source)
