from __future__ import annotations

import io
from pathlib import Path
from typing import List

import pymysql
import pytest

from mysql_backup.mysql.client import Client, _CoordinateScanner, quote_identifier
from mysql_backup.utils.datatypes import LogCoordinate
from mysql_backup.utils.exceptions import CaptureError

DUMP = (b"-- MySQL dump 10.13  Distrib 8.0.36\n"
        b"-- CHANGE REPLICATION SOURCE TO SOURCE_LOG_FILE='mysql-bin.000005', "
        b"SOURCE_LOG_POS=1542;\n"
        b"CREATE TABLE `a` (`id` int);\n")


def fake_binary(tmp_path: Path, name: str, body: str) -> str:
    """
    Shell script that records its arguments in <name>.args and then runs body.
    """
    path = tmp_path / name
    path.write_text('#!/bin/sh\nprintf \'%s\\n\' "$@" > "$0.args"\n' + body)
    path.chmod(0o755)
    return str(path)


def recorded_args(binary: str) -> List[str]:
    return Path(binary + '.args').read_text().splitlines()


def make_client(**kwargs) -> Client:
    kwargs.setdefault('defaults_file', None)
    return Client(**kwargs)


def test_export_database_streams_the_dump_and_returns_its_coordinate(tmp_path: Path) -> None:
    (tmp_path / 'dump.sql').write_bytes(DUMP)
    dump = fake_binary(tmp_path, 'mysqldump', f'cat "{tmp_path / "dump.sql"}"\n')
    client = make_client(dump_binary=dump)
    output = io.BytesIO()

    coordinate = client.export_database('shop', output)

    assert coordinate == LogCoordinate('mysql-bin.000005', 1542)
    assert output.getvalue() == DUMP
    assert recorded_args(dump) == [
        '--user=root', '--single-transaction', '--source-data=2', '--set-gtid-purged=OFF',
        '--routines', '--triggers', '--events', '--databases', 'shop',
    ]


def test_export_database_with_old_mysqldump(tmp_path: Path) -> None:
    (tmp_path / 'dump.sql').write_bytes(
        b"-- CHANGE MASTER TO MASTER_LOG_FILE='binlog.000012', MASTER_LOG_POS=157;\n")
    dump = fake_binary(tmp_path, 'mysqldump', f'cat "{tmp_path / "dump.sql"}"\n')
    client = make_client(dump_binary=dump, dump_coordinate_option='--master-data=2')

    assert client.export_database('shop', io.BytesIO()) == LogCoordinate('binlog.000012', 157)
    assert '--master-data=2' in recorded_args(dump)


def test_export_database_without_coordinate(tmp_path: Path) -> None:
    dump = fake_binary(tmp_path, 'mysqldump', 'echo "CREATE TABLE a (id int);"\n')
    client = make_client(dump_binary=dump)

    with pytest.raises(CaptureError) as exc:
        client.export_database('shop', io.BytesIO())
    assert 'binlog coordinate' in str(exc.value)


def test_failing_binary_raises_capture_error(tmp_path: Path) -> None:
    dump = fake_binary(tmp_path, 'mysqldump',
                       'echo "Access denied for user" >&2\necho "partial"\nexit 2\n')
    client = make_client(dump_binary=dump)

    with pytest.raises(CaptureError) as exc:
        client.export_database('shop', io.BytesIO())
    assert exc.value.returncode == 2
    assert 'Access denied for user' in str(exc.value)


def test_missing_binary_raises_capture_error(tmp_path: Path) -> None:
    client = make_client(dump_binary=str(tmp_path / 'missing'))

    with pytest.raises(CaptureError) as exc:
        client.export_database('shop', io.BytesIO())
    assert exc.value.returncode is None


def test_connection_options_come_after_the_defaults_file(tmp_path: Path) -> None:
    (tmp_path / 'dump.sql').write_bytes(DUMP)
    dump = fake_binary(tmp_path, 'mysqldump', f'cat "{tmp_path / "dump.sql"}"\n')
    client = Client(defaults_file=str(tmp_path / 'my.cnf'), host='db', port='3307',
                    user='backup', dump_binary=dump)

    client.export_database('shop', io.BytesIO())

    assert recorded_args(dump)[:4] == [f'--defaults-file={tmp_path / "my.cnf"}', '--host=db',
                                       '--port=3307', '--user=backup']


def test_password_is_passed_in_the_environment(tmp_path: Path) -> None:
    mysql = fake_binary(tmp_path, 'mysql', f'echo "$MYSQL_PWD" > "{tmp_path / "pwd"}"\n')
    client = make_client(client_binary=mysql, password='s3cret')

    client.load_sql('shop', io.BytesIO(b''))

    assert (tmp_path / 'pwd').read_text().strip() == 's3cret'
    assert not [x for x in recorded_args(mysql) if 's3cret' in x]


def test_load_sql_streams_stdin(tmp_path: Path) -> None:
    mysql = fake_binary(tmp_path, 'mysql', f'cat > "{tmp_path / "stdin.sql"}"\n')
    client = make_client(client_binary=mysql)

    client.load_sql('shop', io.BytesIO(DUMP))

    assert (tmp_path / 'stdin.sql').read_bytes() == DUMP
    assert recorded_args(mysql) == ['--user=root', 'shop']


def test_extract_binlog(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    binlog = fake_binary(tmp_path, 'mysqlbinlog', 'echo "INSERT INTO a VALUES (1);"\n')
    client = make_client(binlog_binary=binlog)
    monkeypatch.setattr(client, 'execute',
                        lambda *_args: [('log_bin_basename', '/var/lib/mysql/mysql-bin')])
    output = io.BytesIO()

    client.extract_binlog('shop', ['mysql-bin.000005', 'mysql-bin.000006'], 1542, 900, output)

    assert output.getvalue() == b'INSERT INTO a VALUES (1);\n'
    assert recorded_args(binlog) == [
        '--start-position=1542', '--stop-position=900', '--database=shop', '--skip-gtids',
        '/var/lib/mysql/mysql-bin.000005', '/var/lib/mysql/mysql-bin.000006',
    ]


def test_binlog_dir_without_binary_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    client = make_client()
    monkeypatch.setattr(client, 'execute', lambda *_args: [])

    with pytest.raises(CaptureError):
        client.binlog_dir()


def test_current_coordinate(monkeypatch: pytest.MonkeyPatch) -> None:
    client = make_client()
    monkeypatch.setattr(client, 'execute',
                        lambda *_args: [('mysql-bin.000005', 1542, '', '', '')])

    assert client.current_coordinate() == LogCoordinate('mysql-bin.000005', 1542)


def test_current_coordinate_on_mysql_8_4(monkeypatch: pytest.MonkeyPatch) -> None:
    queries = []

    def _execute(query, args=None):
        queries.append(query)
        if query == 'SHOW MASTER STATUS':
            raise pymysql.err.ProgrammingError(1064, 'You have an error in your SQL syntax')
        return [('binlog.000003', 157, '', '', '')]

    client = make_client()
    monkeypatch.setattr(client, 'execute', _execute)

    assert client.current_coordinate() == LogCoordinate('binlog.000003', 157)
    assert queries == ['SHOW MASTER STATUS', 'SHOW BINARY LOG STATUS']


def test_current_coordinate_without_binary_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    client = make_client()
    monkeypatch.setattr(client, 'execute', lambda *_args: [])

    with pytest.raises(CaptureError):
        client.current_coordinate()


def test_recreate_database_quotes_the_name(monkeypatch: pytest.MonkeyPatch) -> None:
    queries = []
    client = make_client()
    monkeypatch.setattr(client, 'execute', lambda query, args=None: queries.append(query))

    client.recreate_database('we`ird db')

    assert queries == ['DROP DATABASE IF EXISTS `we``ird db`', 'CREATE DATABASE `we``ird db`']


def test_quote_identifier() -> None:
    assert quote_identifier('shop') == '`shop`'
    assert quote_identifier('a`b') == '`a``b`'


def test_list_databases_skips_system_and_ignored_databases(
        monkeypatch: pytest.MonkeyPatch) -> None:
    client = make_client()
    rows = [('information_schema',), ('mysql',), ('performance_schema',), ('sys',),
            ('scratch',), ('shop',)]
    monkeypatch.setattr(client, 'execute', lambda *_args: rows)

    assert client.list_databases() == ['scratch', 'shop']
    assert client.list_databases(['scratch']) == ['shop']


def test_table_row_counts(monkeypatch: pytest.MonkeyPatch) -> None:
    def _execute(query, args=None):
        if query.startswith('SELECT table_name'):
            assert args == ('shop',)
            return [('customers',), ('orders',)]
        return [(3,)] if '`orders`' in query else [(2,)]

    client = make_client()
    monkeypatch.setattr(client, 'execute', _execute)

    assert [(x.table, x.row_count) for x in client.table_row_counts('shop')] == [
        ('customers', 2), ('orders', 3)]


def test_coordinate_split_across_writes() -> None:
    output = io.BytesIO()
    scanner = _CoordinateScanner(output)
    scanner.write(DUMP[:60])
    assert scanner.coordinate is None
    scanner.write(DUMP[60:])

    assert scanner.coordinate == LogCoordinate('mysql-bin.000005', 1542)
    assert output.getvalue() == DUMP
