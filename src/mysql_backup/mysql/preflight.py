"""
Environment checks before any database is touched.
"""
import os
import shutil

import pymysql
from loguru import logger

from mysql_backup.mysql.client import Client
from mysql_backup.utils.exceptions import PreflightError


def check_binaries(*binaries: str):
    for binary in binaries:
        path = shutil.which(binary)
        if not path:
            raise PreflightError(f'{binary} not found or not executable.')
        logger.info(f'{binary} exists: {path}')


def check_dump_binary(client: Client):
    # mysqlpump cannot record the binlog coordinate of its snapshot
    if 'mysqlpump' in os.path.basename(client.dump_binary):
        raise PreflightError(f'{client.dump_binary} is not supported, use mysqldump.')


def check_connection(client: Client):
    try:
        version = client.server_version()
    except pymysql.err.MySQLError as e:
        raise PreflightError(
            f'Cannot connect to MySQL with {client.defaults_file or "the given credentials"}: {e}'
        ) from e
    logger.info(f'MySQL found: {version}')


def check_binlog(client: Client):
    if client.get_variable('log_bin') != 'ON':
        raise PreflightError('Binary logging is not enabled.')
    basename = client.get_variable('log_bin_basename')
    if not basename:
        raise PreflightError('log_bin_basename is not set.')
    logger.info(f'Binary logging enabled, binlog directory: {os.path.dirname(basename)}')


def check_data_dir(client: Client):
    data_dir = client.get_variable('datadir')
    if not data_dir or not os.path.isdir(data_dir):
        raise PreflightError(f'MySQL data directory not found: {data_dir}')
    logger.info(f'MySQL data directory found: {data_dir}')


def preflight(client: Client, backup: bool = True):
    """
    Validate the environment.
    :param client: MySQL client
    :param backup: also check the tools and settings only needed for backups
    :raises PreflightError: on the first failed check
    """
    if backup:
        check_dump_binary(client)
        check_binaries(client.client_binary, client.dump_binary, client.binlog_binary)
    else:
        check_binaries(client.client_binary)
    check_connection(client)
    if backup:
        check_binlog(client)
        check_data_dir(client)
