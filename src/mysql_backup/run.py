"""
Creates full and incremental (binlog) backups of MySQL databases and restores them.
"""
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from dynaconf import Dynaconf
from loguru import logger

from mysql_backup.backends.disk import DiskBackend
from mysql_backup.backup import (BackupOrchestrator, get_database_state,
                                 parse_existing_backups)
from mysql_backup.capture import CaptureEngine
from mysql_backup.mysql.client import Client
from mysql_backup.mysql.preflight import preflight
from mysql_backup.restore import RestoreOrchestrator
from mysql_backup.state import PositionStore
from mysql_backup.utils.config import parse_config
from mysql_backup.utils.exceptions import BackupError, PreflightError
from mysql_backup.utils.logging import setup_logging


class CtxArgs:
    """
    Cache object for arguments between click group and commands.
    """

    def __init__(self, config_folder: Path, settings: Dynaconf, client: Client,
                 backend: DiskBackend, store: PositionStore):
        self.config_folder = Path(config_folder)
        self.settings = settings
        self.client = client
        self.backend = backend
        self.store = store

    @property
    def ignored_databases(self) -> Optional[List[str]]:
        return self.settings('backup.ignored_databases', default=None)


@click.group()
@click.option(
    '-c',
    '--config-folder',
    help='Folder where the config files are stored. /etc/mysql-backup by default.'
         ' Make sure that the user has read and write access to the folder.',
    default='/etc/mysql-backup',
)
@click.pass_context
@click.version_option(package_name='mysql_backup')
def main(ctx, config_folder):
    """
    Create and restore MySQL backups.
    The first backup of a database is a full dump, every later one an incremental
    backup extracted from the binary log.
    """
    try:
        settings = parse_config(Path(config_folder))
        setup_logging(settings('logging.file', cast=Path),
                      settings('logging.level', default='INFO'))

        client = Client(
            defaults_file=settings('mysql.defaults_file', default='~/.my.cnf'),
            host=settings('mysql.host', default=None),
            port=settings('mysql.port', default=None),
            user=settings('mysql.user', default='root'),
            password=settings('mysql.password', default=None),
            client_binary=settings('mysql.client_binary', default='mysql'),
            dump_binary=settings('mysql.dump_binary', default='mysqldump'),
            dump_coordinate_option=settings('mysql.dump_coordinate_option',
                                            default='--source-data=2'),
            binlog_binary=settings('mysql.binlog_binary', default='mysqlbinlog'),
        )
        backup_dir = settings('backup.dir', cast=Path).expanduser()
        backup_dir.mkdir(parents=True, exist_ok=True)
    except Exception as e:
        logger.exception(f'Error during config parsing! {e}')
        sys.exit(1)
    logger.info(f'Backup directory: {backup_dir}')
    ctx.obj = CtxArgs(config_folder, settings, client, DiskBackend(backup_dir),
                      PositionStore(backup_dir))


@main.command('backup')
@click.option(
    '-f', '--force-full',
    is_flag=True, show_default=True, default=False,
    help='Force a full backup of every database and ignore the existing backup chains.'
)
@click.pass_context
def backup_command(ctx, force_full):
    """
    Perform a backup of all user databases.
    Databases without full backup get one, all others an incremental backup.
    """
    args: CtxArgs = ctx.obj
    try:
        preflight(args.client, backup=True)
        orchestrator = BackupOrchestrator(
            client=args.client,
            backend=args.backend,
            store=args.store,
            engine=CaptureEngine(args.client, args.backend,
                                 compress=args.settings('backup.compress', cast=bool,
                                                        default=True)),
            ignored_databases=args.ignored_databases,
            force_full=force_full,
            max_incremental_backups=args.settings('backup.max_incremental_backups', cast=int,
                                                  default=0),
            max_full_backups=args.settings('backup.max_full_backups', cast=int, default=0),
            continue_on_error=args.settings('backup.continue_on_error', cast=bool,
                                            default=False),
        )
        success = orchestrator.run()
    except PreflightError as e:
        logger.critical(f'Preflight check failed: {e}')
        sys.exit(1)
    except Exception as e:
        logger.critical(f'Backup failed! {type(e).__name__}: {e}')
        sys.exit(1)
    finally:
        args.client.close()
    if not success:
        sys.exit(1)


def get_restore_targets(args: CtxArgs, databases: Tuple[str, ...]) -> List[str]:
    """
    Databases to restore.
    :param args: context
    :param databases: databases given on the command line
    :return: the given databases or all live user databases + all databases with a backup folder
    """
    if databases:
        return list(databases)
    targets = set(args.client.list_databases(args.ignored_databases))
    targets.update(args.backend.get_databases())
    return sorted(targets)


@main.command('restore')
@click.option(
    '-d', '--database', 'databases',
    multiple=True,
    help='Database to restore. Can be given multiple times. '
         'Default: all user databases of the server and all databases with backups.'
)
@click.option(
    '-y', '--yes',
    is_flag=True, default=False,
    help='Do not ask for confirmation before dropping the databases.'
)
@click.pass_context
def restore_command(ctx, databases, yes):
    """
    Restore databases from the newest full backup and the newest incremental backup.
    Existing databases are dropped and recreated!
    """
    args: CtxArgs = ctx.obj
    try:
        preflight(args.client, backup=False)
        targets = get_restore_targets(args, databases)
        if not targets:
            logger.warning('Nothing to restore.')
            return
        if not yes:
            click.confirm(
                f'This drops and recreates {", ".join(targets)}. Continue?', abort=True)
        success = RestoreOrchestrator(args.client, args.backend).run(targets)
    except PreflightError as e:
        logger.critical(f'Preflight check failed: {e}')
        sys.exit(1)
    except click.Abort:
        raise
    except Exception as e:
        logger.critical(f'Restore failed! {type(e).__name__}: {e}')
        sys.exit(1)
    finally:
        args.client.close()
    if not success:
        sys.exit(1)


@main.command('list')
@click.pass_context
def list_command(ctx):
    """
    List all existing backups.
    """
    args: CtxArgs = ctx.obj
    databases = args.backend.get_databases()
    if len(databases) == 0:
        click.secho('None! You have to create a backup first...', fg='red',
                    file=sys.stderr)
        sys.exit(1)
    output = click.style('Listing backups:\n', fg='green', bold=True)
    for database in databases:
        existing_backups = parse_existing_backups(args.backend, database)
        state = get_database_state(existing_backups)
        try:
            baseline = args.store.load(database)
        except BackupError as e:
            baseline = e
        output += click.style(f'{database} ({state.value}, baseline: {baseline})\n', fg='cyan',
                              bold=True)
        for full_backup in sorted(existing_backups.values(), key=lambda x: x.timestamp):
            output += click.style(f'\t{full_backup} @ {full_backup.timestamp_str}\n\t\t',
                                  fg='cyan')
            if len(full_backup.incremental_backups) == 0:
                output += click.style('No incremental backups.', fg='red')
            else:
                output += click.style('Incremental backups:', fg='bright_green')
            for incremental_backup in full_backup.incremental_backups:
                output += click.style(
                    f'\n\t\t\t{incremental_backup.path} @ {incremental_backup.timestamp_str}',
                    fg='yellow'
                )
            output += '\n'
        output += '\n'
    click.echo(output)


if __name__ == '__main__':
    main()
