"""
config handling for dynaconf
"""
import os
import sys
from importlib.resources import files
from pathlib import Path

from dynaconf import Dynaconf, Validator
from loguru import logger

ENVVAR_PREFIX = 'MYSQL_BACKUP'


def parse_config(config_folder: Path) -> Dynaconf:
    """
    Parse config with dynaconf.
    default.toml is created from the packaged template if it does not exist yet.
    Every setting can be overridden with environment variables, e.g.
    MYSQL_BACKUP_BACKUP__DIR=/srv/backups
    :param config_folder: folder with default.toml and config.toml
    :return: validated settings
    """
    default_config = config_folder / 'default.toml'
    if not os.path.isfile(default_config):
        try:
            config_folder.mkdir(parents=True, exist_ok=True)
            with open(default_config, 'w', encoding='utf-8') as f:
                f.write(files('mysql_backup.data').joinpath('default.toml').read_text())
        except Exception as e:
            logger.critical(f'Failed to create default config {default_config}. '
                            'Consider creating the folder writeable for this user '
                            f'or choose a different path. Error: {e}')
            sys.exit(1)

    settings = Dynaconf(
        envvar_prefix=ENVVAR_PREFIX,
        settings_files=['default.toml', 'config.toml'],
        root_path=str(config_folder),
        merge_enabled=True,
        validators=[
            Validator('backup.dir', must_exist=True, cast=Path),
            Validator('backup.compress', cast=bool, default=True),
            Validator('backup.max_incremental_backups', cast=int, default=0, gte=0),
            Validator('backup.max_full_backups', cast=int, default=0, gte=0),
            Validator('backup.continue_on_error', cast=bool, default=False),
            Validator('mysql.defaults_file', default='~/.my.cnf'),
            Validator('mysql.user', default='root'),
            Validator('mysql.client_binary', default='mysql'),
            Validator('mysql.dump_binary', default='mysqldump'),
            Validator('mysql.dump_coordinate_option', default='--source-data=2',
                      is_in=['--source-data=2', '--master-data=2']),
            Validator('mysql.binlog_binary', default='mysqlbinlog'),
            Validator('logging.file', cast=Path,
                      default='~/logs/mysql_backup_restore.log'),
            Validator('logging.level', default='INFO'),
        ]
    )
    settings.validators.validate()
    return settings
