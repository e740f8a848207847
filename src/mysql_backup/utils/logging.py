import sys
from pathlib import Path

from loguru import logger

FORMAT_STRING = '{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}'


def setup_logging(log_file: Path, log_level: str):
    """
    Log to the terminal (colored) and to the persistent log file.
    :param log_file: path of the log file. parent folders are created.
    :param log_level: minimum level for both sinks
    """
    logger.remove()
    logger.add(sys.stderr,
               format='<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level}</level> | '
                      '<level>{message}</level>',
               colorize=True,
               level=log_level)
    log_file = Path(log_file).expanduser()
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(log_file,
               format=FORMAT_STRING,
               rotation='00:00',
               retention='14 days',
               level=log_level,
               backtrace=True,
               diagnose=True)
