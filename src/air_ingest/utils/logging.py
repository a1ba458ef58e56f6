import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Any

DEFAULT_FORMAT = '%(asctime)s - %(name)s - [%(levelname)s] - %(message)s'

# Libraries that log every packet or query at DEBUG
NOISY_LOGGERS = ('aiomqtt', 'aiosqlite', 'hypercorn.access')


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Configure the root logger from the ``logging`` section of the config file.

    Keys (all optional):
        level:        DEBUG, INFO, WARNING, ERROR or CRITICAL
        file:         path of the rotating log file
        max_size:     size in MB before the file is rotated
        backup_count: number of rotated files to keep
        format:       logging.Formatter format string
    """
    log_level = getattr(logging, str(config.get('level', 'INFO')).upper(), logging.INFO)
    log_file = Path(config.get('file', 'logs/air_ingest.log'))
    formatter = logging.Formatter(config.get('format', DEFAULT_FORMAT))

    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=int(config.get('max_size', 10)) * 1024 * 1024,
        backupCount=int(config.get('backup_count', 5))
    )
    console_handler = logging.StreamHandler()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # setup_logging may run more than once (tests, reloads)
    root_logger.handlers.clear()
    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """Module logger, call with ``__name__``"""
    return logging.getLogger(name)
