"""
Logging configuration for the Product Authority pipeline
Coloured console output plus an optional rotating log file
"""

import os
import logging
import logging.handlers
from pathlib import Path
from typing import Optional
import colorama

colorama.init()

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ('httpx', 'httpcore', 'urllib3')


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name"""

    COLORS = {
        'DEBUG': colorama.Fore.CYAN,
        'INFO': colorama.Fore.GREEN,
        'WARNING': colorama.Fore.YELLOW,
        'ERROR': colorama.Fore.RED,
        'CRITICAL': colorama.Fore.RED + colorama.Style.BRIGHT,
    }

    def format(self, record):
        # Work on a copy so the file handler keeps the plain level name
        record = logging.makeLogRecord(record.__dict__)
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{colorama.Style.RESET_ALL}"
        return super().format(record)


def setup_logging(
    log_file: Optional[str] = None,
    log_level: Optional[str] = None,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure root logging for CLI runs and the API process.

    Args:
        log_file: Path to log file (console only when None)
        log_level: Level name; falls back to AUTHORITY_LOG_LEVEL, then INFO
        max_bytes: Rotate the log file after this size
        backup_count: Number of rotated files to keep

    Returns:
        The configured root logger
    """
    level_name = (log_level or os.environ.get('AUTHORITY_LOG_LEVEL', 'INFO')).upper()

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get logger instance for a module"""
    return logging.getLogger(name)


def log_section(logger: logging.Logger, title: str, width: int = 60) -> None:
    """Write a banner line block around a stage title"""
    logger.info("=" * width)
    logger.info(title)
    logger.info("=" * width)
