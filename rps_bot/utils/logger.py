import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List

from rps_bot.config import Config

_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
_DATEFMT = '%Y-%m-%d %H:%M:%S'


def _build_handlers() -> List[logging.Handler]:
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
    log_level = logging.DEBUG if Config.DEBUG else logging.INFO

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    # Daily file keeps DEBUG output so every balance change can be audited
    log_dir = Path(Config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(
        log_dir / f'rps_arena_{datetime.now().strftime("%Y%m%d")}.log',
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    return [console_handler, file_handler]


def setup_logger(name: str) -> logging.Logger:
    """Setup a logger with consistent formatting"""

    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG if Config.DEBUG else logging.INFO)
    for handler in _build_handlers():
        logger.addHandler(handler)

    return logger


def configure_discord_logging() -> None:
    """Send discord.py's own log records to the same console and file"""
    discord_logger = logging.getLogger('discord')
    if discord_logger.handlers:
        return
    discord_logger.setLevel(logging.INFO)
    for handler in _build_handlers():
        discord_logger.addHandler(handler)
