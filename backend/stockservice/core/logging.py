"""
Logging setup shared by the API process and the consumer host.

Everything is written to stdout, one line per record. Driver loggers stay
at WARNING unless database echo is switched on.
"""

import logging
import sys
from typing import Optional
from stockservice.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_DRIVER_LOGGERS = ("sqlalchemy", "aiosqlite", "asyncpg", "redis")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger at `level` (defaults to LOG_LEVEL)."""
    level_name = (level or settings.LOG_LEVEL).upper()

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    driver_level = logging.INFO if settings.DB_ECHO else logging.WARNING
    for name in _DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(driver_level)
