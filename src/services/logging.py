"""Logging setup for the billing API server and CLI.

Dual output (stdout + file). The level comes from LOG_LEVEL (default INFO);
use WARNING in production and DEBUG to trace allocation decisions.
"""

import logging
import os
import sys
from pathlib import Path

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers kept at WARNING unless the billing level is stricter
NOISY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "httpx")


def get_log_level(name: str | None = None) -> int:
    """Resolve a level name (default: LOG_LEVEL env var) to a logging constant.

    Unknown names fall back to INFO.
    """
    level_str = (name or os.getenv("LOG_LEVEL", "INFO")).upper()
    return LOG_LEVEL_MAP.get(level_str, logging.INFO)


def setup_server_logging(log_file: str = "logs/billing.log", level: str | None = None) -> None:
    """
    Configure the root logger.

    Args:
        log_file: Path to log file, parent directories are created
        level: Level name overriding LOG_LEVEL
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    log_level = get_log_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Re-running setup must not duplicate output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    stdout_handler = logging.StreamHandler(sys.stdout)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    for handler in (stdout_handler, file_handler):
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
