"""Configuration loading for the billing core.

Loads settings from .env file and environment variables with sensible defaults.
Validates values and provides clear error messages.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv


@dataclass
class BillingConfig:
    """Configuration for the billing service."""

    database_url: str = "sqlite:///./billing.db"
    """SQLAlchemy database URL (default: local SQLite)"""

    log_level: str = "INFO"
    """Root logging level name"""

    log_file: str = "logs/billing.log"
    """Path to log file (default: logs/billing.log)"""

    import_chunk_size: int = 500
    """Number of payment rows committed per chunk during bulk imports"""

    penalty_annual_rate: Decimal = Decimal("0.1")
    """Yearly penalty rate on overdue debt (0.1 = 10% a year)"""


def load_config() -> BillingConfig:
    """
    Load configuration from .env file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (DATABASE_URL, LOG_LEVEL, LOG_FILE, IMPORT_CHUNK_SIZE,
       PENALTY_ANNUAL_RATE)
    2. .env file in project root
    3. Default values

    Returns:
        BillingConfig with all settings

    Raises:
        ValueError: If a configured value is invalid
    """
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    database_url = os.getenv("DATABASE_URL") or "sqlite:///./billing.db"
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_file = os.getenv("LOG_FILE", "logs/billing.log")
    chunk_raw = os.getenv("IMPORT_CHUNK_SIZE", "500")
    rate_raw = os.getenv("PENALTY_ANNUAL_RATE", "0.1")

    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ValueError(
            f"LOG_LEVEL has unsupported value: {log_level}. "
            "Use one of DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )

    try:
        import_chunk_size = int(chunk_raw)
    except ValueError as e:
        raise ValueError(f"IMPORT_CHUNK_SIZE must be an integer, got {chunk_raw!r}") from e
    if import_chunk_size <= 0:
        raise ValueError(f"IMPORT_CHUNK_SIZE must be positive, got {import_chunk_size}")

    try:
        penalty_annual_rate = Decimal(rate_raw)
    except InvalidOperation as e:
        raise ValueError(f"PENALTY_ANNUAL_RATE must be a number, got {rate_raw!r}") from e
    if not penalty_annual_rate.is_finite() or penalty_annual_rate < 0:
        raise ValueError(f"PENALTY_ANNUAL_RATE must not be negative, got {rate_raw!r}")

    return BillingConfig(
        database_url=database_url,
        log_level=log_level,
        log_file=log_file,
        import_chunk_size=import_chunk_size,
        penalty_annual_rate=penalty_annual_rate,
    )
