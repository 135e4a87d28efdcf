"""
Lead Capture Configuration
Loads settings from environment variables with sensible defaults.
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env file
_ROOT = Path(__file__).parent.parent
env_path = _ROOT / '.env'
load_dotenv(env_path)


def _split_csv(value: str) -> tuple:
    return tuple(part.strip() for part in value.split(',') if part.strip())


class Config:
    """Application configuration."""

    APP_ENV = os.getenv('APP_ENV', 'development')

    # Database: a connection string selects PostgreSQL, otherwise SQLite is used
    DATABASE_URL = os.getenv('DATABASE_URL') or None
    ENGINE = 'postgres' if DATABASE_URL else 'sqlite'

    DATABASE_PATH = os.getenv('DATABASE_PATH') or (
        '/app/data/leads.db' if APP_ENV == 'production'
        else str(_ROOT / 'data' / 'leads.db')
    )

    # PostgreSQL pool bounds; timeout applies to pool acquisition and connect
    DB_POOL_MIN = int(os.getenv('DB_POOL_MIN', '1'))
    DB_POOL_MAX = int(os.getenv('DB_POOL_MAX', '10'))
    DB_POOL_TIMEOUT = float(os.getenv('DB_POOL_TIMEOUT', '10'))

    # Civil calendar used for timestamps and "today"
    TIMEZONE = os.getenv('TIMEZONE', 'America/Sao_Paulo')

    # Workshop days accepted in dia_evento
    VALID_EVENT_DAYS = _split_csv(os.getenv('VALID_EVENT_DAYS', '17,18'))

    MAX_PAGE_SIZE = int(os.getenv('MAX_PAGE_SIZE', '200'))

    # Outbound webhook (empty disables delivery)
    WEBHOOK_URL = os.getenv('WEBHOOK_URL', '')
    WEBHOOK_TIMEOUT_SECONDS = float(os.getenv('WEBHOOK_TIMEOUT_SECONDS', '10'))
    DELIVERY_MAX_ATTEMPTS = int(os.getenv('DELIVERY_MAX_ATTEMPTS', '3'))

    if DB_POOL_MAX < 1:
        _logger.critical("DB_POOL_MAX must be at least 1")
        raise ValueError("DB_POOL_MAX must be at least 1")


# Singleton instance
config = Config()
