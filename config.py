"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name, default):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Remote store (system of record)
    # Priority: REMOTE_DATABASE_URL > DATABASE_URL > DB_* > POSTGRES_*
    REMOTE_DATABASE_URL = os.getenv('REMOTE_DATABASE_URL') or os.getenv('DATABASE_URL')

    if not REMOTE_DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'pos')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'pos')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'pos')

        REMOTE_DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # Local store (offline cache)
    LOCAL_DATABASE_URL = os.getenv('LOCAL_DATABASE_URL', 'sqlite:///local.db')

    # SQLAlchemy
    SQLALCHEMY_ECHO = _env_bool('SQLALCHEMY_ECHO', 'false')
    DB_CONNECT_TIMEOUT = int(os.getenv('DB_CONNECT_TIMEOUT', '5'))  # seconds

    # Synchronization
    SYNC_PROBE_INTERVAL = float(os.getenv('SYNC_PROBE_INTERVAL', '10'))  # seconds
    SYNC_PROBE_TIMEOUT = float(os.getenv('SYNC_PROBE_TIMEOUT', '3'))
    SYNC_AUTOSTART = _env_bool('SYNC_AUTOSTART', 'true')

    # Orders
    ORDER_NUMBER_PREFIX = os.getenv('ORDER_NUMBER_PREFIX', 'BRU')

    # Redis view cache
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    CACHE_ENABLED = _env_bool('CACHE_ENABLED', 'true')
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_INVENTORY_TTL = int(os.getenv('CACHE_INVENTORY_TTL', '30'))
    CACHE_SALES_TTL = int(os.getenv('CACHE_SALES_TTL', '300'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'pos')
