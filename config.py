# Application configuration for OrderSpot
import os
import secrets

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DATA_BACKENDS = ('live', 'mock')


def _database_url():
    url = os.environ.get('DATABASE_URL')
    if url:
        # Fix for SQLAlchemy compatibility with psycopg3
        if url.startswith('postgres://'):
            url = url.replace('postgres://', 'postgresql+psycopg://', 1)
        elif url.startswith('postgresql://'):
            url = url.replace('postgresql://', 'postgresql+psycopg://', 1)
    return url or 'sqlite:///orderspot.db'


def _flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration, read from the environment"""

    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRATION_HOURS = int(os.environ.get('JWT_EXPIRATION_HOURS', 24))

    # live: SQLAlchemy models, mock: hardcoded payloads from mock_data
    DATA_BACKEND = os.environ.get('DATA_BACKEND', 'live').strip().lower()

    # When False any known status may overwrite any other
    STRICT_STATUS_TRANSITIONS = _flag('STRICT_STATUS_TRANSITIONS', True)

    DEFAULT_CURRENCY_SYMBOL = os.environ.get('DEFAULT_CURRENCY_SYMBOL', '$')
    PRODUCTION_REFRESH_SECONDS = int(os.environ.get('PRODUCTION_REFRESH_SECONDS', 30))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')

    JSON_SORT_KEYS = False


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    DATA_BACKEND = 'live'
    STRICT_STATUS_TRANSITIONS = True
    LOG_LEVEL = 'WARNING'
