"""
Service configuration from the environment (and an optional .env file)
"""
import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .copier import DEFAULT_BATCH_SIZE

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


class ConfigError(Exception):
    pass


@dataclass
class Settings:
    postgres_dsn: str
    batch_size: int = DEFAULT_BATCH_SIZE
    copy_data: bool = True
    verify: bool = False
    host: str = '0.0.0.0'
    port: int = DEFAULT_PORT
    log_level: str = 'INFO'


def env_flag(value, default):
    """Anything other than "false"/"0" enables the flag"""
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() not in ('false', '0')


def env_int(environ, key, default, minimum=None):
    raw = environ.get(key)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {key}={raw!r}, using default {default}")
        return default
    if minimum is not None and value < minimum:
        logger.warning(f"Invalid {key}={raw!r}, using default {default}")
        return default
    return value


def load_settings(environ=None, dotenv=True) -> Settings:
    if dotenv:
        load_dotenv()
    if environ is None:
        environ = os.environ

    dsn = environ.get('POSTGRES_DSN')
    if not dsn:
        raise ConfigError("Environment variable POSTGRES_DSN not set")

    return Settings(
        postgres_dsn=dsn,
        batch_size=env_int(environ, 'BATCH_SIZE', DEFAULT_BATCH_SIZE, minimum=1),
        copy_data=env_flag(environ.get('COPY_DATA'), True),
        verify=env_flag(environ.get('VERIFY_COUNTS'), False),
        host=environ.get('HOST', '0.0.0.0'),
        port=env_int(environ, 'PORT', DEFAULT_PORT, minimum=1),
        log_level=environ.get('LOG_LEVEL', 'INFO').upper(),
    )


def setup_logging(level='INFO'):
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)
