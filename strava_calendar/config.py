"""
Environment configuration and logger setup.

Values come from the process environment, with a local .env file loaded
first by python-dotenv.
"""

import os
import sys
from dataclasses import dataclass

from dotenv import load_dotenv
from loguru import logger

from .errors import ConfigError

DEFAULT_VERIFY_TOKEN = 'strava2cal_verify_token'
STORAGE_BACKENDS = ('memory', 'file', 'sqlite')
LOG_LEVELS = ('TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass(frozen=True)
class Config:
    client_id: str
    client_secret: str
    app_address: str
    verify_token: str = DEFAULT_VERIFY_TOKEN
    storage_backend: str = 'file'
    storage_path: str = '.strava-calendar'
    log_level: str = 'INFO'
    calendar_name: str = None
    request_timeout: float = 15.0
    resync_timeout: float = None

    @property
    def callback_url(self):
        return f"{self.app_address}/hook"

    @property
    def redirect_uri(self):
        return f"{self.app_address}/auth"

    @classmethod
    def from_env(cls, environ=None, dotenv=True):
        """Read and validate configuration; raises ConfigError on bad values."""
        if dotenv and environ is None:
            load_dotenv()
        env = os.environ if environ is None else environ

        missing = [name for name in ('STRAVA_CLIENT_ID', 'STRAVA_CLIENT_SECRET', 'APP_ADDRESS')
                   if not env.get(name)]
        if missing:
            raise ConfigError(f"missing required environment variables: {', '.join(missing)}")

        backend = env.get('STORAGE_BACKEND', 'file').lower()
        if backend not in STORAGE_BACKENDS:
            raise ConfigError(f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}, got {backend!r}")

        log_level = env.get('LOG_LEVEL', 'INFO').upper()
        if log_level == 'WARN':
            log_level = 'WARNING'
        if log_level not in LOG_LEVELS:
            raise ConfigError(f"unknown LOG_LEVEL: {log_level!r}")

        return cls(
            client_id=env['STRAVA_CLIENT_ID'],
            client_secret=env['STRAVA_CLIENT_SECRET'],
            app_address=env['APP_ADDRESS'].rstrip('/'),
            verify_token=env.get('VERIFY_TOKEN') or DEFAULT_VERIFY_TOKEN,
            storage_backend=backend,
            storage_path=env.get('STORAGE_PATH') or '.strava-calendar',
            log_level=log_level,
            calendar_name=env.get('CALENDAR_NAME') or None,
            request_timeout=_positive_float(env, 'REQUEST_TIMEOUT', 15.0),
            resync_timeout=_positive_float(env, 'RESYNC_TIMEOUT', None),
        )


def _positive_float(env, name, default):
    value = env.get(name)
    if not value:
        return default
    try:
        number = float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}") from None
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return number


def setup_logger(level='INFO'):
    """Send loguru output to stderr at the given level."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level,
    )
