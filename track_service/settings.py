"""
Runtime settings for the track service, resolved from environment variables.
"""

import logging
import os

logger = logging.getLogger(__name__)

DEFAULTS = {
    'APP_PORT': 8080,
    'REDIS_URL': 'localhost',
    'REDIS_PORT': 9090,
    'REDIS_DB': 0,
    'DATA_FOLDER': './data',
    'TRACK_FILE_NAME': 'track.txt',
    'COUNTER_KEY': 'count',
    'LOCK_RETRIES': 50,
    'LOCK_RETRY_WAIT': 0.1,
    'LOG_LEVEL': 'INFO',
    'RATE_LIMITS': '100 per minute;10 per second',
    'RATE_LIMIT_STORAGE_URI': 'memory://',
    'RATE_LIMIT_ENABLED': 'true',
}


class Settings:
    """Read-only view over a snapshot of the environment.

    Every accessor returns the override when it is present and non-empty and
    the default otherwise. Values are not validated here; a malformed number
    raises ``ValueError`` from the accessor that converts it.
    """

    def __init__(self, environ=None):
        if environ is None:
            environ = os.environ
        self._environ = dict(environ)

    def get(self, name, default=None):
        value = self._environ.get(name)
        if value is None or value == '':
            return DEFAULTS.get(name, default)
        return value

    @property
    def listen_port(self):
        return int(self.get('APP_PORT'))

    @property
    def redis_host(self):
        return self.get('REDIS_URL')

    @property
    def redis_port(self):
        return int(self.get('REDIS_PORT'))

    @property
    def redis_db(self):
        return int(self.get('REDIS_DB'))

    @property
    def redis_password(self):
        password_file = self.get('REDIS_PASSWORD_FILE')
        if password_file:
            try:
                with open(password_file, 'r') as f:
                    return f.read().strip()
            except IOError as e:
                logger.error("Could not read Redis password file", extra={"error": str(e)})
                return None
        return self.get('REDIS_PASSWORD')

    @property
    def data_folder(self):
        return self.get('DATA_FOLDER')

    @property
    def track_file_name(self):
        return self.get('TRACK_FILE_NAME')

    @property
    def track_file_path(self):
        return os.path.join(self.data_folder, self.track_file_name)

    @property
    def lock_file_path(self):
        return os.path.join(self.data_folder, 'lock_' + self.track_file_name)

    @property
    def counter_key(self):
        return self.get('COUNTER_KEY')

    @property
    def lock_retries(self):
        return int(self.get('LOCK_RETRIES'))

    @property
    def lock_retry_wait(self):
        return float(self.get('LOCK_RETRY_WAIT'))

    @property
    def log_level(self):
        return str(self.get('LOG_LEVEL')).upper()

    @property
    def rate_limits(self):
        return [limit.strip() for limit in self.get('RATE_LIMITS').split(';') if limit.strip()]

    @property
    def rate_limit_storage_uri(self):
        return self.get('RATE_LIMIT_STORAGE_URI')

    @property
    def rate_limit_enabled(self):
        return str(self.get('RATE_LIMIT_ENABLED')).lower() not in ('0', 'false', 'no', 'off')

    def __repr__(self):
        return (f"Settings(listen_port={self.get('APP_PORT')!r}, "
                f"redis={self.redis_host}:{self.get('REDIS_PORT')}, "
                f"track_file={self.track_file_path!r})")
