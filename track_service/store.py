"""
Redis access for the single persistent counter.
"""

import math
import re

import redis

_LEADING_INT = re.compile(r'\s*([+-]?\d+)')


def coerce_int(value):
    """Loosely convert ``value`` to an int.

    Kept for compatibility with clients that send counts as arbitrary text:
    the leading integer prefix is used ("12abc" -> 12, "3.7" -> 3) and
    anything without one becomes 0.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return 0
        return int(value)
    if isinstance(value, bytes):
        value = value.decode('utf-8', errors='replace')
    match = _LEADING_INT.match(str(value))
    if match is None:
        return 0
    return int(match.group(1))


def create_redis_client(settings):
    """Create a Redis client from the service settings."""
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        db=settings.redis_db,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True
    )


class CounterStore:
    """Read and accumulate one named counter in Redis.

    ``add_count`` is a plain GET followed by a SET. Two concurrent calls can
    read the same value and one of the increments is then lost.
    """

    def __init__(self, client, key='count'):
        self.client = client
        self.key = key

    def get_count(self):
        """Return the stored value, or None if the counter was never set."""
        value = self.client.get(self.key)
        if value is None:
            return None
        return coerce_int(value)

    def add_count(self, delta):
        """Add ``delta`` to the counter and return the new value."""
        current = self.client.get(self.key)
        total = coerce_int(current) + coerce_int(delta)
        self.client.set(self.key, total)
        return total

    def ping(self):
        return self.client.ping()
