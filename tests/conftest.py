"""Shared fixtures: settings pointing at a temporary data folder, a fake Redis
and an application wired to both."""
import fcntl
import os
from contextlib import contextmanager

import fakeredis
import pytest

# Keep span output off the test console; must be set before the first app.
os.environ.setdefault("OTEL_CONSOLE_EXPORTER", "false")

from track_service.app import create_app  # noqa: E402
from track_service.settings import Settings  # noqa: E402
from track_service.tracklog import TrackLog  # noqa: E402


@pytest.fixture
def settings(tmp_path):
    return Settings({
        "DATA_FOLDER": str(tmp_path / "data"),
        "TRACK_FILE_NAME": "test_track.txt",
        "LOCK_RETRIES": "3",
        "LOCK_RETRY_WAIT": "0.01",
        "RATE_LIMIT_ENABLED": "false",
    })


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def track_log(settings):
    return TrackLog.from_settings(settings)


@pytest.fixture
def app(settings, redis_client, track_log):
    return create_app(settings, redis_client=redis_client, track_log=track_log)


@pytest.fixture
def client(app):
    return app.test_client()


@contextmanager
def held_lock(path):
    """Hold an exclusive flock on ``path`` the way another writer would."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    f = open(path, "a")
    try:
        fcntl.flock(f, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(f, fcntl.LOCK_UN)
        f.close()
