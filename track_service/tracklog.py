"""
Append-only JSON-lines log of tracking records, guarded by an advisory lock file.
"""

import errno
import fcntl
import json
import logging
import os
import time
from contextlib import contextmanager

from track_service.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


class TrackLog:
    """Appends one JSON line per record to ``<folder>/<file_name>``.

    Writers coordinate through ``<folder>/lock_<file_name>``. The lock only
    gives mutual exclusion of the append itself; readers may still observe a
    line while it is being written.
    """

    def __init__(self, folder, file_name, retries=50, retry_wait=0.1):
        self.folder = folder
        self.file_name = file_name
        self.retries = retries
        self.retry_wait = retry_wait

    @classmethod
    def from_settings(cls, settings):
        return cls(
            settings.data_folder,
            settings.track_file_name,
            retries=settings.lock_retries,
            retry_wait=settings.lock_retry_wait,
        )

    @property
    def path(self):
        return os.path.join(self.folder, self.file_name)

    @property
    def lock_path(self):
        return os.path.join(self.folder, 'lock_' + self.file_name)

    def ensure_folder(self):
        try:
            os.makedirs(self.folder)
        except OSError as e:
            if e.errno != errno.EEXIST or not os.path.isdir(self.folder):
                raise

    @contextmanager
    def lock(self):
        """Hold the advisory lock, retrying every ``retry_wait`` seconds."""
        lock_f = open(self.lock_path, 'a')
        try:
            attempts = 0
            while True:
                attempts += 1
                try:
                    fcntl.flock(lock_f, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if attempts > self.retries:
                        raise LockTimeoutError(self.lock_path, attempts)
                    logger.debug("Track file lock busy, retrying", extra={
                        "lock_path": self.lock_path,
                        "attempt": attempts,
                    })
                    time.sleep(self.retry_wait)
            try:
                yield
            finally:
                fcntl.flock(lock_f, fcntl.LOCK_UN)
        finally:
            lock_f.close()

    def append(self, record):
        """Append ``record`` as a single line and return the line written."""
        line = json.dumps(record, ensure_ascii=False, separators=(',', ':')) + '\n'
        data = line.encode('utf-8')

        self.ensure_folder()
        with self.lock():
            # One write call so a failure never leaves half a line behind.
            fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
            try:
                written = os.write(fd, data)
                if written != len(data):
                    raise OSError(errno.EIO, f"Short write to {self.path}: {written} of {len(data)} bytes")
            finally:
                os.close(fd)
        return line

    def read_records(self):
        """Parse every line of the log; a missing log reads as empty."""
        if not os.path.exists(self.path):
            return []
        with open(self.path, 'r', encoding='utf-8') as f:
            return [json.loads(line) for line in f if line.strip()]
