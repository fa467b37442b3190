import fcntl
import json
import os
import threading

import pytest

from track_service.exceptions import LockTimeoutError
from track_service.tracklog import TrackLog

from conftest import held_lock


@pytest.fixture
def log(tmp_path):
    return TrackLog(str(tmp_path / "nested" / "data"), "track.txt", retries=2, retry_wait=0.01)


def read_lines(log):
    with open(log.path, encoding="utf-8") as f:
        return f.read().split("\n")


def test_append_creates_folder_and_file(log):
    log.append({"a": 1, "b": 2})
    assert os.path.isdir(log.folder)
    assert read_lines(log) == ['{"a":1,"b":2}', ""]


def test_records_keep_append_order(log):
    log.append({"a": 1})
    log.append({"c": "3", "d": "4"})
    assert log.read_records() == [{"a": 1}, {"c": "3", "d": "4"}]


def test_existing_folder_is_fine(log):
    os.makedirs(log.folder)
    log.append({"a": 1})
    assert log.read_records() == [{"a": 1}]


def test_existing_content_is_kept(log):
    os.makedirs(log.folder)
    with open(log.path, "w", encoding="utf-8") as f:
        f.write('{"old":true}\n')
    log.append({"new": True})
    assert log.read_records() == [{"old": True}, {"new": True}]


def test_records_with_newlines_stay_on_one_line(log):
    log.append({"text": "line one\nline two"})
    lines = read_lines(log)
    assert len(lines) == 2
    assert json.loads(lines[0]) == {"text": "line one\nline two"}


def test_non_ascii_is_written_as_utf8(log):
    log.append({"city": "Brno – Královo Pole"})
    with open(log.path, "rb") as f:
        raw = f.read()
    assert "Královo".encode("utf-8") in raw
    assert log.read_records() == [{"city": "Brno – Královo Pole"}]


def test_folder_path_taken_by_a_file(tmp_path):
    blocker = tmp_path / "data"
    blocker.write_text("not a folder")
    log = TrackLog(str(blocker), "track.txt")
    with pytest.raises(OSError):
        log.append({"a": 1})


def test_missing_log_reads_as_empty(log):
    assert log.read_records() == []


def test_lock_exhaustion_raises_and_writes_nothing(log):
    with held_lock(log.lock_path):
        with pytest.raises(LockTimeoutError) as excinfo:
            log.append({"a": 1})
    assert excinfo.value.attempts == 3
    assert excinfo.value.lock_path == log.lock_path
    assert not os.path.exists(log.path)


def test_lock_is_retried_until_released(tmp_path):
    log = TrackLog(str(tmp_path), "track.txt", retries=100, retry_wait=0.01)
    lock_file = open(log.lock_path, "a")
    fcntl.flock(lock_file, fcntl.LOCK_EX)

    def release():
        fcntl.flock(lock_file, fcntl.LOCK_UN)
        lock_file.close()

    timer = threading.Timer(0.05, release)
    timer.start()
    try:
        log.append({"a": 1})
    finally:
        timer.join()
    assert log.read_records() == [{"a": 1}]


def test_lock_is_released_after_append(log):
    log.append({"a": 1})
    with open(log.lock_path, "a") as f:
        fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
        fcntl.flock(f, fcntl.LOCK_UN)


def test_lock_is_released_when_the_body_fails(log):
    os.makedirs(log.folder)
    with pytest.raises(RuntimeError):
        with log.lock():
            raise RuntimeError("boom")
    with log.lock():
        pass


def test_concurrent_appends_never_share_a_line(tmp_path):
    log = TrackLog(str(tmp_path), "track.txt", retries=500, retry_wait=0.001)

    def writer(n):
        for i in range(20):
            log.append({"writer": n, "i": i})

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    records = log.read_records()
    assert len(records) == 80
    for n in range(4):
        assert [r["i"] for r in records if r["writer"] == n] == list(range(20))
