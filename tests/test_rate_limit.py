from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from nhs_records_export.rate_limit import (
    LOCK_FILENAME,
    OtpRateLimitError,
    RateLimitLockedError,
    RateLimitLockFile,
    wait_out_rate_limit,
)


NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _lock(tmp_path: Path) -> RateLimitLockFile:
    return RateLimitLockFile(tmp_path / LOCK_FILENAME)


def test_check_without_lock_is_noop(tmp_path: Path) -> None:
    _lock(tmp_path).check(now=NOW)


def test_check_aborts_while_locked(tmp_path: Path) -> None:
    lf = _lock(tmp_path)
    lf.acquire(now=NOW)

    with pytest.raises(RateLimitLockedError) as ei:
        lf.check(now=NOW + timedelta(minutes=5))
    assert ei.value.remaining_minutes == 10
    assert "10 more minute" in str(ei.value)
    assert lf.path.exists()


def test_check_removes_expired_lock(tmp_path: Path) -> None:
    lf = _lock(tmp_path)
    lf.acquire(now=NOW)

    lf.check(now=NOW + timedelta(minutes=16))
    assert not lf.path.exists()


def test_check_removes_unreadable_lock(tmp_path: Path) -> None:
    lf = _lock(tmp_path)
    lf.path.write_text("not json", encoding="utf-8")

    lf.check(now=NOW)
    assert not lf.path.exists()


def test_naive_timestamps_are_treated_as_utc(tmp_path: Path) -> None:
    lf = _lock(tmp_path)
    lf.path.write_text(
        json.dumps({"locked_at": "2025-01-01T12:00:00", "unlock_at": "2025-01-01T12:15:00"}),
        encoding="utf-8",
    )

    with pytest.raises(RateLimitLockedError):
        lf.check(now=NOW + timedelta(minutes=1))


def test_acquire_writes_unlock_time(tmp_path: Path) -> None:
    lf = _lock(tmp_path)
    lock = lf.acquire(now=NOW)
    assert lock.unlock_at - lock.locked_at == timedelta(minutes=15)
    assert lf.read() == lock


def test_wait_out_rate_limit_keeps_lock_while_waiting(tmp_path: Path) -> None:
    lf = _lock(tmp_path)
    sleeps: list[float] = []
    lock_present: list[bool] = []

    def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        lock_present.append(lf.path.exists())

    with pytest.raises(OtpRateLimitError):
        wait_out_rate_limit(lf, minutes=3, sleep=fake_sleep)

    assert sleeps == [60, 60, 60]
    assert all(lock_present)
    assert not lf.path.exists()
