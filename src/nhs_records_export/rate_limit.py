from __future__ import annotations

import json
import logging
import math
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from .models import RateLimitLock


logger = logging.getLogger(__name__)

LOCK_FILENAME = ".otp_rate_limit_lock"

# The NHS login service asks users to wait "up to 15 minutes" after too many OTP requests.
RATE_LIMIT_WAIT_MINUTES = 15


class RateLimitLockedError(RuntimeError):
    """
    Raised at start-up while a previous run's OTP rate-limit lock is still in effect.
    """

    def __init__(self, unlock_at: datetime, remaining_minutes: int) -> None:
        local = unlock_at.astimezone()
        super().__init__(
            "OTP rate limit still in effect from a previous attempt. "
            f"Wait {remaining_minutes} more minute(s) (unlocks at {local:%H:%M:%S}) before trying again."
        )
        self.unlock_at = unlock_at
        self.remaining_minutes = remaining_minutes


class OtpRateLimitError(RuntimeError):
    """
    Raised after sitting out the OTP rate limit, so the user starts a fresh run.
    """


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimitLockFile:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def read(self) -> Optional[RateLimitLock]:
        if not self.path.exists():
            return None
        return RateLimitLock.model_validate(json.loads(self.path.read_text(encoding="utf-8")))

    def check(self, *, now: Optional[datetime] = None) -> None:
        """
        Abort if a previous run hit the OTP rate limit less than 15 minutes ago.

        Expired or unreadable lock files are removed.
        """
        if not self.path.exists():
            return

        now = now or _utcnow()
        try:
            lock = self.read()
        except (OSError, ValueError):
            logger.warning("Rate-limit lock file is unreadable; removing it: %s", self.path)
            self.release()
            return

        if lock is None:
            return

        unlock_at = lock.unlock_at
        if unlock_at.tzinfo is None:
            unlock_at = unlock_at.replace(tzinfo=timezone.utc)

        if now < unlock_at:
            remaining_minutes = math.ceil((unlock_at - now).total_seconds() / 60)
            raise RateLimitLockedError(unlock_at, remaining_minutes)

        self.release()
        logger.info("Previous rate limit has expired, continuing.")

    def acquire(self, *, now: Optional[datetime] = None, minutes: int = RATE_LIMIT_WAIT_MINUTES) -> RateLimitLock:
        now = now or _utcnow()
        lock = RateLimitLock(locked_at=now, unlock_at=now + timedelta(minutes=minutes))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(lock.model_dump_json(), encoding="utf-8")
        return lock

    def release(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


def wait_out_rate_limit(
    lock_file: RateLimitLockFile,
    *,
    minutes: int = RATE_LIMIT_WAIT_MINUTES,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Persist the lock, block for `minutes` with per-minute progress, then raise `OtpRateLimitError`.

    The lock stays on disk while we wait, so a second process started meanwhile refuses to log in.
    """
    lock = lock_file.acquire(minutes=minutes)
    logger.error(
        "OTP rate limit detected: too many security code requests. Waiting %d minutes (started %s).",
        minutes,
        lock.locked_at.astimezone().strftime("%H:%M:%S"),
    )

    for minute in range(minutes):
        logger.info("Waiting... %d minute(s) remaining", minutes - minute)
        sleep(60)

    lock_file.release()
    logger.info("%d minute wait completed; the rate limit should now be cleared.", minutes)
    raise OtpRateLimitError(f"OTP rate limit - {minutes} minute wait completed. Please run again to retry.")
