# clinic/services/ledger.py
# Login attempt ledger: records attempts per username and computes progressive lockouts.
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from .. import crud
from ..clock import Clock

logger = logging.getLogger("security")

LOCKOUT_THRESHOLD = 5

# consecutive failures -> lockout minutes; 10 or more caps at 60
LOCKOUT_SCHEDULE = {
    5: 1,
    6: 5,
    7: 10,
    8: 15,
    9: 30,
}
MAX_LOCKOUT_MINUTES = 60


def lockout_minutes_for(failed_attempts: int) -> int:
    if failed_attempts < LOCKOUT_THRESHOLD:
        return 0
    return LOCKOUT_SCHEDULE.get(failed_attempts, MAX_LOCKOUT_MINUTES)


@dataclass(frozen=True)
class LockoutInfo:
    lockout_until: datetime
    attempt_count: int


@dataclass(frozen=True)
class LockoutResult:
    locked: bool
    lockout_until: Optional[datetime]
    attempts: int
    lockout_minutes: int

    @property
    def remaining_attempts(self) -> int:
        return max(0, LOCKOUT_THRESHOLD - self.attempts)


class LoginAttemptLedger:
    """Login attempts for the trailing window, keyed on username.

    Raises ``crud.StoreUnavailable`` when the store cannot be reached; the
    authenticator turns that into a system failure.
    """

    def __init__(self, db: Session, clock: Clock, window_minutes: int = 60):
        self.db = db
        self.clock = clock
        self.window = timedelta(minutes=window_minutes)

    def check_lockout(self, username: str) -> Optional[LockoutInfo]:
        row = crud.get_active_lockout(self.db, username, self.clock())
        if row is None:
            return None
        return LockoutInfo(lockout_until=row.lockout_until, attempt_count=row.attempt_count)

    def record_attempt(self, ip_address: str, username: str, success: bool) -> LockoutResult:
        now = self.clock()
        window_start = now - self.window

        # Order matters: purge, then count, then insert
        purged = crud.purge_login_attempts(self.db, older_than=window_start)
        if purged:
            logger.debug(f"Purged {purged} expired login attempts")

        if success:
            crud.clear_failed_attempts(self.db, username)
            crud.insert_login_attempt(self.db, ip_address, username, True, now)
            crud.commit(self.db, f"recording successful login for '{username}'")
            return LockoutResult(locked=False, lockout_until=None, attempts=0, lockout_minutes=0)

        failed_attempts = crud.count_failed_attempts(self.db, username, since=window_start) + 1
        minutes = lockout_minutes_for(failed_attempts)
        lockout_until = now + timedelta(minutes=minutes) if minutes else None

        crud.insert_login_attempt(
            self.db,
            ip_address,
            username,
            False,
            now,
            lockout_until=lockout_until,
            attempt_count=failed_attempts,
        )
        crud.commit(self.db, f"recording failed login for '{username}'")

        if lockout_until:
            logger.warning(
                f"Username '{username}' locked for {minutes} minute(s) after {failed_attempts} failed attempts from {ip_address}"
            )
        return LockoutResult(
            locked=lockout_until is not None,
            lockout_until=lockout_until,
            attempts=failed_attempts,
            lockout_minutes=minutes,
        )
