"""
Login Throttling Service

WHY: Stop password guessing against one account. After MAX_FAILED_ATTEMPTS
failures inside LOCKOUT_WINDOW the identifier is locked until LOCKOUT_DURATION
has passed since the latest failure. A successful login clears the count.

State lives in security_events, so the lockout is shared by every process
using the same database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..extensions import db
from ..models import SecurityEvent
from ..models.security import EVENT_LOGIN_FAILED, EVENT_LOGIN_SUCCESS
from bizdesk.time_utils import utcnow
from .auth_service import find_user_by_identifier

logger = logging.getLogger(__name__)

MAX_FAILED_ATTEMPTS = 10
LOCKOUT_WINDOW = timedelta(minutes=15)
LOCKOUT_DURATION = timedelta(minutes=15)


@dataclass(frozen=True)
class ThrottleState:
    failed_attempts: int
    last_failure_at: datetime | None

    @property
    def remaining_attempts(self) -> int:
        return max(MAX_FAILED_ATTEMPTS - self.failed_attempts, 0)

    def seconds_locked(self, now: datetime) -> int | None:
        if self.failed_attempts < MAX_FAILED_ATTEMPTS or self.last_failure_at is None:
            return None
        unlock_at = self.last_failure_at + LOCKOUT_DURATION
        if now >= unlock_at:
            return None
        return int((unlock_at - now).total_seconds())


def _normalize(identifier: str) -> str:
    return (identifier or "").strip().lower()


def _state(identifier: str, now: datetime | None = None) -> ThrottleState:
    identifier = _normalize(identifier)
    now = now or utcnow()
    since = now - LOCKOUT_WINDOW

    last_success = db.session.query(db.func.max(SecurityEvent.occurred_at)).filter(
        SecurityEvent.identifier == identifier,
        SecurityEvent.event_type == EVENT_LOGIN_SUCCESS,
    ).scalar()
    if last_success is not None and last_success > since:
        since = last_success

    count, latest = db.session.query(
        db.func.count(SecurityEvent.id),
        db.func.max(SecurityEvent.occurred_at),
    ).filter(
        SecurityEvent.identifier == identifier,
        SecurityEvent.event_type == EVENT_LOGIN_FAILED,
        SecurityEvent.occurred_at >= since,
    ).one()
    return ThrottleState(failed_attempts=int(count or 0), last_failure_at=latest)


def get_recent_failed_attempts(identifier: str) -> int:
    """Failures inside LOCKOUT_WINDOW that came after the latest success."""
    return _state(identifier).failed_attempts


def is_account_locked(identifier: str) -> tuple[bool, int | None]:
    """(True, seconds_remaining) while locked, else (False, None)."""
    seconds = _state(identifier).seconds_locked(utcnow())
    return (True, seconds) if seconds is not None else (False, None)


def _record(
    event_type: str,
    identifier: str,
    *,
    user_id: int | None,
    success: bool,
    reason: str | None,
    ip_address: str | None,
    user_agent: str | None,
) -> None:
    db.session.add(SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        identifier=_normalize(identifier),
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        occurred_at=utcnow(),
    ))
    db.session.commit()


def record_failed_attempt(
    identifier: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    reason: str = "Invalid credentials"
) -> int:
    """Record a failed login. Returns the failure count now in effect."""
    user = find_user_by_identifier(identifier)
    _record(
        EVENT_LOGIN_FAILED,
        identifier,
        user_id=user.id if user else None,
        success=False,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    count = get_recent_failed_attempts(identifier)
    if count >= MAX_FAILED_ATTEMPTS:
        logger.warning("Login locked for %s after %d failures", _normalize(identifier), count)
    return count


def record_successful_login(
    user_id: int,
    identifier: str,
    ip_address: str | None = None,
    user_agent: str | None = None
) -> None:
    _record(
        EVENT_LOGIN_SUCCESS,
        identifier,
        user_id=user_id,
        success=True,
        reason=None,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def get_lockout_status(identifier: str) -> dict:
    state = _state(identifier)
    seconds = state.seconds_locked(utcnow())
    return {
        "locked": seconds is not None,
        "failed_attempts": state.failed_attempts,
        "remaining_attempts": state.remaining_attempts,
        "max_attempts": MAX_FAILED_ATTEMPTS,
        "seconds_until_unlock": seconds,
        "lockout_window_minutes": int(LOCKOUT_WINDOW.total_seconds() // 60),
        "lockout_duration_minutes": int(LOCKOUT_DURATION.total_seconds() // 60),
    }
