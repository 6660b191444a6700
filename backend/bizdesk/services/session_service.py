# Overview: Service-layer operations for session; bearer token lifecycle.

"""
Bearer sessions for business accounts.

A client holds a random opaque token; the database keeps only its SHA-256
digest. A session ends at the earliest of:
- SESSION_ABSOLUTE_TIMEOUT after creation
- SESSION_IDLE_TIMEOUT without a request
- logout, or deactivation of the account

The authenticated user is the owner scope for every request made with it.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import SessionToken, User
from bizdesk.time_utils import utcnow

logger = logging.getLogger(__name__)

SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)
SESSION_RETENTION = timedelta(days=30)

# last_used_at is only rewritten when older than this, so reads stay cheap
TOUCH_INTERVAL = timedelta(minutes=1)

TOKEN_BYTES = 32


@dataclass
class SessionContext:
    user: User
    session: SessionToken

    @property
    def owner_id(self) -> int:
        return self.user.id


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str) -> str:
    # Tokens carry 256 bits of entropy; an unsalted fast digest is enough
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _active_session(token: str) -> SessionToken | None:
    if not token:
        return None
    return db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Open a session for an active account.

    Returns (session_row, plaintext_token). The plaintext is never stored.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if not user.is_active:
        raise ValidationError("User account is not active")

    token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its user, or None.

    Idle sessions and sessions of deactivated accounts are revoked as they
    are found.
    """
    session = _active_session(token)
    if session is None:
        return None

    now = utcnow()
    if session.is_expired(now):
        return None

    if session.is_idle(now, SESSION_IDLE_TIMEOUT):
        session.revoke("Idle timeout", now)
        db.session.commit()
        return None

    user = session.user
    if user is None or not user.is_active:
        session.revoke("User account deactivated", now)
        db.session.commit()
        return None

    if now - session.last_used_at >= TOUCH_INTERVAL:
        session.last_used_at = now
        db.session.commit()

    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """True if an active session was revoked."""
    session = _active_session(token)
    if session is None:
        return False
    session.revoke(reason)
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).all()
    for session in sessions:
        session.revoke(reason, now)
    db.session.commit()
    if sessions:
        logger.info("Revoked %d session(s) for user %s: %s", len(sessions), user_id, reason)
    return len(sessions)


def cleanup_expired_sessions() -> int:
    """Delete expired or revoked sessions created more than SESSION_RETENTION ago."""
    now = utcnow()
    deleted = db.session.query(SessionToken).filter(
        db.or_(SessionToken.expires_at < now, SessionToken.is_revoked.is_(True)),
        SessionToken.created_at < now - SESSION_RETENTION,
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
