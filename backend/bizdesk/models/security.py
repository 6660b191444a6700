from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import utcnow


EVENT_LOGIN_FAILED = "LOGIN_FAILED"
EVENT_LOGIN_SUCCESS = "LOGIN_SUCCESS"


class SecurityEvent(db.Model):
    """
    Append-only login audit trail.

    Login throttling counts failures from this table rather than from process
    memory, so every instance sharing the database enforces one lockout.
    `identifier` is the normalized email or phone the client tried; user_id is
    set only when it matched an account.

    Rows are never updated; maintenance_service deletes them past retention.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_identifier_type_time", "identifier", "event_type", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    event_type = db.Column(db.String(32), nullable=False)
    identifier = db.Column(db.String(255), nullable=False)
    success = db.Column(db.Boolean, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<SecurityEvent {self.event_type} {self.identifier!r} at {self.occurred_at}>"
