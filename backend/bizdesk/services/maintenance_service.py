# Overview: Retention jobs for audit tables that grow without bound.

from __future__ import annotations

import logging
from datetime import timedelta

from ..errors import ValidationError
from ..extensions import db
from ..models import SecurityEvent
from bizdesk.time_utils import utcnow

logger = logging.getLogger(__name__)


def cleanup_security_events(*, retention_days: int = 90) -> int:
    """
    Delete login audit rows older than retention_days.

    Must stay longer than the lockout window or throttling would forget
    failures early. Stock movements and sale payments are never pruned.
    """
    if isinstance(retention_days, bool) or not isinstance(retention_days, int) or retention_days < 1:
        raise ValidationError("retention_days must be a positive integer")

    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()

    logger.info("Pruned %d security events older than %s", deleted, cutoff.date())
    return deleted
