from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.audit import AuditEvent, AuditEventType

log = logging.getLogger(__name__)


class AuditSink(Protocol):
    def record(self, event_type: AuditEventType, user_id: int, details: dict[str, Any] | None = None) -> None: ...


class SqlAuditSink:
    """Appends audit events to ``audit_events``.

    Errors propagate after rollback; callers decide whether an audit failure
    matters (the progression service never lets it fail an operation).
    """

    def __init__(self, db: Session):
        self.db = db

    def record(self, event_type: AuditEventType, user_id: int, details: dict[str, Any] | None = None) -> None:
        try:
            self.db.add(AuditEvent(user_id=user_id, event_type=event_type, details=details or {}))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


class NullAuditSink:
    def record(self, event_type: AuditEventType, user_id: int, details: dict[str, Any] | None = None) -> None:
        log.debug("audit: dropped event_type=%s user_id=%s", event_type.value, user_id)
