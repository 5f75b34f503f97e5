import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import utcnow


class AuditEventType(str, enum.Enum):
    MODULE_START = "MODULE_START"
    MODULE_COMPLETION = "MODULE_COMPLETION"
    SUBMODULE_START = "SUBMODULE_START"
    SUBMODULE_COMPLETION = "SUBMODULE_COMPLETION"
    PATH_START = "PATH_START"
    PATH_COMPLETION = "PATH_COMPLETION"
    PATH_UNLOCK = "PATH_UNLOCK"
    SUBMODULE_UNLOCK = "SUBMODULE_UNLOCK"
    ACCESS_DENIED = "ACCESS_DENIED"


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)

    event_type: Mapped[AuditEventType] = mapped_column(
        Enum(AuditEventType, name="audit_event_type", native_enum=False, length=40), index=True
    )
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
