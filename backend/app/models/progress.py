import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import utcnow


class ProgressStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ProgressColumnsMixin:
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    status: Mapped[ProgressStatus] = mapped_column(
        Enum(ProgressStatus, name="progress_status", native_enum=False, length=20),
        default=ProgressStatus.NOT_STARTED,
        index=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    response_data: Mapped[Any | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class UserModuleProgress(ProgressColumnsMixin, Base):
    __tablename__ = "user_module_progress"
    activity_key = "module_id"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    module_id: Mapped[int] = mapped_column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), index=True)
    unlocked_by_rule_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("branching_rules.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (UniqueConstraint("user_id", "module_id", name="uq_user_module_progress"),)


class UserSubmoduleProgress(ProgressColumnsMixin, Base):
    __tablename__ = "user_submodule_progress"
    activity_key = "submodule_id"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submodule_id: Mapped[int] = mapped_column(Integer, ForeignKey("submodules.id", ondelete="CASCADE"), index=True)
    unlocked_by_rule_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("branching_rules.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (UniqueConstraint("user_id", "submodule_id", name="uq_user_submodule_progress"),)


class UserPathProgress(ProgressColumnsMixin, Base):
    __tablename__ = "user_path_progress"
    activity_key = "path_id"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    path_id: Mapped[int] = mapped_column(Integer, ForeignKey("paths.id", ondelete="CASCADE"), index=True)
    unlocked_by_rule_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("branching_rules.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (UniqueConstraint("user_id", "path_id", name="uq_user_path_progress"),)
