from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import utcnow


class BranchingRule(Base):
    __tablename__ = "branching_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    source_module_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("modules.id", ondelete="CASCADE"), nullable=True, index=True
    )
    # NULL source_submodule_id: module-level rule, fired without a submodule context.
    source_submodule_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("submodules.id", ondelete="CASCADE"), nullable=True, index=True
    )
    source_path_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("paths.id", ondelete="CASCADE"), nullable=True, index=True
    )

    target_submodule_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("submodules.id", ondelete="CASCADE"), nullable=True, index=True
    )
    target_path_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("paths.id", ondelete="CASCADE"), nullable=True, index=True
    )

    condition_type: Mapped[str] = mapped_column(String(50))
    condition_config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    priority: Mapped[int] = mapped_column(Integer, default=0, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "(target_submodule_id IS NULL) <> (target_path_id IS NULL)",
            name="ck_branching_rule_single_target",
        ),
        CheckConstraint(
            "source_module_id IS NOT NULL OR source_path_id IS NOT NULL",
            name="ck_branching_rule_has_source",
        ),
    )
