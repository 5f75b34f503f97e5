from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Protocol

from sqlalchemy import func, select, true
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.models.common import utcnow
from app.models.progress import ProgressStatus, UserModuleProgress, UserPathProgress, UserSubmoduleProgress

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressRecord:
    user_id: int
    activity_id: int
    status: ProgressStatus
    started_at: datetime | None
    completed_at: datetime | None
    response_data: Any
    unlocked_by_rule_id: int | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == ProgressStatus.COMPLETED

    @property
    def is_started(self) -> bool:
        # A persisted NOT_STARTED row is only an unlock marker.
        return self.status != ProgressStatus.NOT_STARTED


@dataclass(frozen=True)
class UpsertGuard:
    """Statuses that must NOT be current for a conditional upsert to apply.

    The database evaluates the guard inside the same statement as the write,
    so two racing writers can never both pass it.
    """

    blocked_statuses: frozenset[ProgressStatus]

    def clause(self, status_column):
        if not self.blocked_statuses:
            return true()
        return status_column.not_in(sorted(self.blocked_statuses, key=lambda s: s.value))


NOT_COMPLETED = UpsertGuard(frozenset({ProgressStatus.COMPLETED}))


class ProgressStore(Protocol):
    def fetch(self, user_id: int, activity_id: int) -> ProgressRecord | None: ...

    def upsert(
        self,
        user_id: int,
        activity_id: int,
        *,
        status: ProgressStatus,
        response_data: Any = None,
        guard: UpsertGuard = NOT_COMPLETED,
    ) -> ProgressRecord | None: ...

    def mark_unlocked(self, user_id: int, activity_id: int, rule_id: int | None) -> bool: ...

    def completed_ids(self, user_id: int, activity_ids: Iterable[int]) -> set[int]: ...

    def list_for_user(self, user_id: int) -> dict[int, ProgressRecord]: ...


ProgressModel = type[UserModuleProgress] | type[UserSubmoduleProgress] | type[UserPathProgress]


class SqlProgressStore:
    """Progress persistence over one of the ``user_*_progress`` tables.

    Every write is a single ``INSERT ... ON CONFLICT (user_id, activity) DO ...``
    statement committed immediately, which makes it the serialisation point
    for concurrent requests on the same key.
    """

    def __init__(self, db: Session, model: ProgressModel):
        self.db = db
        self.model = model
        self.table = model.__table__
        self.activity_key: str = model.activity_key
        self.activity_column = self.table.c[self.activity_key]

    @classmethod
    def for_modules(cls, db: Session) -> "SqlProgressStore":
        return cls(db, UserModuleProgress)

    @classmethod
    def for_submodules(cls, db: Session) -> "SqlProgressStore":
        return cls(db, UserSubmoduleProgress)

    @classmethod
    def for_paths(cls, db: Session) -> "SqlProgressStore":
        return cls(db, UserPathProgress)

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(self.table)
        if dialect == "sqlite":
            return sqlite.insert(self.table)
        raise RuntimeError(f"conditional upsert is not supported on dialect {dialect!r}")

    def _to_record(self, row) -> ProgressRecord:
        return ProgressRecord(
            user_id=int(row["user_id"]),
            activity_id=int(row[self.activity_key]),
            status=ProgressStatus(row["status"]),
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            response_data=row["response_data"],
            unlocked_by_rule_id=row["unlocked_by_rule_id"],
        )

    def fetch(self, user_id: int, activity_id: int) -> ProgressRecord | None:
        row = (
            self.db.execute(
                select(self.table).where(self.table.c.user_id == user_id, self.activity_column == activity_id)
            )
            .mappings()
            .first()
        )
        return self._to_record(row) if row is not None else None

    def list_for_user(self, user_id: int) -> dict[int, ProgressRecord]:
        rows = self.db.execute(select(self.table).where(self.table.c.user_id == user_id)).mappings().all()
        return {int(r[self.activity_key]): self._to_record(r) for r in rows}

    def completed_ids(self, user_id: int, activity_ids: Iterable[int]) -> set[int]:
        ids = sorted({int(i) for i in activity_ids})
        if not ids:
            return set()
        rows = self.db.scalars(
            select(self.activity_column).where(
                self.table.c.user_id == user_id,
                self.activity_column.in_(ids),
                self.table.c.status == ProgressStatus.COMPLETED,
            )
        ).all()
        return {int(r) for r in rows}

    def upsert(
        self,
        user_id: int,
        activity_id: int,
        *,
        status: ProgressStatus,
        response_data: Any = None,
        guard: UpsertGuard = NOT_COMPLETED,
    ) -> ProgressRecord | None:
        """Insert or update the (user, activity) record if ``guard`` allows it.

        Returns the stored record, or None when the guard rejected the write.
        ``started_at`` keeps the first value written; a None ``response_data``
        keeps the stored payload.
        """
        now = utcnow()
        stmt = self._insert().values(
            {
                "user_id": user_id,
                self.activity_key: activity_id,
                "status": status,
                "started_at": now if status != ProgressStatus.NOT_STARTED else None,
                "completed_at": now if status == ProgressStatus.COMPLETED else None,
                "response_data": response_data,
                "created_at": now,
                "updated_at": now,
            }
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[self.table.c.user_id, self.activity_column],
            set_={
                "status": stmt.excluded.status,
                "started_at": func.coalesce(self.table.c.started_at, stmt.excluded.started_at),
                "completed_at": stmt.excluded.completed_at,
                "response_data": func.coalesce(stmt.excluded.response_data, self.table.c.response_data),
                "updated_at": stmt.excluded.updated_at,
            },
            where=guard.clause(self.table.c.status),
        ).returning(*self.table.c)

        row = self.db.execute(stmt).mappings().first()
        # Rejected writes are committed too; the statement holds the write lock.
        self.db.commit()

        if row is None:
            log.info(
                "progress_store.upsert: rejected table=%s user_id=%s %s=%s status=%s",
                self.table.name,
                user_id,
                self.activity_key,
                activity_id,
                status.value,
            )
            return None
        return self._to_record(row)

    def mark_unlocked(self, user_id: int, activity_id: int, rule_id: int | None) -> bool:
        """Write a NOT_STARTED marker tagged with ``rule_id``; True if it was new."""
        now = utcnow()
        stmt = (
            self._insert()
            .values(
                {
                    "user_id": user_id,
                    self.activity_key: activity_id,
                    "status": ProgressStatus.NOT_STARTED,
                    "unlocked_by_rule_id": rule_id,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            .on_conflict_do_nothing(index_elements=[self.table.c.user_id, self.activity_column])
            .returning(self.table.c.id)
        )
        inserted = self.db.execute(stmt).first() is not None
        self.db.commit()
        return inserted
