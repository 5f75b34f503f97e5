from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.common import utcnow
from app.models.question import UserQuestionResponse


@dataclass(frozen=True)
class StoredResponse:
    # value may itself be None (an answered-with-null question).
    value: Any


class ResponseStore(Protocol):
    def get_response(self, user_id: int, question_id: int) -> StoredResponse | None: ...


class SqlResponseStore:
    def __init__(self, db: Session):
        self.db = db

    def get_response(self, user_id: int, question_id: int) -> StoredResponse | None:
        row = self.db.scalar(
            select(UserQuestionResponse).where(
                UserQuestionResponse.user_id == user_id,
                UserQuestionResponse.question_id == question_id,
            )
        )
        if row is None:
            return None
        return StoredResponse(row.response_value)

    def record_response(self, user_id: int, question_id: int, value: Any) -> UserQuestionResponse:
        row = self.db.scalar(
            select(UserQuestionResponse).where(
                UserQuestionResponse.user_id == user_id,
                UserQuestionResponse.question_id == question_id,
            )
        )
        if row is None:
            row = UserQuestionResponse(user_id=user_id, question_id=question_id, response_value=value)
            self.db.add(row)
        else:
            row.response_value = value
            row.answered_at = utcnow()
        self.db.commit()
        self.db.refresh(row)
        return row
