import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import utcnow


class QuestionType(str, enum.Enum):
    true_false = "true_false"
    multiple_choice = "multiple_choice"
    fill_blank = "fill_blank"
    free_form = "free_form"


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_text: Mapped[str] = mapped_column(Text)
    question_type: Mapped[QuestionType] = mapped_column(Enum(QuestionType, native_enum=False, length=30))
    module_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), nullable=True)
    submodule_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("submodules.id", ondelete="CASCADE"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class UserQuestionResponse(Base):
    __tablename__ = "user_question_responses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    question_id: Mapped[int] = mapped_column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), index=True)

    # bool | str | number | list[str] | null
    response_value: Mapped[Any] = mapped_column(JSON)
    answered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "question_id", name="uq_user_question_response"),)
