from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.models.progress import ProgressStatus
from app.services.progress_store import ProgressRecord


class ProgressPublic(BaseModel):
    status: ProgressStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    response_data: Any = None
    unlocked_by_rule_id: int | None = None

    @classmethod
    def from_record(cls, record: ProgressRecord | None) -> "ProgressPublic":
        if record is None:
            return cls(status=ProgressStatus.NOT_STARTED)
        return cls(
            status=record.status,
            started_at=record.started_at,
            completed_at=record.completed_at,
            response_data=record.response_data,
            unlocked_by_rule_id=record.unlocked_by_rule_id,
        )


class SaveProgressRequest(BaseModel):
    response_data: Any = Field(default=None)


class CompleteRequest(BaseModel):
    response_data: Any = Field(default=None)


class AccessResponse(BaseModel):
    accessible: bool
    reason: str | None = None
    next_activity_id: int | None = None


class CompletionResponse(BaseModel):
    ok: bool = True
    progress: ProgressPublic
    unlocked_submodule_ids: list[int] = Field(default_factory=list)
    unlocked_path_ids: list[int] = Field(default_factory=list)
    module_completed: bool = False


class RuleEvaluationPublic(BaseModel):
    rule_id: int
    target_submodule_id: int | None
    target_path_id: int | None
    unlocked: bool
    reason: str


class UnlockEvaluationResponse(BaseModel):
    results: list[RuleEvaluationPublic]
    unlocked_submodule_ids: list[int]
    unlocked_path_ids: list[int]


class CompletionStats(BaseModel):
    total: int
    completed: int
    completion_percentage: int
    current_module_id: int | None = None


class SubmoduleCompletionStats(BaseModel):
    module_id: int
    total: int
    completed: int
    completion_percentage: int
    current_submodule_id: int | None = None


def completion_payload(outcome) -> dict[str, Any]:
    return CompletionResponse(
        progress=ProgressPublic.from_record(outcome.progress),
        unlocked_submodule_ids=outcome.unlocked_submodule_ids,
        unlocked_path_ids=outcome.unlocked_path_ids,
        module_completed=outcome.module_completed,
    ).model_dump(mode="json")


def unlock_payload(results) -> dict[str, Any]:
    unlocked = [r for r in results if r.unlocked]
    return UnlockEvaluationResponse(
        results=[RuleEvaluationPublic(**asdict(r)) for r in results],
        unlocked_submodule_ids=sorted({r.target_submodule_id for r in unlocked if r.target_submodule_id is not None}),
        unlocked_path_ids=sorted({r.target_path_id for r in unlocked if r.target_path_id is not None}),
    ).model_dump(mode="json")
