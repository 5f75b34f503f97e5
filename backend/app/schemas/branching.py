from __future__ import annotations

import enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from app.core.errors import RuleValidationError


class ConditionType(str, enum.Enum):
    always = "always"
    question_answer = "question_answer"
    all_complete = "all_complete"
    any_complete = "any_complete"


class ComparisonOperator(str, enum.Enum):
    equals = "equals"
    not_equals = "not_equals"
    contains = "contains"
    greater_than = "greater_than"
    less_than = "less_than"


class AlwaysCondition(BaseModel):
    condition_type: Literal["always"] = "always"


class QuestionAnswerCondition(BaseModel):
    condition_type: Literal["question_answer"] = "question_answer"
    question_id: int
    # Left unset on purpose when absent from the config; see has_expected_value.
    expected_value: Any = None
    operator: ComparisonOperator = ComparisonOperator.equals

    @property
    def has_expected_value(self) -> bool:
        return "expected_value" in self.model_fields_set


class AllCompleteCondition(BaseModel):
    condition_type: Literal["all_complete"] = "all_complete"
    submodule_ids: list[int] = Field(default_factory=list)


class AnyCompleteCondition(BaseModel):
    condition_type: Literal["any_complete"] = "any_complete"
    submodule_ids: list[int] = Field(default_factory=list)


Condition = Annotated[
    Union[AlwaysCondition, QuestionAnswerCondition, AllCompleteCondition, AnyCompleteCondition],
    Field(discriminator="condition_type"),
]

_condition_adapter: TypeAdapter[Condition] = TypeAdapter(Condition)


def parse_condition(condition_type: str, condition_config: Any) -> Condition:
    """Turn a stored ``(condition_type, condition_config)`` pair into a typed condition.

    Raises RuleValidationError for unknown tags and malformed payloads.
    """
    if condition_config is None:
        condition_config = {}
    if not isinstance(condition_config, dict):
        raise RuleValidationError("condition_config must be an object")

    payload = {k: v for k, v in condition_config.items() if k != "condition_type"}
    payload["condition_type"] = str(condition_type or "")
    try:
        return _condition_adapter.validate_python(payload)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != condition_type)
        detail = str(first.get("msg") or "invalid value")
        raise RuleValidationError(
            f"invalid {condition_type or 'empty'} condition: {where + ': ' if where else ''}{detail}"
        ) from e


class RuleCreateRequest(BaseModel):
    source_module_id: int | None = None
    source_submodule_id: int | None = None
    source_path_id: int | None = None
    target_submodule_id: int | None = None
    target_path_id: int | None = None
    condition_type: ConditionType
    condition_config: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0

    @model_validator(mode="after")
    def _check_shape(self) -> "RuleCreateRequest":
        if (self.target_submodule_id is None) == (self.target_path_id is None):
            raise ValueError("exactly one of target_submodule_id / target_path_id is required")
        if self.source_module_id is None and self.source_path_id is None:
            raise ValueError("source_module_id or source_path_id is required")
        return self


class RuleUpdateRequest(BaseModel):
    condition_type: ConditionType | None = None
    condition_config: dict[str, Any] | None = None
    priority: int | None = None
    is_active: bool | None = None


class RulePublic(BaseModel):
    id: int
    source_module_id: int | None
    source_submodule_id: int | None
    source_path_id: int | None
    target_submodule_id: int | None
    target_path_id: int | None
    condition_type: str
    condition_config: dict[str, Any]
    priority: int
    is_active: bool
