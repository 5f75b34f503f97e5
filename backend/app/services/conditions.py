from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List

from app.core.errors import RuleValidationError
from app.models.branching import BranchingRule
from app.schemas.branching import (
    AllCompleteCondition,
    AlwaysCondition,
    AnyCompleteCondition,
    ComparisonOperator,
    QuestionAnswerCondition,
    parse_condition,
)
from app.services.progress_store import ProgressStore
from app.services.responses import ResponseStore
from app.services.rules import RuleStore

log = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality over JSON values. ``True`` never equals ``1``."""
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if _is_number(a) and _is_number(b):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(deep_equal(a[k], b[k]) for k in a)
    return False


def compare_values(actual: Any, expected: Any, operator: ComparisonOperator | str) -> bool:
    op = operator.value if isinstance(operator, ComparisonOperator) else str(operator)

    if op == ComparisonOperator.equals.value:
        return deep_equal(actual, expected)
    if op == ComparisonOperator.not_equals.value:
        return not deep_equal(actual, expected)
    if op == ComparisonOperator.contains.value:
        if isinstance(actual, list):
            return any(deep_equal(item, expected) for item in actual)
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        return False
    if op == ComparisonOperator.greater_than.value:
        return _is_number(actual) and _is_number(expected) and actual > expected
    if op == ComparisonOperator.less_than.value:
        return _is_number(actual) and _is_number(expected) and actual < expected

    log.warning("compare_values: unknown operator=%s", op)
    return False


@dataclass(frozen=True)
class RuleEvaluationResult:
    rule_id: int
    target_submodule_id: int | None
    target_path_id: int | None
    unlocked: bool
    reason: str


def _priority_order(rules: Iterable[BranchingRule]) -> List[BranchingRule]:
    active = [r for r in rules if r.is_active is not False]
    return sorted(active, key=lambda r: (-int(r.priority or 0), int(r.id or 0)))


class ConditionEvaluator:
    def __init__(self, progress: ProgressStore, responses: ResponseStore, rules: RuleStore):
        # progress is the submodule progress store; all_complete/any_complete name submodules.
        self.progress = progress
        self.responses = responses
        self.rules = rules

    def evaluate(self, rule: BranchingRule, user_id: int) -> bool:
        try:
            condition = parse_condition(rule.condition_type, rule.condition_config)
        except RuleValidationError as e:
            log.warning("evaluate: rule_id=%s treated as false: %s", rule.id, e.message)
            return False

        if isinstance(condition, AlwaysCondition):
            return True
        if isinstance(condition, QuestionAnswerCondition):
            return self._question_answer(condition, user_id, rule.id)
        if isinstance(condition, AllCompleteCondition):
            if not condition.submodule_ids:
                log.warning("evaluate: rule_id=%s all_complete with empty submodule_ids", rule.id)
                return False
            # Ids with no submodule row count as incomplete: a rule naming a
            # deleted submodule never fires.
            wanted = set(condition.submodule_ids)
            return wanted <= self.progress.completed_ids(user_id, wanted)
        if isinstance(condition, AnyCompleteCondition):
            if not condition.submodule_ids:
                log.warning("evaluate: rule_id=%s any_complete with empty submodule_ids", rule.id)
                return False
            return bool(self.progress.completed_ids(user_id, condition.submodule_ids))

        log.warning("evaluate: rule_id=%s unhandled condition %r", rule.id, condition)
        return False

    def _question_answer(self, condition: QuestionAnswerCondition, user_id: int, rule_id: int | None) -> bool:
        stored = self.responses.get_response(user_id, condition.question_id)
        if stored is None:
            return False
        if not condition.has_expected_value:
            log.warning("evaluate: rule_id=%s question_answer without expected_value", rule_id)
            return False
        return compare_values(stored.value, condition.expected_value, condition.operator)

    def _result(self, rule: BranchingRule, user_id: int) -> RuleEvaluationResult:
        unlocked = self.evaluate(rule, user_id)
        return RuleEvaluationResult(
            rule_id=int(rule.id),
            target_submodule_id=rule.target_submodule_id,
            target_path_id=rule.target_path_id,
            unlocked=unlocked,
            reason=f"{rule.condition_type} {'satisfied' if unlocked else 'not satisfied'}",
        )

    def evaluate_applicable_rules(
        self, user_id: int, module_id: int, submodule_id: int | None = None
    ) -> List[RuleEvaluationResult]:
        rules = _priority_order(self.rules.get_applicable_rules(module_id, submodule_id))
        return [self._result(rule, user_id) for rule in rules]

    def evaluate_path_rules(self, user_id: int, path_id: int) -> List[RuleEvaluationResult]:
        rules = _priority_order(self.rules.get_rules_by_source_path(path_id))
        return [self._result(rule, user_id) for rule in rules]
