import logging

import pytest

from app.core.errors import RuleValidationError
from app.models.branching import BranchingRule
from app.schemas.branching import AllCompleteCondition, QuestionAnswerCondition, parse_condition
from app.services.conditions import ConditionEvaluator, compare_values, deep_equal
from app.services.responses import StoredResponse


class _Progress:
    def __init__(self, completed=()):
        self.completed = set(completed)

    def completed_ids(self, user_id, activity_ids):
        return {i for i in activity_ids if i in self.completed}


class _Responses:
    def __init__(self, answers=None):
        self.answers = dict(answers or {})

    def get_response(self, user_id, question_id):
        if question_id not in self.answers:
            return None
        return StoredResponse(self.answers[question_id])


class _Rules:
    def __init__(self, rules=()):
        self.rules = list(rules)

    def get_applicable_rules(self, module_id, submodule_id=None):
        return list(self.rules)

    def get_rules_targeting_submodule(self, submodule_id):
        return [r for r in self.rules if r.target_submodule_id == submodule_id]

    def get_rules_by_source_path(self, path_id):
        return [r for r in self.rules if r.source_path_id == path_id]


def _rule(rule_id=1, condition_type="always", condition_config=None, priority=0, target=100, **kw):
    return BranchingRule(
        id=rule_id,
        source_module_id=1,
        target_submodule_id=target,
        condition_type=condition_type,
        condition_config=condition_config if condition_config is not None else {},
        priority=priority,
        is_active=True,
        **kw,
    )


def _evaluator(completed=(), answers=None, rules=()):
    return ConditionEvaluator(_Progress(completed), _Responses(answers), _Rules(rules))


# deep_equal / compare_values


@pytest.mark.parametrize(
    "a,b,expected",
    [
        ("yes", "yes", True),
        ("yes", "Yes", False),
        (3, 3.0, True),
        (True, 1, False),
        (False, 0, False),
        (None, None, True),
        (None, "", False),
        (["a", "b"], ["a", "b"], True),
        (["a", "b"], ["b", "a"], False),
        (["a"], ["a", "a"], False),
        ({"x": [1, {"y": True}]}, {"x": [1, {"y": True}]}, True),
        ({"x": 1}, {"x": 1, "z": None}, False),
        ({"x": 1}, {"y": 1}, False),
        ([1], {"0": 1}, False),
    ],
)
def test_deep_equal(a, b, expected):
    assert deep_equal(a, b) is expected
    assert deep_equal(b, a) is expected


def test_compare_values_operators():
    assert compare_values("python", "python", "equals")
    assert compare_values("python", "java", "not_equals")
    assert not compare_values(["a", "b"], ["a", "b"], "not_equals")

    assert compare_values(["red", "green"], "green", "contains")
    assert not compare_values(["red", "green"], "blue", "contains")
    assert compare_values("I like python a lot", "python", "contains")
    assert not compare_values(42, "4", "contains")
    assert not compare_values("42", 4, "contains")

    assert compare_values(10, 5, "greater_than")
    assert not compare_values(5, 10, "greater_than")
    assert compare_values(2.5, 3, "less_than")
    assert not compare_values("10", 5, "greater_than")
    assert not compare_values(True, 0, "greater_than")
    assert not compare_values(None, 0, "less_than")


def test_compare_values_unknown_operator_is_false(caplog):
    with caplog.at_level(logging.WARNING, logger="app.services.conditions"):
        assert compare_values(1, 1, "roughly") is False
    assert "unknown operator" in caplog.text


# parse_condition


def test_parse_condition_builds_typed_variant():
    c = parse_condition("question_answer", {"question_id": 5, "expected_value": "yes"})
    assert isinstance(c, QuestionAnswerCondition)
    assert c.question_id == 5
    assert c.has_expected_value
    assert c.operator.value == "equals"

    c = parse_condition("all_complete", {"submodule_ids": [1, 2]})
    assert isinstance(c, AllCompleteCondition)
    assert c.submodule_ids == [1, 2]


def test_parse_condition_tracks_missing_expected_value():
    c = parse_condition("question_answer", {"question_id": 5})
    assert not c.has_expected_value

    c = parse_condition("question_answer", {"question_id": 5, "expected_value": None})
    assert c.has_expected_value


@pytest.mark.parametrize(
    "condition_type,config",
    [
        ("teleport", {}),
        ("", {}),
        ("question_answer", {}),
        ("question_answer", {"question_id": 1, "expected_value": 1, "operator": "roughly"}),
        ("all_complete", {"submodule_ids": "1,2"}),
        ("always", ["not", "an", "object"]),
    ],
)
def test_parse_condition_rejects_malformed(condition_type, config):
    with pytest.raises(RuleValidationError):
        parse_condition(condition_type, config)


# evaluate


def test_always_is_true_for_any_user():
    ev = _evaluator()
    rule = _rule(condition_type="always")
    assert all(ev.evaluate(rule, user_id) for user_id in (1, 2, 99))


def test_question_answer_equals():
    rule = _rule(condition_type="question_answer", condition_config={"question_id": 5, "expected_value": "yes"})
    assert _evaluator(answers={5: "yes"}).evaluate(rule, 1) is True
    assert _evaluator(answers={5: "no"}).evaluate(rule, 1) is False


def test_question_answer_without_response_is_false():
    rule = _rule(condition_type="question_answer", condition_config={"question_id": 5, "expected_value": "yes"})
    assert _evaluator(answers={}).evaluate(rule, 1) is False


def test_question_answer_not_equals_still_needs_a_response():
    rule = _rule(
        condition_type="question_answer",
        condition_config={"question_id": 5, "expected_value": "yes", "operator": "not_equals"},
    )
    assert _evaluator(answers={}).evaluate(rule, 1) is False
    assert _evaluator(answers={5: "no"}).evaluate(rule, 1) is True


def test_question_answer_without_expected_value_fails_safe():
    rule = _rule(condition_type="question_answer", condition_config={"question_id": 5})
    assert _evaluator(answers={5: "anything"}).evaluate(rule, 1) is False


def test_question_answer_null_expected_matches_null_answer():
    rule = _rule(condition_type="question_answer", condition_config={"question_id": 5, "expected_value": None})
    assert _evaluator(answers={5: None}).evaluate(rule, 1) is True
    assert _evaluator(answers={5: ""}).evaluate(rule, 1) is False


def test_question_answer_boolean_is_not_a_number():
    rule = _rule(condition_type="question_answer", condition_config={"question_id": 5, "expected_value": 1})
    assert _evaluator(answers={5: True}).evaluate(rule, 1) is False


def test_question_answer_contains_list():
    rule = _rule(
        condition_type="question_answer",
        condition_config={"question_id": 7, "expected_value": "backend", "operator": "contains"},
    )
    assert _evaluator(answers={7: ["frontend", "backend"]}).evaluate(rule, 1) is True
    assert _evaluator(answers={7: ["frontend"]}).evaluate(rule, 1) is False


def test_question_answer_numeric_threshold():
    rule = _rule(
        condition_type="question_answer",
        condition_config={"question_id": 3, "expected_value": 70, "operator": "greater_than"},
    )
    assert _evaluator(answers={3: 85}).evaluate(rule, 1) is True
    assert _evaluator(answers={3: 70}).evaluate(rule, 1) is False
    assert _evaluator(answers={3: "85"}).evaluate(rule, 1) is False


def test_all_complete():
    rule = _rule(condition_type="all_complete", condition_config={"submodule_ids": [1, 2]})
    assert _evaluator(completed={1, 2}).evaluate(rule, 1) is True
    assert _evaluator(completed={1}).evaluate(rule, 1) is False
    assert _evaluator(completed=set()).evaluate(rule, 1) is False


def test_all_complete_deliberately_keeps_rules_naming_missing_submodules_closed():
    rule = _rule(condition_type="all_complete", condition_config={"submodule_ids": [1, 404]})
    assert _evaluator(completed={1}).evaluate(rule, 1) is False


def test_any_complete():
    rule = _rule(condition_type="any_complete", condition_config={"submodule_ids": [1, 2]})
    assert _evaluator(completed={2}).evaluate(rule, 1) is True
    assert _evaluator(completed={3}).evaluate(rule, 1) is False


@pytest.mark.parametrize("condition_type", ["all_complete", "any_complete"])
def test_empty_submodule_set_fails_safe(condition_type):
    rule = _rule(condition_type=condition_type, condition_config={"submodule_ids": []})
    assert _evaluator(completed={1, 2, 3}).evaluate(rule, 1) is False


def test_unknown_condition_type_is_false_and_logged(caplog):
    rule = _rule(condition_type="teleport")
    with caplog.at_level(logging.WARNING, logger="app.services.conditions"):
        assert _evaluator().evaluate(rule, 1) is False
    assert "rule_id=1" in caplog.text


# evaluate_applicable_rules


def test_applicable_rules_are_ordered_by_priority_then_id():
    rules = [
        _rule(rule_id=3, priority=1, target=30),
        _rule(rule_id=1, priority=5, target=10),
        _rule(rule_id=2, priority=5, target=20),
    ]
    results = _evaluator(rules=rules).evaluate_applicable_rules(1, module_id=1)
    assert [r.rule_id for r in results] == [1, 2, 3]


def test_malformed_rule_does_not_stop_siblings():
    rules = [
        _rule(rule_id=1, condition_type="teleport", priority=10, target=10),
        _rule(rule_id=2, condition_type="question_answer", condition_config={"question_id": "x"}, target=20),
        _rule(rule_id=3, condition_type="always", target=30),
    ]
    results = _evaluator(rules=rules).evaluate_applicable_rules(1, module_id=1)
    assert [(r.rule_id, r.unlocked) for r in results] == [(1, False), (2, False), (3, True)]
    assert results[2].target_submodule_id == 30


def test_path_rules_use_path_source():
    rules = [
        BranchingRule(id=9, source_path_id=4, target_path_id=5, condition_type="always", condition_config={},
                      priority=0, is_active=True),
        _rule(rule_id=10),
    ]
    results = _evaluator(rules=rules).evaluate_path_rules(1, path_id=4)
    assert [(r.rule_id, r.target_path_id, r.unlocked) for r in results] == [(9, 5, True)]
