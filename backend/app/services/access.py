from __future__ import annotations

import logging
from dataclasses import dataclass

from app.models.module import Module, Submodule
from app.services.activities import ActivityRepository
from app.services.conditions import ConditionEvaluator
from app.services.progress_store import ProgressStore
from app.services.rules import RuleStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    accessible: bool
    reason: str | None = None
    next_activity_id: int | None = None


ALLOWED = AccessDecision(True)


class AccessGate:
    """Answers "may this user work on this activity right now?".

    Both module and submodule flows depend on it; it never writes.
    """

    def __init__(
        self,
        activities: ActivityRepository,
        module_progress: ProgressStore,
        submodule_progress: ProgressStore,
        path_progress: ProgressStore,
        evaluator: ConditionEvaluator,
        rules: RuleStore,
    ):
        self.activities = activities
        self.module_progress = module_progress
        self.submodule_progress = submodule_progress
        self.path_progress = path_progress
        self.evaluator = evaluator
        self.rules = rules

    # modules

    def _module_unblocked(self, user_id: int, module: Module) -> bool:
        earlier = self.activities.preceding_module_ids(module)
        if not earlier:
            return True
        return set(earlier) <= self.module_progress.completed_ids(user_id, earlier)

    def is_module_accessible(self, user_id: int, module_id: int) -> bool:
        module = self.activities.get_module(module_id)
        if module is None:
            return False
        return self._module_unblocked(user_id, module)

    # submodules

    def _sequence_unblocked(self, user_id: int, submodule: Submodule) -> bool:
        if submodule.sequence_order == 1 and submodule.parent_submodule_id is None:
            return True
        earlier = self.activities.preceding_sibling_ids(submodule)
        if not earlier:
            return True
        return set(earlier) <= self.submodule_progress.completed_ids(user_id, earlier)

    def _unlocked_by_rules(self, user_id: int, submodule_id: int) -> bool:
        rules = self.rules.get_rules_targeting_submodule(submodule_id)
        if not rules:
            return True
        return any(self.evaluator.evaluate(rule, user_id) for rule in rules)

    def is_submodule_accessible(self, user_id: int, submodule_id: int) -> bool:
        submodule = self.activities.get_submodule(submodule_id)
        if submodule is None:
            return False
        return self._sequence_unblocked(user_id, submodule) and self._unlocked_by_rules(user_id, submodule.id)

    # paths

    def is_path_accessible(self, user_id: int, path_id: int) -> bool:
        path = self.activities.get_path(path_id)
        if path is None:
            return False
        if path.is_common:
            return True
        return self.path_progress.fetch(user_id, path.id) is not None

    # navigation

    def next_accessible_module(self, user_id: int) -> Module | None:
        modules = self.activities.list_modules()
        completed = self.module_progress.completed_ids(user_id, [m.id for m in modules])
        for module in modules:
            if module.id in completed:
                continue
            if self._module_unblocked(user_id, module):
                return module
        return None

    def next_accessible_submodule(self, user_id: int, module_id: int) -> Submodule | None:
        submodules = self.activities.list_submodules(module_id)
        completed = self.submodule_progress.completed_ids(user_id, [s.id for s in submodules])
        for submodule in submodules:
            if submodule.id in completed:
                continue
            if self._sequence_unblocked(user_id, submodule) and self._unlocked_by_rules(user_id, submodule.id):
                return submodule
        return None

    def check_module(self, user_id: int, module_id: int) -> AccessDecision:
        if self.is_module_accessible(user_id, module_id):
            return ALLOWED
        nxt = self.next_accessible_module(user_id)
        return AccessDecision(
            False,
            "complete the previous modules first",
            next_activity_id=nxt.id if nxt is not None else None,
        )

    def check_submodule(self, user_id: int, submodule_id: int) -> AccessDecision:
        submodule = self.activities.get_submodule(submodule_id)
        if submodule is None:
            return AccessDecision(False, "submodule not found")

        module_decision = self.check_module(user_id, submodule.module_id)
        if not module_decision.accessible:
            return module_decision

        if not self._sequence_unblocked(user_id, submodule):
            reason = "complete the previous submodules first"
        elif not self._unlocked_by_rules(user_id, submodule.id):
            reason = "submodule is locked by branching rules"
        else:
            return ALLOWED

        nxt = self.next_accessible_submodule(user_id, submodule.module_id)
        log.debug("check_submodule: user_id=%s submodule_id=%s denied: %s", user_id, submodule_id, reason)
        return AccessDecision(False, reason, next_activity_id=nxt.id if nxt is not None else None)

    def check_path(self, user_id: int, path_id: int) -> AccessDecision:
        if self.is_path_accessible(user_id, path_id):
            return ALLOWED
        return AccessDecision(False, "path is locked")
