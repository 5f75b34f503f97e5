from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AccessDenied, AlreadyCompleted, IncompletePrerequisites, NotFound, NotStarted
from app.models.audit import AuditEventType
from app.models.module import Module, Submodule
from app.models.progress import ProgressStatus
from app.services.access import AccessDecision, AccessGate
from app.services.activities import ActivityKind, ActivityRepository
from app.services.audit import AuditSink, NullAuditSink, SqlAuditSink
from app.services.conditions import ConditionEvaluator, RuleEvaluationResult
from app.services.progress_store import NOT_COMPLETED, ProgressRecord, ProgressStore, SqlProgressStore
from app.services.responses import ResponseStore, SqlResponseStore
from app.services.rules import RuleStore, SqlRuleStore

log = logging.getLogger(__name__)

_START_EVENTS = {
    ActivityKind.module: AuditEventType.MODULE_START,
    ActivityKind.submodule: AuditEventType.SUBMODULE_START,
    ActivityKind.path: AuditEventType.PATH_START,
}
_COMPLETION_EVENTS = {
    ActivityKind.module: AuditEventType.MODULE_COMPLETION,
    ActivityKind.submodule: AuditEventType.SUBMODULE_COMPLETION,
    ActivityKind.path: AuditEventType.PATH_COMPLETION,
}

AUTO_COMPLETION_DATA = {"auto_completed": True, "completed_via_submodules": True}


@dataclass(frozen=True)
class ActivityView:
    activity: Any
    progress: ProgressRecord | None
    accessible: bool

    @property
    def status(self) -> ProgressStatus:
        return self.progress.status if self.progress is not None else ProgressStatus.NOT_STARTED


@dataclass(frozen=True)
class PathModuleView(ActivityView):
    is_required: bool = True


@dataclass
class CompletionOutcome:
    progress: ProgressRecord
    unlocked_submodule_ids: List[int] = field(default_factory=list)
    unlocked_path_ids: List[int] = field(default_factory=list)
    # True when this completion auto-completed the owning module.
    module_completed: bool = False


class ProgressionService:
    """Start / save / complete lifecycle for modules, submodules and paths.

    State per (user, activity) only moves forward: absent -> IN_PROGRESS ->
    COMPLETED. Every write goes through the guarded upsert of the progress
    store, so concurrent requests cannot both complete the same activity.
    """

    def __init__(
        self,
        activities: ActivityRepository,
        module_progress: ProgressStore,
        submodule_progress: ProgressStore,
        path_progress: ProgressStore,
        responses: ResponseStore,
        rules: RuleStore,
        audit: AuditSink,
        *,
        cascade_enabled: bool = True,
    ):
        self.activities = activities
        self.module_progress = module_progress
        self.submodule_progress = submodule_progress
        self.path_progress = path_progress
        self.rules = rules
        self.audit = audit
        self.cascade_enabled = cascade_enabled

        self.evaluator = ConditionEvaluator(submodule_progress, responses, rules)
        self.gate = AccessGate(activities, module_progress, submodule_progress, path_progress, self.evaluator, rules)

        self._stores: Dict[ActivityKind, ProgressStore] = {
            ActivityKind.module: module_progress,
            ActivityKind.submodule: submodule_progress,
            ActivityKind.path: path_progress,
        }

    # helpers

    def _get(self, kind: ActivityKind, activity_id: int):
        activity = self.activities.get(kind, activity_id)
        if activity is None:
            raise NotFound(f"{kind.value} not found", **{f"{kind.value}_id": activity_id})
        return activity

    def _decide(self, user_id: int, kind: ActivityKind, activity_id: int) -> AccessDecision:
        if kind is ActivityKind.module:
            return self.gate.check_module(user_id, activity_id)
        if kind is ActivityKind.submodule:
            return self.gate.check_submodule(user_id, activity_id)
        return self.gate.check_path(user_id, activity_id)

    def _require_access(self, user_id: int, kind: ActivityKind, activity_id: int) -> None:
        decision = self._decide(user_id, kind, activity_id)
        if decision.accessible:
            return
        reason = decision.reason or f"{kind.value} is locked"
        log.info("access: denied user_id=%s %s_id=%s reason=%s", user_id, kind.value, activity_id, reason)
        self._audit(
            AuditEventType.ACCESS_DENIED,
            user_id,
            {"activity_type": kind.value, "activity_id": activity_id, "reason": reason},
        )
        raise AccessDenied(reason, next_activity_id=decision.next_activity_id)

    def _audit(self, event_type: AuditEventType, user_id: int, details: Dict[str, Any]) -> None:
        try:
            self.audit.record(event_type, user_id, details)
        except Exception:
            log.warning("audit: failed to record event_type=%s user_id=%s", event_type.value, user_id, exc_info=True)

    @staticmethod
    def _details(kind: ActivityKind, activity) -> Dict[str, Any]:
        details: Dict[str, Any] = {f"{kind.value}_id": activity.id}
        if kind is ActivityKind.submodule:
            details["module_id"] = activity.module_id
        return details

    def _already_completed(self, kind: ActivityKind, activity_id: int) -> AlreadyCompleted:
        return AlreadyCompleted(f"{kind.value} already completed", **{f"{kind.value}_id": activity_id})

    # access

    def check_access(self, user_id: int, kind: ActivityKind, activity_id: int) -> AccessDecision:
        self._get(kind, activity_id)
        return self._decide(user_id, kind, activity_id)

    # lifecycle

    def start(self, user_id: int, kind: ActivityKind, activity_id: int) -> ProgressRecord:
        activity = self._get(kind, activity_id)
        self._require_access(user_id, kind, activity.id)

        record = self._stores[kind].upsert(user_id, activity.id, status=ProgressStatus.IN_PROGRESS, guard=NOT_COMPLETED)
        if record is None:
            raise self._already_completed(kind, activity.id)

        log.info("start: user_id=%s %s_id=%s", user_id, kind.value, activity.id)
        self._audit(_START_EVENTS[kind], user_id, self._details(kind, activity))

        if kind is ActivityKind.module:
            self._apply_unlocks(user_id, self.evaluator.evaluate_applicable_rules(user_id, activity.id))
        return record

    def save(self, user_id: int, kind: ActivityKind, activity_id: int, response_data: Any) -> ProgressRecord:
        activity = self._get(kind, activity_id)
        store = self._stores[kind]

        existing = store.fetch(user_id, activity.id)
        if existing is not None and existing.is_completed:
            raise self._already_completed(kind, activity.id)
        if existing is None or not existing.is_started:
            self.start(user_id, kind, activity.id)

        record = store.upsert(
            user_id,
            activity.id,
            status=ProgressStatus.IN_PROGRESS,
            response_data=response_data,
            guard=NOT_COMPLETED,
        )
        if record is None:
            raise self._already_completed(kind, activity.id)
        log.info("save: user_id=%s %s_id=%s", user_id, kind.value, activity.id)
        return record

    def complete(
        self,
        user_id: int,
        kind: ActivityKind,
        activity_id: int,
        response_data: Any = None,
        *,
        require_started: bool = True,
    ) -> CompletionOutcome:
        activity = self._get(kind, activity_id)
        self._require_access(user_id, kind, activity.id)
        store = self._stores[kind]

        if require_started:
            existing = store.fetch(user_id, activity.id)
            if existing is None or not existing.is_started:
                raise NotStarted(f"{kind.value} has not been started", **{f"{kind.value}_id": activity.id})
            if existing.is_completed:
                raise self._already_completed(kind, activity.id)

        self._require_prerequisites(user_id, kind, activity)

        record = store.upsert(
            user_id,
            activity.id,
            status=ProgressStatus.COMPLETED,
            response_data=response_data,
            guard=NOT_COMPLETED,
        )
        if record is None:
            raise self._already_completed(kind, activity.id)

        log.info("complete: user_id=%s %s_id=%s", user_id, kind.value, activity.id)
        self._audit(_COMPLETION_EVENTS[kind], user_id, self._details(kind, activity))

        if kind is ActivityKind.module:
            results = self.evaluator.evaluate_applicable_rules(user_id, activity.id)
        elif kind is ActivityKind.submodule:
            results = self.evaluator.evaluate_applicable_rules(user_id, activity.module_id, activity.id)
        else:
            results = self.evaluator.evaluate_path_rules(user_id, activity.id)

        outcome = CompletionOutcome(progress=record)
        outcome.unlocked_submodule_ids, outcome.unlocked_path_ids = self._apply_unlocks(user_id, results)

        if kind is ActivityKind.submodule and self.cascade_enabled:
            outcome.module_completed = self._cascade_module_completion(user_id, activity)
        return outcome

    def _all_submodules_completed(self, user_id: int, module: Module) -> bool:
        if module.allows_branching:
            # Branches are alternatives; "every submodule" is unsatisfiable here.
            log.info("prerequisites: module_id=%s requires all submodules but allows branching", module.id)
            return False
        ids = self.activities.submodule_ids(module.id)
        return set(ids) <= self.submodule_progress.completed_ids(user_id, ids)

    def _require_prerequisites(self, user_id: int, kind: ActivityKind, activity) -> None:
        if kind is ActivityKind.module and activity.requires_all_submodules:
            if not self._all_submodules_completed(user_id, activity):
                raise IncompletePrerequisites("all submodules must be completed first", module_id=activity.id)
        elif kind is ActivityKind.path:
            required = self.activities.required_path_module_ids(activity.id)
            missing = set(required) - self.module_progress.completed_ids(user_id, required)
            if missing:
                raise IncompletePrerequisites(
                    "required modules of this path are not completed",
                    path_id=activity.id,
                    missing_module_ids=sorted(missing),
                )

    def _cascade_module_completion(self, user_id: int, submodule: Submodule) -> bool:
        module = self.activities.get_module(submodule.module_id)
        if module is None or not module.requires_all_submodules:
            return False
        if not self._all_submodules_completed(user_id, module):
            return False
        try:
            self.complete(user_id, ActivityKind.module, module.id, dict(AUTO_COMPLETION_DATA), require_started=False)
        except AlreadyCompleted:
            # Another request finished the same module first.
            log.info("cascade: module_id=%s already completed for user_id=%s", module.id, user_id)
            return False
        log.info("cascade: module_id=%s auto-completed for user_id=%s", module.id, user_id)
        return True

    # unlocks

    def _apply_unlocks(self, user_id: int, results: List[RuleEvaluationResult]) -> Tuple[List[int], List[int]]:
        """Write unlock markers for satisfied rules; returns unlocked (submodule, path) ids."""
        submodule_ids: List[int] = []
        path_ids: List[int] = []
        for result in results:
            if not result.unlocked:
                continue
            if result.target_submodule_id is not None:
                target = self.activities.get_submodule(result.target_submodule_id)
                if target is None:
                    log.warning("unlock: rule_id=%s targets a missing submodule", result.rule_id)
                    continue
                if self.submodule_progress.mark_unlocked(user_id, target.id, result.rule_id):
                    self._audit(
                        AuditEventType.SUBMODULE_UNLOCK,
                        user_id,
                        {"submodule_id": target.id, "rule_id": result.rule_id},
                    )
                if target.id not in submodule_ids:
                    submodule_ids.append(target.id)
            elif result.target_path_id is not None:
                path = self.activities.get_path(result.target_path_id)
                if path is None:
                    log.warning("unlock: rule_id=%s targets a missing path", result.rule_id)
                    continue
                if self.path_progress.mark_unlocked(user_id, path.id, result.rule_id):
                    self._audit(AuditEventType.PATH_UNLOCK, user_id, {"path_id": path.id, "rule_id": result.rule_id})
                if path.id not in path_ids:
                    path_ids.append(path.id)
        return submodule_ids, path_ids

    def _require_rule_source(self, user_id: int, kind: ActivityKind, activity, *, completed: bool) -> None:
        """Unlock markers are only written for sources the user has reached.

        Module-level rules need the module started (they also fire on start);
        submodule and path rules need the source completed.
        """
        record = self._stores[kind].fetch(user_id, activity.id)
        if record is None or not record.is_started:
            raise NotStarted(f"{kind.value} has not been started", **{f"{kind.value}_id": activity.id})
        if completed and not record.is_completed:
            raise IncompletePrerequisites(
                f"{kind.value} must be completed before its rules are evaluated",
                **{f"{kind.value}_id": activity.id},
            )

    def evaluate_unlocks(
        self, user_id: int, module_id: int, submodule_id: int | None = None
    ) -> List[RuleEvaluationResult]:
        module = self._get(ActivityKind.module, module_id)
        if submodule_id is not None:
            submodule = self._get(ActivityKind.submodule, submodule_id)
            if submodule.module_id != module.id:
                raise NotFound("submodule not found in module", module_id=module.id, submodule_id=submodule_id)
            self._require_rule_source(user_id, ActivityKind.submodule, submodule, completed=True)
        else:
            self._require_rule_source(user_id, ActivityKind.module, module, completed=False)
        results = self.evaluator.evaluate_applicable_rules(user_id, module.id, submodule_id)
        self._apply_unlocks(user_id, results)
        return results

    def evaluate_submodule_unlocks(self, user_id: int, submodule_id: int) -> List[RuleEvaluationResult]:
        submodule = self._get(ActivityKind.submodule, submodule_id)
        return self.evaluate_unlocks(user_id, submodule.module_id, submodule.id)

    def evaluate_path_unlocks(self, user_id: int, path_id: int) -> List[RuleEvaluationResult]:
        path = self._get(ActivityKind.path, path_id)
        self._require_rule_source(user_id, ActivityKind.path, path, completed=True)
        results = self.evaluator.evaluate_path_rules(user_id, path.id)
        self._apply_unlocks(user_id, results)
        return results

    # overview

    def list_modules(self, user_id: int) -> List[ActivityView]:
        progress = self.module_progress.list_for_user(user_id)
        return [
            ActivityView(m, progress.get(m.id), self.gate.is_module_accessible(user_id, m.id))
            for m in self.activities.list_modules()
        ]

    def list_submodules(self, user_id: int, module_id: int) -> List[ActivityView]:
        module = self._get(ActivityKind.module, module_id)
        progress = self.submodule_progress.list_for_user(user_id)
        return [
            ActivityView(s, progress.get(s.id), self.gate.check_submodule(user_id, s.id).accessible)
            for s in self.activities.list_submodules(module.id)
        ]

    def list_paths(self, user_id: int) -> List[ActivityView]:
        progress = self.path_progress.list_for_user(user_id)
        return [
            ActivityView(p, progress.get(p.id), p.is_common or p.id in progress)
            for p in self.activities.list_paths()
        ]

    def list_child_paths(self, user_id: int, path_id: int) -> List[ActivityView]:
        parent = self._get(ActivityKind.path, path_id)
        progress = self.path_progress.list_for_user(user_id)
        return [
            ActivityView(p, progress.get(p.id), p.is_common or p.id in progress)
            for p in self.activities.list_child_paths(parent.id)
        ]

    def list_path_modules(self, user_id: int, path_id: int) -> List[PathModuleView]:
        path = self._get(ActivityKind.path, path_id)
        progress = self.module_progress.list_for_user(user_id)
        return [
            PathModuleView(m, progress.get(m.id), self.gate.is_module_accessible(user_id, m.id), pm.is_required)
            for m, pm in self.activities.list_path_modules(path.id)
        ]

    def current_module(self, user_id: int) -> Module | None:
        progress = self.module_progress.list_for_user(user_id)
        for module in self.activities.list_modules():
            record = progress.get(module.id)
            if record is not None and record.status == ProgressStatus.IN_PROGRESS:
                return module
        return self.gate.next_accessible_module(user_id)

    def current_submodule(self, user_id: int, module_id: int) -> Submodule | None:
        progress = self.submodule_progress.list_for_user(user_id)
        for submodule in self.activities.list_submodules(module_id):
            record = progress.get(submodule.id)
            if record is not None and record.status == ProgressStatus.IN_PROGRESS:
                return submodule
        return self.gate.next_accessible_submodule(user_id, module_id)

    def completion_stats(self, user_id: int) -> Dict[str, Any]:
        ids = [m.id for m in self.activities.list_modules()]
        completed = self.module_progress.completed_ids(user_id, ids)
        current = self.current_module(user_id)
        return {
            "total": len(ids),
            "completed": len(completed),
            "completion_percentage": round(100 * len(completed) / len(ids)) if ids else 0,
            "current_module_id": current.id if current is not None else None,
        }

    def submodule_completion_stats(self, user_id: int, module_id: int) -> Dict[str, Any]:
        module = self._get(ActivityKind.module, module_id)
        ids = self.activities.submodule_ids(module.id)
        completed = self.submodule_progress.completed_ids(user_id, ids)
        current = self.current_submodule(user_id, module.id)
        return {
            "module_id": module.id,
            "total": len(ids),
            "completed": len(completed),
            "completion_percentage": round(100 * len(completed) / len(ids)) if ids else 0,
            "current_submodule_id": current.id if current is not None else None,
        }


def build_progression_service(
    db: Session,
    *,
    responses: ResponseStore | None = None,
    rules: RuleStore | None = None,
    audit: AuditSink | None = None,
) -> ProgressionService:
    if audit is None:
        audit = SqlAuditSink(db) if settings.audit_enabled else NullAuditSink()
    return ProgressionService(
        activities=ActivityRepository(db),
        module_progress=SqlProgressStore.for_modules(db),
        submodule_progress=SqlProgressStore.for_submodules(db),
        path_progress=SqlProgressStore.for_paths(db),
        responses=responses if responses is not None else SqlResponseStore(db),
        rules=rules if rules is not None else SqlRuleStore(db),
        audit=audit,
        cascade_enabled=bool(settings.cascade_module_completion),
    )
