from __future__ import annotations

import logging
from typing import List, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFound, RuleValidationError
from app.models.branching import BranchingRule
from app.models.common import utcnow
from app.models.module import Module, Submodule
from app.models.path import Path
from app.schemas.branching import RuleCreateRequest, RuleUpdateRequest, parse_condition

log = logging.getLogger(__name__)


class RuleStore(Protocol):
    def get_applicable_rules(self, module_id: int, submodule_id: int | None = None) -> Sequence[BranchingRule]: ...

    def get_rules_targeting_submodule(self, submodule_id: int) -> Sequence[BranchingRule]: ...

    def get_rules_by_source_path(self, path_id: int) -> Sequence[BranchingRule]: ...


def _ordered(stmt):
    # Highest priority first; id breaks ties so evaluation order is stable.
    return stmt.order_by(BranchingRule.priority.desc(), BranchingRule.id.asc())


class SqlRuleStore:
    def __init__(self, db: Session):
        self.db = db

    def get_applicable_rules(self, module_id: int, submodule_id: int | None = None) -> List[BranchingRule]:
        """Active rules fired from ``submodule_id``, or module-level rules of ``module_id``.

        Module-level rules are the ones without a source submodule.
        """
        stmt = select(BranchingRule).where(BranchingRule.is_active == True)  # noqa: E712
        if submodule_id is None:
            stmt = stmt.where(
                BranchingRule.source_module_id == module_id,
                BranchingRule.source_submodule_id.is_(None),
            )
        else:
            stmt = stmt.where(BranchingRule.source_submodule_id == submodule_id)
        return list(self.db.scalars(_ordered(stmt)).all())

    def get_rules_targeting_submodule(self, submodule_id: int) -> List[BranchingRule]:
        stmt = select(BranchingRule).where(
            BranchingRule.target_submodule_id == submodule_id,
            BranchingRule.is_active == True,  # noqa: E712
        )
        return list(self.db.scalars(_ordered(stmt)).all())

    def get_rules_by_source_path(self, path_id: int) -> List[BranchingRule]:
        stmt = select(BranchingRule).where(
            BranchingRule.source_path_id == path_id,
            BranchingRule.is_active == True,  # noqa: E712
        )
        return list(self.db.scalars(_ordered(stmt)).all())

    def get_rule(self, rule_id: int) -> BranchingRule:
        rule = self.db.scalar(select(BranchingRule).where(BranchingRule.id == rule_id))
        if rule is None:
            raise NotFound("rule not found", rule_id=rule_id)
        return rule

    def _require(self, model, ident: int | None, label: str) -> None:
        if ident is None:
            return
        row = self.db.scalar(select(model.id).where(model.id == ident, model.is_active == True))  # noqa: E712
        if row is None:
            raise NotFound(f"{label} not found", **{f"{label}_id": ident})

    def create_rule(self, body: RuleCreateRequest, *, commit: bool = True) -> BranchingRule:
        parse_condition(body.condition_type.value, body.condition_config)

        self._require(Module, body.source_module_id, "module")
        self._require(Submodule, body.source_submodule_id, "submodule")
        self._require(Path, body.source_path_id, "path")
        self._require(Submodule, body.target_submodule_id, "submodule")
        self._require(Path, body.target_path_id, "path")

        if body.source_submodule_id is not None:
            if body.source_module_id is None:
                raise RuleValidationError("source_submodule_id requires source_module_id")
            owner = self.db.scalar(select(Submodule.module_id).where(Submodule.id == body.source_submodule_id))
            if owner != body.source_module_id:
                raise RuleValidationError("source submodule does not belong to source module")

        rule = BranchingRule(
            source_module_id=body.source_module_id,
            source_submodule_id=body.source_submodule_id,
            source_path_id=body.source_path_id,
            target_submodule_id=body.target_submodule_id,
            target_path_id=body.target_path_id,
            condition_type=body.condition_type.value,
            condition_config=dict(body.condition_config),
            priority=int(body.priority),
            is_active=True,
        )
        self.db.add(rule)
        if commit:
            self.db.commit()
            self.db.refresh(rule)
        else:
            self.db.flush()
        log.info("rules.create: rule_id=%s condition_type=%s priority=%s", rule.id, rule.condition_type, rule.priority)
        return rule

    def update_rule(self, rule_id: int, body: RuleUpdateRequest) -> BranchingRule:
        rule = self.get_rule(rule_id)

        condition_type = body.condition_type.value if body.condition_type is not None else rule.condition_type
        condition_config = body.condition_config if body.condition_config is not None else rule.condition_config
        if body.condition_type is not None or body.condition_config is not None:
            parse_condition(condition_type, condition_config)
            rule.condition_type = condition_type
            rule.condition_config = dict(condition_config or {})

        if body.priority is not None:
            rule.priority = int(body.priority)
        if body.is_active is not None:
            rule.is_active = bool(body.is_active)
        rule.updated_at = utcnow()

        self.db.commit()
        self.db.refresh(rule)
        log.info("rules.update: rule_id=%s is_active=%s", rule.id, rule.is_active)
        return rule

    def deactivate_rule(self, rule_id: int) -> BranchingRule:
        rule = self.get_rule(rule_id)
        rule.is_active = False
        rule.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(rule)
        log.info("rules.deactivate: rule_id=%s", rule.id)
        return rule
