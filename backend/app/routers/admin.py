from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.security import require_admin
from app.db.session import get_db
from app.models.branching import BranchingRule
from app.schemas.branching import RuleCreateRequest, RulePublic, RuleUpdateRequest
from app.services.rules import SqlRuleStore

log = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _rule_public(rule: BranchingRule) -> dict:
    return RulePublic(
        id=rule.id,
        source_module_id=rule.source_module_id,
        source_submodule_id=rule.source_submodule_id,
        source_path_id=rule.source_path_id,
        target_submodule_id=rule.target_submodule_id,
        target_path_id=rule.target_path_id,
        condition_type=rule.condition_type,
        condition_config=dict(rule.condition_config or {}),
        priority=int(rule.priority or 0),
        is_active=bool(rule.is_active),
    ).model_dump()


@router.post("/branching-rules", status_code=201)
def create_branching_rule(
    body: RuleCreateRequest,
    db: Session = Depends(get_db),
    admin_id: int = Depends(require_admin),
):
    rule = SqlRuleStore(db).create_rule(body)
    log.info("admin: rule_id=%s created by user_id=%s", rule.id, admin_id)
    return _rule_public(rule)


@router.get("/branching-rules/{rule_id}")
def get_branching_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    _: int = Depends(require_admin),
):
    return _rule_public(SqlRuleStore(db).get_rule(rule_id))


@router.patch("/branching-rules/{rule_id}")
def update_branching_rule(
    rule_id: int,
    body: RuleUpdateRequest,
    db: Session = Depends(get_db),
    admin_id: int = Depends(require_admin),
):
    rule = SqlRuleStore(db).update_rule(rule_id, body)
    log.info("admin: rule_id=%s updated by user_id=%s", rule.id, admin_id)
    return _rule_public(rule)


@router.delete("/branching-rules/{rule_id}")
def deactivate_branching_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    admin_id: int = Depends(require_admin),
):
    rule = SqlRuleStore(db).deactivate_rule(rule_id)
    log.info("admin: rule_id=%s deactivated by user_id=%s", rule.id, admin_id)
    return {"ok": True, "rule": _rule_public(rule)}
