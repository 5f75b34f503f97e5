from __future__ import annotations

import argparse
import json
import logging
import os
import pathlib
import sys
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

# Ensure imports work when running from any CWD and in Docker (/app)
_HERE = pathlib.Path(__file__).resolve()
_BACKEND_ROOT = _HERE.parents[1]
sys.path.insert(0, str(_BACKEND_ROOT))
sys.path.insert(0, "/app")
sys.path.insert(0, os.getcwd())

from app.db import session as db_session
from app.db.base import Base
import app.models  # noqa: F401
from app.models.branching import BranchingRule
from app.models.module import Module, Submodule
from app.models.path import Path, PathModule
from app.models.question import Question, QuestionType
from app.models.common import utcnow
from app.schemas.branching import ConditionType, RuleCreateRequest, parse_condition
from app.services.rules import SqlRuleStore

log = logging.getLogger("seed_curriculum")


def _upsert_module(db: Session, item: dict[str, Any]) -> Module:
    m = db.scalar(select(Module).where(Module.name == item["name"]))
    if m is None:
        m = Module(name=item["name"])
        db.add(m)
    m.title = item.get("title") or item["name"]
    m.description = item.get("description")
    m.sequence_order = int(item["sequence_order"])
    m.requires_all_submodules = bool(item.get("requires_all_submodules", True))
    m.allows_branching = bool(item.get("allows_branching", False))
    m.is_active = bool(item.get("is_active", True))
    db.flush()
    return m


def _upsert_submodule(db: Session, module: Module, item: dict[str, Any], by_name: dict[str, Submodule]) -> Submodule:
    s = db.scalar(select(Submodule).where(Submodule.module_id == module.id, Submodule.name == item["name"]))
    if s is None:
        s = Submodule(module_id=module.id, name=item["name"])
        db.add(s)
    parent = item.get("parent")
    if parent and parent not in by_name:
        raise ValueError(f"submodule {item['name']!r}: unknown parent {parent!r} (parents must be listed first)")
    s.parent_submodule_id = by_name[parent].id if parent else None
    s.branch_name = item.get("branch_name")
    s.title = item.get("title") or item["name"]
    s.description = item.get("description")
    s.sequence_order = int(item["sequence_order"])
    s.is_active = bool(item.get("is_active", True))
    db.flush()
    return s


def _upsert_path(db: Session, item: dict[str, Any], modules: dict[str, Module], paths: dict[str, Path]) -> Path:
    p = db.scalar(select(Path).where(Path.name == item["name"]))
    if p is None:
        p = Path(name=item["name"])
        db.add(p)
    parent = item.get("parent")
    if parent and parent not in paths:
        raise ValueError(f"path {item['name']!r}: unknown parent {parent!r} (parents must be listed first)")
    p.parent_path_id = paths[parent].id if parent else None
    p.title = item.get("title") or item["name"]
    p.description = item.get("description")
    p.is_common = bool(item.get("is_common", False))
    p.sequence_order = int(item.get("sequence_order", 0))
    p.is_active = bool(item.get("is_active", True))
    db.flush()

    linked = {pm.module_id: pm for pm in db.scalars(select(PathModule).where(PathModule.path_id == p.id)).all()}
    for i, module_name in enumerate(item.get("modules") or [], start=1):
        module = modules.get(module_name)
        if module is None:
            raise ValueError(f"path {p.name!r}: unknown module {module_name!r}")
        pm = linked.get(module.id)
        if pm is None:
            pm = PathModule(path_id=p.id, module_id=module.id)
            db.add(pm)
        pm.sequence_order = i
        pm.is_required = True
    db.flush()
    return p


def _resolve_condition(config: dict[str, Any], submodules: dict[str, Submodule], questions: dict[str, Question]):
    config = dict(config or {})
    names = config.pop("submodules", None)
    if names is not None:
        missing = [n for n in names if n not in submodules]
        if missing:
            raise ValueError(f"unknown submodules in condition: {missing}")
        config["submodule_ids"] = [submodules[n].id for n in names]
    key = config.pop("question", None)
    if key is not None:
        if key not in questions:
            raise ValueError(f"unknown question in condition: {key!r}")
        config["question_id"] = questions[key].id
    return config


def _same(column, value):
    return column.is_(None) if value is None else column == value


def _find_rule(db: Session, body: RuleCreateRequest) -> BranchingRule | None:
    return db.scalar(
        select(BranchingRule).where(
            _same(BranchingRule.source_module_id, body.source_module_id),
            _same(BranchingRule.source_submodule_id, body.source_submodule_id),
            _same(BranchingRule.source_path_id, body.source_path_id),
            _same(BranchingRule.target_submodule_id, body.target_submodule_id),
            _same(BranchingRule.target_path_id, body.target_path_id),
            BranchingRule.condition_type == body.condition_type.value,
            BranchingRule.is_active == True,  # noqa: E712
        )
    )


def load_curriculum(db: Session, data: dict[str, Any]) -> dict[str, int]:
    """Create or update everything described by ``data`` in one transaction.

    Returns per-kind counts. Nothing is persisted when any entry is invalid.

    Submodules are addressed as ``"<module name>/<submodule name>"`` in paths,
    rules and ``submodules`` condition lists.
    """
    modules: dict[str, Module] = {}
    submodules: dict[str, Submodule] = {}
    paths: dict[str, Path] = {}
    questions: dict[str, Question] = {}

    try:
        created_rules, updated_rules = _load(db, data, modules, submodules, paths, questions)
        db.commit()
    except Exception:
        db.rollback()
        raise

    return {
        "modules": len(modules),
        "submodules": len(submodules),
        "paths": len(paths),
        "questions": len(questions),
        "rules": created_rules,
        "rules_updated": updated_rules,
    }


def _load(db: Session, data: dict[str, Any], modules, submodules, paths, questions) -> tuple[int, int]:
    created_rules = 0
    updated_rules = 0

    for item in data.get("modules") or []:
        module = _upsert_module(db, item)
        modules[module.name] = module
        local: dict[str, Submodule] = {}
        for sub in item.get("submodules") or []:
            s = _upsert_submodule(db, module, sub, local)
            local[s.name] = s
            submodules[f"{module.name}/{s.name}"] = s

    for item in data.get("paths") or []:
        p = _upsert_path(db, item, modules, paths)
        paths[p.name] = p

    for item in data.get("questions") or []:
        module = modules.get(item.get("module")) if item.get("module") else None
        module_id = module.id if module is not None else None
        q = db.scalar(
            select(Question).where(
                Question.question_text == item["text"],
                _same(Question.module_id, module_id),
            )
        )
        if q is None:
            q = Question(question_text=item["text"], module_id=module_id)
            db.add(q)
        q.question_type = QuestionType(item.get("type", QuestionType.multiple_choice.value))
        db.flush()
        questions[item["key"]] = q

    store = SqlRuleStore(db)
    for item in data.get("rules") or []:
        def _ref(key: str, table: dict[str, Any]) -> int | None:
            name = item.get(key)
            if name is None:
                return None
            if name not in table:
                raise ValueError(f"rule {key}: unknown {name!r}")
            return table[name].id

        source_submodule_id = _ref("source_submodule", submodules)
        source_module_id = _ref("source_module", modules)
        if source_module_id is None and source_submodule_id is not None:
            source_module_id = submodules[item["source_submodule"]].module_id

        body = RuleCreateRequest(
            source_module_id=source_module_id,
            source_submodule_id=source_submodule_id,
            source_path_id=_ref("source_path", paths),
            target_submodule_id=_ref("target_submodule", submodules),
            target_path_id=_ref("target_path", paths),
            condition_type=ConditionType(item["condition_type"]),
            condition_config=_resolve_condition(item.get("condition_config") or {}, submodules, questions),
            priority=int(item.get("priority", 0)),
        )
        existing = _find_rule(db, body)
        if existing is None:
            store.create_rule(body, commit=False)
            created_rules += 1
            continue
        if existing.condition_config != body.condition_config or existing.priority != body.priority:
            parse_condition(body.condition_type.value, body.condition_config)
            existing.condition_config = dict(body.condition_config)
            existing.priority = body.priority
            existing.updated_at = utcnow()
            db.flush()
            updated_rules += 1
            log.info("update rule: rule_id=%s", existing.id)

    return created_rules, updated_rules


def run(*, source: pathlib.Path, create_tables: bool = False) -> None:
    data = json.loads(source.read_text(encoding="utf-8"))
    if create_tables:
        Base.metadata.create_all(bind=db_session.engine)
    db = db_session.SessionLocal()
    try:
        counts = load_curriculum(db, data)
        print(f"OK: loaded {counts} from {source}")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    p = argparse.ArgumentParser()
    p.add_argument("source", help="Path to a curriculum JSON file")
    p.add_argument("--create-tables", action="store_true", help="Create missing tables before loading")
    args = p.parse_args()

    run(source=pathlib.Path(args.source), create_tables=args.create_tables)


if __name__ == "__main__":
    main()
