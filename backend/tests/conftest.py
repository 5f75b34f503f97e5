import itertools
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Must be set before app.db.session builds its engine.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token
from app.db.base import Base
from app.db import session as session_module
from app.main import create_app

# Import models so that they are registered in Base.metadata before create_all.
from app.models.module import Module, Submodule
from app.models.path import Path as LearningPath, PathModule
from app.models.branching import BranchingRule
from app.models.question import Question, QuestionType
from app.services.responses import SqlResponseStore
import app.models.progress  # noqa: F401
import app.models.audit  # noqa: F401


class Curriculum:
    """Small factory for modules, submodules, paths, rules and answers."""

    def __init__(self, db):
        self.db = db
        self._seq = itertools.count(1)

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def module(self, order: int, *, requires_all_submodules: bool = True, allows_branching: bool = False, **kw):
        name = kw.pop("name", f"module-{next(self._seq)}")
        return self._save(
            Module(
                name=name,
                title=kw.pop("title", name),
                sequence_order=order,
                requires_all_submodules=requires_all_submodules,
                allows_branching=allows_branching,
                **kw,
            )
        )

    def submodule(self, module, order: int, *, branch_name=None, parent=None, **kw):
        name = kw.pop("name", f"submodule-{next(self._seq)}")
        return self._save(
            Submodule(
                module_id=module.id,
                parent_submodule_id=parent.id if parent is not None else None,
                branch_name=branch_name,
                name=name,
                title=kw.pop("title", name),
                sequence_order=order,
                **kw,
            )
        )

    def path(self, name: str, *, is_common: bool = False, modules=(), **kw):
        p = self._save(LearningPath(name=name, title=kw.pop("title", name), is_common=is_common, **kw))
        for i, m in enumerate(modules, start=1):
            self._save(PathModule(path_id=p.id, module_id=m.id, sequence_order=i, is_required=True))
        return p

    def rule(self, *, condition_type: str, condition_config=None, source_module=None, source_submodule=None,
             source_path=None, target_submodule=None, target_path=None, priority: int = 0, is_active: bool = True):
        return self._save(
            BranchingRule(
                source_module_id=source_module.id if source_module is not None else None,
                source_submodule_id=source_submodule.id if source_submodule is not None else None,
                source_path_id=source_path.id if source_path is not None else None,
                target_submodule_id=target_submodule.id if target_submodule is not None else None,
                target_path_id=target_path.id if target_path is not None else None,
                condition_type=condition_type,
                condition_config=condition_config if condition_config is not None else {},
                priority=priority,
                is_active=is_active,
            )
        )

    def question(self, module=None, text: str = "Pick one"):
        return self._save(
            Question(
                question_text=text,
                question_type=QuestionType.multiple_choice,
                module_id=module.id if module is not None else None,
            )
        )

    def answer(self, user_id: int, question, value):
        return SqlResponseStore(self.db).record_response(user_id, question.id, value)


@pytest.fixture()
def engine(monkeypatch):
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    monkeypatch.setattr(session_module, "engine", eng)
    monkeypatch.setattr(
        session_module, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=eng)
    )
    yield eng
    eng.dispose()


@pytest.fixture()
def db(engine):
    with session_module.SessionLocal() as session:
        yield session


@pytest.fixture()
def curriculum(db):
    return Curriculum(db)


@pytest.fixture()
def client(engine):
    app = create_app()

    def _get_db_override():
        db = session_module.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[session_module.get_db] = _get_db_override
    return TestClient(app)


@pytest.fixture()
def auth_headers():
    def _headers(user_id: int = 1, role: str = "user") -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id=user_id, role=role)}"}

    return _headers
