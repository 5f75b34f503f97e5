from __future__ import annotations

import enum
from typing import List, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.module import Module, Submodule
from app.models.path import Path, PathModule


class ActivityKind(str, enum.Enum):
    module = "module"
    submodule = "submodule"
    path = "path"


class ActivityRepository:
    """Read access to modules, submodules and paths.

    Every query filters on ``is_active``; soft-deleted rows behave as missing.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_module(self, module_id: int) -> Module | None:
        return self.db.scalar(select(Module).where(Module.id == module_id, Module.is_active == True))  # noqa: E712

    def get_submodule(self, submodule_id: int) -> Submodule | None:
        # A submodule of an inactive module is itself inactive.
        return self.db.scalar(
            select(Submodule)
            .join(Module, Module.id == Submodule.module_id)
            .where(
                Submodule.id == submodule_id,
                Submodule.is_active == True,  # noqa: E712
                Module.is_active == True,  # noqa: E712
            )
        )

    def get_path(self, path_id: int) -> Path | None:
        return self.db.scalar(select(Path).where(Path.id == path_id, Path.is_active == True))  # noqa: E712

    def get(self, kind: ActivityKind, activity_id: int) -> Module | Submodule | Path | None:
        if kind is ActivityKind.module:
            return self.get_module(activity_id)
        if kind is ActivityKind.submodule:
            return self.get_submodule(activity_id)
        return self.get_path(activity_id)

    def list_modules(self) -> List[Module]:
        return list(
            self.db.scalars(
                select(Module).where(Module.is_active == True).order_by(Module.sequence_order, Module.id)  # noqa: E712
            ).all()
        )

    def list_submodules(self, module_id: int) -> List[Submodule]:
        return list(
            self.db.scalars(
                select(Submodule)
                .join(Module, Module.id == Submodule.module_id)
                .where(
                    Submodule.module_id == module_id,
                    Submodule.is_active == True,  # noqa: E712
                    Module.is_active == True,  # noqa: E712
                )
                .order_by(Submodule.sequence_order, Submodule.id)
            ).all()
        )

    def list_paths(self) -> List[Path]:
        return list(
            self.db.scalars(
                select(Path).where(Path.is_active == True).order_by(Path.sequence_order, Path.id)  # noqa: E712
            ).all()
        )

    def preceding_module_ids(self, module: Module) -> List[int]:
        return list(
            self.db.scalars(
                select(Module.id).where(
                    Module.is_active == True,  # noqa: E712
                    Module.sequence_order < module.sequence_order,
                )
            ).all()
        )

    def preceding_sibling_ids(self, submodule: Submodule) -> List[int]:
        """Active siblings in the same (module, branch, parent) group ordered before ``submodule``."""
        stmt = select(Submodule.id).where(
            Submodule.module_id == submodule.module_id,
            Submodule.is_active == True,  # noqa: E712
            Submodule.sequence_order < submodule.sequence_order,
        )
        if submodule.branch_name is None:
            stmt = stmt.where(Submodule.branch_name.is_(None))
        else:
            stmt = stmt.where(Submodule.branch_name == submodule.branch_name)
        if submodule.parent_submodule_id is None:
            stmt = stmt.where(Submodule.parent_submodule_id.is_(None))
        else:
            stmt = stmt.where(Submodule.parent_submodule_id == submodule.parent_submodule_id)
        return list(self.db.scalars(stmt).all())

    def submodule_ids(self, module_id: int) -> List[int]:
        return [s.id for s in self.list_submodules(module_id)]

    def required_path_module_ids(self, path_id: int) -> List[int]:
        return list(
            self.db.scalars(
                select(PathModule.module_id)
                .join(Module, Module.id == PathModule.module_id)
                .where(
                    PathModule.path_id == path_id,
                    PathModule.is_required == True,  # noqa: E712
                    Module.is_active == True,  # noqa: E712
                )
                .order_by(PathModule.sequence_order)
            ).all()
        )

    def list_child_paths(self, path_id: int) -> List[Path]:
        return list(
            self.db.scalars(
                select(Path)
                .where(Path.parent_path_id == path_id, Path.is_active == True)  # noqa: E712
                .order_by(Path.sequence_order, Path.id)
            ).all()
        )

    def list_path_modules(self, path_id: int) -> List[Tuple[Module, PathModule]]:
        rows = self.db.execute(
            select(Module, PathModule)
            .join(PathModule, PathModule.module_id == Module.id)
            .where(PathModule.path_id == path_id, Module.is_active == True)  # noqa: E712
            .order_by(PathModule.sequence_order, Module.id)
        ).all()
        return [(m, pm) for m, pm in rows]
