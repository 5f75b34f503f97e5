from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from app.schemas.progress import ProgressPublic


class ModulePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    title: str
    description: str | None
    sequence_order: int
    requires_all_submodules: bool
    allows_branching: bool


class SubmodulePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    module_id: int
    parent_submodule_id: int | None
    branch_name: str | None
    name: str
    title: str
    description: str | None
    sequence_order: int


class PathPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    title: str
    description: str | None
    is_common: bool
    parent_path_id: int | None = None
    sequence_order: int = 0


class ModuleOverviewItem(BaseModel):
    module: ModulePublic
    progress: ProgressPublic
    accessible: bool


class SubmoduleOverviewItem(BaseModel):
    submodule: SubmodulePublic
    progress: ProgressPublic
    accessible: bool


class ModulesOverviewResponse(BaseModel):
    items: list[ModuleOverviewItem]


class SubmodulesOverviewResponse(BaseModel):
    module_id: int
    items: list[SubmoduleOverviewItem]


class PathOverviewItem(BaseModel):
    path: PathPublic
    progress: ProgressPublic
    accessible: bool


class PathsOverviewResponse(BaseModel):
    items: list[PathOverviewItem]


class PathModuleItem(BaseModel):
    module: ModulePublic
    progress: ProgressPublic
    accessible: bool
    is_required: bool


class PathModulesResponse(BaseModel):
    path_id: int
    items: list[PathModuleItem]
