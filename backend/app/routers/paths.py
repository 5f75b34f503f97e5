from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from app.core.security import get_current_user_id
from app.routers.deps import get_progression
from app.schemas.module import ModulePublic, PathModulesResponse, PathPublic, PathsOverviewResponse
from app.schemas.progress import (
    AccessResponse,
    CompleteRequest,
    ProgressPublic,
    completion_payload,
    unlock_payload,
)
from app.services.activities import ActivityKind
from app.services.progression import ProgressionService

router = APIRouter(prefix="/paths", tags=["paths"])


def _path_items(views):
    return [
        {
            "path": PathPublic.model_validate(v.activity),
            "progress": ProgressPublic.from_record(v.progress),
            "accessible": v.accessible,
        }
        for v in views
    ]


@router.get("", response_model=PathsOverviewResponse)
def list_paths(
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    return {"items": _path_items(service.list_paths(user_id))}


@router.get("/{path_id}/children", response_model=PathsOverviewResponse)
def list_child_paths(
    path_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    return {"items": _path_items(service.list_child_paths(user_id, path_id))}


@router.get("/{path_id}/modules", response_model=PathModulesResponse)
def list_path_modules(
    path_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    items = [
        {
            "module": ModulePublic.model_validate(v.activity),
            "progress": ProgressPublic.from_record(v.progress),
            "accessible": v.accessible,
            "is_required": v.is_required,
        }
        for v in service.list_path_modules(user_id, path_id)
    ]
    return {"path_id": path_id, "items": items}


@router.get("/{path_id}/access", response_model=AccessResponse)
def path_access(
    path_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    return asdict(service.check_access(user_id, ActivityKind.path, path_id))


@router.post("/{path_id}/start")
def start_path(
    path_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    record = service.start(user_id, ActivityKind.path, path_id)
    return {"ok": True, "progress": ProgressPublic.from_record(record).model_dump(mode="json")}


@router.post("/{path_id}/complete")
def complete_path(
    path_id: int,
    body: CompleteRequest | None = None,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    response_data = body.response_data if body is not None else None
    return completion_payload(service.complete(user_id, ActivityKind.path, path_id, response_data))


@router.post("/{path_id}/unlocks/evaluate")
def evaluate_path_unlocks(
    path_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    return unlock_payload(service.evaluate_path_unlocks(user_id, path_id))
