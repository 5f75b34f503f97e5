from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from app.core.security import get_current_user_id
from app.routers.deps import get_progression
from app.schemas.progress import (
    AccessResponse,
    CompleteRequest,
    ProgressPublic,
    SaveProgressRequest,
    completion_payload,
    unlock_payload,
)
from app.services.activities import ActivityKind
from app.services.progression import ProgressionService

router = APIRouter(prefix="/submodules", tags=["submodules"])


@router.get("/{submodule_id}/access", response_model=AccessResponse)
def submodule_access(
    submodule_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    return asdict(service.check_access(user_id, ActivityKind.submodule, submodule_id))


@router.post("/{submodule_id}/start")
def start_submodule(
    submodule_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    record = service.start(user_id, ActivityKind.submodule, submodule_id)
    return {"ok": True, "progress": ProgressPublic.from_record(record).model_dump(mode="json")}


@router.put("/{submodule_id}/progress")
def save_submodule_progress(
    submodule_id: int,
    body: SaveProgressRequest,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    record = service.save(user_id, ActivityKind.submodule, submodule_id, body.response_data)
    return {"ok": True, "progress": ProgressPublic.from_record(record).model_dump(mode="json")}


@router.post("/{submodule_id}/complete")
def complete_submodule(
    submodule_id: int,
    body: CompleteRequest | None = None,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    response_data = body.response_data if body is not None else None
    return completion_payload(service.complete(user_id, ActivityKind.submodule, submodule_id, response_data))


@router.post("/{submodule_id}/unlocks/evaluate")
def evaluate_submodule_unlocks(
    submodule_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    return unlock_payload(service.evaluate_submodule_unlocks(user_id, submodule_id))
