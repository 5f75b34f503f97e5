from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from app.core.security import get_current_user_id
from app.routers.deps import get_progression
from app.schemas.module import ModulePublic, ModulesOverviewResponse, SubmodulePublic, SubmodulesOverviewResponse
from app.schemas.progress import (
    AccessResponse,
    CompleteRequest,
    CompletionStats,
    ProgressPublic,
    SaveProgressRequest,
    completion_payload,
    unlock_payload,
)
from app.services.activities import ActivityKind
from app.services.progression import ProgressionService

router = APIRouter(prefix="/modules", tags=["modules"])


@router.get("", response_model=ModulesOverviewResponse)
def list_modules(
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    items = [
        {
            "module": ModulePublic.model_validate(v.activity),
            "progress": ProgressPublic.from_record(v.progress),
            "accessible": v.accessible,
        }
        for v in service.list_modules(user_id)
    ]
    return {"items": items}


@router.get("/stats", response_model=CompletionStats)
def module_stats(
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    return service.completion_stats(user_id)


@router.get("/{module_id}/access", response_model=AccessResponse)
def module_access(
    module_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    return asdict(service.check_access(user_id, ActivityKind.module, module_id))


@router.post("/{module_id}/start")
def start_module(
    module_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    record = service.start(user_id, ActivityKind.module, module_id)
    return {"ok": True, "progress": ProgressPublic.from_record(record).model_dump(mode="json")}


@router.put("/{module_id}/progress")
def save_module_progress(
    module_id: int,
    body: SaveProgressRequest,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    record = service.save(user_id, ActivityKind.module, module_id, body.response_data)
    return {"ok": True, "progress": ProgressPublic.from_record(record).model_dump(mode="json")}


@router.post("/{module_id}/complete")
def complete_module(
    module_id: int,
    body: CompleteRequest | None = None,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    response_data = body.response_data if body is not None else None
    return completion_payload(service.complete(user_id, ActivityKind.module, module_id, response_data))


@router.post("/{module_id}/unlocks/evaluate")
def evaluate_module_unlocks(
    module_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    return unlock_payload(service.evaluate_unlocks(user_id, module_id))


@router.get("/{module_id}/submodules", response_model=SubmodulesOverviewResponse)
def list_module_submodules(
    module_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    items = [
        {
            "submodule": SubmodulePublic.model_validate(v.activity),
            "progress": ProgressPublic.from_record(v.progress),
            "accessible": v.accessible,
        }
        for v in service.list_submodules(user_id, module_id)
    ]
    return {"module_id": module_id, "items": items}


@router.get("/{module_id}/submodules/stats")
def module_submodule_stats(
    module_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ProgressionService = Depends(get_progression),
):
    return service.submodule_completion_stats(user_id, module_id)
