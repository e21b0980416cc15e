"""REST API routes for profile management, progress and the learning plan."""

from collections.abc import AsyncIterator

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from ..analysis.progress import build_progress_report
from ..hub import HubRegistry, LearnerHub
from ..sync.synchronizer import ProfileImportError

logger = structlog.get_logger()
router = APIRouter(prefix="/api")


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    age: int | None = Field(default=None, ge=0)
    country: str | None = None


class SettingsUpdate(BaseModel):
    spelling_auto_advance_seconds: float = Field(ge=0)


def get_registry(request: Request) -> HubRegistry:
    return request.app.state.registry


async def current_hub(
    x_user_id: str | None = Header(default=None),
    registry: HubRegistry = Depends(get_registry),
) -> AsyncIterator[LearnerHub]:
    """Signed-in hub for the identity in the X-User-Id header, held for one request."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not signed in")
    hub = await registry.acquire(x_user_id)
    if hub is None:
        raise HTTPException(status_code=503, detail="Could not load your learning data")
    try:
        yield hub
    finally:
        await registry.release(x_user_id)


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/profile")
async def get_profile(hub: LearnerHub = Depends(current_hub)) -> dict:
    return hub.sync.profile.to_document()


@router.put("/profile")
async def update_profile(update: ProfileUpdate, hub: LearnerHub = Depends(current_hub)) -> dict:
    profile = hub.sync.update_profile_fields(**update.model_dump())
    return profile.to_document()


@router.put("/settings")
async def update_settings(update: SettingsUpdate, hub: LearnerHub = Depends(current_hub)) -> dict:
    profile = hub.sync.update_settings(
        spelling_auto_advance_seconds=update.spelling_auto_advance_seconds
    )
    return profile.to_document()


@router.get("/profile/export")
async def export_profile(hub: LearnerHub = Depends(current_hub)) -> Response:
    """Download the whole learning profile as one JSON document."""
    filename = f"learning-profile-{hub.identity}.json"
    return Response(
        content=hub.sync.export_json(),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/profile/import")
async def import_profile(request: Request, hub: LearnerHub = Depends(current_hub)) -> dict:
    """Replace the learning profile with an exported document."""
    body = await request.body()
    try:
        profile = hub.sync.import_json(body.decode("utf-8", errors="replace"))
    except ProfileImportError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return profile.to_document()


@router.post("/profile/reset")
async def reset_profile(hub: LearnerHub = Depends(current_hub)) -> dict:
    if not await hub.sync.reset():
        raise HTTPException(status_code=502, detail="Failed to reset your data")
    return hub.sync.profile.to_document()


@router.get("/progress")
async def get_progress(hub: LearnerHub = Depends(current_hub)) -> dict:
    return build_progress_report(hub.sync.profile).model_dump(mode="json")


@router.post("/recommendations")
async def refresh_recommendations(hub: LearnerHub = Depends(current_hub)) -> dict:
    if not hub.generator.configured:
        raise HTTPException(status_code=503, detail="API key is not configured")
    if not await hub.coach.refresh_recommendations():
        raise HTTPException(status_code=502, detail="Failed to refresh recommendations")
    profile = hub.sync.profile
    return {
        "persona": profile.profile.persona.model_dump(mode="json", by_alias=True),
        "recommendations": profile.recommendations,
    }


@router.post("/plan")
async def generate_plan(hub: LearnerHub = Depends(current_hub)) -> list[dict]:
    if not hub.generator.configured:
        raise HTTPException(status_code=503, detail="API key is not configured")
    if not await hub.coach.generate_learning_plan():
        raise HTTPException(status_code=502, detail="Failed to generate a learning plan")
    return [t.model_dump(mode="json", by_alias=True) for t in hub.sync.profile.learning_plan]


@router.post("/plan/{task_id}/complete")
async def complete_plan_task(task_id: str, hub: LearnerHub = Depends(current_hub)) -> dict:
    if not any(t.id == task_id for t in hub.sync.profile.learning_plan):
        raise HTTPException(status_code=404, detail="Task not found")
    hub.coach.complete_task(task_id)
    return {"id": task_id, "completed": True}
