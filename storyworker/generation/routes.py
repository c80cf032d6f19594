"""
FastAPI routes for generation, webhooks and story breakdown.

Generation Endpoints:
  POST /generations                      — Start a generation for an entity
  GET  /generations/{id}                 — Job record + media assets
  GET  /entities/{entity_type}/{id}      — Owner row (synchronizer refresh)

Webhook Endpoints:
  POST /webhooks/{provider}              — Provider callback (luma, fal)

Story Endpoints:
  POST /projects/{id}/storylines                     — Three storyline options
  POST /projects/{id}/storylines/{storyline_id}/scenes — Scene breakdown
  POST /scenes/{id}/shots                            — Shot breakdown

Handlers are sync (threadpool) because provider calls and the poll loop
block. StoryworkerError propagates to the app-level exception handler.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .. import config, errors, metrics
from ..errors import EntityNotFound, InvalidWebhook
from ..provider_factory import ProviderFactory
from ..store import JobStore
from .models import EntityType, GenerateRequest, GenerationKind, GenerationOutcome
from .orchestrator import GENERATION_FAILED, GenerationOrchestrator
from .story import StoryService
from .webhook import WebhookReceiver

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    cls.code: cls.http_status
    for cls in (
        errors.PreconditionFailed,
        errors.EntityNotFound,
        errors.ProviderRejected,
        errors.ProviderUnavailable,
        errors.GenerationTimeout,
    )
}
ERROR_STATUS[GENERATION_FAILED] = 502


# ═════════════════════════════════════════════════════════════════════════════
# Dependencies (overridden in tests via app.dependency_overrides)
# ═════════════════════════════════════════════════════════════════════════════

_store: Optional[JobStore] = None
_factory: Optional[ProviderFactory] = None


def get_store() -> JobStore:
    global _store
    if _store is None:
        _store = JobStore()
    return _store


def get_factory() -> ProviderFactory:
    global _factory
    if _factory is None:
        _factory = ProviderFactory()
    return _factory


def get_orchestrator(
    store: JobStore = Depends(get_store),
    factory: ProviderFactory = Depends(get_factory),
) -> GenerationOrchestrator:
    return GenerationOrchestrator(store, factory)


def get_receiver(
    store: JobStore = Depends(get_store),
    factory: ProviderFactory = Depends(get_factory),
) -> WebhookReceiver:
    return WebhookReceiver(store, factory)


def get_story_service(
    store: JobStore = Depends(get_store),
    factory: ProviderFactory = Depends(get_factory),
) -> StoryService:
    return StoryService(store, factory.for_kind(GenerationKind.TEXT))


def _failure_response(outcome: GenerationOutcome) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(outcome.error_code, 500),
        content={
            "success": False,
            "error": outcome.error,
            "error_code": outcome.error_code,
            "generation": outcome.model_dump(mode="json"),
        },
    )


# ═════════════════════════════════════════════════════════════════════════════
# Generation Router
# ═════════════════════════════════════════════════════════════════════════════

generation_router = APIRouter(tags=["generation"])


@generation_router.post("/generations")
def create_generation(
    request: GenerateRequest,
    background_tasks: BackgroundTasks,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """
    Start a generation. With wait=true the response carries the terminal
    state; with wait=false it returns 202 after submission and polling
    continues in the background (unless WEBHOOK_ONLY).
    """
    metrics.inc_counter("requests.generate")
    outcome = orchestrator.start_generation(
        request.entity_type, request.entity_id, request.kind, wait=request.wait
    )
    if not outcome.ok:
        return _failure_response(outcome)

    body = {"success": True, "generation": outcome.model_dump(mode="json")}
    if outcome.status is not None and not outcome.status.is_terminal:
        if not config.WEBHOOK_ONLY:
            background_tasks.add_task(orchestrator.resume_polling, outcome.generation_id)
        return JSONResponse(status_code=202, content=body, background=background_tasks)
    return body


@generation_router.get("/generations/{generation_id}")
def get_generation(generation_id: str, store: JobStore = Depends(get_store)):
    job = store.get_generation(generation_id)
    if job is None:
        raise EntityNotFound(f"generation {generation_id} not found")
    return {
        "success": True,
        "generation": job,
        "media_assets": store.list_media_assets(generation_id),
    }


@generation_router.get("/entities/{entity_type}/{entity_id}")
def get_entity(entity_type: EntityType, entity_id: str, store: JobStore = Depends(get_store)):
    row = store.get_row(entity_type.table, entity_id)
    if row is None:
        raise EntityNotFound(f"{entity_type.value} {entity_id} not found")
    return {"success": True, "entity": row}


# ═════════════════════════════════════════════════════════════════════════════
# Webhook Router — token-checked by AuthMiddleware
# ═════════════════════════════════════════════════════════════════════════════

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    receiver: WebhookReceiver = Depends(get_receiver),
):
    raw = await request.body()
    try:
        body = json.loads(raw or b"null")
    except ValueError:
        raise InvalidWebhook("Webhook body is not valid JSON")
    if not isinstance(body, dict):
        raise InvalidWebhook("Webhook body must be a JSON object")

    outcome = await run_in_threadpool(receiver.handle, provider, body)
    return {"success": True, **outcome.model_dump(mode="json")}


# ═════════════════════════════════════════════════════════════════════════════
# Story Router
# ═════════════════════════════════════════════════════════════════════════════

story_router = APIRouter(tags=["story"])


@story_router.post("/projects/{project_id}/storylines")
def create_storylines(project_id: str, service: StoryService = Depends(get_story_service)):
    storylines = service.generate_storylines(project_id)
    return {"success": True, "storylines": storylines}


@story_router.post("/projects/{project_id}/storylines/{storyline_id}/scenes")
def create_scenes(project_id: str, storyline_id: str, service: StoryService = Depends(get_story_service)):
    scenes = service.generate_scenes(project_id, storyline_id)
    return {"success": True, "scenes": scenes}


@story_router.post("/scenes/{scene_id}/shots")
def create_shots(scene_id: str, service: StoryService = Depends(get_story_service)):
    shots = service.generate_shots_for_scene(scene_id)
    return {"success": True, "shots": shots}
