import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import config, metrics
from .auth_middleware import AuthMiddleware
from .errors import StoryworkerError
from .generation.routes import generation_router, story_router, webhook_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Storyboard worker starting ({config.ENVIRONMENT}, image provider={config.IMAGE_PROVIDER}, "
        f"webhooks={'on' if config.PUBLIC_BASE_URL else 'off'}, webhook_only={config.WEBHOOK_ONLY})"
    )
    yield
    logger.info("Storyboard worker shutting down...")


app = FastAPI(title="storyworker", lifespan=lifespan)
app.add_middleware(AuthMiddleware)

app.include_router(generation_router)
app.include_router(webhook_router)
app.include_router(story_router)


@app.exception_handler(StoryworkerError)
async def storyworker_error_handler(request: Request, exc: StoryworkerError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        metrics.record_error(request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content={"success": False, "error": exc.message, "error_code": exc.code},
    )


@app.middleware("http")
async def record_request_latency(request: Request, call_next):
    started = time.time()
    response = await call_next(request)
    metrics.record_latency(f"{request.method} {request.url.path}", (time.time() - started) * 1000)
    return response


@app.get("/health")
def health_check():
    """Verify the worker is running and which integrations are configured."""
    return {
        "status": "ok",
        "environment": config.ENVIRONMENT,
        "supabase_configured": bool(config.SUPABASE_URL and config.SUPABASE_SERVICE_ROLE_KEY),
        "luma_api_key_set": bool(config.LUMA_API_KEY),
        "fal_key_set": bool(config.FAL_KEY),
        "anthropic_api_key_set": bool(config.ANTHROPIC_API_KEY),
        "image_provider": config.IMAGE_PROVIDER,
        "webhooks_enabled": bool(config.PUBLIC_BASE_URL),
    }


@app.get("/metrics")
def metrics_endpoint():
    return metrics.get_snapshot()


if __name__ == "__main__":
    uvicorn.run("storyworker.main:app", host="0.0.0.0", port=config.PORT, reload=config.ENVIRONMENT == "development")
