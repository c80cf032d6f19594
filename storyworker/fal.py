"""
fal.ai queue API adapter for image generation.

Queue-based: submit → poll status → fetch result.
Status and result URLs use the base app id (owner/app, without subpath).
"""

import logging
from typing import Optional, Tuple

from pydantic import BaseModel, ValidationError

from . import config
from .errors import InvalidWebhook, ProviderRejected, ProviderUnavailable
from .providers import (
    GenerationKind,
    GenerationRequest,
    JobStatus,
    ProviderAdapter,
    ProviderName,
    ProviderStatus,
    Submission,
)

logger = logging.getLogger(__name__)

FAL_QUEUE_BASE = "https://queue.fal.run"
DEFAULT_IMAGE_MODEL = "fal-ai/luma-photon/flash"
NEGATIVE_PROMPT = "text, signature, watermark, blurry, low quality, deformed, multiple people, ugly"

FAL_STATES = {
    "IN_QUEUE": JobStatus.SUBMITTED,
    "QUEUED": JobStatus.SUBMITTED,
    "IN_PROGRESS": JobStatus.GENERATING,
    "COMPLETED": JobStatus.COMPLETED,
    "FAILED": JobStatus.FAILED,
}


# ── Wire schemas ─────────────────────────────────────────────────────────────

class FalImageInput(BaseModel):
    prompt: str
    aspect_ratio: Optional[str] = None
    negative_prompt: str = NEGATIVE_PROMPT


class FalQueueSubmit(BaseModel):
    request_id: str
    status_url: Optional[str] = None
    response_url: Optional[str] = None


class FalStatus(BaseModel):
    status: str


class FalImage(BaseModel):
    url: str


class FalImageResult(BaseModel):
    images: list[FalImage] = []


class FalWebhook(BaseModel):
    request_id: str
    status: str  # OK | ERROR
    payload: Optional[dict] = None
    error: Optional[str] = None


def base_app_id(model: str) -> str:
    """'fal-ai/luma-photon/flash' → 'fal-ai/luma-photon'."""
    parts = model.strip("/").split("/")
    return "/".join(parts[:2])


def _first_image_url(payload: Optional[dict]) -> Optional[str]:
    if not payload:
        return None
    try:
        result = FalImageResult.model_validate(payload)
    except ValidationError:
        return None
    return result.images[0].url if result.images else None


class FalImageAdapter(ProviderAdapter):
    name = ProviderName.FAL
    kind = GenerationKind.IMAGE
    api_provider = "fal_image"

    def __init__(self, api_key: str = "", client=None, base_url: str = FAL_QUEUE_BASE):
        super().__init__(api_key or config.FAL_KEY, client)
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict:
        return {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    def submit(self, request: GenerationRequest) -> Submission:
        model = request.model or DEFAULT_IMAGE_MODEL
        body = FalImageInput(prompt=request.prompt, aspect_ratio=request.aspect_ratio)
        params = {"fal_webhook": request.callback_url} if request.callback_url else None

        logger.info(f"fal.ai request to {model}: prompt={request.prompt[:80]}...")
        response = self._request(
            "POST",
            f"{self.base_url}/{model}",
            json=body.model_dump(exclude_none=True),
            params=params,
        )
        queued = self._decode(response, FalQueueSubmit)
        logger.info(f"fal.ai job queued: request_id={queued.request_id}")
        return Submission(
            external_request_id=queued.request_id,
            status=ProviderStatus(state=JobStatus.SUBMITTED),
            model=model,
        )

    def fetch_status(self, external_request_id: str, model: Optional[str] = None) -> ProviderStatus:
        app_id = base_app_id(model or DEFAULT_IMAGE_MODEL)
        request_url = f"{self.base_url}/{app_id}/requests/{external_request_id}"

        response = self._request("GET", f"{request_url}/status")
        raw = self._decode(response, FalStatus, error=ProviderUnavailable).status.upper()
        state = FAL_STATES.get(raw, JobStatus.SUBMITTED)

        if state != JobStatus.COMPLETED:
            return ProviderStatus(state=state)

        # COMPLETED only means the queue is done; the result may still be an error
        try:
            result = self._request("GET", request_url)
        except ProviderRejected as e:
            return ProviderStatus(state=JobStatus.FAILED, failure_reason=e.message)

        url = _first_image_url(self._decode(result, error=ProviderUnavailable))
        if not url:
            return ProviderStatus(
                state=JobStatus.FAILED,
                failure_reason="fal.ai request completed but no image was returned",
            )
        return ProviderStatus(state=JobStatus.COMPLETED, result_url=url)

    def parse_webhook(self, body: dict) -> Tuple[str, ProviderStatus]:
        try:
            hook = FalWebhook.model_validate(body)
        except ValidationError as e:
            raise InvalidWebhook(f"Invalid fal.ai webhook payload: {e.errors()[:2]}")

        if hook.status.upper() != "OK":
            reason = hook.error or "fal.ai generation failed"
            return hook.request_id, ProviderStatus(state=JobStatus.FAILED, failure_reason=reason)

        url = _first_image_url(hook.payload)
        if not url:
            return hook.request_id, ProviderStatus(
                state=JobStatus.FAILED,
                failure_reason="fal.ai webhook reported OK but no image was returned",
            )
        return hook.request_id, ProviderStatus(state=JobStatus.COMPLETED, result_url=url)
