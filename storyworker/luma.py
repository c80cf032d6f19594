import logging
from typing import Optional, Tuple

from pydantic import BaseModel, ValidationError

from . import config
from .errors import InvalidWebhook, ProviderUnavailable
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

LUMA_API_BASE = "https://api.lumalabs.ai/dream-machine/v1"

DEFAULT_IMAGE_MODEL = "photon-flash-1"
DEFAULT_VIDEO_MODEL = "ray-2"
DEFAULT_ASPECT_RATIO = "16:9"

# Luma state vocabulary → shared status enum
LUMA_STATES = {
    "queued": JobStatus.SUBMITTED,
    "pending": JobStatus.SUBMITTED,
    "dreaming": JobStatus.GENERATING,
    "processing": JobStatus.GENERATING,
    "started": JobStatus.GENERATING,
    "completed": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
}


# ── Wire schemas ─────────────────────────────────────────────────────────────

class LumaImagePayload(BaseModel):
    prompt: str
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    model: str = DEFAULT_IMAGE_MODEL
    callback_url: Optional[str] = None


class LumaKeyframe(BaseModel):
    type: str = "image"
    url: str


class LumaVideoPayload(BaseModel):
    prompt: str
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    model: str = DEFAULT_VIDEO_MODEL
    keyframes: Optional[dict[str, LumaKeyframe]] = None
    callback_url: Optional[str] = None


class LumaAssets(BaseModel):
    image: Optional[str] = None
    video: Optional[str] = None


class LumaOutput(BaseModel):
    images: list[str] = []
    videos: list[str] = []


class LumaGeneration(BaseModel):
    """Generation object returned by GET /generations/{id} and posted to callbacks."""
    id: str
    state: Optional[str] = None
    status: Optional[str] = None  # older callback payloads
    failure_reason: Optional[str] = None
    assets: Optional[LumaAssets] = None
    output: Optional[LumaOutput] = None
    model: Optional[str] = None


class LumaAdapter(ProviderAdapter):
    """Shared Luma Dream Machine plumbing; subclasses pick the asset type."""

    name = ProviderName.LUMA
    asset_field = "image"

    def __init__(self, api_key: str = "", client=None, base_url: str = LUMA_API_BASE):
        super().__init__(api_key or config.LUMA_API_KEY, client)
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "accept": "application/json",
        }

    def _generation_url(self) -> str:
        raise NotImplementedError

    def _payload(self, request: GenerationRequest) -> BaseModel:
        raise NotImplementedError

    def submit(self, request: GenerationRequest) -> Submission:
        payload = self._payload(request)
        url = self._generation_url()
        logger.info(
            f"Luma {self.asset_field} request: model={payload.model}, "
            f"aspect={payload.aspect_ratio}, prompt={request.prompt[:80]}..."
        )
        response = self._request("POST", url, json=payload.model_dump(exclude_none=True))
        generation = self._decode(response, LumaGeneration)
        logger.info(f"Luma job submitted: id={generation.id}, state={generation.state}")
        return Submission(
            external_request_id=generation.id,
            status=self._to_status(generation),
            model=payload.model,
        )

    def fetch_status(self, external_request_id: str, model: Optional[str] = None) -> ProviderStatus:
        response = self._request("GET", f"{self.base_url}/generations/{external_request_id}")
        generation = self._decode(response, LumaGeneration, error=ProviderUnavailable)
        return self._to_status(generation)

    def parse_webhook(self, body: dict) -> Tuple[str, ProviderStatus]:
        try:
            generation = LumaGeneration.model_validate(body)
        except ValidationError as e:
            raise InvalidWebhook(f"Invalid Luma webhook payload: {e.errors()[:2]}")
        if not (generation.state or generation.status):
            raise InvalidWebhook("Luma webhook payload has no state")
        return generation.id, self._to_status(generation)

    def _to_status(self, generation: LumaGeneration) -> ProviderStatus:
        raw = (generation.state or generation.status or "").lower()
        state = LUMA_STATES.get(raw)
        if state is None:
            logger.warning(f"Unexpected Luma state '{raw}' for {generation.id}")
            state = JobStatus.SUBMITTED

        if state == JobStatus.FAILED:
            return ProviderStatus(state=state, failure_reason=generation.failure_reason or "Unknown error")

        if state == JobStatus.COMPLETED:
            url = self._asset_url(generation)
            if not url:
                return ProviderStatus(
                    state=JobStatus.FAILED,
                    failure_reason=f"Luma generation completed but no {self.asset_field} asset found",
                )
            return ProviderStatus(state=state, result_url=url)

        return ProviderStatus(state=state)

    def _asset_url(self, generation: LumaGeneration) -> Optional[str]:
        if generation.assets is not None:
            url = getattr(generation.assets, self.asset_field)
            if url:
                return url
        if generation.output is not None:
            urls = generation.output.images if self.asset_field == "image" else generation.output.videos
            if urls:
                return urls[0]
        return None


class LumaImageAdapter(LumaAdapter):
    kind = GenerationKind.IMAGE
    api_provider = "luma_image"
    asset_field = "image"

    def _generation_url(self) -> str:
        return f"{self.base_url}/generations/image"

    def _payload(self, request: GenerationRequest) -> LumaImagePayload:
        return LumaImagePayload(
            prompt=request.prompt,
            aspect_ratio=request.aspect_ratio or DEFAULT_ASPECT_RATIO,
            model=request.model or DEFAULT_IMAGE_MODEL,
            callback_url=request.callback_url,
        )


class LumaVideoAdapter(LumaAdapter):
    kind = GenerationKind.VIDEO
    api_provider = "luma_video"
    asset_field = "video"

    def _generation_url(self) -> str:
        return f"{self.base_url}/generations"

    def _payload(self, request: GenerationRequest) -> LumaVideoPayload:
        keyframes = None
        if request.reference_url:
            keyframes = {"frame0": LumaKeyframe(url=request.reference_url)}
        return LumaVideoPayload(
            prompt=request.prompt,
            aspect_ratio=request.aspect_ratio or DEFAULT_ASPECT_RATIO,
            model=request.model or DEFAULT_VIDEO_MODEL,
            keyframes=keyframes,
            callback_url=request.callback_url,
        )
