"""
Provider adapter contract.

Every external generation API (Luma, fal.ai, Anthropic) is wrapped by a
ProviderAdapter exposing the same three calls:

  submit(request)                  → Submission        (one outbound call)
  fetch_status(request_id, model)  → ProviderStatus    (transient errors raise ProviderUnavailable)
  parse_webhook(body)              → (request_id, ProviderStatus)

Adapters never touch the job record store.
"""

from enum import Enum
from typing import Optional, Tuple

import httpx
from pydantic import BaseModel, ValidationError

from .errors import ProviderRejected, ProviderUnavailable

# Rate limits and request timeouts clear on their own; polling retries them
RETRYABLE_STATUS_CODES = {408, 429}


# ── Shared enums ─────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


IN_PROGRESS_STATUSES = [JobStatus.PENDING, JobStatus.SUBMITTED, JobStatus.GENERATING]

# Ordering used to refuse regressions (generating → submitted)
STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.SUBMITTED: 1,
    JobStatus.GENERATING: 2,
    JobStatus.COMPLETED: 3,
    JobStatus.FAILED: 3,
}


class GenerationKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    TEXT = "text"


class ProviderName(str, Enum):
    LUMA = "luma"
    FAL = "fal"
    ANTHROPIC = "anthropic"


# ── Request / status models ──────────────────────────────────────────────────

class GenerationRequest(BaseModel):
    """Provider-neutral input built by the orchestrator."""
    kind: GenerationKind
    prompt: str
    system_prompt: Optional[str] = None
    aspect_ratio: Optional[str] = None
    model: Optional[str] = None
    reference_url: Optional[str] = None
    max_tokens: int = 1024
    callback_url: Optional[str] = None


class ProviderStatus(BaseModel):
    state: JobStatus
    result_url: Optional[str] = None
    result_text: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def result_ref(self) -> Optional[str]:
        return self.result_url or self.result_text

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class Submission(BaseModel):
    external_request_id: str
    status: ProviderStatus
    model: Optional[str] = None


# ── Adapter base ─────────────────────────────────────────────────────────────

class ProviderAdapter:
    """Base class for provider adapters. Subclasses set name/api_provider."""

    name: ProviderName
    kind: GenerationKind
    api_provider: str = ""
    default_timeout = 30.0

    def __init__(self, api_key: str = "", client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self._client = client

    def submit(self, request: GenerationRequest) -> Submission:
        raise NotImplementedError

    def fetch_status(self, external_request_id: str, model: Optional[str] = None) -> ProviderStatus:
        raise NotImplementedError

    def parse_webhook(self, body: dict) -> Tuple[str, ProviderStatus]:
        raise NotImplementedError

    # ── HTTP helper ─────────────────────────────────────────────────────

    def _headers(self) -> dict:
        return {"Content-Type": "application/json"}

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Make exactly one HTTP call and classify failures.

        4xx → ProviderRejected (the same payload will fail again)
        5xx / 408 / 429 / transport errors → ProviderUnavailable
        """
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            if self._client is not None:
                response = self._client.request(method, url, headers=headers, **kwargs)
            else:
                with httpx.Client(timeout=self.default_timeout) as client:
                    response = client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"{self.name.value} request error: {e}")

        if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
            raise ProviderUnavailable(
                f"{self.name.value} {response.status_code}: {response.text[:300]}"
            )
        if response.status_code >= 400:
            raise ProviderRejected(
                f"{self.name.value} {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )
        return response

    def _decode(self, response: httpx.Response, schema=None, error=ProviderRejected):
        """
        Read a 2xx body as JSON, optionally validated against `schema`.

        A body that is not JSON, or not the expected shape, raises `error`:
        ProviderRejected on submit, ProviderUnavailable on status reads.
        """
        try:
            data = response.json()
            return schema.model_validate(data) if schema is not None else data
        except (ValueError, ValidationError) as e:
            raise error(
                f"{self.name.value} {response.status_code}: unreadable response "
                f"({type(e).__name__}): {response.text[:200]}"
            )
