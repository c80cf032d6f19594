"""
Pydantic models and enums for the generation pipeline.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..providers import GenerationKind, JobStatus, ProviderName

__all__ = [
    "EntityType",
    "GenerationKind",
    "JobStatus",
    "ProviderName",
    "GenerationTarget",
    "PollPolicy",
    "GenerateRequest",
    "GenerationOutcome",
    "WebhookOutcome",
    "StorylineOption",
    "SceneDefinition",
    "ShotDefinition",
]


# ── Owner entities ───────────────────────────────────────────────────────────

class EntityType(str, Enum):
    SHOT = "shot"
    CHARACTER = "character"
    SCENE = "scene"

    @property
    def table(self) -> str:
        return f"{self.value}s"


class GenerationTarget(BaseModel):
    """
    Which columns on an owner row mirror one kind of job.

    tracked_column holds the generations.id of the owner's current job;
    terminal writes from any other job are discarded.
    """
    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    kind: GenerationKind
    status_column: str
    result_column: str
    tracked_column: str
    failure_column: str
    required_column: str
    required_status: Optional[tuple[str, str]] = None  # (column, value)

    @property
    def table(self) -> str:
        return self.entity_type.table


# ── Polling ──────────────────────────────────────────────────────────────────

class PollPolicy(BaseModel):
    max_attempts: int = 30
    interval: float = 3.0
    backoff: float = 1.0
    max_interval: float = 10.0

    def delays(self):
        delay = self.interval
        for _ in range(self.max_attempts):
            yield delay
            delay = min(delay * self.backoff, self.max_interval)


# ── API Request / Response Models ────────────────────────────────────────────

class GenerateRequest(BaseModel):
    entity_type: EntityType
    entity_id: str
    kind: GenerationKind
    wait: bool = Field(True, description="Poll until terminal before responding")


class GenerationOutcome(BaseModel):
    """Structured result of an orchestrator entry point. Never raised."""
    ok: bool
    entity_type: EntityType
    entity_id: str
    kind: GenerationKind
    status: Optional[JobStatus] = None
    generation_id: Optional[str] = None
    external_request_id: Optional[str] = None
    result_ref: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class WebhookOutcome(BaseModel):
    generation_id: str
    external_request_id: str
    status: JobStatus
    applied: bool  # False when the delivery was a duplicate or stale


# ── Story breakdown ──────────────────────────────────────────────────────────

class StorylineOption(BaseModel):
    title: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    full_story: str = ""


class SceneDefinition(BaseModel):
    scene_number: int
    title: Optional[str] = None
    description: str = ""
    location: Optional[str] = None
    lighting: Optional[str] = None
    weather: Optional[str] = None


class ShotDefinition(BaseModel):
    shot_number: int
    shot_type: str = "medium"
    prompt_idea: str
    dialogue: Optional[str] = None
    sound_effects: Optional[str] = None
