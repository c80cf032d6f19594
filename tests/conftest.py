import copy
from collections import deque
from typing import Optional

import pytest

from storyworker import metrics
from storyworker.errors import TIMEOUT_REASON
from storyworker.provider_factory import ProviderFactory
from storyworker.providers import (
    IN_PROGRESS_STATUSES,
    GenerationKind,
    GenerationRequest,
    JobStatus,
    ProviderAdapter,
    ProviderName,
    ProviderStatus,
    Submission,
)
from storyworker.generation.models import PollPolicy
from storyworker.generation.orchestrator import GenerationOrchestrator
from storyworker.generation.webhook import WebhookReceiver
from storyworker.store import new_id, now_iso


class InMemoryJobStore:
    """Dict-backed stand-in for JobStore with the same conditional-update rules."""

    def __init__(self):
        self.tables: dict[str, dict[str, dict]] = {}

    def _table(self, name: str) -> dict:
        return self.tables.setdefault(name, {})

    def seed(self, table: str, *rows: dict):
        for row in rows:
            self._table(table)[row["id"]] = dict(row)

    def rows(self, table: str) -> list[dict]:
        return [dict(r) for r in self._table(table).values()]

    # ── Generic rows ─────────────────────────────────────────────────────

    def get_row(self, table: str, row_id: str) -> Optional[dict]:
        row = self._table(table).get(row_id)
        return dict(row) if row else None

    def list_rows(self, table: str, order_by: Optional[str] = None, **filters) -> list[dict]:
        rows = [r for r in self.rows(table) if all(r.get(k) == v for k, v in filters.items())]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by))
        return rows

    def insert_rows(self, table: str, rows: list[dict]) -> list[dict]:
        saved = []
        for row in rows:
            row = {"id": new_id(), **copy.deepcopy(row)}
            self._table(table)[row["id"]] = row
            saved.append(dict(row))
        return saved

    def update_where(self, table: str, fields: dict, **filters) -> list[dict]:
        updated = []
        for row in self._table(table).values():
            if all(row.get(k) == v for k, v in filters.items()):
                row.update(fields)
                updated.append(dict(row))
        return updated

    def update_entity(self, table, entity_id, fields, match=None, status_column=None, allowed_statuses=None):
        row = self._table(table).get(entity_id)
        if row is None:
            return None
        for column, value in (match or {}).items():
            if row.get(column) != value:
                return None
        if status_column and allowed_statuses is not None:
            if row.get(status_column) not in [JobStatus(s).value for s in allowed_statuses]:
                return None
        row.update(fields)
        row["updated_at"] = now_iso()
        return dict(row)

    # ── Generations ──────────────────────────────────────────────────────

    def insert_generation(self, row: dict) -> dict:
        row = {"id": new_id(), "created_at": now_iso(), "updated_at": now_iso(), **row}
        self._table("generations")[row["id"]] = row
        return dict(row)

    def get_generation(self, generation_id: str) -> Optional[dict]:
        return self.get_row("generations", generation_id)

    def get_generation_by_request_id(self, external_request_id: str) -> Optional[dict]:
        matches = [r for r in self.rows("generations") if r.get("external_request_id") == external_request_id]
        return matches[-1] if matches else None

    def list_open_generations(self, owner_id: str, kind: str) -> list[dict]:
        open_values = [s.value for s in IN_PROGRESS_STATUSES]
        return [
            r for r in self.rows("generations")
            if r["owner_id"] == owner_id and r["kind"] == kind and r["status"] in open_values
        ]

    def transition_generation(self, generation_id, fields, from_statuses, allow_timeout_upgrade=False):
        row = self._table("generations").get(generation_id)
        if row is None:
            return None
        allowed = row["status"] in [JobStatus(s).value for s in from_statuses]
        if allow_timeout_upgrade and row["status"] == JobStatus.FAILED.value:
            allowed = allowed or row.get("failure_reason") == TIMEOUT_REASON
        if not allowed:
            return None
        row.update(fields)
        row["updated_at"] = now_iso()
        return dict(row)

    def touch_generation(self, generation_id: str, fields: dict) -> Optional[dict]:
        row = self._table("generations").get(generation_id)
        if row is None:
            return None
        row.update(fields)
        return dict(row)

    # ── Media assets ─────────────────────────────────────────────────────

    def insert_media_asset(self, row: dict) -> dict:
        row = {"id": new_id(), "created_at": now_iso(), **row}
        self._table("media_assets")[row["id"]] = row
        return dict(row)

    def list_media_assets(self, generation_id: str) -> list[dict]:
        return [r for r in self.rows("media_assets") if r["generation_id"] == generation_id]


class FakeAdapter(ProviderAdapter):
    """
    Scripted adapter. `submissions` and `statuses` are consumed in order;
    an entry may be a value, an exception instance (raised), or a callable
    (called, its return value used).
    """

    def __init__(self, kind: GenerationKind, name: ProviderName, api_provider: str):
        super().__init__("test-key")
        self.kind = kind
        self.name = name
        self.api_provider = api_provider
        self.submissions: deque = deque()
        self.statuses: deque = deque()
        self.requests: list[GenerationRequest] = []
        self.polled: list[str] = []

    def script(self, *statuses):
        self.statuses.extend(statuses)
        return self

    def submit(self, request: GenerationRequest) -> Submission:
        self.requests.append(request)
        item = self.submissions.popleft() if self.submissions else Submission(
            external_request_id=f"req-{len(self.requests)}",
            status=ProviderStatus(state=JobStatus.SUBMITTED),
        )
        return _resolve(item)

    def fetch_status(self, external_request_id: str, model: Optional[str] = None) -> ProviderStatus:
        self.polled.append(external_request_id)
        if not self.statuses:
            return ProviderStatus(state=JobStatus.GENERATING)
        return _resolve(self.statuses.popleft())

    def parse_webhook(self, body: dict):
        return body["request_id"], ProviderStatus(
            state=JobStatus(body["state"]),
            result_url=body.get("result_url"),
            failure_reason=body.get("failure_reason"),
        )


def _resolve(item):
    if isinstance(item, Exception):
        raise item
    if callable(item):
        return item()
    return item


def generating():
    return ProviderStatus(state=JobStatus.GENERATING)


def completed(url: str):
    return ProviderStatus(state=JobStatus.COMPLETED, result_url=url)


def failed(reason: str):
    return ProviderStatus(state=JobStatus.FAILED, failure_reason=reason)


def assert_job_invariants(store: InMemoryJobStore):
    for job in store.rows("generations"):
        assert (job.get("result_ref") is not None) == (job["status"] == JobStatus.COMPLETED.value), job
        assert (job.get("failure_reason") is not None) == (job["status"] == JobStatus.FAILED.value), job


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def store():
    store = InMemoryJobStore()
    store.seed("projects", {"id": "proj-1", "title": "Beach Day", "genre": "drama", "tone": "warm", "aspect_ratio": "16:9"})
    store.seed("scenes", {
        "id": "scene-1",
        "project_id": "proj-1",
        "scene_number": 1,
        "title": "Arrival",
        "description": "A cyclist arrives at an empty beach at dawn.",
        "location": "Beach",
    })
    store.seed(
        "shots",
        {
            "id": "shot-1",
            "project_id": "proj-1",
            "scene_id": "scene-1",
            "shot_number": 1,
            "shot_type": "wide",
            "prompt_idea": "Bicycle leaning on a dune",
            "visual_prompt": "red bicycle on a beach",
            "image_status": "pending",
        },
        {
            "id": "shot-2",
            "project_id": "proj-1",
            "scene_id": "scene-1",
            "shot_number": 2,
            "prompt_idea": "Waves at sunrise",
            "visual_prompt": None,
            "image_status": "pending",
        },
        {
            "id": "shot-3",
            "project_id": "proj-1",
            "scene_id": "scene-1",
            "shot_number": 3,
            "prompt_idea": "Cyclist rides away",
            "visual_prompt": "cyclist riding along the shoreline",
            "image_status": "completed",
            "image_url": "https://cdn/ride.png",
        },
    )
    store.seed("characters", {
        "id": "char-1",
        "project_id": "proj-1",
        "name": "Mara",
        "description": "A retired courier in her sixties with a sun-worn face.",
        "visual_prompt": "portrait of an older woman, weathered skin",
    })
    return store


@pytest.fixture
def image_adapter():
    return FakeAdapter(GenerationKind.IMAGE, ProviderName.LUMA, "luma_image")


@pytest.fixture
def video_adapter():
    return FakeAdapter(GenerationKind.VIDEO, ProviderName.LUMA, "luma_video")


@pytest.fixture
def text_adapter():
    return FakeAdapter(GenerationKind.TEXT, ProviderName.ANTHROPIC, "claude_text")


@pytest.fixture
def factory(image_adapter, video_adapter, text_adapter):
    return ProviderFactory(adapters={
        GenerationKind.IMAGE: image_adapter,
        GenerationKind.VIDEO: video_adapter,
        GenerationKind.TEXT: text_adapter,
    })


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def orchestrator(store, factory, sleeps):
    policy = PollPolicy(max_attempts=5, interval=0.5, backoff=1.0, max_interval=1.0)
    return GenerationOrchestrator(store, factory, policy=policy, sleep=sleeps.append)


@pytest.fixture
def receiver(store, factory):
    return WebhookReceiver(store, factory)
