from types import SimpleNamespace

import pytest

from storyworker import config
from storyworker.providers import IN_PROGRESS_STATUSES, JobStatus
from storyworker.store import JobStore


class RecordingQuery:
    """Chainable stand-in for a PostgREST request builder; records every call."""

    def __init__(self, client, table):
        self.client = client
        self.calls = [("table", table)]
        client.queries.append(self)

    def __getattr__(self, method):
        def record(*args, **kwargs):
            self.calls.append((method, *args, *sorted(kwargs.items())))
            return self
        return record

    def execute(self):
        return SimpleNamespace(data=self.client.results.pop(0) if self.client.results else [])


class RecordingClient:
    def __init__(self, *results):
        self.results = list(results)
        self.queries = []

    def table(self, name):
        return RecordingQuery(self, name)

    @property
    def last(self):
        return self.queries[-1].calls


def without_timestamps(calls):
    """Drop the generated updated_at so update payloads compare exactly."""
    cleaned = []
    for call in calls:
        if call[0] == "update":
            assert "updated_at" in call[1]
            call = ("update", {k: v for k, v in call[1].items() if k != "updated_at"})
        cleaned.append(call)
    return cleaned


IN_PROGRESS = ["pending", "submitted", "generating"]


def test_claim_filters_on_in_progress_statuses():
    client = RecordingClient([{"id": "gen-1", "status": "completed"}])

    row = JobStore(client).transition_generation(
        "gen-1", {"status": "completed", "result_ref": "https://cdn/x.png"}, IN_PROGRESS_STATUSES
    )

    assert row == {"id": "gen-1", "status": "completed"}
    assert without_timestamps(client.last) == [
        ("table", "generations"),
        ("update", {"status": "completed", "result_ref": "https://cdn/x.png"}),
        ("eq", "id", "gen-1"),
        ("in_", "status", IN_PROGRESS),
    ]


def test_lost_claim_returns_none():
    client = RecordingClient([])

    assert JobStore(client).transition_generation("gen-1", {"status": "failed"}, IN_PROGRESS_STATUSES) is None


def test_completion_claim_may_upgrade_a_timeout():
    client = RecordingClient([{"id": "gen-1"}])

    JobStore(client).transition_generation(
        "gen-1", {"status": "completed"}, IN_PROGRESS_STATUSES, allow_timeout_upgrade=True
    )

    assert without_timestamps(client.last) == [
        ("table", "generations"),
        ("update", {"status": "completed"}),
        ("eq", "id", "gen-1"),
        ("or_", "status.in.(pending,submitted,generating),and(status.eq.failed,failure_reason.eq.timeout)"),
    ]


def test_forward_only_claim_accepts_enum_statuses():
    client = RecordingClient([{"id": "gen-1"}])

    JobStore(client).transition_generation(
        "gen-1", {"status": "generating"}, [JobStatus.PENDING, JobStatus.SUBMITTED]
    )

    assert client.last[-1] == ("in_", "status", ["pending", "submitted"])


def test_owner_update_guarded_by_tracked_job_and_status():
    client = RecordingClient([])

    row = JobStore(client).update_entity(
        "shots",
        "shot-1",
        {"image_status": "generating"},
        match={"image_generation_id": "gen-1"},
        status_column="image_status",
        allowed_statuses=[JobStatus.PENDING, JobStatus.SUBMITTED],
    )

    assert row is None
    assert without_timestamps(client.last) == [
        ("table", "shots"),
        ("update", {"image_status": "generating"}),
        ("eq", "id", "shot-1"),
        ("eq", "image_generation_id", "gen-1"),
        ("in_", "image_status", ["pending", "submitted"]),
    ]


def test_unguarded_owner_update_filters_only_on_id():
    client = RecordingClient([{"id": "shot-1", "image_status": "submitted"}])

    row = JobStore(client).update_entity("shots", "shot-1", {"image_status": "submitted"})

    assert row["image_status"] == "submitted"
    assert without_timestamps(client.last) == [
        ("table", "shots"),
        ("update", {"image_status": "submitted"}),
        ("eq", "id", "shot-1"),
    ]


def test_open_jobs_query():
    client = RecordingClient([{"id": "gen-1"}])

    assert JobStore(client).list_open_generations("shot-1", "image") == [{"id": "gen-1"}]
    assert client.last == [
        ("table", "generations"),
        ("select", "*"),
        ("eq", "owner_id", "shot-1"),
        ("eq", "kind", "image"),
        ("in_", "status", IN_PROGRESS),
    ]


def test_webhook_lookup_takes_newest_job_for_request_id():
    client = RecordingClient([{"id": "gen-2"}])

    assert JobStore(client).get_generation_by_request_id("abc123") == {"id": "gen-2"}
    assert client.last == [
        ("table", "generations"),
        ("select", "*"),
        ("eq", "external_request_id", "abc123"),
        ("order", "created_at", ("desc", True)),
        ("limit", 1),
    ]


def test_insert_generation_assigns_id_and_timestamps():
    client = RecordingClient([])

    row = JobStore(client).insert_generation({"owner_id": "shot-1", "status": "pending"})

    inserted = client.last[1][1]
    assert inserted["id"] == row["id"]
    assert inserted["created_at"] and inserted["updated_at"]
    assert inserted["status"] == "pending"


@pytest.mark.parametrize("data, expected", [([], None), ([{"id": "shot-1"}], {"id": "shot-1"})])
def test_get_row(data, expected):
    assert JobStore(RecordingClient(data)).get_row("shots", "shot-1") == expected


def test_client_is_created_lazily(monkeypatch):
    client = RecordingClient([{"id": "proj-1"}])
    created = []
    monkeypatch.setattr(config, "get_supabase", lambda: created.append(client) or client)

    store = JobStore()
    assert created == []

    store.get_row("projects", "proj-1")
    store.get_row("projects", "proj-1")

    assert created == [client]
