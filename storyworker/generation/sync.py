"""
Client-side synchronizer for one entity view.

Triggers generation over the worker's HTTP API, shows an optimistic
"generating" state, and converges on Supabase Realtime row updates. While a
request started from this view is in flight, row notifications are ignored
so a stale notification cannot clobber the optimistic state; the view
refreshes from the server once the request returns.

    api = GenerationApiClient("https://worker.example.com", token)
    feed = RowChangeFeed(await acreate_client(url, anon_key))
    view = GenerationSynchronizer(api, feed, EntityType.SHOT, shot_id)
    await view.start()
    await view.request_generation(GenerationKind.IMAGE)
    ...
    await view.reset()
"""

import logging
from typing import Any, Callable, Optional

import httpx
from pydantic import BaseModel, Field
from supabase import AsyncClient

from .models import EntityType, GenerationKind, JobStatus
from .targets import resolve_target

logger = logging.getLogger(__name__)


def extract_record(payload: Any) -> Optional[dict]:
    """Post-update row image from a realtime postgres_changes payload."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data", payload)
    record = data.get("record") or data.get("new") or payload.get("new")
    return record if isinstance(record, dict) else None


# ── HTTP trigger ─────────────────────────────────────────────────────────────

class GenerationApiClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 300.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}

    async def generate(self, entity_type: EntityType, entity_id: str, kind: GenerationKind, wait: bool = True) -> dict:
        response = await self._client.post(
            f"{self.base_url}/generations",
            headers=self._headers(),
            json={
                "entity_type": EntityType(entity_type).value,
                "entity_id": entity_id,
                "kind": GenerationKind(kind).value,
                "wait": wait,
            },
        )
        if response.status_code == 401:
            response.raise_for_status()
        # Error envelopes are JSON; anything else is a proxy or crash page
        try:
            return response.json()
        except ValueError:
            response.raise_for_status()
            raise httpx.DecodingError(
                f"Non-JSON response from {response.url}: {response.text[:200]}",
                request=response.request,
            )

    async def get_entity(self, entity_type: EntityType, entity_id: str) -> dict:
        response = await self._client.get(
            f"{self.base_url}/entities/{EntityType(entity_type).value}/{entity_id}",
            headers=self._headers(),
        )
        response.raise_for_status()
        return response.json()["entity"]

    async def aclose(self):
        await self._client.aclose()


# ── Realtime feed ────────────────────────────────────────────────────────────

class RowChangeFeed:
    """UPDATE notifications for a single row via Supabase Realtime."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def subscribe(self, table: str, row_id: str, callback: Callable[[dict], None]):
        channel = self.client.channel(f"{table}-{row_id}-updates")
        channel.on_postgres_changes(
            "UPDATE",
            schema="public",
            table=table,
            filter=f"id=eq.{row_id}",
            callback=callback,
        )
        await channel.subscribe()
        logger.info(f"Subscribed to {table} row {row_id}")
        return channel

    async def unsubscribe(self, channel):
        await self.client.remove_channel(channel)


# ── View state ───────────────────────────────────────────────────────────────

class EntitySyncState(BaseModel):
    row: dict = Field(default_factory=dict)
    in_flight: set[GenerationKind] = Field(default_factory=set)
    last_error: Optional[str] = None

    @property
    def generating(self) -> bool:
        return bool(self.in_flight)


class GenerationSynchronizer:
    def __init__(self, api: GenerationApiClient, feed: RowChangeFeed, entity_type: EntityType, entity_id: str):
        self.api = api
        self.feed = feed
        self.entity_type = EntityType(entity_type)
        self.entity_id = entity_id
        self.state = EntitySyncState()
        self._channel = None

    async def start(self):
        await self.refresh()
        self._channel = await self.feed.subscribe(self.entity_type.table, self.entity_id, self._on_payload)

    async def refresh(self):
        self.state.row = await self.api.get_entity(self.entity_type, self.entity_id)

    async def request_generation(self, kind: GenerationKind, wait: bool = True) -> dict:
        kind = GenerationKind(kind)
        target = resolve_target(self.entity_type, kind)

        self.state.row = {**self.state.row, target.status_column: JobStatus.GENERATING.value}
        self.state.in_flight.add(kind)
        self.state.last_error = None
        try:
            result = await self.api.generate(self.entity_type, self.entity_id, kind, wait=wait)
        except httpx.HTTPError as e:
            self.state.last_error = str(e)
            raise
        finally:
            self.state.in_flight.discard(kind)

        if not result.get("success"):
            self.state.last_error = result.get("error") or "Generation failed"
        await self.refresh()
        return result

    def on_row_change(self, row: dict) -> bool:
        """Apply a server row image; returns False when it was ignored."""
        if self.state.generating:
            logger.debug(f"[{self.entity_type.value} {self.entity_id}] ignoring update while request in flight")
            return False
        self.state.row = dict(row)
        return True

    def _on_payload(self, payload: dict):
        record = extract_record(payload)
        if record is not None:
            self.on_row_change(record)

    async def reset(self):
        """Tear down the subscription and clear local state. Server jobs keep running."""
        if self._channel is not None:
            await self.feed.unsubscribe(self._channel)
            self._channel = None
        self.state = EntitySyncState()
