"""
Job record store — Supabase tables behind a small repository.

Tables: projects, storylines, scenes, shots, characters, generations, media_assets.

Every write is a single-row (or single-statement) update keyed by id.
Conditional updates (extra equality / status filters) are how the
reconciliation rule claims a transition without an application lock: the
row is only changed if it still matches, and an empty result means another
path got there first.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import uuid4

from supabase import Client

from . import config
from .errors import TIMEOUT_REASON
from .providers import IN_PROGRESS_STATUSES, JobStatus

logger = logging.getLogger(__name__)

GENERATIONS = "generations"
MEDIA_ASSETS = "media_assets"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid4())


def _status_values(statuses: Iterable) -> list[str]:
    return [JobStatus(s).value for s in statuses]


class JobStore:
    """Supabase-backed repository for owner entities and generation jobs."""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def sb(self) -> Client:
        if self._client is None:
            self._client = config.get_supabase()
        return self._client

    # ── Generic rows ─────────────────────────────────────────────────────

    def get_row(self, table: str, row_id: str) -> Optional[dict]:
        result = self.sb.table(table).select("*").eq("id", row_id).limit(1).execute()
        return result.data[0] if result.data else None

    def list_rows(self, table: str, order_by: Optional[str] = None, **filters) -> list[dict]:
        query = self.sb.table(table).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        if order_by:
            query = query.order(order_by)
        return query.execute().data or []

    def insert_rows(self, table: str, rows: list[dict]) -> list[dict]:
        if not rows:
            return []
        result = self.sb.table(table).insert(rows).execute()
        return result.data or []

    def update_where(self, table: str, fields: dict, **filters) -> list[dict]:
        query = self.sb.table(table).update(fields)
        for column, value in filters.items():
            query = query.eq(column, value)
        return query.execute().data or []

    def update_entity(
        self,
        table: str,
        entity_id: str,
        fields: dict,
        match: Optional[dict] = None,
        status_column: Optional[str] = None,
        allowed_statuses: Optional[Iterable] = None,
    ) -> Optional[dict]:
        """
        Update one owner row. Returns the updated row, or None if the row
        no longer matches `match` / `allowed_statuses`.
        """
        query = self.sb.table(table).update({**fields, "updated_at": now_iso()}).eq("id", entity_id)
        for column, value in (match or {}).items():
            query = query.eq(column, value)
        if status_column and allowed_statuses is not None:
            query = query.in_(status_column, _status_values(allowed_statuses))
        result = query.execute()
        return result.data[0] if result.data else None

    # ── Generations ──────────────────────────────────────────────────────

    def insert_generation(self, row: dict) -> dict:
        row = {"id": new_id(), "created_at": now_iso(), "updated_at": now_iso(), **row}
        result = self.sb.table(GENERATIONS).insert(row).execute()
        return result.data[0] if result.data else row

    def get_generation(self, generation_id: str) -> Optional[dict]:
        return self.get_row(GENERATIONS, generation_id)

    def get_generation_by_request_id(self, external_request_id: str) -> Optional[dict]:
        result = (
            self.sb.table(GENERATIONS)
            .select("*")
            .eq("external_request_id", external_request_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def list_open_generations(self, owner_id: str, kind: str) -> list[dict]:
        result = (
            self.sb.table(GENERATIONS)
            .select("*")
            .eq("owner_id", owner_id)
            .eq("kind", kind)
            .in_("status", _status_values(IN_PROGRESS_STATUSES))
            .execute()
        )
        return result.data or []

    def transition_generation(
        self,
        generation_id: str,
        fields: dict,
        from_statuses: Iterable,
        allow_timeout_upgrade: bool = False,
    ) -> Optional[dict]:
        """
        Conditionally move a generation to a new state.

        The row is only updated while its status is one of `from_statuses`
        (or, with allow_timeout_upgrade, failed with reason "timeout").
        Returns the updated row or None when the claim was lost.
        """
        statuses = ",".join(_status_values(from_statuses))
        query = self.sb.table(GENERATIONS).update({**fields, "updated_at": now_iso()}).eq("id", generation_id)
        if allow_timeout_upgrade:
            query = query.or_(
                f"status.in.({statuses}),"
                f"and(status.eq.{JobStatus.FAILED.value},failure_reason.eq.{TIMEOUT_REASON})"
            )
        else:
            query = query.in_("status", _status_values(from_statuses))
        result = query.execute()
        return result.data[0] if result.data else None

    def touch_generation(self, generation_id: str, fields: dict) -> Optional[dict]:
        """Unconditional bookkeeping update (callback timestamps, external ids)."""
        result = (
            self.sb.table(GENERATIONS)
            .update({**fields, "updated_at": now_iso()})
            .eq("id", generation_id)
            .execute()
        )
        return result.data[0] if result.data else None

    # ── Media assets ─────────────────────────────────────────────────────

    def insert_media_asset(self, row: dict) -> dict:
        row = {"id": new_id(), "created_at": now_iso(), **row}
        result = self.sb.table(MEDIA_ASSETS).insert(row).execute()
        logger.info(f"Media asset {row['id']} created for generation {row.get('generation_id')}")
        return result.data[0] if result.data else row

    def list_media_assets(self, generation_id: str) -> list[dict]:
        result = self.sb.table(MEDIA_ASSETS).select("*").eq("generation_id", generation_id).execute()
        return result.data or []
