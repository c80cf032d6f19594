"""
Reconciliation of an observed provider state into the job record store.

Shared by the poll loop and the webhook receiver. Both may observe the same
terminal state for the same job; whichever claims the generations row first
writes the result, the other is a no-op.

  claim      conditional update on generations (status still in progress,
             or failed/"timeout" when the new state is completed)
  asset      media_assets row, created only by the claimant
  owner      entity columns, updated only while the tracked job column
             still names this job
"""

import logging
import os
from urllib.parse import urlparse

from .. import metrics
from ..errors import TIMEOUT_REASON
from ..providers import IN_PROGRESS_STATUSES, STATUS_RANK, ProviderStatus
from ..store import JobStore
from .models import EntityType, GenerationKind, GenerationTarget, JobStatus
from .targets import resolve_target

logger = logging.getLogger(__name__)

ASSET_MIME_TYPES = {
    GenerationKind.IMAGE: ("png", "image/png"),
    GenerationKind.VIDEO: ("mp4", "video/mp4"),
}


def target_for_job(job: dict) -> GenerationTarget:
    return resolve_target(EntityType(job["owner_type"]), GenerationKind(job["kind"]))


def _asset_extension(url: str, default: str) -> str:
    ext = os.path.splitext(urlparse(url).path)[1].lstrip(".").lower()
    return ext if ext and len(ext) <= 4 else default


class Reconciler:
    def __init__(self, store: JobStore):
        self.store = store

    def apply(self, job: dict, status: ProviderStatus) -> bool:
        """
        Merge one observed provider state into the job and its owner.

        Returns True when this call changed the job row, False when the
        observation was stale or another path already recorded it.
        """
        if status.state == JobStatus.COMPLETED:
            if not status.result_ref:
                return self._fail(job, "Provider reported completion without a result")
            return self._complete(job, status.result_ref)
        if status.state == JobStatus.FAILED:
            return self._fail(job, status.failure_reason or "Provider reported failure")
        return self._advance(job, status.state)

    def fail(self, job: dict, reason: str) -> bool:
        return self._fail(job, reason)

    # ── Non-terminal ────────────────────────────────────────────────────

    def _advance(self, job: dict, state: JobStatus) -> bool:
        earlier = [s for s in IN_PROGRESS_STATUSES if STATUS_RANK[s] < STATUS_RANK[state]]
        if not earlier:
            return False
        claimed = self.store.transition_generation(job["id"], {"status": state.value}, earlier)
        if claimed is None:
            return False

        target = target_for_job(job)
        self.store.update_entity(
            target.table,
            job["owner_id"],
            {target.status_column: state.value},
            match={target.tracked_column: job["id"]},
            status_column=target.status_column,
            allowed_statuses=earlier,
        )
        logger.info(f"[gen {job['id']}] → {state.value}")
        return True

    # ── Terminal ────────────────────────────────────────────────────────

    def _complete(self, job: dict, result_ref: str) -> bool:
        claimed = self.store.transition_generation(
            job["id"],
            {
                "status": JobStatus.COMPLETED.value,
                "result_ref": result_ref,
                "failure_reason": None,
            },
            IN_PROGRESS_STATUSES,
            allow_timeout_upgrade=True,
        )
        if claimed is None:
            logger.info(f"[gen {job['id']}] completion already recorded, skipping")
            return False

        if job.get("status") == JobStatus.FAILED.value:
            logger.info(f"[gen {job['id']}] late completion after timeout, upgrading")

        kind = GenerationKind(job["kind"])
        if kind in ASSET_MIME_TYPES:
            asset = self._create_asset(job, kind, result_ref)
            self.store.touch_generation(job["id"], {"result_media_asset_id": asset["id"]})

        target = target_for_job(job)
        owner = self.store.update_entity(
            target.table,
            job["owner_id"],
            {
                target.status_column: JobStatus.COMPLETED.value,
                target.result_column: result_ref,
                target.failure_column: None,
            },
            match={target.tracked_column: job["id"]},
        )
        if owner is None:
            logger.info(
                f"[gen {job['id']}] {target.entity_type.value} {job['owner_id']} "
                f"tracks a newer job; owner left unchanged"
            )

        metrics.inc_counter("generations.completed")
        logger.info(f"[gen {job['id']}] ✅ completed: {result_ref[:120]}")
        return True

    def _fail(self, job: dict, reason: str) -> bool:
        claimed = self.store.transition_generation(
            job["id"],
            {
                "status": JobStatus.FAILED.value,
                "failure_reason": reason,
                "result_ref": None,
            },
            IN_PROGRESS_STATUSES,
        )
        if claimed is None:
            return False

        target = target_for_job(job)
        self.store.update_entity(
            target.table,
            job["owner_id"],
            {
                target.status_column: JobStatus.FAILED.value,
                target.failure_column: reason,
            },
            match={target.tracked_column: job["id"]},
        )

        metrics.inc_counter("generations.failed")
        if reason == TIMEOUT_REASON:
            metrics.inc_counter("generations.timeout")
        metrics.record_error("reconcile", "failed", reason, job["id"])
        logger.warning(f"[gen {job['id']}] ❌ failed: {reason}")
        return True

    def _create_asset(self, job: dict, kind: GenerationKind, url: str) -> dict:
        default_ext, mime_type = ASSET_MIME_TYPES[kind]
        ext = _asset_extension(url, default_ext)
        return self.store.insert_media_asset({
            "project_id": job.get("project_id"),
            "generation_id": job["id"],
            "cdn_url": url,
            "file_name": f"{job.get('api_provider') or kind.value}_{job.get('external_request_id') or job['id']}.{ext}",
            "mime_type": mime_type,
            "asset_type": kind.value,
            "purpose": "generation_result",
        })
