"""
GenerationOrchestrator — drives one owner entity's job from request to a
terminal state.

  1. resolve target + load owner          (EntityNotFound / PreconditionFailed, nothing written)
  2. supersede open jobs for owner/kind   (failed, "superseded")
  3. insert generations row               (pending)
  4. optimistic owner write               (submitted, result/failure cleared, tracked id set)
  5. provider submit                      (rejection → failed)
  6. record external_request_id           (submitted)
  7. reconcile now if already terminal, else poll (wait=True) or return

Polling and webhook delivery may both run for the same job; they meet in
Reconciler.apply.
"""

import logging
import time
from typing import Callable, Optional

from .. import config, metrics
from ..errors import (
    SUPERSEDED_REASON,
    TIMEOUT_REASON,
    EntityNotFound,
    GenerationTimeout,
    ProviderRejected,
    ProviderUnavailable,
    StoryworkerError,
)
from ..provider_factory import ProviderFactory
from ..providers import IN_PROGRESS_STATUSES, GenerationRequest, ProviderAdapter
from ..store import JobStore
from . import prompts
from .models import (
    EntityType,
    GenerationKind,
    GenerationOutcome,
    GenerationTarget,
    JobStatus,
    PollPolicy,
)
from .reconcile import Reconciler
from .targets import check_precondition, resolve_target

logger = logging.getLogger(__name__)

DEFAULT_ASPECT_RATIO = "16:9"
CHARACTER_ASPECT_RATIO = "3:4"
TEXT_MAX_TOKENS = 500

GENERATION_FAILED = "generation_failed"


def default_policy() -> PollPolicy:
    return PollPolicy(
        max_attempts=config.POLL_MAX_ATTEMPTS,
        interval=config.POLL_INTERVAL_SECONDS,
        max_interval=config.POLL_MAX_INTERVAL_SECONDS,
    )


class GenerationOrchestrator:
    """
    Usage:
        orchestrator = GenerationOrchestrator(JobStore(), ProviderFactory())
        outcome = orchestrator.start_generation(EntityType.SHOT, shot_id, GenerationKind.IMAGE)

    `sleep` is injected so tests can run the poll loop without waiting.
    """

    def __init__(
        self,
        store: JobStore,
        factory: ProviderFactory,
        policy: Optional[PollPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.factory = factory
        self.policy = policy or default_policy()
        self.sleep = sleep
        self.reconciler = Reconciler(store)

    # ── Entry point ─────────────────────────────────────────────────────

    def start_generation(
        self,
        entity_type: EntityType,
        entity_id: str,
        kind: GenerationKind,
        wait: bool = True,
    ) -> GenerationOutcome:
        entity_type = EntityType(entity_type)
        kind = GenerationKind(kind)
        outcome = GenerationOutcome(ok=False, entity_type=entity_type, entity_id=entity_id, kind=kind)
        metrics.inc_counter("generations.requested")
        started = time.time()

        try:
            target = resolve_target(entity_type, kind)
            row = self.store.get_row(target.table, entity_id)
            if row is None:
                raise EntityNotFound(f"{entity_type.value} {entity_id} not found")
            check_precondition(target, row)
            adapter = self.factory.for_kind(kind)
            request = self.build_request(target, row, adapter)
        except StoryworkerError as e:
            logger.info(f"[{entity_type.value} {entity_id}] {kind.value} rejected: {e.message}")
            return outcome.model_copy(update={"error": e.message, "error_code": e.code})

        self._supersede_open_jobs(entity_id, kind)
        job = self._open_job(target, row, adapter, request)
        outcome.generation_id = job["id"]
        metrics.inc_counter("generations.started")

        try:
            submission = adapter.submit(request)
        except (ProviderRejected, ProviderUnavailable) as e:
            self.reconciler.fail(job, e.message)
            metrics.record_error("submit", e.code, e.message, job["id"])
            return outcome.model_copy(update={
                "status": JobStatus.FAILED,
                "error": e.message,
                "error_code": e.code,
            })

        job = self.store.transition_generation(
            job["id"],
            {
                "status": JobStatus.SUBMITTED.value,
                "external_request_id": submission.external_request_id,
                "model": submission.model or request.model,
            },
            [JobStatus.PENDING],
        ) or self.store.get_generation(job["id"])
        logger.info(
            f"[gen {job['id']}] submitted to {adapter.api_provider} "
            f"(request {submission.external_request_id})"
        )

        if submission.status.is_terminal:
            self.reconciler.apply(job, submission.status)
            job = self.store.get_generation(job["id"])
        elif wait:
            job = self.poll_until_terminal(job, adapter)

        metrics.record_latency(f"generate.{kind.value}", (time.time() - started) * 1000)
        return self.outcome_for(job, outcome)

    # ── Poll loop ───────────────────────────────────────────────────────

    def poll_until_terminal(self, job: dict, adapter: Optional[ProviderAdapter] = None) -> dict:
        """
        Poll the provider until the job is terminal or the attempt budget
        is spent. Returns the final generations row.
        """
        generation_id = job["id"]
        if adapter is None:
            try:
                adapter = self.factory.for_api_provider(job["api_provider"])
            except KeyError:
                logger.error(f"[gen {generation_id}] no adapter for api_provider {job['api_provider']!r}")
                self.reconciler.fail(job, f"No provider adapter for {job['api_provider']}")
                return self.store.get_generation(generation_id)

        for attempt, delay in enumerate(self.policy.delays(), start=1):
            self.sleep(delay)
            metrics.inc_counter("poll.attempts")

            current = self.store.get_generation(generation_id) or job
            if JobStatus(current["status"]).is_terminal:
                logger.info(f"[gen {generation_id}] already {current['status']}, stopping poll")
                return current

            try:
                status = adapter.fetch_status(current["external_request_id"], current.get("model"))
            except ProviderUnavailable as e:
                metrics.inc_counter("poll.unavailable")
                logger.warning(f"[gen {generation_id}] poll {attempt}/{self.policy.max_attempts}: {e.message}")
                continue
            except ProviderRejected as e:
                self.reconciler.fail(current, e.message)
                return self.store.get_generation(generation_id)

            logger.info(f"[gen {generation_id}] poll {attempt}/{self.policy.max_attempts}: {status.state.value}")
            self.reconciler.apply(current, status)
            if status.is_terminal:
                return self.store.get_generation(generation_id)

        logger.warning(f"[gen {generation_id}] ⏰ gave up after {self.policy.max_attempts} attempts")
        self.reconciler.fail(self.store.get_generation(generation_id) or job, TIMEOUT_REASON)
        return self.store.get_generation(generation_id)

    def resume_polling(self, generation_id: str) -> Optional[dict]:
        """Background-task entry: poll a job that was submitted with wait=False."""
        job = self.store.get_generation(generation_id)
        if job is None or JobStatus(job["status"]).is_terminal:
            return job
        try:
            return self.poll_until_terminal(job)
        except Exception as e:
            logger.error(f"[gen {generation_id}] background poll crashed: {e}", exc_info=True)
            raise

    # ── Request building ────────────────────────────────────────────────

    def build_request(self, target: GenerationTarget, row: dict, adapter: ProviderAdapter) -> GenerationRequest:
        project = self.store.get_row("projects", row["project_id"]) if row.get("project_id") else None
        kind = target.kind
        callback_url = None if kind == GenerationKind.TEXT else config.webhook_url(adapter.name.value)

        if kind == GenerationKind.TEXT:
            system_prompt, user_prompt = self._text_prompts(target.entity_type, row, project)
            return GenerationRequest(
                kind=kind,
                prompt=user_prompt,
                system_prompt=system_prompt,
                max_tokens=TEXT_MAX_TOKENS,
            )

        if target.entity_type == EntityType.CHARACTER:
            aspect_ratio = CHARACTER_ASPECT_RATIO
        else:
            aspect_ratio = (project or {}).get("aspect_ratio") or DEFAULT_ASPECT_RATIO

        if kind == GenerationKind.VIDEO:
            return GenerationRequest(
                kind=kind,
                prompt=row.get("visual_prompt") or row.get("prompt_idea") or "",
                aspect_ratio=aspect_ratio,
                reference_url=row["image_url"],
                callback_url=callback_url,
            )
        return GenerationRequest(
            kind=kind,
            prompt=row["visual_prompt"],
            aspect_ratio=aspect_ratio,
            callback_url=callback_url,
        )

    def _text_prompts(self, entity_type: EntityType, row: dict, project: Optional[dict]):
        if entity_type == EntityType.SHOT:
            scene = self.store.get_row("scenes", row["scene_id"]) if row.get("scene_id") else None
            return prompts.VISUAL_PROMPT_SYSTEM, prompts.shot_visual_prompt(row, scene, project)
        if entity_type == EntityType.CHARACTER:
            return prompts.CHARACTER_PROMPT_SYSTEM, prompts.character_visual_prompt(row, project)
        return prompts.VOICEOVER_SYSTEM, prompts.scene_voiceover_prompt(row, project)

    # ── Job bookkeeping ─────────────────────────────────────────────────

    def _supersede_open_jobs(self, owner_id: str, kind: GenerationKind):
        for open_job in self.store.list_open_generations(owner_id, kind.value):
            superseded = self.store.transition_generation(
                open_job["id"],
                {
                    "status": JobStatus.FAILED.value,
                    "failure_reason": SUPERSEDED_REASON,
                    "result_ref": None,
                },
                IN_PROGRESS_STATUSES,
            )
            if superseded is not None:
                metrics.inc_counter("generations.superseded")
                logger.info(f"[gen {open_job['id']}] superseded by a new {kind.value} request")

    def _open_job(self, target: GenerationTarget, row: dict, adapter: ProviderAdapter, request: GenerationRequest) -> dict:
        job = self.store.insert_generation({
            "owner_type": target.entity_type.value,
            "owner_id": row["id"],
            "project_id": row.get("project_id"),
            "kind": target.kind.value,
            "api_provider": adapter.api_provider,
            "model": request.model,
            "prompt": request.prompt,
            "status": JobStatus.PENDING.value,
        })
        self.store.update_entity(
            target.table,
            row["id"],
            {
                target.status_column: JobStatus.SUBMITTED.value,
                target.result_column: None,
                target.failure_column: None,
                target.tracked_column: job["id"],
            },
        )
        logger.info(f"[gen {job['id']}] opened {target.kind.value} job for {target.entity_type.value} {row['id']}")
        return job

    @staticmethod
    def outcome_for(job: dict, outcome: GenerationOutcome) -> GenerationOutcome:
        status = JobStatus(job["status"])
        update = {
            "ok": status != JobStatus.FAILED,
            "status": status,
            "generation_id": job["id"],
            "external_request_id": job.get("external_request_id"),
            "result_ref": job.get("result_ref"),
        }
        if status == JobStatus.FAILED:
            reason = job.get("failure_reason") or "unknown"
            update["error"] = reason
            update["error_code"] = GenerationTimeout.code if reason == TIMEOUT_REASON else GENERATION_FAILED
        return outcome.model_copy(update=update)
