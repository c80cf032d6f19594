"""
Webhook receiver: applies provider callbacks through the same reconciliation
rule as the poll loop. Safe to call repeatedly with the same payload.
"""

import logging

from .. import metrics
from ..errors import InvalidWebhook, UnknownJob
from ..provider_factory import ProviderFactory
from ..providers import ProviderName
from ..store import JobStore, now_iso
from .models import WebhookOutcome
from .reconcile import Reconciler

logger = logging.getLogger(__name__)


class WebhookReceiver:
    def __init__(self, store: JobStore, factory: ProviderFactory):
        self.store = store
        self.factory = factory
        self.reconciler = Reconciler(store)

    def handle(self, provider: str, body: dict) -> WebhookOutcome:
        metrics.inc_counter("webhooks.received")
        try:
            provider = ProviderName(provider)
            adapter = self.factory.for_provider(provider)
        except (ValueError, KeyError):
            raise InvalidWebhook(f"No webhook handler for provider '{provider}'")

        request_id, status = adapter.parse_webhook(body)

        job = self.store.get_generation_by_request_id(request_id)
        if job is None:
            metrics.inc_counter("webhooks.unknown")
            logger.warning(f"Webhook from {provider.value} for unknown request {request_id}; dropping")
            raise UnknownJob(f"No generation for request id {request_id}")

        # Luma image and video share one callback; read the payload with the
        # adapter that created this job.
        try:
            job_adapter = self.factory.for_api_provider(job["api_provider"])
        except KeyError:
            job_adapter = adapter
        if job_adapter is not adapter:
            request_id, status = job_adapter.parse_webhook(body)

        self.store.touch_generation(job["id"], {"callback_received_at": now_iso()})
        logger.info(f"[gen {job['id']}] webhook from {provider.value}: {status.state.value}")

        applied = self.reconciler.apply(job, status)
        if not applied:
            metrics.inc_counter("webhooks.duplicate")
            logger.info(f"[gen {job['id']}] webhook was a no-op (already {job['status']})")

        current = self.store.get_generation(job["id"]) or job
        return WebhookOutcome(
            generation_id=job["id"],
            external_request_id=request_id,
            status=current["status"],
            applied=applied,
        )
