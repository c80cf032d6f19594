"""
Generation pipeline

  Orchestrator — precondition → supersede → submit → poll
  Webhooks     — provider callbacks through the same reconciliation rule
  Story        — storylines → scenes → shots breakdown via Claude
  Sync         — client-side view state converging on realtime row updates
"""

from .models import EntityType, GenerationKind, JobStatus, PollPolicy
from .orchestrator import GenerationOrchestrator
from .reconcile import Reconciler
from .webhook import WebhookReceiver

__all__ = [
    "EntityType",
    "GenerationKind",
    "JobStatus",
    "PollPolicy",
    "GenerationOrchestrator",
    "Reconciler",
    "WebhookReceiver",
]
