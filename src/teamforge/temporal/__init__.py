"""
Temporal job queue for TeamForge.

One workflow execution per queued intent, bounded retries with exponential
backoff, and a separate rate-limited queue for chat batches.
"""

from .activities import IntentActivities
from .client import TemporalChatDispatcher, TemporalClient, TemporalIntentQueue
from .config import NON_RETRYABLE_ERRORS, TemporalConfig
from .worker import create_workers, run_worker
from .workflows import ChatBatchWorkflow, IntentWorkflow

__all__ = [
    # Workflows
    "IntentWorkflow",
    "ChatBatchWorkflow",
    # Activities
    "IntentActivities",
    # Infrastructure
    "TemporalConfig",
    "NON_RETRYABLE_ERRORS",
    "TemporalClient",
    "TemporalIntentQueue",
    "TemporalChatDispatcher",
    "create_workers",
    "run_worker",
]
