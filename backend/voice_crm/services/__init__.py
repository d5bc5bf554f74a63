"""Voice CRM Services - Webhook intake, provider client, and background jobs."""

from .dedup import EventDeduplicator, get_deduplicator
from .signature import verify_signature
from .webhook_normalizer import normalize_webhook
from .job_queue import JobQueue, RetryPolicy
from .vapi_client import VapiClient
from .date_resolution import resolve_relative_date

__all__ = [
    "EventDeduplicator",
    "get_deduplicator",
    "verify_signature",
    "normalize_webhook",
    "JobQueue",
    "RetryPolicy",
    "VapiClient",
    "resolve_relative_date",
]
