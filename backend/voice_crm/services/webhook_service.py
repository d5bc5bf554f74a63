"""Webhook pipeline: acknowledge immediately, process in the background.

``WebhookService`` owns the background jobs for one process: raw webhook
handling, call processing once a transcript is attached, and transcript
re-fetch for calls that ended without one. Jobs live in memory only, so a
periodic recovery sweep re-queues completed calls the store shows as
unprocessed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter, deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional

from ..core.config import Settings
from ..core.db import RecordStore, StoreError
from ..llm.brief_generator import BriefGenerator
from ..llm.extraction import ExtractionEngine
from .assignee import StoreAssigneeResolver
from .call_processor import CallProcessor
from .call_reconciler import CALLS_TABLE, CallReconciler
from .dedup import EventDeduplicator, InMemoryEventDeduplicator, event_id_for
from .job_queue import (
    CALL_PROCESSING_QUEUE,
    TRANSCRIPT_FETCH_QUEUE,
    WEBHOOK_QUEUE,
    JobQueue,
    RetryPolicy,
)
from .lead_merge import LeadMergeEngine
from .side_effects import SideEffectDispatcher
from .signature import verify_signature
from .vapi_client import VapiClient
from .webhook_normalizer import Unrecognized, extract_call_id, extract_event_type, normalize_webhook

logger = logging.getLogger(__name__)

WEBHOOK_LOGS_TABLE = "webhook_logs"
RECENT_EVENTS = 50
PAYLOAD_LOG_LIMIT = 500


def retry_policies(settings: Settings) -> Dict[str, RetryPolicy]:
    return {
        WEBHOOK_QUEUE: RetryPolicy(settings.webhook_job_max_attempts, settings.webhook_job_base_delay),
        CALL_PROCESSING_QUEUE: RetryPolicy(
            settings.call_processing_max_attempts, settings.call_processing_base_delay
        ),
        TRANSCRIPT_FETCH_QUEUE: RetryPolicy(
            settings.transcript_fetch_max_attempts, settings.transcript_fetch_base_delay
        ),
    }


def processing_job_name(call_id: str) -> str:
    return f"process-{call_id}"


def transcript_fetch_job_name(call_id: str) -> str:
    return f"fetch-transcript-{call_id}"


class WebhookService:
    """Receives raw webhooks and drives the call pipeline."""

    def __init__(
        self,
        settings: Settings,
        store: RecordStore,
        deduplicator: Optional[EventDeduplicator] = None,
        queue: Optional[JobQueue] = None,
        processor: Optional[CallProcessor] = None,
        vapi_client: Optional[VapiClient] = None,
    ):
        """Initialize the service.

        Args:
            settings: Application settings
            store: Record store for calls, leads and side-effect tables
            deduplicator: Event deduplicator, in-memory when None
            queue: Background job queue, built from the settings' retry policies when None
            processor: Call processor, assembled from the settings when None
            vapi_client: Provider client for transcript re-fetch
        """
        self.settings = settings
        self.store = store
        self.deduplicator = deduplicator or InMemoryEventDeduplicator(
            ttl_seconds=settings.dedup_ttl_seconds, max_entries=settings.dedup_max_entries
        )
        self.queue = queue or JobQueue(retry_policies(settings))
        self.processor = processor or CallProcessor(
            settings,
            store,
            ExtractionEngine(settings),
            BriefGenerator(settings),
            LeadMergeEngine(store, StoreAssigneeResolver(store), notes_cap=settings.lead_notes_cap),
            SideEffectDispatcher(store),
        )
        self.vapi_client = vapi_client or VapiClient(settings)
        self.reconciler = CallReconciler(
            store,
            on_transcript_ready=self.schedule_processing,
            on_transcript_missing=self.schedule_transcript_fetch,
        )
        self.counters: Counter = Counter()
        self.recent_events: Deque[Dict[str, Any]] = deque(maxlen=RECENT_EVENTS)
        self._recovery_task: Optional[asyncio.Task] = None

    # Job scheduling

    def submit(self, raw_body: bytes, signature: Optional[str], received_at: Optional[datetime] = None) -> None:
        """Queue a raw webhook for background handling; returns immediately."""
        received_at = received_at or datetime.now(timezone.utc)
        self.counters["received"] += 1
        self.queue.enqueue(WEBHOOK_QUEUE, "handle-webhook", self.handle_event, raw_body, signature, received_at)

    def schedule_processing(self, call_id: str) -> None:
        self.queue.enqueue(CALL_PROCESSING_QUEUE, processing_job_name(call_id), self.processor.process_call, call_id)

    def schedule_transcript_fetch(self, call_id: str) -> None:
        if not self.vapi_client.configured:
            logger.warning(f"⚠️ VAPI_API_KEY not configured, cannot fetch transcript for call {call_id}")
            return
        self.queue.enqueue(
            TRANSCRIPT_FETCH_QUEUE,
            transcript_fetch_job_name(call_id),
            self.fetch_transcript,
            call_id,
            delay=self.settings.transcript_fetch_base_delay,
        )

    async def fetch_transcript(self, call_id: str) -> None:
        """Fetch a late transcript; ``TranscriptNotReady`` makes the queue retry."""
        transcript = await self.vapi_client.fetch_transcript(call_id)
        logger.info(f"✅ Fetched transcript for call {call_id} ({len(transcript)} chars)")
        await self.reconciler.attach_transcript(call_id, transcript)

    # Event handling

    async def _log_webhook(
        self,
        payload: Dict[str, Any],
        event_type: Optional[str],
        call_id: Optional[str],
        event_id: str,
        received_at: datetime,
    ) -> None:
        try:
            await self.store.insert(
                WEBHOOK_LOGS_TABLE,
                {
                    "event_type": event_type,
                    "call_id": call_id,
                    "event_id": event_id,
                    "payload": payload,
                    "received_at": received_at.isoformat(),
                },
            )
        except StoreError as e:
            logger.warning(f"⚠️ Failed to write webhook log for {event_id}: {e}")

    def _record(self, event_id: str, event_type: Optional[str], call_id: Optional[str], outcome: str) -> None:
        self.recent_events.append({
            "event_id": event_id,
            "type": event_type,
            "call_id": call_id,
            "outcome": outcome,
            "at": datetime.now(timezone.utc).isoformat(),
        })

    async def handle_event(
        self,
        raw_body: bytes,
        signature: Optional[str],
        received_at: Optional[datetime] = None,
    ) -> str:
        """Verify, deduplicate, normalize and apply one webhook.

        Args:
            raw_body: Exact request body bytes, as signed by the provider
            signature: Signature header value, if any
            received_at: Receipt time, used to synthesize an event id

        Returns:
            Outcome label: ``processed``, ``duplicate``, ``rejected``,
            ``unrecognized`` or ``invalid``

        Raises:
            Exception: Whatever applying the event raised; the event is
                released from the dedup set first so a retry is not dropped
        """
        received_at = received_at or datetime.now(timezone.utc)

        if not verify_signature(raw_body, signature, self.settings.vapi_webhook_secret):
            self.counters["signature_rejected"] += 1
            logger.warning("⚠️ Webhook signature verification failed, event skipped")
            return "rejected"

        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self.counters["invalid"] += 1
            logger.error(f"❌ Webhook body is not valid JSON: {e}")
            return "invalid"
        if not isinstance(payload, dict):
            self.counters["invalid"] += 1
            logger.error(f"❌ Webhook body is not a JSON object: {raw_body[:PAYLOAD_LOG_LIMIT]!r}")
            return "invalid"

        event_type = extract_event_type(payload)
        call_id = extract_call_id(payload)
        event_id = event_id_for(payload, event_type, call_id, received_at)

        if not await self.deduplicator.claim(event_id):
            self.counters["duplicates"] += 1
            logger.info(f"Duplicate webhook event {event_id} ({event_type}) ignored")
            self._record(event_id, event_type, call_id, "duplicate")
            return "duplicate"

        await self._log_webhook(payload, event_type, call_id, event_id, received_at)

        action = normalize_webhook(payload)
        if isinstance(action, Unrecognized):
            self.counters["unrecognized"] += 1
            logger.info(f"Unrecognized webhook {event_id}: {action.reason}")
            self._record(event_id, event_type, call_id, "unrecognized")
            return "unrecognized"

        logger.info(f"📞 Webhook {event_type} for call {call_id} ({event_id})")
        try:
            await self.reconciler.apply(action, raw_payload=payload)
        except Exception as e:
            await self.deduplicator.release(event_id)
            self.counters["failed"] += 1
            logger.error(
                f"❌ Failed to apply webhook {event_id} ({event_type}): {e}; "
                f"payload={json.dumps(payload, default=str)[:PAYLOAD_LOG_LIMIT]}"
            )
            raise

        self.counters["processed"] += 1
        self._record(event_id, event_type, call_id, "processed")
        return "processed"

    # Recovery sweep

    async def _stalled_calls(self, now: datetime, transcript_missing: bool) -> List[Dict[str, Any]]:
        quiet_since = now - timedelta(seconds=self.settings.recovery_grace_seconds)
        oldest = now - timedelta(hours=self.settings.recovery_max_age_hours)
        return await self.store.select(
            CALLS_TABLE,
            eq={"status": "completed"},
            is_null={"processed_at": True, "transcript": transcript_missing},
            gte={"ended_at": oldest.isoformat()},
            lte={"updated_at": quiet_since.isoformat()},
            order_by="ended_at",
            limit=self.settings.recovery_batch_size,
        )

    async def recover_stalled_calls(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Re-queue completed calls that never finished processing.

        Calls with a transcript but no ``processed_at`` get a processing job,
        calls still missing a transcript get a transcript fetch. Calls that
        changed within the grace window, or already have a job queued, are
        left alone.

        Args:
            now: Current time, defaults to the wall clock

        Returns:
            Number of processing and transcript-fetch jobs queued
        """
        now = now or datetime.now(timezone.utc)
        recovered = {"processing": 0, "transcript_fetch": 0}

        for row in await self._stalled_calls(now, transcript_missing=False):
            call_id = row.get("vapi_call_id") or row["id"]
            if self.queue.is_scheduled(processing_job_name(call_id)):
                continue
            self.schedule_processing(call_id)
            recovered["processing"] += 1

        if self.vapi_client.configured:
            for row in await self._stalled_calls(now, transcript_missing=True):
                call_id = row.get("vapi_call_id")
                if not call_id or self.queue.is_scheduled(transcript_fetch_job_name(call_id)):
                    continue
                self.schedule_transcript_fetch(call_id)
                recovered["transcript_fetch"] += 1

        if any(recovered.values()):
            logger.info(
                f"🔄 Recovery sweep queued {recovered['processing']} calls for processing, "
                f"{recovered['transcript_fetch']} for transcript fetch"
            )
        self.counters["recovered"] += sum(recovered.values())
        return recovered

    async def _recovery_loop(self) -> None:
        interval = self.settings.recovery_sweep_interval_seconds
        while True:
            try:
                await self.recover_stalled_calls()
            except StoreError as e:
                logger.error(f"❌ Recovery sweep failed: {e}")
            await asyncio.sleep(interval)

    def start_recovery(self) -> None:
        """Start the periodic recovery sweep; an interval of 0 disables it."""
        if self.settings.recovery_sweep_interval_seconds <= 0 or self._recovery_task is not None:
            return
        self._recovery_task = asyncio.get_running_loop().create_task(self._recovery_loop())
        logger.info(f"Recovery sweep running every {self.settings.recovery_sweep_interval_seconds:.0f}s")

    def status(self) -> Dict[str, Any]:
        return {
            "counters": {
                key: self.counters[key]
                for key in (
                    "received",
                    "processed",
                    "duplicates",
                    "signature_rejected",
                    "unrecognized",
                    "invalid",
                    "failed",
                    "recovered",
                )
            },
            "recent_events": list(self.recent_events)[-10:],
            "queue": self.queue.stats(),
            "config": {
                "signature_secret_configured": self.settings.signature_configured,
                "llm_configured": self.settings.llm_configured,
                "llm_provider": self.settings.llm_provider,
                "transcript_fetch_configured": self.vapi_client.configured,
                "redis_dedup": bool(self.settings.redis_url),
                "recovery_sweep_interval_seconds": self.settings.recovery_sweep_interval_seconds,
            },
        }

    async def close(self) -> None:
        if self._recovery_task is not None:
            self._recovery_task.cancel()
            await asyncio.gather(self._recovery_task, return_exceptions=True)
            self._recovery_task = None
        await self.queue.close()
        await self.deduplicator.close()
