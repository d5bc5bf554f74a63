"""Keeps the ``calls`` table in step with webhook events.

Events for one call may arrive in any order, so every write merges into the
current row instead of assuming a lifecycle position, and status only moves
forward.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..core.db import DuplicateRecordError, RecordStore, StoreError
from ..core.models import STATUS_RANK, CallRecord, CallStatus
from .webhook_normalizer import (
    AnalysisReceived,
    CallEnded,
    CallStarted,
    PartialTranscript,
    RecordingReady,
    TranscriptReceived,
    Unrecognized,
    WebhookAction,
)

logger = logging.getLogger(__name__)

CALLS_TABLE = "calls"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _present(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def advance_status(current: Optional[str], new: str) -> str:
    """Return the later of two statuses; a terminal status is never replaced."""
    current = current or CallStatus.PENDING.value
    if STATUS_RANK.get(current, 0) >= STATUS_RANK[CallStatus.COMPLETED.value]:
        return current
    return new if STATUS_RANK.get(new, 0) >= STATUS_RANK.get(current, 0) else current


class CallReconciler:
    """Applies canonical call actions to the call record store."""

    def __init__(
        self,
        store: RecordStore,
        on_transcript_ready: Callable[[str], Any],
        on_transcript_missing: Optional[Callable[[str], Any]] = None,
    ):
        """Initialize reconciler.

        Args:
            store: Record store holding the ``calls`` table
            on_transcript_ready: Called with the call id when a completed call has a transcript
            on_transcript_missing: Called with the call id when a call ends without one
        """
        self.store = store
        self.on_transcript_ready = on_transcript_ready
        self.on_transcript_missing = on_transcript_missing

    @staticmethod
    def _key(call_id: str) -> Dict[str, Any]:
        # Callers may hold either the provider id or our internal id
        return {"vapi_call_id": call_id, "id": call_id}

    async def find_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.store.select_one(CALLS_TABLE, or_eq=self._key(call_id))
        except StoreError as e:
            logger.error(f"Failed to look up call {call_id}: {e}")
            return None

    async def _ensure_call(self, call_id: str, defaults: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the call row, creating it when this is the first event for the call."""
        existing = await self.find_call(call_id)
        if existing:
            return existing

        row = {
            "vapi_call_id": call_id,
            "status": CallStatus.PENDING.value,
            "created_at": _now(),
            "updated_at": _now(),
            **_present(defaults),
        }
        try:
            created = await self.store.insert(CALLS_TABLE, row)
            logger.info(f"✅ Created call record for {call_id}")
            return created
        except DuplicateRecordError:
            # Another delivery created it first
            return await self.find_call(call_id)
        except StoreError as e:
            logger.error(f"Failed to create call record for {call_id}: {e}")
            return None

    async def _write(self, call_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Update the call row; if the batch fails, retry one column at a time.

        Returns:
            The columns that were written
        """
        values = {**values, "updated_at": _now()}
        try:
            await self.store.update(CALLS_TABLE, values, or_eq=self._key(call_id))
            return values
        except StoreError as e:
            logger.error(f"Batch update failed for call {call_id}, retrying per field: {e}")

        written: Dict[str, Any] = {}
        for column, value in values.items():
            if column == "updated_at":
                continue
            try:
                await self.store.update(
                    CALLS_TABLE, {column: value, "updated_at": values["updated_at"]}, or_eq=self._key(call_id)
                )
                written[column] = value
            except StoreError as e:
                logger.error(f"Dropped update of {column} for call {call_id}: {e}")
        return written

    def _after_write(self, call_id: str, merged: Dict[str, Any], ended: bool = False) -> None:
        record = CallRecord.model_validate(merged)
        if record.ready_for_extraction:
            logger.info(f"Call {call_id} ready for extraction")
            self.on_transcript_ready(call_id)
        elif ended and record.status == CallStatus.COMPLETED.value and not record.transcript:
            logger.info(f"Call {call_id} ended without transcript, scheduling fetch")
            if self.on_transcript_missing:
                self.on_transcript_missing(call_id)

    async def upsert_on_start(self, action: CallStarted) -> None:
        fields = {
            "phone_number": action.phone,
            "contact_name": action.contact_name,
            "assistant_id": action.assistant_id,
            "organization_id": action.organization_id,
            "campaign_id": action.campaign_id,
            "started_at": _iso(action.started_at) or _now(),
        }
        row = await self._ensure_call(action.call_id, {**fields, "status": CallStatus.IN_PROGRESS.value})
        if row is None:
            return

        updates = {key: value for key, value in _present(fields).items() if not row.get(key)}
        status = advance_status(row.get("status"), CallStatus.IN_PROGRESS.value)
        if status != row.get("status"):
            updates["status"] = status
        if updates:
            await self._write(action.call_id, updates)

    async def update_on_end(self, action: CallEnded, raw_payload: Optional[Dict[str, Any]] = None) -> None:
        row = await self._ensure_call(action.call_id, {})
        if row is None:
            return

        new_status = CallStatus.FAILED.value if action.outcome == "failed" else CallStatus.COMPLETED.value
        updates = _present({
            "status": advance_status(row.get("status"), new_status),
            "ended_at": _iso(action.ended_at) or _now(),
            "duration": action.duration,
            "end_reason": action.end_reason,
            "outcome": action.outcome,
            "cost": action.cost,
            "transcript": action.transcript,
            "summary": action.summary,
            "recording_url": action.recording_url,
            "analysis": action.analysis,
            "raw_payload": raw_payload,
        })
        for key, value in {
            "started_at": _iso(action.started_at),
            "phone_number": action.phone,
            "contact_name": action.contact_name,
            "organization_id": action.organization_id,
            "campaign_id": action.campaign_id,
        }.items():
            if value is not None and not row.get(key):
                updates[key] = value

        written = await self._write(action.call_id, updates)
        self._after_write(action.call_id, {**row, **written}, ended=True)

    async def attach_transcript(self, call_id: str, text: str) -> None:
        row = await self._ensure_call(call_id, {})
        if row is None:
            return
        written = await self._write(call_id, {"transcript": text})
        self._after_write(call_id, {**row, **written})

    async def attach_partial_transcript(self, call_id: str, text: str) -> None:
        row = await self._ensure_call(call_id, {})
        if row is None:
            return
        await self._write(call_id, {"partial_transcript": text})

    async def attach_analysis(self, call_id: str, analysis: Dict[str, Any]) -> None:
        """Store analysis; it never triggers processing on its own."""
        row = await self._ensure_call(call_id, {})
        if row is None:
            return
        updates: Dict[str, Any] = {"analysis": analysis}
        if analysis.get("summary") and not row.get("summary"):
            updates["summary"] = analysis["summary"]
        await self._write(call_id, updates)

    async def attach_recording(self, call_id: str, url: str) -> None:
        row = await self._ensure_call(call_id, {})
        if row is None:
            return
        logger.info(f"🎙️ Recording URL received for call {call_id}")
        await self._write(call_id, {"recording_url": url})

    async def apply(self, action: WebhookAction, raw_payload: Optional[Dict[str, Any]] = None) -> None:
        """Apply one canonical action."""
        if isinstance(action, CallStarted):
            await self.upsert_on_start(action)
        elif isinstance(action, CallEnded):
            await self.update_on_end(action, raw_payload)
        elif isinstance(action, TranscriptReceived):
            await self.attach_transcript(action.call_id, action.text)
        elif isinstance(action, PartialTranscript):
            await self.attach_partial_transcript(action.call_id, action.text)
        elif isinstance(action, AnalysisReceived):
            await self.attach_analysis(action.call_id, action.analysis)
        elif isinstance(action, RecordingReady):
            await self.attach_recording(action.call_id, action.url)
        elif isinstance(action, Unrecognized):
            logger.info(f"Ignoring unrecognized webhook event {action.raw_type}: {action.reason}")
