"""Maps raw provider webhook payloads onto a closed set of call actions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class CallStarted(BaseModel):
    kind: Literal["call-started"] = "call-started"
    call_id: str
    started_at: Optional[datetime] = None
    phone: Optional[str] = None
    contact_name: Optional[str] = None
    assistant_id: Optional[str] = None
    organization_id: Optional[str] = None
    campaign_id: Optional[str] = None


class CallEnded(BaseModel):
    kind: Literal["call-ended"] = "call-ended"
    call_id: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration: Optional[float] = None
    end_reason: Optional[str] = None
    outcome: Optional[str] = None
    cost: Optional[float] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    recording_url: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    phone: Optional[str] = None
    contact_name: Optional[str] = None
    organization_id: Optional[str] = None
    campaign_id: Optional[str] = None


class TranscriptReceived(BaseModel):
    kind: Literal["transcript"] = "transcript"
    call_id: str
    text: str


class PartialTranscript(BaseModel):
    kind: Literal["partial-transcript"] = "partial-transcript"
    call_id: str
    text: str


class AnalysisReceived(BaseModel):
    kind: Literal["analysis"] = "analysis"
    call_id: str
    analysis: Dict[str, Any]


class RecordingReady(BaseModel):
    kind: Literal["recording-ready"] = "recording-ready"
    call_id: str
    url: str


class Unrecognized(BaseModel):
    kind: Literal["unrecognized"] = "unrecognized"
    raw_type: Optional[str] = None
    reason: str = "unknown event type"


WebhookAction = Annotated[
    Union[
        CallStarted,
        CallEnded,
        TranscriptReceived,
        PartialTranscript,
        AnalysisReceived,
        RecordingReady,
        Unrecognized,
    ],
    Field(discriminator="kind"),
]

CALL_STARTED_TYPES = {"call-started", "call.started"}
CALL_ENDED_TYPES = {"call-ended", "call.ended", "end-of-call-report"}
TRANSCRIPT_TYPES = {"transcript", "transcript-ready", "transcript-complete", "transcription-complete"}
PARTIAL_TRANSCRIPT_TYPES = {"speech-update", "conversation-update"}
ANALYSIS_TYPES = {"analysis-complete", "analysis"}
RECORDING_TYPES = {"recording-ready", "recording-available"}


def _message(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Provider payloads are either flat or wrapped in a ``message`` envelope."""
    message = payload.get("message")
    if isinstance(message, dict) and message.get("type"):
        return message
    return payload


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _pick(sources, *keys: str) -> Any:
    for source in sources:
        for key in keys:
            value = source.get(key)
            if value not in (None, ""):
                return value
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def extract_event_type(payload: Dict[str, Any]) -> Optional[str]:
    event_type = _message(payload).get("type")
    return str(event_type).strip().lower() if event_type else None


def extract_call_id(payload: Dict[str, Any]) -> Optional[str]:
    message = _message(payload)
    call = _dict(message.get("call"))
    call_id = call.get("id") or message.get("callId") or message.get("call_id") or payload.get("callId")
    return str(call_id) if call_id else None


def determine_outcome(end_reason: Optional[str], duration: Optional[float]) -> str:
    """Classify how a call ended."""
    reason = (end_reason or "").lower()
    if reason in ("customer-ended-call", "assistant-ended-call", "assistant-said-end-call-phrase"):
        return "completed"
    if reason in ("no-answer", "customer-did-not-answer"):
        return "no_answer"
    if reason in ("busy", "customer-busy"):
        return "busy"
    if reason in ("failed", "error") or reason.startswith("pipeline-error"):
        return "failed"
    if duration is not None and duration > 30:
        return "completed"
    return "unknown"


def normalize_webhook(payload: Dict[str, Any]) -> WebhookAction:
    """Map a raw webhook payload to a canonical action.

    Args:
        payload: Parsed JSON body of the webhook

    Returns:
        One canonical action; ``Unrecognized`` for anything not understood
    """
    if not isinstance(payload, dict):
        return Unrecognized(reason="payload is not an object")

    message = _message(payload)
    event_type = extract_event_type(payload)
    call_id = extract_call_id(payload)
    call = _dict(message.get("call"))
    artifact = _dict(message.get("artifact"))
    customer = _dict(call.get("customer")) or _dict(message.get("customer"))
    call_metadata = _dict(call.get("metadata"))
    sources = (message, call, artifact)

    if not event_type:
        return Unrecognized(reason="missing event type")

    if event_type == "status-update":
        status = (message.get("status") or call.get("status") or "").lower()
        if status == "in-progress":
            event_type = "call-started"
        elif status == "ended":
            event_type = "call-ended"
        else:
            return Unrecognized(raw_type=f"status-update:{status or 'none'}", reason="status not tracked")

    if not call_id:
        return Unrecognized(raw_type=event_type, reason="missing call id")

    try:
        if event_type in CALL_STARTED_TYPES:
            return CallStarted(
                call_id=call_id,
                started_at=_timestamp(_pick(sources, "startedAt", "started_at")),
                phone=_text(call.get("phoneNumber")) or _text(customer.get("number")),
                contact_name=_text(customer.get("name")),
                assistant_id=_text(call.get("assistantId")) or _text(message.get("assistantId")),
                organization_id=_text(call_metadata.get("organizationId") or call_metadata.get("organization_id")),
                campaign_id=_text(call_metadata.get("campaignId") or call_metadata.get("campaign_id")),
            )

        if event_type in CALL_ENDED_TYPES:
            started_at = _timestamp(_pick(sources, "startedAt", "started_at"))
            ended_at = _timestamp(_pick(sources, "endedAt", "ended_at"))
            duration = _number(_pick(sources, "duration", "durationSeconds"))
            if duration is None and started_at and ended_at:
                duration = (ended_at - started_at).total_seconds()
            end_reason = _text(_pick(sources, "endedReason", "endReason"))
            analysis = _dict(message.get("analysis")) or _dict(call.get("analysis"))
            return CallEnded(
                call_id=call_id,
                started_at=started_at,
                ended_at=ended_at,
                duration=duration,
                end_reason=end_reason,
                outcome=determine_outcome(end_reason, duration),
                cost=_number(_pick(sources, "cost")),
                transcript=_text(_pick((artifact, message, call), "transcript")),
                summary=_text(_pick(sources, "summary")) or _text(analysis.get("summary")),
                recording_url=_text(_pick((artifact, message, call), "recordingUrl", "recording_url")),
                analysis=analysis or None,
                phone=_text(call.get("phoneNumber")) or _text(customer.get("number")),
                contact_name=_text(customer.get("name")),
                organization_id=_text(call_metadata.get("organizationId") or call_metadata.get("organization_id")),
                campaign_id=_text(call_metadata.get("campaignId") or call_metadata.get("campaign_id")),
            )

        if event_type in TRANSCRIPT_TYPES:
            text = _text(_pick((message, artifact, call), "transcript", "text"))
            if not text:
                return Unrecognized(raw_type=event_type, reason="transcript event without text")
            if (message.get("transcriptType") or "").lower() == "partial":
                return PartialTranscript(call_id=call_id, text=text)
            return TranscriptReceived(call_id=call_id, text=text)

        if event_type in PARTIAL_TRANSCRIPT_TYPES:
            text = _text(_pick((message, artifact), "transcript", "partialTranscript", "text"))
            if not text:
                return Unrecognized(raw_type=event_type, reason="no transcript text")
            return PartialTranscript(call_id=call_id, text=text)

        if event_type in ANALYSIS_TYPES:
            analysis = _dict(message.get("analysis")) or _dict(call.get("analysis"))
            if not analysis:
                return Unrecognized(raw_type=event_type, reason="analysis event without analysis")
            return AnalysisReceived(call_id=call_id, analysis=analysis)

        if event_type in RECORDING_TYPES:
            url = _text(_pick((message, artifact, call), "recordingUrl", "recording_url", "url"))
            if not url:
                return Unrecognized(raw_type=event_type, reason="recording event without url")
            return RecordingReady(call_id=call_id, url=url)

    except ValidationError as e:
        logger.warning(f"⚠️ Malformed {event_type} payload for call {call_id}: {e.error_count()} errors")
        return Unrecognized(raw_type=event_type, reason="malformed payload")

    return Unrecognized(raw_type=event_type)
