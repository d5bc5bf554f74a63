"""Tests for webhook payload normalization."""

from datetime import datetime, timezone

import pytest

from voice_crm.services.webhook_normalizer import (
    AnalysisReceived,
    CallEnded,
    CallStarted,
    PartialTranscript,
    RecordingReady,
    TranscriptReceived,
    Unrecognized,
    determine_outcome,
    extract_call_id,
    normalize_webhook,
)

from .fakes import SOLAR_TRANSCRIPT, call_ended_payload, call_started_payload, envelope, transcript_payload


class TestNormalizeWebhook:
    """Payload shapes mapped to call actions."""

    def test_status_update_in_progress_is_call_started(self) -> None:
        action = normalize_webhook(call_started_payload("call-1", "org-1"))

        assert isinstance(action, CallStarted)
        assert action.call_id == "call-1"
        assert action.phone == "+15551234567"
        assert action.contact_name == "John Smith"
        assert action.organization_id == "org-1"
        assert action.started_at == datetime(2026, 10, 12, 15, 0, tzinfo=timezone.utc)

    def test_end_of_call_report(self) -> None:
        action = normalize_webhook(call_ended_payload("call-1"))

        assert isinstance(action, CallEnded)
        assert action.transcript == SOLAR_TRANSCRIPT
        assert action.duration == 240
        assert action.outcome == "completed"
        assert action.cost == pytest.approx(0.42)
        assert action.recording_url == "https://recordings.example.com/call-1.wav"

    def test_flat_payload(self) -> None:
        action = normalize_webhook({"type": "call-ended", "callId": "flat-1", "duration": 12, "endedReason": "busy"})

        assert isinstance(action, CallEnded)
        assert action.call_id == "flat-1"
        assert action.outcome == "busy"

    def test_final_and_partial_transcripts(self) -> None:
        assert isinstance(normalize_webhook(transcript_payload("call-1")), TranscriptReceived)

        partial = normalize_webhook(envelope("transcript", "call-1", transcript="Hello", transcriptType="partial"))
        assert isinstance(partial, PartialTranscript)

        speech = normalize_webhook(envelope("conversation-update", "call-1", transcript="Hi there"))
        assert isinstance(speech, PartialTranscript)

    def test_analysis_and_recording(self) -> None:
        analysis = normalize_webhook(envelope("analysis-complete", "call-1", analysis={"summary": "Interested"}))
        assert isinstance(analysis, AnalysisReceived)
        assert analysis.analysis == {"summary": "Interested"}

        recording = normalize_webhook(envelope("recording-ready", "call-1", recordingUrl="https://r.example.com/1"))
        assert isinstance(recording, RecordingReady)
        assert recording.url == "https://r.example.com/1"

    def test_epoch_millisecond_timestamps(self) -> None:
        action = normalize_webhook(envelope("call-started", "call-1", startedAt=1791817200000))
        assert action.started_at.tzinfo is timezone.utc

    @pytest.mark.parametrize(
        "payload,reason",
        [
            ({"message": {"call": {"id": "x"}}}, "missing event type"),
            (envelope("status-update", "call-1", status="queued"), "status not tracked"),
            (envelope("transcript", "call-1"), "transcript event without text"),
            (envelope("hang", "call-1"), "unknown event type"),
        ],
    )
    def test_unrecognized(self, payload, reason) -> None:
        action = normalize_webhook(payload)
        assert isinstance(action, Unrecognized)
        if reason:
            assert action.reason == reason

    def test_missing_call_id(self) -> None:
        action = normalize_webhook({"type": "call-started"})
        assert isinstance(action, Unrecognized)
        assert action.reason == "missing call id"


class TestHelpers:
    """Call id lookup and outcome classification."""

    def test_call_id_sources(self) -> None:
        assert extract_call_id({"message": {"type": "x", "call": {"id": "a"}}}) == "a"
        assert extract_call_id({"type": "x", "callId": "b"}) == "b"
        assert extract_call_id({"type": "x", "call_id": "c"}) == "c"

    @pytest.mark.parametrize(
        "reason,duration,outcome",
        [
            ("customer-ended-call", 5, "completed"),
            ("customer-did-not-answer", None, "no_answer"),
            ("pipeline-error-openai", 3, "failed"),
            ("silence-timed-out", 45, "completed"),
            (None, 10, "unknown"),
        ],
    )
    def test_determine_outcome(self, reason, duration, outcome) -> None:
        assert determine_outcome(reason, duration) == outcome
