"""End-to-end tests for the webhook pipeline with in-memory storage."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from voice_crm.services.call_reconciler import CALLS_TABLE
from voice_crm.services.job_queue import CALL_PROCESSING_QUEUE
from voice_crm.services.lead_merge import LEADS_TABLE
from voice_crm.services.side_effects import APPOINTMENTS_TABLE, FOLLOW_UP_TASKS_TABLE, TASKS_TABLE
from voice_crm.services.signature import compute_signature
from voice_crm.services.vapi_client import VapiClient
from voice_crm.services.webhook_service import WEBHOOK_LOGS_TABLE, WebhookService

from .fakes import (
    SOLAR_TRANSCRIPT,
    call_ended_payload,
    call_started_payload,
    make_settings,
    transcript_payload,
)

BUDGET_QUESTION = "To ensure we provide the right solution, what budget range are you working with?"


def body(payload) -> bytes:
    return json.dumps(payload).encode()


async def deliver(service, *payloads, signature=None) -> None:
    for payload in payloads:
        service.submit(body(payload), signature)
    await service.queue.drain()


class TestSolarCallEndToEnd:
    """A qualified call becomes a lead, an appointment and tasks."""

    @pytest.mark.asyncio
    async def test_pipeline(self, settings, store) -> None:
        service = WebhookService(settings, store)

        await deliver(service, call_started_payload("call-1"), call_ended_payload("call-1"))

        call = store.rows(CALLS_TABLE)[0]
        assert call["status"] == "completed"
        assert call["is_qualified"] is True
        assert call["ai_score"] == 70
        assert call["created_crm_contact"] is True
        assert call["metadata"]["extracted"]["appointment_date"] == "2026-10-16"
        assert call["processed_at"]

        leads = store.rows(LEADS_TABLE)
        assert len(leads) == 1
        lead = leads[0]
        assert lead["id"] == call["lead_id"]
        assert lead["organization_id"] == "org-1"
        assert lead["phone"] == "+15551234567"
        assert lead["first_name"] == "John"
        assert lead["qualification_status"] == "qualified"
        missing = {item["field"]: item["question"] for item in lead["custom_fields"]["missing_info"]}
        assert missing["Budget"] == BUDGET_QUESTION
        assert len(lead["custom_fields"]["notes"]) == 1

        appointments = store.rows(APPOINTMENTS_TABLE)
        assert len(appointments) == 1
        assert appointments[0]["date"] == "2026-10-16"
        assert appointments[0]["time"] == "6:00 PM"
        assert appointments[0]["scheduled_at"] == "2026-10-16T18:00:00"
        assert appointments[0]["status"] == "confirmed"
        assert appointments[0]["lead_id"] == lead["id"]

        assert any(task["title"] == "Get Budget" for task in store.rows(TASKS_TABLE))

    @pytest.mark.asyncio
    async def test_unqualified_call_creates_no_lead(self, settings, store) -> None:
        service = WebhookService(settings, store)
        transcript = "AI: Hi, this is Sarah from SunBright Solar.\nUser: Not interested, please remove me from your list."

        await deliver(service, call_ended_payload("call-2", transcript=transcript))

        call = store.rows(CALLS_TABLE)[0]
        assert call["is_qualified"] is False
        assert call["created_crm_contact"] is False
        assert store.rows(LEADS_TABLE) == []
        assert store.rows(APPOINTMENTS_TABLE) == []

    @pytest.mark.asyncio
    async def test_call_without_organization_skips_lead(self, settings, store) -> None:
        service = WebhookService(settings, store)

        await deliver(service, call_ended_payload("call-3", organization_id=None))

        assert store.rows(LEADS_TABLE) == []
        assert store.rows(CALLS_TABLE)[0]["is_qualified"] is True

    @pytest.mark.asyncio
    async def test_default_organization_used(self, store) -> None:
        service = WebhookService(make_settings(DEFAULT_ORGANIZATION_ID="org-default"), store)

        await deliver(service, call_ended_payload("call-4", organization_id=None))

        assert store.rows(LEADS_TABLE)[0]["organization_id"] == "org-default"


class TestIdempotency:
    """Duplicate deliveries have no further effect."""

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, settings, store) -> None:
        service = WebhookService(settings, store)
        ended = {"id": "evt-ended-1", **call_ended_payload("call-1")}

        await deliver(service, ended)
        await deliver(service, ended)

        assert service.counters["duplicates"] == 1
        assert service.counters["processed"] == 1
        lead = store.rows(LEADS_TABLE)[0]
        assert len(lead["custom_fields"]["notes"]) == 1
        assert lead["call_attempts"] == 1
        assert len(store.rows(APPOINTMENTS_TABLE)) == 1
        assert len(store.rows(WEBHOOK_LOGS_TABLE)) == 1

    @pytest.mark.asyncio
    async def test_failed_apply_releases_event(self, settings, store) -> None:
        service = WebhookService(settings, store)
        service.reconciler.apply = AsyncMock(side_effect=RuntimeError("database down"))
        payload = {"id": "evt-1", **call_started_payload("call-1")}

        with pytest.raises(RuntimeError):
            await service.handle_event(body(payload), None)

        assert await service.deduplicator.seen("evt-1") is False
        assert service.counters["failed"] == 1


class TestSignatures:
    """Signature verification with and without a secret."""

    @pytest.mark.asyncio
    async def test_signed_and_tampered(self, store) -> None:
        service = WebhookService(make_settings(VAPI_WEBHOOK_SECRET="s3cret"), store)
        raw = body(call_started_payload("call-1"))
        signature = compute_signature(raw, "s3cret")

        assert await service.handle_event(raw, signature) == "processed"
        tampered = raw.replace(b"+15551234567", b"+15550000000")
        assert await service.handle_event(tampered, signature) == "rejected"
        assert await service.handle_event(raw, None) == "rejected"

        assert service.counters["signature_rejected"] == 2
        assert len(store.rows(CALLS_TABLE)) == 1

    @pytest.mark.asyncio
    async def test_fail_open_without_secret(self, settings, store) -> None:
        service = WebhookService(settings, store)
        assert await service.handle_event(body(call_started_payload("call-1")), "garbage") == "processed"


class TestEventOutcomes:
    """Invalid and unrecognized bodies."""

    @pytest.mark.asyncio
    async def test_outcomes_and_status(self, settings, store) -> None:
        service = WebhookService(settings, store)

        assert await service.handle_event(b"{not json", None) == "invalid"
        assert await service.handle_event(b"[1, 2]", None) == "invalid"
        assert await service.handle_event(body({"message": {"type": "hang", "call": {"id": "c"}}}), None) == "unrecognized"

        status = service.status()
        assert status["counters"]["invalid"] == 2
        assert status["counters"]["unrecognized"] == 1
        assert status["recent_events"][-1]["outcome"] == "unrecognized"
        assert status["config"]["signature_secret_configured"] is False
        assert status["config"]["llm_configured"] is False
        assert status["config"]["transcript_fetch_configured"] is False


class TestTranscriptFetch:
    """Calls that end without a transcript are re-fetched from the provider."""

    @pytest.mark.asyncio
    async def test_fetch_retries_until_ready(self, store) -> None:
        settings = make_settings(VAPI_API_KEY="vapi-key")
        responses = [
            httpx.Response(200, json={"id": "call-1"}),
            httpx.Response(200, json={"id": "call-1", "artifact": {"transcript": SOLAR_TRANSCRIPT}}),
        ]
        vapi = VapiClient(settings, transport=httpx.MockTransport(lambda request: responses.pop(0)))
        service = WebhookService(settings, store, vapi_client=vapi)

        await deliver(service, call_ended_payload("call-1", transcript=None))

        call = store.rows(CALLS_TABLE)[0]
        assert call["transcript"] == SOLAR_TRANSCRIPT
        assert call["is_qualified"] is True
        assert len(store.rows(LEADS_TABLE)) == 1

    @pytest.mark.asyncio
    async def test_fetch_skipped_without_api_key(self, settings, store) -> None:
        service = WebhookService(settings, store)

        await deliver(service, call_ended_payload("call-1", transcript=None))

        assert service.queue.stats()["queues"].get("transcript-fetch") is None
        assert store.rows(LEADS_TABLE) == []


class TestManualProcessing:
    """Operator-triggered processing."""

    @pytest.mark.asyncio
    async def test_schedule_processing_unknown_call_parks_job(self, store) -> None:
        service = WebhookService(make_settings(CALL_PROCESSING_MAX_ATTEMPTS=1), store)

        service.schedule_processing("missing-call")
        await service.queue.drain()

        failed = service.queue.failed(CALL_PROCESSING_QUEUE)
        assert len(failed) == 1
        assert failed[0].last_error.startswith("CallNotFound")


class TestReprocessing:
    """A transcript delivered again replaces what the earlier run produced."""

    @pytest.mark.asyncio
    async def test_repeated_transcript_supersedes_earlier_run(self, settings, store) -> None:
        store.tables["organizations"].append({"id": "org-1", "owner_id": "user-owner"})
        service = WebhookService(settings, store)

        await deliver(service, call_started_payload("call-1"), call_ended_payload("call-1"))
        await deliver(service, transcript_payload("call-1"))

        assert service.queue.stats()["queues"][CALL_PROCESSING_QUEUE]["completed"] == 2
        call = store.rows(CALLS_TABLE)[0]
        lead = store.rows(LEADS_TABLE)[0]
        assert lead["call_attempts"] == 1
        assert len(lead["custom_fields"]["notes"]) == 1
        assert len(lead["custom_fields"]["call_history"]) == 1

        appointments = store.rows(APPOINTMENTS_TABLE)
        assert len(appointments) == 1
        assert appointments[0]["date"] == "2026-10-16"

        tasks = store.rows(TASKS_TABLE)
        assert len(tasks) == len(call["metadata"]["brief"]["action_items"]["tasks_to_do"])
        follow_ups = store.rows(FOLLOW_UP_TASKS_TABLE)
        assert len(follow_ups) == len(call["metadata"]["extracted"]["next_steps"])

    @pytest.mark.asyncio
    async def test_tasks_assigned_to_lead_owner(self, settings, store) -> None:
        store.tables["organizations"].append({"id": "org-1", "owner_id": "user-owner"})
        service = WebhookService(settings, store)

        await deliver(service, call_started_payload("call-1"), call_ended_payload("call-1"))

        tasks = store.rows(TASKS_TABLE)
        assert tasks
        assert {task["assigned_to"] for task in tasks} == {"user-owner"}


NOW = datetime(2026, 10, 12, 16, 0, tzinfo=timezone.utc)


def stored_call(call_id: str, transcript=SOLAR_TRANSCRIPT, **overrides):
    row = {
        "id": f"row-{call_id}",
        "vapi_call_id": call_id,
        "organization_id": "org-1",
        "phone_number": "+15551234567",
        "contact_name": "John Smith",
        "status": "completed",
        "transcript": transcript,
        "started_at": "2026-10-12T15:00:00+00:00",
        "ended_at": "2026-10-12T15:04:00+00:00",
        "updated_at": "2026-10-12T15:05:00+00:00",
        "processed_at": None,
    }
    row.update(overrides)
    return row


class TestRecoverySweep:
    """Completed calls whose jobs were lost are picked up again."""

    @pytest.mark.asyncio
    async def test_unprocessed_call_is_processed(self, settings, store) -> None:
        store.tables[CALLS_TABLE].append(stored_call("call-1"))
        service = WebhookService(settings, store)

        recovered = await service.recover_stalled_calls(now=NOW)
        await service.queue.drain()

        assert recovered == {"processing": 1, "transcript_fetch": 0}
        call = store.rows(CALLS_TABLE)[0]
        assert call["processed_at"]
        assert call["is_qualified"] is True
        assert len(store.rows(LEADS_TABLE)) == 1
        assert service.status()["counters"]["recovered"] == 1

    @pytest.mark.asyncio
    async def test_recent_processed_and_old_calls_left_alone(self, settings, store) -> None:
        store.tables[CALLS_TABLE].extend([
            stored_call("recent", updated_at="2026-10-12T15:55:00+00:00"),
            stored_call("done", processed_at="2026-10-12T15:06:00+00:00"),
            stored_call("old", ended_at="2026-10-10T15:04:00+00:00"),
            stored_call("live", status="in-progress"),
        ])
        service = WebhookService(settings, store)

        assert await service.recover_stalled_calls(now=NOW) == {"processing": 0, "transcript_fetch": 0}
        assert service.queue.pending == 0

    @pytest.mark.asyncio
    async def test_call_with_queued_job_not_requeued(self, settings, store) -> None:
        store.tables[CALLS_TABLE].append(stored_call("call-1"))
        service = WebhookService(settings, store)

        first = await service.recover_stalled_calls(now=NOW)
        second = await service.recover_stalled_calls(now=NOW)
        await service.queue.drain()

        assert first["processing"] == 1
        assert second["processing"] == 0

    @pytest.mark.asyncio
    async def test_missing_transcript_is_fetched(self, store) -> None:
        settings = make_settings(VAPI_API_KEY="vapi-key")
        vapi = VapiClient(
            settings,
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"id": "call-1", "artifact": {"transcript": SOLAR_TRANSCRIPT}})
            ),
        )
        store.tables[CALLS_TABLE].append(stored_call("call-1", transcript=None))
        service = WebhookService(settings, store, vapi_client=vapi)

        recovered = await service.recover_stalled_calls(now=NOW)
        await service.queue.drain()

        assert recovered == {"processing": 0, "transcript_fetch": 1}
        call = store.rows(CALLS_TABLE)[0]
        assert call["transcript"] == SOLAR_TRANSCRIPT
        assert call["processed_at"]

    @pytest.mark.asyncio
    async def test_background_sweep_runs_at_start(self, store) -> None:
        settings = make_settings(RECOVERY_SWEEP_INTERVAL_SECONDS=3600, RECOVERY_GRACE_SECONDS=0)
        ended = (datetime.now(timezone.utc) - timedelta(minutes=10)).isoformat()
        store.tables[CALLS_TABLE].append(stored_call("call-1", ended_at=ended, updated_at=ended))
        service = WebhookService(settings, store)

        service.start_recovery()
        for _ in range(5):
            await asyncio.sleep(0)
        await service.queue.drain()
        await service.close()

        assert store.rows(CALLS_TABLE)[0]["processed_at"]
        assert service._recovery_task is None
