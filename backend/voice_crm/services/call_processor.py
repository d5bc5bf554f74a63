"""Post-call processing: extraction, brief, lead merge and side effects for one call."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..core.brief_models import Brief
from ..core.config import Settings
from ..core.db import RecordStore, StoreError
from ..core.models import CallRecord, ExtractedFacts
from ..core.tracing import log_pipeline_event
from ..llm.brief_generator import BriefGenerator
from ..llm.extraction import ExtractionEngine
from ..llm.qualification import should_generate_brief
from .call_reconciler import CALLS_TABLE
from .lead_merge import LeadMergeEngine
from .side_effects import DispatchContext, DispatchResult, SideEffectDispatcher

logger = logging.getLogger(__name__)


class CallNotFound(LookupError):
    """Raised when a call id matches no stored call."""


@dataclass
class ProcessingResult:
    """What processing one call produced."""

    call_id: str
    facts: ExtractedFacts
    brief: Optional[Brief] = None
    lead_id: Optional[str] = None
    dispatch: Optional[DispatchResult] = None
    skipped: Optional[str] = None


def provider_metadata_for(call: CallRecord) -> Dict[str, Any]:
    """Call metadata handed to the extraction and brief steps."""
    return {
        "callId": call.vapi_call_id or call.id,
        "customer": {"number": call.phone_number, "name": call.contact_name},
        "duration": call.duration,
        "endedReason": call.end_reason,
        "summary": call.summary,
        "analysis": call.analysis or {},
    }


class CallProcessor:
    """Runs the post-call pipeline for a completed call with a transcript."""

    def __init__(
        self,
        settings: Settings,
        store: RecordStore,
        extraction_engine: ExtractionEngine,
        brief_generator: BriefGenerator,
        lead_merge: LeadMergeEngine,
        dispatcher: SideEffectDispatcher,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings = settings
        self.store = store
        self.extraction_engine = extraction_engine
        self.brief_generator = brief_generator
        self.lead_merge = lead_merge
        self.dispatcher = dispatcher
        self.clock = clock

    async def load_call(self, call_id: str) -> CallRecord:
        row = await self.store.select_one(CALLS_TABLE, or_eq={"vapi_call_id": call_id, "id": call_id})
        if row is None:
            raise CallNotFound(f"Call {call_id} not found")
        return CallRecord.model_validate(row)

    async def process_call(self, call_id: str) -> ProcessingResult:
        """Process one call end to end.

        Store failures while loading or merging propagate so the job is
        retried; model failures degrade to heuristics inside the engines.

        Args:
            call_id: Provider call id or internal call id

        Returns:
            The processing result
        """
        call = await self.load_call(call_id)
        if not call.ready_for_extraction:
            logger.info(f"Call {call_id} not ready for extraction (status={call.status})")
            return ProcessingResult(call_id=call_id, facts=ExtractedFacts(), skipped="not ready")

        now = call.reference_time or self.clock()
        metadata = provider_metadata_for(call)
        logger.info(f"🔍 Processing call {call_id}")

        facts = await self.extraction_engine.extract(call.transcript, metadata, reference_time=now)
        log_pipeline_event(
            "call_extracted",
            call_id=call_id,
            qualified=facts.is_qualified_lead,
            interest_level=facts.interest_level,
        )

        organization_id = call.organization_id or self.settings.default_organization_id
        phone = facts.phone or call.phone_number
        if not facts.phone and phone:
            facts.phone = phone

        brief: Optional[Brief] = None
        if should_generate_brief(facts, self.settings.brief_interest_threshold):
            existing_lead = None
            if organization_id and phone:
                try:
                    existing_lead = await self.lead_merge.find_lead(organization_id, phone)
                except StoreError as e:
                    logger.warning(f"⚠️ Could not load lead snapshot for {phone}: {e}")
            brief = await self.brief_generator.generate(call.transcript, metadata, existing_lead, now)

        result = ProcessingResult(call_id=call_id, facts=facts, brief=brief)

        if facts.is_qualified_lead:
            assigned_to = None
            if organization_id and phone:
                lead = await self.lead_merge.merge_lead(organization_id, phone, facts, brief, call)
                result.lead_id = lead.id
                assigned_to = lead.assigned_to
            else:
                logger.warning(
                    f"⚠️ Qualified call {call_id} has no organization or phone, lead not created"
                )

            context = DispatchContext(
                organization_id=organization_id,
                lead_id=result.lead_id,
                call_id=call.id,
                campaign_id=call.campaign_id,
                assigned_to=assigned_to,
                contact_name=facts.display_name or call.contact_name,
            )
            result.dispatch = await self.dispatcher.dispatch(context, brief, facts, now)
        else:
            logger.info(f"Call {call_id} not qualified (interest={facts.interest_level})")

        await self._update_call(call, result)
        log_pipeline_event("call_processed", call_id=call_id, lead_id=result.lead_id)
        return result

    async def _update_call(self, call: CallRecord, result: ProcessingResult) -> None:
        facts = result.facts
        metadata = dict(call.metadata or {})
        metadata["extracted"] = facts.model_dump(mode="json")
        if result.brief is not None:
            metadata["brief"] = result.brief.model_dump(mode="json")

        values = {
            "summary": call.summary or facts.summary,
            "sentiment": facts.sentiment,
            "ai_score": facts.interest_level * 10 if facts.interest_level is not None else None,
            "is_qualified": facts.is_qualified_lead,
            "created_crm_contact": result.lead_id is not None,
            "lead_id": result.lead_id,
            "processed_at": self.clock().isoformat(),
            "metadata": metadata,
            "updated_at": self.clock().isoformat(),
        }
        key = call.id or call.vapi_call_id
        try:
            await self.store.update(CALLS_TABLE, values, or_eq={"vapi_call_id": key, "id": key})
        except StoreError as e:
            logger.error(f"❌ Failed to store processing results for call {key}: {e}")
