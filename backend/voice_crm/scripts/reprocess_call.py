"""Re-run post-call processing for one stored call.

Usage:
    python -m voice_crm.scripts.reprocess_call <call_id> [--fetch-transcript]
"""

from __future__ import annotations

import asyncio
import json
import sys

from pydantic import BaseModel, ValidationError

from ..core.config import get_settings
from ..core.db import get_store
from ..services.call_processor import CallNotFound
from ..services.vapi_client import ProviderError
from ..services.webhook_service import WebhookService


class CLIArgs(BaseModel):
    """Validated CLI arguments."""

    call_id: str
    fetch_transcript: bool = False


def print_section(title: str, width: int = 70) -> None:
    print(f"\n{'=' * width}")
    print(title)
    print(f"{'=' * width}")


async def main(args: CLIArgs) -> int:
    settings = get_settings()
    settings.validate_required()
    service = WebhookService(settings, get_store(settings))

    print_section(f"🔄 Reprocessing Call: {args.call_id}")
    try:
        if args.fetch_transcript:
            transcript = await service.vapi_client.fetch_transcript(args.call_id)
            await service.reconciler.attach_transcript(args.call_id, transcript)
            print(f"📝 Transcript fetched ({len(transcript)} chars)")
            # attach_transcript already queued processing
            await service.queue.drain()
            print("\n✅ Call reprocessed via queue")
            return 0

        result = await service.processor.process_call(args.call_id)
    except (CallNotFound, ProviderError) as e:
        print(f"\n❌ Error: {e}")
        return 1
    finally:
        await service.close()

    if result.skipped:
        print(f"\n⚠️  Skipped: {result.skipped}")
        return 1

    facts = result.facts
    print(f"Qualified:      {facts.is_qualified_lead}")
    print(f"Interest level: {facts.interest_level}")
    print(f"Lead:           {result.lead_id or '-'}")
    if result.brief is not None:
        print(f"Brief source:   {result.brief.source}")
        missing = result.brief.missing_fields()
        print(f"Missing info:   {', '.join(missing) if missing else 'none'}")
    if result.dispatch is not None:
        print(
            f"Created:        {result.dispatch.appointments_created} appointments, "
            f"{result.dispatch.tasks_created} tasks, {result.dispatch.follow_ups_created} follow-ups"
        )
        for failure in result.dispatch.failures:
            print(f"  ❌ {failure}")
    print_section("Extracted facts")
    print(json.dumps(facts.model_dump(exclude_none=True), indent=2, default=str))
    print("\n✅ Call reprocessed successfully!")
    return 0


if __name__ == "__main__":
    try:
        cli_args = CLIArgs(
            call_id=sys.argv[1],
            fetch_transcript="--fetch-transcript" in sys.argv[2:],
        )
    except (IndexError, ValidationError) as exc:  # pragma: no cover - CLI guard
        print("Usage:")
        print("  python -m voice_crm.scripts.reprocess_call <call_id> [--fetch-transcript]")
        raise SystemExit(1) from exc
    raise SystemExit(asyncio.run(main(cli_args)))
