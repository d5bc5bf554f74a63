"""Client for the Vapi call-detail API, used to re-fetch late transcripts."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..core.config import Settings

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when the provider API cannot be reached or rejects a request."""


class TranscriptNotReady(ProviderError):
    """Raised when a call exists but its transcript is not available yet."""


def extract_transcript(call_data: Dict[str, Any]) -> Optional[str]:
    """Pull the full transcript out of a call-detail response."""
    artifact = call_data.get("artifact") or {}
    for candidate in (artifact.get("transcript"), call_data.get("transcript")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return None


class VapiClient:
    """Thin async wrapper over ``GET /call/{id}``."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.vapi_base_url.rstrip("/")
        self.api_key = settings.vapi_api_key
        self.timeout = settings.provider_timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def get_call(self, call_id: str) -> Dict[str, Any]:
        """Fetch call details.

        Args:
            call_id: Provider call id

        Returns:
            Call detail JSON

        Raises:
            ProviderError: On transport errors or non-2xx responses
        """
        if not self.api_key:
            raise ProviderError("VAPI_API_KEY not configured")

        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/call/{call_id}", headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(f"Vapi returned {e.response.status_code} for call {call_id}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Vapi request failed for call {call_id}: {e}") from e

        return response.json()

    async def fetch_transcript(self, call_id: str) -> str:
        """Fetch the transcript for a call.

        Raises:
            TranscriptNotReady: If the call has no transcript yet
            ProviderError: If the request fails
        """
        call_data = await self.get_call(call_id)
        transcript = extract_transcript(call_data)
        if not transcript:
            raise TranscriptNotReady(f"Transcript not ready for call {call_id}")
        logger.info(f"✅ Fetched transcript for call {call_id} ({len(transcript)} chars)")
        return transcript
