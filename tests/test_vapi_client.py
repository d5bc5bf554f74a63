"""Tests for the provider call-detail client."""

import httpx
import pytest

from voice_crm.services.vapi_client import ProviderError, TranscriptNotReady, VapiClient

from .fakes import make_settings


def client_with(handler) -> VapiClient:
    return VapiClient(make_settings(VAPI_API_KEY="vapi-key"), transport=httpx.MockTransport(handler))


class TestVapiClient:
    """Transcript re-fetch."""

    @pytest.mark.asyncio
    async def test_fetch_transcript(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"id": "call-1", "artifact": {"transcript": "AI: Hi\nUser: Hello"}})

        transcript = await client_with(handler).fetch_transcript("call-1")

        assert transcript == "AI: Hi\nUser: Hello"
        assert seen == {"url": "https://api.vapi.ai/call/call-1", "auth": "Bearer vapi-key"}

    @pytest.mark.asyncio
    async def test_missing_transcript_not_ready(self) -> None:
        client = client_with(lambda request: httpx.Response(200, json={"id": "call-1", "status": "ended"}))
        with pytest.raises(TranscriptNotReady):
            await client.fetch_transcript("call-1")

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        client = client_with(lambda request: httpx.Response(404, json={"message": "not found"}))
        with pytest.raises(ProviderError, match="404"):
            await client.get_call("call-1")

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderError, match="request failed"):
            await client_with(handler).get_call("call-1")

    @pytest.mark.asyncio
    async def test_unconfigured(self) -> None:
        client = VapiClient(make_settings())
        assert client.configured is False
        with pytest.raises(ProviderError):
            await client.get_call("call-1")
