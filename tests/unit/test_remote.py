"""Tests for the HTTP remote analysis client."""

from __future__ import annotations

import json

import httpx
import pytest

from tempo.errors import MalformedResponseError, RemoteAnalysisError, TransientRemoteError
from tempo.remote import HttpRemoteAnalysisService

ENDPOINT = "https://analysis.example.test/api/ai/analyze"

VALID_BODY = {
    "headline": {"title": "Strong start", "subtitle": "", "impact_level": "medium"},
    "energy_comment": "Plenty in the tank.",
    "tag_insights": [{"tag": "work", "message": "Tackle the hard task first."}],
    "action_suggestions": [{"title": "Deep work block", "action_type": "focus"}],
    "confidence": 82,
    "generated_at": "2026-03-10T09:00:00Z",
    "tokens_used": 640,
}


def _service(handler, api_key: str | None = "secret") -> HttpRemoteAnalysisService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpRemoteAnalysisService(ENDPOINT, api_key=api_key, client=client)


class TestHttpRemoteAnalysisService:
    """Test suite for HttpRemoteAnalysisService."""

    async def test_success(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json=VALID_BODY)

        service = _service(handler)
        analysis = await service.analyze({"tags": ["work"]})

        assert analysis.headline.title == "Strong start"
        assert analysis.tokens_used == 640
        assert seen["auth"] == "Bearer secret"
        assert seen["payload"] == {"tags": ["work"]}

    async def test_envelope_is_unwrapped(self) -> None:
        service = _service(lambda request: httpx.Response(200, json={"success": True, "data": VALID_BODY}))
        analysis = await service.analyze({})
        assert analysis.confidence == 82

    async def test_no_auth_header_without_key(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert "Authorization" not in request.headers
            return httpx.Response(200, json=VALID_BODY)

        await _service(handler, api_key=None).analyze({})

    @pytest.mark.parametrize("status", [408, 429, 500, 503])
    async def test_retryable_status(self, status: int) -> None:
        service = _service(lambda request: httpx.Response(status))
        with pytest.raises(TransientRemoteError):
            await service.analyze({})

    @pytest.mark.parametrize("status", [400, 401, 404])
    async def test_client_error_is_not_retryable(self, status: int) -> None:
        service = _service(lambda request: httpx.Response(status))
        with pytest.raises(RemoteAnalysisError) as exc_info:
            await service.analyze({})
        assert not exc_info.value.retryable

    async def test_transport_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientRemoteError):
            await _service(handler).analyze({})

    async def test_timeout_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientRemoteError, match="timed out"):
            await _service(handler).analyze({})

    async def test_non_json_body_is_malformed(self) -> None:
        service = _service(lambda request: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(MalformedResponseError):
            await service.analyze({})

    async def test_schema_violation_is_malformed(self) -> None:
        body = {**VALID_BODY, "confidence": 140}
        service = _service(lambda request: httpx.Response(200, json=body))

        with pytest.raises(MalformedResponseError) as exc_info:
            await service.analyze({})

        assert exc_info.value.errors
        assert exc_info.value.errors[0]["loc"] == ("confidence",)

    async def test_context_manager_closes_owned_client(self) -> None:
        async with HttpRemoteAnalysisService(ENDPOINT) as service:
            client = service._get_client()
        assert client.is_closed
