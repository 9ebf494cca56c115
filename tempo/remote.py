"""HTTP client for the remote analysis service."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from tempo.errors import MalformedResponseError, RemoteAnalysisError, TransientRemoteError
from tempo.models import EnhancedAnalysis

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 425, 429}


class HttpRemoteAnalysisService:
    """RemoteAnalysisService implementation POSTing JSON over httpx.

    Error mapping:
        - Timeouts, transport errors, 408/425/429 and 5xx: TransientRemoteError
        - Body that is not JSON or fails the schema: MalformedResponseError
        - Any other non-2xx status: RemoteAnalysisError
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize remote analysis client.

        Args:
            endpoint: URL receiving the analysis POST
            api_key: Optional bearer token
            timeout: Client-level timeout in seconds
            client: Preconfigured client (owned by the caller)
        """
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> HttpRemoteAnalysisService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def analyze(self, payload: dict[str, Any]) -> EnhancedAnalysis:
        """POST a request payload and validate the response.

        Args:
            payload: Battery snapshot, tag set and minimal context

        Returns:
            Validated enhanced analysis

        Raises:
            TransientRemoteError: Retryable failure
            MalformedResponseError: Response failed schema validation
            RemoteAnalysisError: Other failure
        """
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            response = await self._get_client().post(self.endpoint, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientRemoteError(f"Remote analysis timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientRemoteError(f"Remote analysis transport error: {e}") from e

        status = response.status_code
        if status in _RETRYABLE_STATUS or status >= 500:
            raise TransientRemoteError(f"Remote analysis returned HTTP {status}")
        if status >= 400:
            raise RemoteAnalysisError(f"Remote analysis rejected request: HTTP {status}")

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Remote analysis returned non-JSON body: {e}") from e

        # Accept both a bare analysis and a {"success": ..., "data": {...}} envelope
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]

        try:
            analysis = EnhancedAnalysis.model_validate(body)
        except ValidationError as e:
            raise MalformedResponseError(
                f"Remote analysis response failed validation ({e.error_count()} errors)",
                errors=e.errors(include_url=False),
            ) from e

        logger.debug(
            f"Remote analysis received (confidence={analysis.confidence:.0f}, "
            f"tokens={analysis.tokens_used})"
        )
        return analysis
