"""Client for the VRT scenarios API - fetches scenarios and viewports to capture."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from vrt.errors import ApiError
from vrt.models.config import VrtConfig
from vrt.models.scenario import ApiPayload
from vrt.models.test_result import ConnectionTestResult

logger = logging.getLogger(__name__)

INVALID_PAYLOAD = "Invalid payload structure: missing meta, viewports, or scenarios"

_DNS_FAILURE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated",
)


def _error_detail(response: httpx.Response) -> tuple[str | None, str | None]:
    """Pull ``{"error": {"code", "message"}}`` out of an error response, if present."""
    try:
        body = response.json()
    except ValueError:
        return None, None
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return None, None
    return error.get("code"), error.get("message")


def _is_dns_failure(exc: Exception) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _DNS_FAILURE_MARKERS)


def _has_payload_shape(data: Any) -> bool:
    return isinstance(data, dict) and all(
        data.get(key) is not None for key in ("meta", "viewports", "scenarios")
    )


class ApiClient:
    """Async client for the scenarios endpoint.

    ``transport`` lets tests substitute an ``httpx.MockTransport``.
    """

    def __init__(self, config: VrtConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.endpoint = config.endpoint
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self._headers(),
            timeout=self.config.playwright.timeout / 1000,
            verify=not self.config.insecure,
            transport=self._transport,
        )

    async def fetch_scenarios(self) -> ApiPayload:
        """GET the endpoint and validate the payload.

        Raises:
            ApiError: On HTTP errors, transport failures or a malformed payload.
        """
        logger.debug("Fetching scenarios from %s", self.endpoint)
        try:
            async with self._client() as client:
                response = await client.get(self.endpoint)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._status_error(e.response) from e
        except httpx.TimeoutException as e:
            raise ApiError("Request timeout: The endpoint took too long to respond") from e
        except httpx.ConnectError as e:
            if _is_dns_failure(e):
                raise ApiError(f"DNS lookup failed: Unable to resolve {self.endpoint}") from e
            raise ApiError(f"Connection refused: Unable to connect to {self.endpoint}") from e
        except httpx.HTTPError as e:
            raise ApiError(f"Network error: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ApiError(f"Invalid JSON response from {self.endpoint}", response.status_code) from e
        if not _has_payload_shape(data):
            raise ApiError(INVALID_PAYLOAD, response.status_code)

        try:
            payload = ApiPayload.model_validate(data)
        except ValidationError as e:
            raise ApiError(f"Invalid payload: {e.error_count()} validation error(s)",
                           response.status_code) from e

        if payload.meta.is_regenerating:
            logger.warning("The scenario list is currently being regenerated; results may be incomplete")
        logger.debug("Fetched %d scenarios, %d viewports", len(payload.scenarios), len(payload.viewports))
        return payload

    @staticmethod
    def _status_error(response: httpx.Response) -> ApiError:
        status = response.status_code
        code, message = _error_detail(response)
        if status == 401:
            return ApiError(
                f"Authentication failed ({code or 'UNAUTHORIZED'}): {message or 'Authentication required'}",
                status,
            )
        if status == 500:
            return ApiError(
                f"Server error ({code or 'SERVER_ERROR'}): {message or 'Internal server error'}",
                status,
            )
        return ApiError(f"HTTP {status}: {message or response.reason_phrase}", status)

    async def fetch_filtered_scenarios(
        self,
        scenario_ids: list[str] | None = None,
        viewport_keys: list[str] | None = None,
    ) -> ApiPayload:
        """Fetch, then narrow to matching scenarios and viewports."""
        payload = await self.fetch_scenarios()
        return filter_payload(payload, scenario_ids, viewport_keys)

    async def test_connection(self) -> ConnectionTestResult:
        """Probe the endpoint and summarise the outcome. Never raises."""
        started = time.monotonic()

        def _elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            async with self._client() as client:
                response = await client.get(self.endpoint)
        except httpx.TimeoutException:
            error = "Connection timeout - server took too long to respond"
        except httpx.ConnectError as e:
            if _is_dns_failure(e):
                error = "DNS lookup failed - check the endpoint URL"
            elif "certificate" in str(e).lower():
                error = f"SSL certificate verification failed: {e}"
            else:
                error = "Connection refused - is the server running?"
        except httpx.HTTPError as e:
            error = str(e) or e.__class__.__name__
        else:
            if response.is_error:
                _, message = _error_detail(response)
                return ConnectionTestResult(
                    success=False, endpoint=self.endpoint, status_code=response.status_code,
                    response_time_ms=_elapsed(), error=message or f"HTTP {response.status_code}",
                )
            try:
                data = response.json()
            except ValueError:
                data = None
            if not _has_payload_shape(data):
                return ConnectionTestResult(
                    success=False, endpoint=self.endpoint, status_code=response.status_code,
                    response_time_ms=_elapsed(), error=INVALID_PAYLOAD,
                )
            meta = data["meta"] if isinstance(data["meta"], dict) else {}
            return ConnectionTestResult(
                success=True,
                endpoint=self.endpoint,
                status_code=response.status_code,
                scenario_count=meta.get("scenario_count"),
                viewport_count=meta.get("viewport_count"),
                is_regenerating=meta.get("is_regenerating"),
                token_required=meta.get("token_required"),
                response_time_ms=_elapsed(),
            )

        return ConnectionTestResult(
            success=False, endpoint=self.endpoint, response_time_ms=_elapsed(), error=error,
        )


def _matches(scenario_id: str, title: str, term: str) -> bool:
    return scenario_id == term or term in scenario_id or term.lower() in title.lower()


def filter_payload(
    payload: ApiPayload,
    scenario_ids: list[str] | None = None,
    viewport_keys: list[str] | None = None,
) -> ApiPayload:
    """Narrow a payload by scenario terms and viewport keys.

    A scenario matches a term on exact id, id substring, or case-insensitive
    title substring. Scenarios left without viewports are dropped.
    """
    scenarios = payload.scenarios
    viewports = payload.viewports

    if scenario_ids:
        scenarios = [
            s for s in scenarios
            if any(_matches(s.id, s.title, term) for term in scenario_ids)
        ]

    if viewport_keys:
        wanted = set(viewport_keys)
        viewports = [v for v in viewports if v.key in wanted]
        scenarios = [
            s.model_copy(update={"viewport_keys": [k for k in s.viewport_keys if k in wanted]})
            for s in scenarios
        ]
        scenarios = [s for s in scenarios if s.viewport_keys]

    meta = payload.meta.model_copy(update={
        "scenario_count": len(scenarios),
        "viewport_count": len(viewports),
    })
    return ApiPayload(meta=meta, viewports=viewports, scenarios=scenarios)
