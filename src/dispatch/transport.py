"""Outbound webhook transport used by the dispatch client."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from src.dispatch.policy import AttemptStatus, classify_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptResponse:
    """Classified result of one POST to the webhook."""

    status: AttemptStatus
    status_code: int | None = None
    data: Any = None
    error: str | None = None


class WebhookTransport(Protocol):
    async def post(
        self,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str],
        timeout: float,
    ) -> AttemptResponse: ...


def _decode(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return resp.text


class HttpxWebhookTransport:
    """Posts JSON with httpx; never raises for HTTP or network failures."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(transport=transport)

    async def post(
        self,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str],
        timeout: float,
    ) -> AttemptResponse:
        try:
            resp = await self._client.post(
                url, json=body, headers=headers, timeout=timeout,
            )
        except httpx.TimeoutException as e:
            return AttemptResponse(
                status=AttemptStatus.TIMEOUT,
                error=f"Timeout of {timeout:g}s exceeded: {e!r}",
            )
        except httpx.HTTPError as e:
            return AttemptResponse(
                status=AttemptStatus.NETWORK_ERROR, error=str(e) or repr(e),
            )

        data = _decode(resp)
        status = classify_status(resp.status_code)
        error = None
        if status is not AttemptStatus.SUCCESS:
            error = f"HTTP {resp.status_code}: {resp.text[:200]}"
        return AttemptResponse(
            status=status, status_code=resp.status_code, data=data, error=error,
        )

    async def close(self) -> None:
        await self._client.aclose()
