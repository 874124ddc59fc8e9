"""REST client for the n8n workflow management API."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from src.models import WorkflowDefinition, WorkflowSummary

logger = logging.getLogger(__name__)

WEBHOOK_NODE_TYPE = "n8n-nodes-base.webhook"


class ManagementApiError(Exception):
    """Raised when the management API answers with an error status."""

    def __init__(self, status_code: int, message: str, body: Any = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {message}")

    @property
    def remote_message(self) -> str:
        if isinstance(self.body, dict):
            return str(self.body.get("message", ""))
        return str(self.body or "")


class ManagementApiUnreachable(Exception):
    """Raised when the management API cannot be reached at all."""


class ManagementApi:
    """Thin async wrapper around ``/api/v1/workflows`` endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_key_header: str = "X-N8N-API-KEY",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={api_key_header: api_key, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None,
    ) -> Any:
        try:
            resp = await self._client.request(method, path, json=body)
        except httpx.HTTPError as e:
            raise ManagementApiUnreachable(
                f"Could not connect to n8n API at {self._base_url}: {e}",
            ) from e
        try:
            data = resp.json() if resp.content else None
        except ValueError:
            data = resp.text
        if resp.status_code >= 400:
            raise ManagementApiError(resp.status_code, resp.text[:200], data)
        return data

    async def list_workflows(self) -> list[WorkflowSummary]:
        data = await self._request("GET", "/workflows")
        items = data.get("data", []) if isinstance(data, dict) else data or []
        try:
            return [WorkflowSummary.model_validate(item) for item in items]
        except ValidationError as e:
            raise ManagementApiError(200, f"Unexpected workflow listing: {e}", data) from e

    async def get_workflow(self, workflow_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/workflows/{workflow_id}")

    async def create_workflow(self, definition: WorkflowDefinition) -> str:
        """Create a workflow and return its id."""
        created = await self._request("POST", "/workflows", definition.model_dump())
        workflow_id = created.get("id") if isinstance(created, dict) else None
        if not workflow_id:
            raise ManagementApiError(200, "Create response has no workflow id", created)
        return str(workflow_id)

    async def update_workflow(
        self, workflow_id: str, definition: WorkflowDefinition,
    ) -> dict[str, Any]:
        return await self._request(
            "PUT", f"/workflows/{workflow_id}", definition.model_dump(),
        )

    async def activate(self, workflow_id: str) -> None:
        await self._request("POST", f"/workflows/{workflow_id}/activate", {})

    async def deactivate(self, workflow_id: str) -> None:
        await self._request("POST", f"/workflows/{workflow_id}/deactivate", {})

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._request("DELETE", f"/workflows/{workflow_id}")

    async def find_by_name(self, name: str) -> WorkflowSummary | None:
        """First workflow with an exact name match, preferring active ones."""
        matches = [w for w in await self.list_workflows() if w.name == name]
        for workflow in matches:
            if workflow.active:
                return workflow
        return matches[0] if matches else None

    async def close(self) -> None:
        await self._client.aclose()


def webhook_paths(document: dict[str, Any]) -> list[str]:
    """Paths claimed by the webhook trigger nodes of a workflow document."""
    paths = []
    for node in document.get("nodes") or []:
        if node.get("type") != WEBHOOK_NODE_TYPE:
            continue
        path = (node.get("parameters") or {}).get("path")
        if path:
            paths.append(str(path).strip("/"))
    return paths
