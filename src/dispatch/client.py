"""Dispatch client — delivers a prompt to the n8n webhook with recovery.

At most ``RetryPolicy.max_attempts`` POSTs are made. A 404 first triggers a
workflow resync, then a switch to the fallback URL derived from the
workflow id. Expected failures are returned as ``DispatchFailure``, never
raised.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from src.dispatch.policy import (
    INITIAL_STATE,
    AttemptStatus,
    Attempting,
    Failed,
    ResolveFallbackAndRetry,
    ResyncAndRetry,
    RetryPolicy,
    Succeeded,
    after_attempt,
    after_fallback,
    after_resync,
)
from src.dispatch.transport import AttemptResponse, WebhookTransport
from src.models import (
    DispatchFailure,
    DispatchPayload,
    DispatchResult,
    DispatchSuccess,
    FailureKind,
)
from src.workflow.api import ManagementApiError, ManagementApiUnreachable

if TYPE_CHECKING:
    from src.workflow.api import ManagementApi
    from src.workflow.provisioner import WorkflowProvisioner

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


def derive_fallback_url(engine_base_url: str, workflow_id: str, webhook_path: str) -> str:
    """Workflow-scoped webhook URL, independent of the shared path registry."""
    return f"{engine_base_url.rstrip('/')}/webhook/{workflow_id}/webhook/{webhook_path.strip('/')}"


class DispatchClient:
    """Sends dispatch payloads to the workflow webhook."""

    def __init__(
        self,
        webhook_url: str | None,
        transport: WebhookTransport,
        provisioner: WorkflowProvisioner | None = None,
        management_api: ManagementApi | None = None,
        engine_base_url: str | None = None,
        workflow_name: str = "",
        webhook_path: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        policy: RetryPolicy | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._transport = transport
        self._provisioner = provisioner
        self._api = management_api
        self._engine_base_url = engine_base_url
        self._workflow_name = workflow_name
        self._webhook_path = webhook_path
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._policy = policy or RetryPolicy()
        self._fallback_url: str | None = None
        self._warned_unconfigured = False

    @property
    def fallback_url(self) -> str | None:
        return self._fallback_url

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def dispatch(self, payload: DispatchPayload) -> DispatchResult:
        if not self._webhook_url:
            if not self._warned_unconfigured:
                logger.warning("N8N_WEBHOOK_URL is not configured; dispatch disabled.")
                self._warned_unconfigured = True
            return DispatchFailure(
                kind=FailureKind.NOT_CONFIGURED, error="Webhook URL not configured",
            )

        body = payload.to_wire()
        logger.debug("Sending prompt to n8n (session %s): %r", payload.session_id, payload.prompt)

        last = await self._attempt(INITIAL_STATE.attempt, self._webhook_url, body)
        state = after_attempt(INITIAL_STATE, last.status, self._policy)
        while True:
            if isinstance(state, Succeeded):
                return DispatchSuccess(status=last.status_code or 200, data=last.data)
            if isinstance(state, Failed):
                return DispatchFailure(
                    kind=FailureKind(state.status.value),
                    error=last.error or state.status.value,
                    status=last.status_code,
                    data=last.data,
                )
            if isinstance(state, Attempting):
                url = self._webhook_url
                if state.use_fallback and self._fallback_url:
                    url = self._fallback_url
                last = await self._attempt(state.attempt, url, body)
                state = after_attempt(state, last.status, self._policy)
            elif isinstance(state, ResyncAndRetry):
                await self._resync()
                state = after_resync(state)
            elif isinstance(state, ResolveFallbackAndRetry):
                resolved = await self.resolve_fallback_url()
                state = after_fallback(state, resolved is not None)

    async def _attempt(self, attempt: int, url: str, body: dict[str, object]) -> AttemptResponse:
        logger.debug("Dispatch attempt %d -> %s", attempt, url)
        result = await self._transport.post(url, body, self._headers, self._timeout)
        if result.status is AttemptStatus.SUCCESS:
            logger.debug("n8n response received: %s", json.dumps(result.data, default=str))
        elif result.status is AttemptStatus.TIMEOUT:
            logger.error(
                "Error communicating with n8n: timeout of %gs exceeded. "
                "AI might be taking too long.", self._timeout,
            )
        elif result.status is AttemptStatus.NOT_FOUND:
            logger.error(
                "Error communicating with n8n: 404 Not Found (attempt %d). Make sure "
                "the workflow is IMPORTED and ACTIVE at %s", attempt, url,
            )
        else:
            logger.error("Error communicating with n8n: %s", result.error)
        return result

    async def _resync(self) -> None:
        if self._provisioner is None:
            logger.warning("Webhook returned 404 and no provisioner is configured; retrying")
            return
        logger.info("Webhook returned 404; re-provisioning workflow before retrying")
        await self._provisioner.ensure_workflow_exists()

    async def resolve_fallback_url(self) -> str | None:
        """Find the canonical workflow and derive its id-scoped webhook URL.

        The result is memoized; recomputing it concurrently is harmless.
        """
        if self._fallback_url:
            return self._fallback_url
        if self._api is None or not self._engine_base_url or not self._webhook_path:
            logger.warning("Cannot resolve fallback webhook URL: management API not configured")
            return None
        try:
            workflow = await self._api.find_by_name(self._workflow_name)
        except (ManagementApiError, ManagementApiUnreachable) as e:
            logger.warning("Could not resolve fallback webhook URL: %s", e)
            return None
        if workflow is None:
            logger.warning('No workflow named "%s" to derive a fallback URL from', self._workflow_name)
            return None
        self._fallback_url = derive_fallback_url(
            self._engine_base_url, workflow.id, self._webhook_path,
        )
        logger.info("Resolved fallback webhook URL %s", self._fallback_url)
        return self._fallback_url
