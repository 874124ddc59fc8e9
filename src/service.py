"""Dispatch service — owns the relay's state and lifecycle.

Holds the session store, the sweep timer, the dispatch client (with its
memoized fallback URL), the workflow provisioner and the callback resolver.
One instance is created per process and injected into the HTTP app.
"""

from __future__ import annotations

import functools
import logging
import uuid

import httpx

from src.audit.logger import AuditLogger
from src.callback.resolver import CallbackResolver
from src.config import ConfigurationError, Settings
from src.conversation.gateway import (
    THINKING_MESSAGE,
    ConversationGateway,
    InboundMessage,
    edit_or_send,
    failure_message,
)
from src.dispatch.client import DispatchClient
from src.dispatch.policy import RetryPolicy
from src.dispatch.transport import HttpxWebhookTransport, WebhookTransport
from src.models import (
    AuditEvent,
    AuditEventType,
    CallbackOutcome,
    CallbackPayload,
    DispatchPayload,
    DispatchResult,
    ProvisionOutcome,
    Session,
)
from src.sessions.scheduler import AsyncioIntervalScheduler, Cancellable, IntervalScheduler
from src.sessions.store import SessionStore
from src.workflow.api import ManagementApi
from src.workflow.provisioner import WorkflowProvisioner
from src.workflow.template import load_template

logger = logging.getLogger(__name__)


class DispatchService:
    """Relays chat prompts to n8n and resolves the callbacks."""

    def __init__(
        self,
        settings: Settings,
        gateway: ConversationGateway,
        client: DispatchClient,
        store: SessionStore | None = None,
        provisioner: WorkflowProvisioner | None = None,
        scheduler: IntervalScheduler | None = None,
        audit_logger: AuditLogger | None = None,
        closeables: list[object] | None = None,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.client = client
        self.store = store or SessionStore(ttl_seconds=settings.session_ttl_seconds)
        self.provisioner = provisioner
        self.resolver = CallbackResolver(self.store, gateway, audit_logger)
        self._scheduler = scheduler or AsyncioIntervalScheduler()
        self._audit = audit_logger
        self._closeables = closeables or []
        self._sweep_handle: Cancellable | None = None

    @property
    def running(self) -> bool:
        return self._sweep_handle is not None

    async def start(self) -> ProvisionOutcome | None:
        """Start the session sweep and optionally provision the workflow."""
        if self.running:
            return None
        self._sweep_handle = self._scheduler.every(
            self.settings.session_sweep_seconds, self.store.sweep,
        )
        logger.info(
            "Dispatch service started (session TTL %gs, sweep every %gs)",
            self.store.ttl_seconds, self.settings.session_sweep_seconds,
        )
        if self.settings.provision_on_start:
            return await self.provision()
        return None

    async def stop(self) -> None:
        if self._sweep_handle is not None:
            self._sweep_handle.cancel()
            self._sweep_handle = None
        for resource in self._closeables:
            close = getattr(resource, "close", None)
            if close is not None:
                await close()
        self._closeables = []
        logger.info("Dispatch service stopped")

    async def provision(self) -> ProvisionOutcome | None:
        if self.provisioner is None:
            logger.warning(
                "N8N_WEBHOOK_URL or N8N_API_KEY not configured, skipping n8n workflow setup.",
            )
            return None
        return await self.provisioner.ensure_workflow_exists()

    async def relay_prompt(self, message: InboundMessage) -> DispatchResult:
        """Dispatch a chat message; on failure tell the user and drop the session."""
        session_id = str(uuid.uuid4())
        logger.info("N8N triggered by %s: %s", message.user_tag, message.content)

        try:
            await self.gateway.send_typing(message.channel_id)
        except Exception:
            logger.exception("Error sending typing indicator")

        status_message_id = None
        try:
            status_message_id = await self.gateway.reply_placeholder(
                message.channel_id, message.message_id, THINKING_MESSAGE,
            )
        except Exception:
            logger.exception("Error sending status message")

        self.store.register(Session(
            session_id=session_id,
            channel_id=message.channel_id,
            status_message_id=status_message_id,
            user_id=message.user_id,
            user_tag=message.user_tag,
            prompt=message.content,
        ))
        payload_fields = {
            "prompt": message.content,
            "user": message.username,
            "user_id": message.user_id,
            "session_id": session_id,
            "channel_id": message.channel_id,
            "message_id": message.message_id,
            "status_message_id": status_message_id,
        }
        if message.created_at:
            payload_fields["timestamp"] = message.created_at
        payload = DispatchPayload(**payload_fields)
        self._trail(AuditEventType.PROMPT_DISPATCHED, session_id, "dispatch", "success", {
            "user": f"{message.user_tag} ({message.user_id})",
            "channel_id": message.channel_id,
        })

        result = await self.client.dispatch(payload)
        self._trail(
            AuditEventType.DISPATCH_RESULT, session_id, "dispatch",
            "success" if result.ok else "failure",
            {"status": result.status, "body": result.data if result.ok else result.error},
        )

        if not result.ok:
            logger.warning("No response received from n8n or an error occurred.")
            try:
                await edit_or_send(
                    self.gateway, message.channel_id, status_message_id,
                    failure_message(result),
                )
            except Exception:
                logger.exception("Error reporting dispatch failure to the user")
            self.store.clear(session_id)
        return result

    async def handle_callback(self, payload: CallbackPayload) -> CallbackOutcome:
        return await self.resolver.handle_callback(payload.session_id, payload)

    def _trail(
        self,
        event_type: AuditEventType,
        session_id: str,
        action: str,
        result: str,
        details: dict[str, object],
    ) -> None:
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=event_type,
                session_id=session_id,
                action=action,
                result=result,
                details=details,
            ))


def build_service(
    settings: Settings,
    gateway: ConversationGateway,
    http_transport: httpx.AsyncBaseTransport | None = None,
    webhook_transport: WebhookTransport | None = None,
    scheduler: IntervalScheduler | None = None,
    policy: RetryPolicy | None = None,
) -> DispatchService:
    """Wire a DispatchService from settings.

    Without a webhook URL the service still runs but every dispatch fails
    as not configured; without an API key provisioning is disabled.
    """
    audit_logger = AuditLogger.from_env(settings.trail_path) if settings.trail_path else None
    closeables: list[object] = []

    api: ManagementApi | None = None
    provisioner: WorkflowProvisioner | None = None
    try:
        _, api_key = settings.require_management()
    except ConfigurationError as e:
        logger.warning("%s; workflow provisioning disabled.", e)
    else:
        api = ManagementApi(
            settings.management_api_url or "",
            api_key,
            api_key_header=settings.api_key_header,
            transport=http_transport,
        )
        closeables.append(api)
        provisioner = WorkflowProvisioner(
            api,
            workflow_name=settings.workflow_name,
            webhook_path=settings.canonical_webhook_path or "",
            load_definition=functools.partial(
                load_template, settings.template_path, name=settings.workflow_name,
            ),
            audit_logger=audit_logger,
        )

    if webhook_transport is None:
        webhook_transport = HttpxWebhookTransport(transport=http_transport)
        closeables.append(webhook_transport)

    client = DispatchClient(
        settings.webhook_url,
        webhook_transport,
        provisioner=provisioner,
        management_api=api,
        engine_base_url=settings.engine_base_url,
        workflow_name=settings.workflow_name,
        webhook_path=settings.canonical_webhook_path or "",
        headers=settings.auth_headers(),
        timeout=settings.request_timeout,
        policy=policy,
    )
    return DispatchService(
        settings,
        gateway,
        client,
        provisioner=provisioner,
        scheduler=scheduler,
        audit_logger=audit_logger,
        closeables=closeables,
    )
