"""Matches n8n callbacks back to the chat session that dispatched them."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.conversation.gateway import (
    BLANK_MESSAGE,
    ConversationGateway,
    ai_error_message,
    edit_or_send,
    truncate,
)
from src.models import AuditEvent, AuditEventType, CallbackOutcome, CallbackPayload

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.sessions.store import SessionStore

logger = logging.getLogger(__name__)


class CallbackResolver:
    """Turns an inbound callback into exactly one conversation update."""

    def __init__(
        self,
        store: SessionStore,
        gateway: ConversationGateway,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._audit = audit_logger

    async def handle_callback(
        self, session_id: str | None, payload: CallbackPayload,
    ) -> CallbackOutcome:
        """Resolve a callback. Unknown sessions are logged and ignored.

        The session is cleared before the update is sent, so a duplicate
        callback arriving meanwhile finds no session.
        """
        session = self._store.clear(session_id) if session_id else None
        self._record(session_id, payload, known=session is not None)

        if session is None:
            logger.warning("No session found for AI response (session %s)", session_id or "n/a")
            return CallbackOutcome.UNKNOWN_SESSION

        if payload.error:
            outcome, text = CallbackOutcome.ERROR, ai_error_message(payload.error)
        elif payload.response:
            outcome, text = CallbackOutcome.RESPONSE, truncate(payload.response)
        else:
            outcome, text = CallbackOutcome.BLANK, BLANK_MESSAGE

        try:
            await edit_or_send(
                self._gateway, session.channel_id, session.status_message_id, text,
            )
        except Exception:
            logger.exception("Error delivering AI response for session %s", session_id)
        return outcome

    def _record(self, session_id: str | None, payload: CallbackPayload, known: bool) -> None:
        logger.debug(
            "Handling AI response callback (session %s): %s",
            session_id or "n/a", payload.model_dump_json(),
        )
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.CALLBACK_RECEIVED,
                session_id=session_id,
                action="handle_callback",
                result="success" if known else "ignored",
                details={
                    "known_session": known,
                    "has_error": payload.error is not None,
                    "has_response": payload.response is not None,
                },
            ))
