"""Shared Pydantic data models for the n8n dispatch relay."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Enums ---


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"
    NOT_CONFIGURED = "not_configured"


class CallbackOutcome(str, Enum):
    UNKNOWN_SESSION = "unknown_session"
    ERROR = "error"
    RESPONSE = "response"
    BLANK = "blank"


class AuditEventType(str, Enum):
    PROMPT_DISPATCHED = "prompt_dispatched"
    DISPATCH_RESULT = "dispatch_result"
    CALLBACK_RECEIVED = "callback_received"
    WORKFLOW_PROVISIONED = "workflow_provisioned"


# --- Session Models ---


class Session(BaseModel):
    """Conversational context waiting for a workflow callback."""

    session_id: str
    channel_id: str
    status_message_id: str | None = None
    user_id: str
    user_tag: str
    prompt: str
    created_at: float = 0.0


# --- Dispatch Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class DispatchPayload(BaseModel):
    """Body POSTed to the workflow webhook.

    Field names are snake_case in Python and camelCase on the wire.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    prompt: str
    user: str
    user_id: str = Field(alias="userId")
    session_id: str = Field(alias="sessionId")
    channel_id: str = Field(alias="channelId")
    message_id: str = Field(alias="messageId")
    status_message_id: str | None = Field(default=None, alias="statusMessageId")
    timestamp: str = Field(default_factory=_now_iso)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class DispatchSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: Literal[True] = True
    status: int
    data: Any = None


class DispatchFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: Literal[False] = False
    kind: FailureKind
    error: str
    status: int | None = None
    data: Any = None


DispatchResult = DispatchSuccess | DispatchFailure


# --- Workflow Models ---


class WorkflowSummary(BaseModel):
    """One entry of the management API's workflow listing."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    active: bool = False


class WorkflowDefinition(BaseModel):
    """The subset of a workflow document accepted by PUT/POST /workflows."""

    name: str
    nodes: list[dict[str, Any]]
    connections: dict[str, Any] = Field(default_factory=dict)
    settings: dict[str, Any] = Field(default_factory=dict)


class ProvisionOutcome(BaseModel):
    """What a single provisioning run did to the remote engine."""

    workflow_id: str | None = None
    created: bool = False
    activated: bool = False
    deactivated: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    error: str | None = None


# --- Callback Models ---


class CallbackPayload(BaseModel):
    """Inbound body of POST /callback.

    ``response`` and ``error`` may both be absent, which is a blank result.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: str | None = Field(default=None, alias="sessionId")
    response: str | None = None
    error: str | None = None

    @field_validator("response", "error", mode="before")
    @classmethod
    def _stringify(cls, value: object) -> object:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)


# --- Audit Models ---


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    session_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "ignored"
    details: dict[str, object] | None = None
