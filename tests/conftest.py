"""Shared test fixtures for the n8n dispatch relay."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from src.config import Settings
from src.dispatch.policy import AttemptStatus
from src.dispatch.transport import AttemptResponse
from src.models import Session

WEBHOOK_URL = "http://n8n:5678/webhook/bob-prompt"
API_KEY = "test-api-key"
CONFIG_DIR = Path(__file__).parent.parent / "config"


# --- Virtual time ---


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHandle:
    def __init__(self, scheduler: FakeScheduler, period: float, callback: Callable[[], object]) -> None:
        self.scheduler = scheduler
        self.period = period
        self.callback = callback
        self.cancelled = False
        self.next_due = scheduler.clock.now + period

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Interval scheduler driven by a FakeClock."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.handles: list[FakeHandle] = []

    def every(self, period: float, callback: Callable[[], object]) -> FakeHandle:
        handle = FakeHandle(self, period, callback)
        self.handles.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        target = self.clock.now + seconds
        while True:
            due = [h for h in self.handles if not h.cancelled and h.next_due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.next_due)
            self.clock.now = handle.next_due
            handle.callback()
            handle.next_due += handle.period
        self.clock.now = target


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> FakeScheduler:
    return FakeScheduler(clock)


# --- Conversation layer ---


class RecordingGateway:
    """ConversationGateway that records every call."""

    def __init__(self, placeholder_id: str | None = "status-1") -> None:
        self.placeholder_id = placeholder_id
        self.typing: list[str] = []
        self.placeholders: list[tuple[str, str, str]] = []
        self.edits: list[tuple[str, str, str]] = []
        self.sent: list[tuple[str, str]] = []
        self.missing_messages: set[str] = set()

    @property
    def updates(self) -> list[tuple[str, ...]]:
        return [*self.edits, *self.sent]

    async def send_typing(self, channel_id: str) -> None:
        self.typing.append(channel_id)

    async def reply_placeholder(self, channel_id: str, message_id: str, text: str) -> str | None:
        self.placeholders.append((channel_id, message_id, text))
        return self.placeholder_id

    async def edit_message(self, channel_id: str, message_id: str, text: str) -> bool:
        if message_id in self.missing_messages:
            return False
        self.edits.append((channel_id, message_id, text))
        return True

    async def send_message(self, channel_id: str, text: str) -> None:
        self.sent.append((channel_id, text))


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


# --- Webhook transport ---


class ScriptedTransport:
    """WebhookTransport that replays a fixed list of attempt responses."""

    def __init__(self, *responses: AttemptResponse) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def post(
        self, url: str, body: dict[str, Any], headers: dict[str, str], timeout: float,
    ) -> AttemptResponse:
        self.calls.append({"url": url, "body": body, "headers": headers, "timeout": timeout})
        if not self._responses:
            raise AssertionError("unexpected extra webhook attempt")
        return self._responses.pop(0)

    @property
    def urls(self) -> list[str]:
        return [c["url"] for c in self.calls]


def ok(status_code: int = 200, data: Any = None) -> AttemptResponse:
    return AttemptResponse(status=AttemptStatus.SUCCESS, status_code=status_code, data=data)


def http_error(status_code: int) -> AttemptResponse:
    from src.dispatch.policy import classify_status

    return AttemptResponse(
        status=classify_status(status_code),
        status_code=status_code,
        error=f"HTTP {status_code}",
    )


def timeout() -> AttemptResponse:
    return AttemptResponse(status=AttemptStatus.TIMEOUT, error="Timeout of 60s exceeded")


# --- Fake n8n server ---


class FakeN8n:
    """In-memory n8n serving the management API and webhooks via MockTransport."""

    def __init__(self) -> None:
        self.workflows: dict[str, dict[str, Any]] = {}
        self.requests: list[tuple[str, str]] = []
        self.webhook_bodies: list[dict[str, Any]] = []
        self.failures: dict[tuple[str, str], httpx.Response] = {}
        self._next_id = 100

    def add(self, name: str, active: bool = False, path: str | None = None) -> str:
        self._next_id += 1
        workflow_id = f"wf{self._next_id}"
        nodes = []
        if path:
            nodes.append({
                "name": "Webhook",
                "type": "n8n-nodes-base.webhook",
                "parameters": {"path": path},
            })
        self.workflows[workflow_id] = {
            "id": workflow_id, "name": name, "active": active,
            "nodes": nodes, "connections": {}, "settings": {},
        }
        return workflow_id

    def fail(self, method: str, path: str, status_code: int, body: Any = None) -> None:
        self.failures[(method, path)] = httpx.Response(status_code, json=body or {})

    def count(self, method: str, prefix: str = "") -> int:
        return sum(1 for m, p in self.requests if m == method and p.startswith(prefix))

    def _paths(self, workflow: dict[str, Any]) -> list[str]:
        return [
            n["parameters"].get("path")
            for n in workflow["nodes"]
            if n.get("type") == "n8n-nodes-base.webhook"
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))
        if (method, path) in self.failures:
            return self.failures[(method, path)]
        if path.startswith("/webhook/"):
            return self._webhook(request, path[len("/webhook/"):])
        if request.headers.get("x-n8n-api-key") != API_KEY:
            return httpx.Response(401, json={"message": "unauthorized"})

        parts = path.removeprefix("/api/v1/workflows").strip("/").split("/")
        body = json.loads(request.content) if request.content else None
        if parts == [""]:
            if method == "GET":
                listing = [
                    {"id": w["id"], "name": w["name"], "active": w["active"]}
                    for w in self.workflows.values()
                ]
                return httpx.Response(200, json={"data": listing})
            if method == "POST":
                assert set(body) == {"name", "nodes", "connections", "settings"}
                self._next_id += 1
                workflow_id = f"wf{self._next_id}"
                self.workflows[workflow_id] = {"id": workflow_id, "active": False, **body}
                return httpx.Response(200, json=self.workflows[workflow_id])
        workflow = self.workflows.get(parts[0])
        if workflow is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if len(parts) == 1:
            if method == "GET":
                return httpx.Response(200, json=workflow)
            if method == "PUT":
                assert set(body) == {"name", "nodes", "connections", "settings"}
                workflow.update(body)
                return httpx.Response(200, json=workflow)
            if method == "DELETE":
                del self.workflows[parts[0]]
                return httpx.Response(200, json=workflow)
        if parts[1:] == ["activate"]:
            for other in self.workflows.values():
                if other is not workflow and other["active"] and (
                    set(self._paths(other)) & set(self._paths(workflow))
                ):
                    return httpx.Response(
                        400, json={"message": "There is a conflict with one of the webhooks."},
                    )
            workflow["active"] = True
            return httpx.Response(200, json=workflow)
        if parts[1:] == ["deactivate"]:
            workflow["active"] = False
            return httpx.Response(200, json=workflow)
        return httpx.Response(405)

    def _webhook(self, request: httpx.Request, rest: str) -> httpx.Response:
        segments = rest.split("/")
        for workflow in self.workflows.values():
            if not workflow["active"]:
                continue
            paths = self._paths(workflow)
            direct = rest in paths
            scoped = len(segments) == 3 and segments[0] == workflow["id"] and segments[2] in paths
            if direct or scoped:
                self.webhook_bodies.append(json.loads(request.content))
                return httpx.Response(200, json={"message": "Workflow was started"})
        return httpx.Response(404, json={"message": f"The requested webhook \"{rest}\" is not registered."})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_n8n() -> FakeN8n:
    return FakeN8n()


# --- Settings and sessions ---


def make_settings(**kwargs: Any) -> Settings:
    defaults: dict[str, Any] = {
        "webhook_url": WEBHOOK_URL,
        "api_key": API_KEY,
        "template_path": str(CONFIG_DIR / "workflow.json"),
        "provision_on_start": False,
    }
    defaults.update(kwargs)
    return Settings(**defaults)


def make_session(**kwargs: Any) -> Session:
    defaults: dict[str, Any] = {
        "session_id": "sess-1",
        "channel_id": "chan-1",
        "status_message_id": "status-1",
        "user_id": "user-1",
        "user_tag": "tester#0001",
        "prompt": "bob, what's my combat level?",
    }
    defaults.update(kwargs)
    return Session(**defaults)
