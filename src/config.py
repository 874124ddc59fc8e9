"""Relay configuration read from environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict

DEFAULT_WORKFLOW_NAME = "Bob Chat Workflow"
DEFAULT_TEMPLATE_PATH = "config/workflow.json"


class ConfigurationError(Exception):
    """Raised when a required endpoint or key is missing."""


def _flag(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    webhook_url: str | None = None
    api_key: str | None = None
    api_key_header: str = "X-N8N-API-KEY"
    workflow_name: str = DEFAULT_WORKFLOW_NAME
    webhook_path: str | None = None
    template_path: str = DEFAULT_TEMPLATE_PATH
    request_timeout: float = 60.0
    provision_on_start: bool = True
    session_ttl_seconds: float = 900.0
    session_sweep_seconds: float = 300.0
    callback_secret: str | None = None
    trail_path: str | None = None
    port: int = 8889

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        return cls(
            webhook_url=env.get("N8N_WEBHOOK_URL") or None,
            api_key=env.get("N8N_API_KEY") or None,
            api_key_header=env.get("N8N_API_KEY_HEADER", "X-N8N-API-KEY"),
            workflow_name=env.get("N8N_WORKFLOW_NAME", DEFAULT_WORKFLOW_NAME),
            webhook_path=env.get("N8N_WEBHOOK_PATH") or None,
            template_path=env.get("N8N_WORKFLOW_TEMPLATE", DEFAULT_TEMPLATE_PATH),
            request_timeout=float(env.get("N8N_REQUEST_TIMEOUT", "60")),
            provision_on_start=_flag(env.get("N8N_PROVISION_ON_START"), True),
            session_ttl_seconds=float(env.get("SESSION_TTL_SECONDS", "900")),
            session_sweep_seconds=float(env.get("SESSION_SWEEP_SECONDS", "300")),
            callback_secret=env.get("CALLBACK_SECRET") or None,
            trail_path=env.get("DISPATCH_TRAIL_PATH") or None,
            port=int(env.get("BOB_PORT", "8889")),
        )

    @property
    def engine_base_url(self) -> str | None:
        """Engine root derived from the webhook URL.

        ``http://n8n:5678/webhook/bob-prompt`` -> ``http://n8n:5678``
        """
        if not self.webhook_url:
            return None
        return self.webhook_url.split("/webhook/")[0].rstrip("/")

    @property
    def management_api_url(self) -> str | None:
        base = self.engine_base_url
        return f"{base}/api/v1" if base else None

    @property
    def canonical_webhook_path(self) -> str | None:
        if self.webhook_path:
            return self.webhook_path.strip("/")
        if not self.webhook_url:
            return None
        path = urlsplit(self.webhook_url).path.rstrip("/")
        return path.rsplit("/", 1)[-1] or None

    def require_webhook(self) -> str:
        if not self.webhook_url:
            raise ConfigurationError("N8N_WEBHOOK_URL is not configured")
        return self.webhook_url

    def require_management(self) -> tuple[str, str]:
        if not self.webhook_url or not self.api_key:
            raise ConfigurationError(
                "N8N_WEBHOOK_URL or N8N_API_KEY not configured",
            )
        return self.require_webhook(), self.api_key

    def auth_headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {self.api_key_header: self.api_key}
