"""FastAPI application receiving n8n callbacks."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from src.config import Settings
from src.conversation.gateway import ConversationGateway
from src.models import CallbackPayload
from src.proxy.auth_middleware import CallbackSecretMiddleware
from src.service import DispatchService, build_service

logger = logging.getLogger(__name__)

CALLBACK_PATHS = frozenset({"/callback", "/ai/callback"})


def create_app_from_env(gateway: ConversationGateway) -> FastAPI:
    """Build the service from environment variables and wrap it in an app."""
    settings = Settings.from_env()
    return create_app(build_service(settings, gateway))


def create_app(service: DispatchService, manage_lifecycle: bool = True) -> FastAPI:
    """Create the callback app around an existing DispatchService.

    When ``manage_lifecycle`` is set the service is started and stopped
    with the app.
    """

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await service.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.stop()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.service = service

    @app.get("/health")
    async def health() -> dict[str, object]:
        return {"status": "ok", "sessions": len(service.store)}

    async def receive_callback(payload: CallbackPayload) -> JSONResponse:
        outcome = await service.handle_callback(payload)
        logger.debug("Callback for session %s resolved as %s", payload.session_id, outcome.value)
        return JSONResponse({"status": "received"})

    for path in sorted(CALLBACK_PATHS):
        app.add_api_route(path, receive_callback, methods=["POST"])

    if service.settings.callback_secret:
        app.add_middleware(
            CallbackSecretMiddleware,
            secret=service.settings.callback_secret,
            protected_paths=CALLBACK_PATHS,
        )

    return app
