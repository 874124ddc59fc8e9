"""Click CLI for operating the n8n dispatch relay."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import uuid

import click

from src.config import ConfigurationError, Settings
from src.conversation.gateway import LoggingGateway
from src.models import DispatchPayload
from src.service import DispatchService, build_service
from src.workflow.api import ManagementApi, ManagementApiError, ManagementApiUnreachable


def _service(ctx: click.Context) -> DispatchService:
    return build_service(
        ctx.obj["settings"],
        LoggingGateway(),
        http_transport=ctx.obj.get("http_transport"),
    )


@click.group()
@click.option("--log-level", default="INFO", help="Logging level.")
@click.pass_context
def cli(ctx: click.Context, log_level: str) -> None:
    """Relay chat prompts to an n8n workflow and receive its callbacks."""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj.setdefault("settings", Settings.from_env())


@cli.command()
@click.option("--host", default="0.0.0.0", help="Interface to bind.")
@click.option("--port", type=int, default=None, help="Port (defaults to BOB_PORT).")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int | None) -> None:
    """Run the callback HTTP server."""
    import uvicorn

    from src.proxy.app import create_app

    settings: Settings = ctx.obj["settings"]
    uvicorn.run(create_app(_service(ctx)), host=host, port=port or settings.port)


@cli.command()
@click.pass_context
def provision(ctx: click.Context) -> None:
    """Reconcile the remote workflow once and print the outcome."""

    async def _run() -> None:
        service = _service(ctx)
        try:
            outcome = await service.provision()
        finally:
            await service.stop()
        if outcome is None:
            raise click.ClickException("N8N_WEBHOOK_URL or N8N_API_KEY is missing")
        click.echo(outcome.model_dump_json(indent=2))
        if outcome.error:
            ctx.exit(1)

    asyncio.run(_run())


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify the API key and report the canonical workflow's state."""
    settings: Settings = ctx.obj["settings"]
    try:
        _, api_key = settings.require_management()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    async def _run() -> dict[str, object]:
        api = ManagementApi(
            settings.management_api_url or "",
            api_key,
            api_key_header=settings.api_key_header,
            transport=ctx.obj.get("http_transport"),
        )
        try:
            workflows = await api.list_workflows()
        finally:
            await api.close()
        match = next((w for w in workflows if w.name == settings.workflow_name), None)
        return {
            "api_url": settings.management_api_url,
            "workflows": len(workflows),
            "workflow_name": settings.workflow_name,
            "found": match is not None,
            "workflow_id": match.id if match else None,
            "active": match.active if match else False,
        }

    try:
        report = asyncio.run(_run())
    except (ManagementApiError, ManagementApiUnreachable) as e:
        raise click.ClickException(f"Error connecting to n8n API: {e}") from e
    click.echo(json.dumps(report, indent=2))


@cli.command()
@click.option("--prompt", default="Hello, this is a test prompt.", help="Prompt to send.")
@click.option("--user", default="Tester", help="User name in the payload.")
@click.pass_context
def ping(ctx: click.Context, prompt: str, user: str) -> None:
    """Send one test payload to the webhook and print the result."""

    async def _run() -> None:
        service = _service(ctx)
        try:
            result = await service.client.dispatch(DispatchPayload(
                prompt=prompt,
                user=user,
                user_id="123",
                session_id=str(uuid.uuid4()),
                channel_id="test-channel",
                message_id="test-msg-id",
                status_message_id="test-status-id",
            ))
        finally:
            await service.stop()
        click.echo(result.model_dump_json(indent=2))
        if not result.ok:
            ctx.exit(1)

    asyncio.run(_run())


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
