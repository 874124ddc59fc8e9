"""Workflow template loading and environment placeholder prefill."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path

from src.models import WorkflowDefinition

logger = logging.getLogger(__name__)

# {{ $env.VAR_NAME }} or {{ $env.VAR_NAME || 'default' }}
_ENV_PLACEHOLDER = re.compile(
    r"\{\{\s*\$env\.([A-Z0-9_]+)\s*(?:\|\|\s*'([^']*)')?\s*\}\}",
)


def _json_escape(value: str) -> str:
    return json.dumps(value)[1:-1]


def prefill(content: str, env: Mapping[str, str] | None = None) -> str:
    """Replace n8n ``$env`` placeholders with literal, JSON-escaped values.

    The environment value wins, then the inline default, then "".
    """
    env = os.environ if env is None else env

    def _replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = env.get(name) or default or ""
        logger.debug("Prefilling workflow var %s", name)
        return _json_escape(value)

    return _ENV_PLACEHOLDER.sub(_replace, content)


def load_template(
    path: str | Path,
    env: Mapping[str, str] | None = None,
    name: str | None = None,
) -> WorkflowDefinition:
    """Read, prefill and parse the workflow template at ``path``.

    Raises:
        FileNotFoundError: If the template does not exist.
        ValueError: If the prefilled document is not valid JSON.
    """
    template_path = Path(path)
    if not template_path.exists():
        raise FileNotFoundError(f"Workflow template not found: {path}")
    document = json.loads(prefill(template_path.read_text(), env))
    # PUT /workflows rejects read-only keys like "active" and "tags"
    definition = WorkflowDefinition.model_validate(document)
    if name and name != definition.name:
        definition = definition.model_copy(update={"name": name})
    return definition
