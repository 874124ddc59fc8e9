"""Workflow provisioner — converges n8n to one active canonical workflow.

Each run:
1. Lists workflows and finds name matches and webhook path conflicts
2. Deactivates every active candidate
3. Picks the canonical definition and deletes the other candidates
4. Uploads the prefilled template (update or create)
5. Activates the canonical definition

Safe at every boot and again after a dispatch 404.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from src.models import (
    AuditEvent,
    AuditEventType,
    ProvisionOutcome,
    WorkflowDefinition,
    WorkflowSummary,
)
from src.workflow.api import (
    ManagementApi,
    ManagementApiError,
    ManagementApiUnreachable,
    webhook_paths,
)

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


class WorkflowProvisioner:
    """Idempotent reconciler for the canonical n8n workflow."""

    def __init__(
        self,
        api: ManagementApi,
        workflow_name: str,
        webhook_path: str,
        load_definition: Callable[[], WorkflowDefinition],
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._api = api
        self._workflow_name = workflow_name
        self._webhook_path = webhook_path.strip("/")
        self._load_definition = load_definition
        self._audit = audit_logger
        self._lock = asyncio.Lock()

    @property
    def workflow_name(self) -> str:
        return self._workflow_name

    async def ensure_workflow_exists(self) -> ProvisionOutcome:
        """Run one reconciliation. Concurrent callers run one after another.

        Never raises for remote failures; they are logged and reported in
        ``ProvisionOutcome.error``.
        """
        async with self._lock:
            outcome = ProvisionOutcome()
            try:
                await self._reconcile(outcome)
            except ManagementApiUnreachable as e:
                logger.error("%s. Is n8n running?", e)
                outcome.error = str(e)
            except ManagementApiError as e:
                logger.error("Error during n8n setup: %s", e)
                logger.debug("n8n API error response: %s", e.body)
                outcome.error = str(e)

            if self._audit:
                self._audit.log(AuditEvent(
                    event_type=AuditEventType.WORKFLOW_PROVISIONED,
                    action="ensure_workflow_exists",
                    result="failure" if outcome.error else "success",
                    details=outcome.model_dump(),
                ))
            return outcome

    async def _reconcile(self, outcome: ProvisionOutcome) -> None:
        workflows = await self._api.list_workflows()
        logger.info("n8n API key validated, %d workflow(s) found", len(workflows))

        name_matches = [w for w in workflows if w.name == self._workflow_name]
        conflicts = await self._find_path_conflicts(workflows, name_matches)
        candidates = name_matches + conflicts

        for workflow in candidates:
            if workflow.active and await self._deactivate(workflow):
                outcome.deactivated.append(workflow.id)

        canonical = self._choose_canonical(name_matches, conflicts)
        for workflow in candidates:
            if canonical is not None and workflow.id == canonical.id:
                continue
            if await self._delete(workflow):
                outcome.deleted.append(workflow.id)

        try:
            definition = self._load_definition()
        except (OSError, ValueError) as e:
            logger.error("Could not load workflow template: %s", e)
            outcome.error = str(e)
            return

        if canonical is not None:
            logger.info(
                'n8n workflow "%s" already exists (ID: %s). Updating to latest version...',
                self._workflow_name, canonical.id,
            )
            await self._api.update_workflow(canonical.id, definition)
            workflow_id = canonical.id
        else:
            logger.info("n8n workflow missing. Importing...")
            workflow_id = await self._api.create_workflow(definition)
            outcome.created = True
            logger.info("Imported n8n workflow (ID: %s)", workflow_id)

        outcome.workflow_id = workflow_id
        outcome.activated = await self._activate(workflow_id, outcome)

    async def _find_path_conflicts(
        self,
        workflows: list[WorkflowSummary],
        name_matches: list[WorkflowSummary],
    ) -> list[WorkflowSummary]:
        matched_ids = {w.id for w in name_matches}
        conflicts = []
        for workflow in workflows:
            if workflow.id in matched_ids:
                continue
            try:
                document = await self._api.get_workflow(workflow.id)
            except (ManagementApiError, ManagementApiUnreachable) as e:
                logger.debug("Could not fetch details for workflow %s: %s", workflow.id, e)
                continue
            if self._webhook_path in webhook_paths(document or {}):
                logger.warning(
                    'Found conflicting workflow "%s" (ID: %s) using path "%s"',
                    workflow.name, workflow.id, self._webhook_path,
                )
                conflicts.append(workflow)
        return conflicts

    @staticmethod
    def _choose_canonical(
        name_matches: list[WorkflowSummary],
        conflicts: list[WorkflowSummary],
    ) -> WorkflowSummary | None:
        for workflow in name_matches:
            if workflow.active:
                return workflow
        if name_matches:
            return name_matches[0]
        return conflicts[0] if conflicts else None

    async def _deactivate(self, workflow: WorkflowSummary) -> bool:
        logger.info('Deactivating workflow "%s" (ID: %s)', workflow.name, workflow.id)
        try:
            await self._api.deactivate(workflow.id)
        except (ManagementApiError, ManagementApiUnreachable) as e:
            logger.warning("Failed to deactivate workflow %s: %s", workflow.id, e)
            return False
        return True

    async def _delete(self, workflow: WorkflowSummary) -> bool:
        logger.info(
            'Deleting redundant/conflicting workflow "%s" (ID: %s)',
            workflow.name, workflow.id,
        )
        try:
            await self._api.delete_workflow(workflow.id)
        except (ManagementApiError, ManagementApiUnreachable) as e:
            logger.warning("Failed to delete workflow %s: %s", workflow.id, e)
            return False
        return True

    async def _activate(self, workflow_id: str, outcome: ProvisionOutcome) -> bool:
        logger.info('Activating "%s"...', self._workflow_name)
        try:
            await self._api.activate(workflow_id)
        except ManagementApiError as e:
            if "conflict" not in e.remote_message.lower():
                raise
            logger.critical(
                'Webhook conflict detected while activating workflow %s. Another '
                'workflow may be using the "%s" path. Check n8n and deactivate '
                "any conflicting workflows.",
                workflow_id, self._webhook_path,
            )
            outcome.error = f"webhook path conflict: {e.remote_message}"
            return False
        logger.info("Activated workflow %s", workflow_id)
        return True
