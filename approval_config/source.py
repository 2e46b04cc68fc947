"""
SettingsDefinitionSource -- the YAML-backed ``DefinitionSource``.

Resolution order for ``(workflow_type, tenant_id)``:
    1. the tenant's own block, if it defines the workflow;
    2. the ``default`` tenant block.
The calendar follows the same order independently, so a tenant may keep
the default approver chains and only override its weekend days.

Compiled definitions are cached per ``(workflow_type, tenant_id)``; the
settings object is immutable, so the cache never goes stale.
"""

from __future__ import annotations

import threading

from approval_config.compiler import compile_definition
from approval_config.schema import (
    DEFAULT_TENANT,
    ApprovalSettingsSet,
    CalendarSettingsDef,
    TenantApprovalSettings,
    WorkflowApprovalDef,
)
from approval_config.validator import validate_settings
from approval_kernel.domain.approval import ApprovalChainDefinition
from approval_kernel.exceptions import ConfigurationError
from approval_kernel.logging_config import get_logger

logger = get_logger("config.source")


class SettingsDefinitionSource:
    """Resolves chain definitions from a validated ``ApprovalSettingsSet``."""

    def __init__(self, settings: ApprovalSettingsSet):
        validation = validate_settings(settings)
        if not validation.is_valid:
            raise ConfigurationError("*", settings.settings_id, validation.errors)
        for warning in validation.warnings:
            logger.warning("approval_settings_warning", extra={"warning": warning})

        self._settings = settings
        self._cache: dict[tuple[str, str], ApprovalChainDefinition] = {}
        self._lock = threading.Lock()

    @property
    def settings(self) -> ApprovalSettingsSet:
        return self._settings

    def resolve_definition(
        self, workflow_type: str, tenant_id: str,
    ) -> ApprovalChainDefinition:
        key = (workflow_type, tenant_id)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        workflow = self._find_workflow(workflow_type, tenant_id)
        if workflow is None:
            raise ConfigurationError(
                workflow_type, tenant_id, ["no approval settings for this workflow"],
            )
        try:
            definition = compile_definition(
                workflow, tenant_id, self._find_calendar(tenant_id),
            )
        except ValueError as exc:
            raise ConfigurationError(workflow_type, tenant_id, [str(exc)]) from exc

        with self._lock:
            self._cache[key] = definition
        logger.debug(
            "definition_compiled",
            extra={
                "workflow_type": workflow_type,
                "tenant_id": tenant_id,
                "step_count": len(definition.steps),
                "definition_hash": definition.definition_hash,
            },
        )
        return definition

    def workflow_types(self, tenant_id: str) -> list[str]:
        """Workflow types resolvable for ``tenant_id`` (own plus default)."""
        names: dict[str, None] = {}
        for block in self._blocks(tenant_id):
            for wf in block.workflows:
                names.setdefault(wf.workflow_type, None)
        return list(names)

    def _blocks(self, tenant_id: str) -> list[TenantApprovalSettings]:
        blocks = []
        own = self._settings.tenant(tenant_id)
        if own is not None:
            blocks.append(own)
        if tenant_id != DEFAULT_TENANT:
            default = self._settings.tenant(DEFAULT_TENANT)
            if default is not None:
                blocks.append(default)
        return blocks

    def _find_workflow(self, workflow_type: str, tenant_id: str) -> WorkflowApprovalDef | None:
        for block in self._blocks(tenant_id):
            wf = block.workflow(workflow_type)
            if wf is not None:
                return wf
        return None

    def _find_calendar(self, tenant_id: str) -> CalendarSettingsDef | None:
        for block in self._blocks(tenant_id):
            if block.calendar is not None:
                return block.calendar
        return None
