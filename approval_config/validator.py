"""
Configuration Validator (``approval_config.validator``).

Responsibility
--------------
Validates an ``ApprovalSettingsSet`` before any definition is compiled
from it.

Invariants enforced
-------------------
* Every role named in an approver chain, a fallback list or a cc list
  belongs to the closed ``Role`` enumeration.
* Approver chains are non-empty and name each role at most once.
* ``auto_approve_after_days`` is never negative.
* Weekend day names are real weekdays, and at least one weekday remains a
  working day when weekends are excluded.
* Tenant ids and workflow types are unique within their scope.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> settings MUST
  NOT be used; ``SettingsDefinitionSource`` raises ``ConfigurationError``.
* Validation warnings  -> settings are usable but should be reviewed
  (e.g. a single-level workflow listing several approvers).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from approval_config.schema import (
    ApprovalSettingsSet,
    CalendarSettingsDef,
    TenantApprovalSettings,
    WorkflowApprovalDef,
)
from approval_kernel.domain.calendar import parse_weekday
from approval_kernel.domain.roles import Role


@dataclass
class ConfigValidationResult:
    """
    Result of settings validation.

    ``is_valid`` is True only when ``errors`` is empty.  Warnings do not
    block compilation.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_settings(settings: ApprovalSettingsSet) -> ConfigValidationResult:
    """Validate every tenant block of ``settings``."""
    result = ConfigValidationResult()

    seen_tenants: set[str] = set()
    for tenant in settings.tenants:
        if not tenant.tenant_id:
            result.add_error("Tenant block with empty tenant_id")
        elif tenant.tenant_id in seen_tenants:
            result.add_error(f"Duplicate tenant block: '{tenant.tenant_id}'")
        seen_tenants.add(tenant.tenant_id)
        _validate_tenant(tenant, result)

    return result


def validate_workflow(
    workflow: WorkflowApprovalDef,
    scope: str = "",
) -> ConfigValidationResult:
    """Validate a single workflow block (used by the source per resolution)."""
    result = ConfigValidationResult()
    _validate_workflow(workflow, scope or workflow.workflow_type, result)
    return result


def _validate_tenant(tenant: TenantApprovalSettings, result: ConfigValidationResult) -> None:
    if tenant.calendar is not None:
        _validate_calendar(tenant.calendar, tenant.tenant_id, result)

    seen: set[str] = set()
    for wf in tenant.workflows:
        scope = f"{tenant.tenant_id}/{wf.workflow_type}"
        if wf.workflow_type in seen:
            result.add_error(f"{scope}: duplicate workflow block")
        seen.add(wf.workflow_type)
        _validate_workflow(wf, scope, result)


def _validate_workflow(
    wf: WorkflowApprovalDef,
    scope: str,
    result: ConfigValidationResult,
) -> None:
    if not wf.workflow_type:
        result.add_error(f"{scope}: workflow_type is empty")

    if not wf.approver_chain:
        result.add_error(f"{scope}: approver_chain is empty")
    elif not wf.multi_level_approval and len(wf.approver_chain) > 1:
        result.add_warning(
            f"{scope}: multi_level_approval is off; only "
            f"'{wf.approver_chain[0].role}' of {len(wf.approver_chain)} approvers is used"
        )

    effective = wf.approver_chain if wf.multi_level_approval else wf.approver_chain[:1]
    seen_roles: set[str] = set()
    for step in effective:
        role = Role.parse(step.role)
        if role is None:
            result.add_error(f"{scope}: unknown approver role '{step.role}'")
            continue
        if role.value in seen_roles:
            result.add_error(f"{scope}: role '{role.value}' appears more than once in approver_chain")
        seen_roles.add(role.value)
        for fallback in step.fallback_roles or ():
            if Role.parse(fallback) is None:
                result.add_error(f"{scope}: unknown fallback role '{fallback}' for '{step.role}'")

    for fallback in wf.approval_fallback:
        if Role.parse(fallback) is None:
            result.add_error(f"{scope}: unknown approval_fallback role '{fallback}'")

    for cc in wf.notifications.notification_cc_roles:
        if Role.parse(cc) is None:
            result.add_error(f"{scope}: unknown notification_cc_roles entry '{cc}'")

    if wf.auto_approve_after_days < 0:
        result.add_error(
            f"{scope}: auto_approve_after_days must be >= 0, got {wf.auto_approve_after_days}"
        )
    if wf.version < 1:
        result.add_error(f"{scope}: version must be >= 1, got {wf.version}")


def _validate_calendar(
    calendar: CalendarSettingsDef,
    tenant_id: str,
    result: ConfigValidationResult,
) -> None:
    indexes: set[int] = set()
    for name in calendar.weekend_days:
        index = parse_weekday(name)
        if index is None:
            result.add_error(f"{tenant_id}: unknown weekend day '{name}'")
        else:
            indexes.add(index)
    if calendar.exclude_weekends and len(indexes) >= 7:
        result.add_error(f"{tenant_id}: every day of the week is a weekend day")
