"""
Configuration Schema (``approval_config.schema``).

Responsibility
--------------
Frozen dataclasses describing tenant approval settings as written in YAML:
per-workflow approver chains, fallback roles, auto-approval waiting periods,
notification preferences, and the tenant work calendar.

Architecture position
---------------------
**Config layer** -- pure data.  Role and weekday values are kept as plain
strings here; the validator checks them and the compiler turns them into
kernel domain types.

Example YAML::

    settings_id: acme-hr
    version: 3
    tenants:
      - tenant_id: default
        calendar:
          exclude_weekends: true
          weekend_days: [saturday, sunday]
        workflows:
          - workflow_type: leave
            multi_level_approval: true
            approver_chain: [manager, hr_manager]
            approval_fallback: [super_admin]
            auto_approve_after_days: 3
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

DEFAULT_TENANT = "default"


@dataclass(frozen=True)
class ApproverStepDef:
    """One ``approver_chain`` entry: a role, optionally with its own fallbacks.

    ``fallback_roles`` of None means "use the workflow's approval_fallback".
    """

    role: str
    fallback_roles: tuple[str, ...] | None = None


@dataclass(frozen=True)
class NotificationSettingsDef:
    notify_approver: bool = True
    notify_employee_on_decision: bool = True
    notify_hr: bool = False
    notification_cc_roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkflowApprovalDef:
    """Approval settings of one workflow type (leave, expense, payroll...)."""

    workflow_type: str
    version: int = 1
    multi_level_approval: bool = False
    approver_chain: tuple[ApproverStepDef, ...] = ()
    approval_fallback: tuple[str, ...] = ()
    auto_approve_after_days: int = 0
    require_remarks_on_reject: bool = False
    notifications: NotificationSettingsDef = field(
        default_factory=NotificationSettingsDef,
    )


@dataclass(frozen=True)
class CalendarSettingsDef:
    exclude_weekends: bool = False
    weekend_days: tuple[str, ...] = ("saturday", "sunday")
    exclude_public_holidays: bool = False
    public_holidays: tuple[date, ...] = ()


@dataclass(frozen=True)
class TenantApprovalSettings:
    """All approval settings of one tenant (or of the ``default`` block)."""

    tenant_id: str
    calendar: CalendarSettingsDef | None = None
    workflows: tuple[WorkflowApprovalDef, ...] = ()

    def workflow(self, workflow_type: str) -> WorkflowApprovalDef | None:
        for wf in self.workflows:
            if wf.workflow_type == workflow_type:
                return wf
        return None


@dataclass(frozen=True)
class ApprovalSettingsSet:
    """A complete, versioned approval settings document."""

    settings_id: str
    version: int
    tenants: tuple[TenantApprovalSettings, ...] = ()
    checksum: str = ""

    def tenant(self, tenant_id: str) -> TenantApprovalSettings | None:
        for t in self.tenants:
            if t.tenant_id == tenant_id:
                return t
        return None
