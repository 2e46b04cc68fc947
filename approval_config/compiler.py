"""
Definition Compiler (``approval_config.compiler``).

Turns a validated ``WorkflowApprovalDef`` (plus its tenant calendar) into the
kernel's ``ApprovalChainDefinition``.

Rules:
    - Single-level workflows keep only the first approver.
    - A step without its own ``fallback_roles`` uses the workflow's
      ``approval_fallback``; the step's own required role is never kept as
      a fallback.
    - ``definition_hash`` fingerprints the compiled chain so the exact
      routing a request followed can be proven later.

Input must have passed ``validate_settings``; unknown roles raise
``ValueError`` here.
"""

from __future__ import annotations

from approval_config.schema import CalendarSettingsDef, NotificationSettingsDef, WorkflowApprovalDef
from approval_kernel.domain.approval import (
    ApprovalChainDefinition,
    NotificationPolicy,
    StepTemplate,
)
from approval_kernel.domain.calendar import WorkCalendar, parse_weekday
from approval_kernel.domain.roles import Role
from approval_kernel.utils.hashing import hash_payload


def _role(value: str) -> Role:
    role = Role.parse(value)
    if role is None:
        raise ValueError(f"Unknown role: {value!r}")
    return role


def compile_calendar(calendar: CalendarSettingsDef | None) -> WorkCalendar:
    if calendar is None:
        return WorkCalendar()
    weekend = frozenset(parse_weekday(name) for name in calendar.weekend_days)
    if None in weekend:
        raise ValueError(f"Unknown weekend day in {calendar.weekend_days!r}")
    return WorkCalendar(
        exclude_weekends=calendar.exclude_weekends,
        weekend_days=weekend,
        exclude_public_holidays=calendar.exclude_public_holidays,
        public_holidays=frozenset(calendar.public_holidays),
    )


def compile_notifications(settings: NotificationSettingsDef) -> NotificationPolicy:
    return NotificationPolicy(
        notify_approver=settings.notify_approver,
        notify_requester_on_decision=settings.notify_employee_on_decision,
        notify_hr=settings.notify_hr,
        cc_roles=tuple(dict.fromkeys(_role(r) for r in settings.notification_cc_roles)),
    )


def compile_definition(
    workflow: WorkflowApprovalDef,
    tenant_id: str,
    calendar: CalendarSettingsDef | None = None,
) -> ApprovalChainDefinition:
    """Compile one workflow block into an immutable chain definition."""
    entries = workflow.approver_chain
    if not workflow.multi_level_approval:
        entries = entries[:1]

    global_fallback = frozenset(_role(r) for r in workflow.approval_fallback)
    steps: list[StepTemplate] = []
    for position, entry in enumerate(entries, start=1):
        required = _role(entry.role)
        if entry.fallback_roles is None:
            fallback = global_fallback
        else:
            fallback = frozenset(_role(r) for r in entry.fallback_roles)
        steps.append(
            StepTemplate(
                position=position,
                required_role=required,
                fallback_roles=fallback - {required},
            )
        )

    work_calendar = compile_calendar(calendar)
    notifications = compile_notifications(workflow.notifications)

    payload = {
        "workflow_type": workflow.workflow_type,
        "tenant_id": tenant_id,
        "version": workflow.version,
        "multi_level": workflow.multi_level_approval,
        "auto_approve_after_days": workflow.auto_approve_after_days,
        "require_remarks_on_reject": workflow.require_remarks_on_reject,
        "steps": [
            {
                "position": s.position,
                "required_role": s.required_role.value,
                "fallback_roles": sorted(r.value for r in s.fallback_roles),
            }
            for s in steps
        ],
        "calendar": work_calendar.to_dict(),
        "notifications": notifications.to_dict(),
    }

    return ApprovalChainDefinition(
        workflow_type=workflow.workflow_type,
        tenant_id=tenant_id,
        steps=tuple(steps),
        multi_level=workflow.multi_level_approval,
        auto_approve_after_days=workflow.auto_approve_after_days,
        version=workflow.version,
        calendar=work_calendar,
        notifications=notifications,
        require_remarks_on_reject=workflow.require_remarks_on_reject,
        definition_hash=hash_payload(payload),
    )
