"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads approval settings YAML and parses it into typed
``approval_config.schema`` dataclass instances.  Runtime callers go through
``approval_config.load_definition_source()`` instead of calling this module.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``approver_chain`` entries may be a bare role string or a mapping with
  ``role`` and ``fallback_roles``.  List-valued fields also accept a
  comma-separated string ("Saturday, Sunday").
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid date or integer  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApprovalSettingsSet,
    ApproverStepDef,
    CalendarSettingsDef,
    NotificationSettingsDef,
    TenantApprovalSettings,
    WorkflowApprovalDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """Parse a date from YAML (string or date object)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip())
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_string_list(value: Any) -> tuple[str, ...]:
    """A YAML list, or a comma-separated string, as a tuple of stripped strings."""
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        raise ValueError(f"Expected a list or comma-separated string, got {value!r}")
    return tuple(str(item).strip() for item in items if str(item).strip())


def parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "on", "1"):
            return True
        if lowered in ("false", "no", "off", "0"):
            return False
    raise ValueError(f"Cannot parse boolean from {value!r}")


def parse_approver_step(data: Any) -> ApproverStepDef:
    """Parse one approver_chain entry (role string or mapping)."""
    if isinstance(data, str):
        return ApproverStepDef(role=data.strip())
    if isinstance(data, dict):
        fallback = data.get("fallback_roles")
        return ApproverStepDef(
            role=str(data["role"]).strip(),
            fallback_roles=parse_string_list(fallback) if fallback is not None else None,
        )
    raise ValueError(f"Invalid approver_chain entry: {data!r}")


def parse_notifications(data: dict[str, Any] | None) -> NotificationSettingsDef:
    data = data or {}
    return NotificationSettingsDef(
        notify_approver=parse_bool(data.get("notify_approver"), True),
        notify_employee_on_decision=parse_bool(
            data.get("notify_employee_on_decision"), True,
        ),
        notify_hr=parse_bool(data.get("notify_hr"), False),
        notification_cc_roles=parse_string_list(data.get("notification_cc_roles")),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowApprovalDef:
    """Parse the approval settings of one workflow type."""
    chain = data.get("approver_chain") or []
    if isinstance(chain, str):
        chain = parse_string_list(chain)
    return WorkflowApprovalDef(
        workflow_type=str(data["workflow_type"]).strip(),
        version=int(data.get("version", 1)),
        multi_level_approval=parse_bool(data.get("multi_level_approval"), False),
        approver_chain=tuple(parse_approver_step(entry) for entry in chain),
        approval_fallback=parse_string_list(data.get("approval_fallback")),
        auto_approve_after_days=int(data.get("auto_approve_after_days") or 0),
        require_remarks_on_reject=parse_bool(
            data.get("require_remarks_on_reject"), False,
        ),
        notifications=parse_notifications(data.get("notifications")),
    )


def parse_calendar(data: dict[str, Any] | None) -> CalendarSettingsDef | None:
    if data is None:
        return None
    weekend = data.get("weekend_days")
    return CalendarSettingsDef(
        exclude_weekends=parse_bool(data.get("exclude_weekends"), False),
        weekend_days=(
            parse_string_list(weekend) if weekend is not None
            else CalendarSettingsDef().weekend_days
        ),
        exclude_public_holidays=parse_bool(data.get("exclude_public_holidays"), False),
        public_holidays=tuple(
            parse_date(d) for d in (data.get("public_holidays") or [])
        ),
    )


def parse_tenant(data: dict[str, Any]) -> TenantApprovalSettings:
    return TenantApprovalSettings(
        tenant_id=str(data["tenant_id"]).strip(),
        calendar=parse_calendar(data.get("calendar")),
        workflows=tuple(parse_workflow(w) for w in data.get("workflows") or []),
    )


def parse_settings(data: dict[str, Any]) -> ApprovalSettingsSet:
    """Parse a whole settings document."""
    return ApprovalSettingsSet(
        settings_id=str(data.get("settings_id", "approval-settings")),
        version=int(data.get("version", 1)),
        tenants=tuple(parse_tenant(t) for t in data.get("tenants") or []),
        checksum=compute_checksum(data),
    )


def load_settings(path: Path) -> ApprovalSettingsSet:
    return parse_settings(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
