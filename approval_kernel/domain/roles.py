"""
Roles -- the closed set of approver roles.

Responsibility:
    Defines every role an approval step may require or accept as a fallback,
    plus the reserved system actor used for time-based auto-approval.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - Role values are a closed set; unknown strings parse to ``None`` and are
      never qualified for any step.
    - The system actor role is not a member of ``Role`` and therefore can
      never satisfy a human qualification check.
"""

from enum import Enum
from uuid import UUID


class Role(str, Enum):
    """Organizational roles that can appear in an approver chain."""

    EMPLOYEE = "employee"
    MANAGER = "manager"
    HR_MANAGER = "hr_manager"
    HR_ASSISTANT = "hr_assistant"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    FINANCE_MANAGER = "finance_manager"
    FINANCE_OFFICER = "finance_officer"
    PAYROLL_SPECIALIST = "payroll_specialist"
    RECRUITER = "recruiter"

    @property
    def label(self) -> str:
        """Display text shown in "Awaiting approval by ..." banners."""
        return _ROLE_LABELS[self]

    @classmethod
    def parse(cls, value: "str | Role | None") -> "Role | None":
        """Return the matching role, or None for unknown values."""
        if value is None:
            return None
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


_ROLE_LABELS: dict[Role, str] = {
    Role.EMPLOYEE: "Employee",
    Role.MANAGER: "Manager",
    Role.HR_MANAGER: "HR Manager",
    Role.HR_ASSISTANT: "HR Assistant",
    Role.ADMIN: "Admin",
    Role.SUPER_ADMIN: "CEO",
    Role.FINANCE_MANAGER: "Finance Manager",
    Role.FINANCE_OFFICER: "Finance Officer",
    Role.PAYROLL_SPECIALIST: "Payroll Specialist",
    Role.RECRUITER: "Recruiter",
}


# Reserved actor recorded on auto-approved steps.
SYSTEM_ACTOR_ID = UUID(int=0)
SYSTEM_ACTOR_ROLE = "system"
