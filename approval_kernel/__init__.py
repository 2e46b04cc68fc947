"""
Approval Kernel

A multi-level, role-driven approval workflow engine for HR requests with:
- Ordered approver chains resolved per tenant and workflow type
- Primary and fallback role qualification per step
- Time-based auto-approval on business or calendar days
- Append-only decision audit trail
- Per-chain serialization of concurrent decisions
"""

__version__ = "0.1.0"
