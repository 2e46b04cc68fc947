"""Read-only query selectors."""

from approval_kernel.selectors.approval_selector import ApprovalSelector

__all__ = ["ApprovalSelector"]
