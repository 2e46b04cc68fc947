"""ORM models for the approval kernel."""

from approval_kernel.models.approval import (
    ApprovalChainModel,
    ApprovalStepModel,
    DecisionRecordModel,
)

__all__ = [
    "ApprovalChainModel",
    "ApprovalStepModel",
    "DecisionRecordModel",
]
