"""ORM models for the approval kernel."""

from approval_kernel.models.approval_subject import (
    ApprovalStepModel,
    ApprovalSubjectModel,
)

__all__ = [
    "ApprovalSubjectModel",
    "ApprovalStepModel",
]
