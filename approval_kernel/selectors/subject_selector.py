"""
Module: approval_kernel.selectors.subject_selector
Responsibility: Read-only queries over subjects and their approval steps,
    returned as frozen domain DTOs.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.

Invariants enforced:
    - Read-only: no mutations.
    - Pending-for-approver matches the *active* step only: same cycle, the
      step at the subject's current level, still pending, subject in
      progress.  Approvers of future levels are never returned.
    - Email comparison is case-insensitive on both sides.

Failure modes:
    - Returns None / empty results when nothing matches (never raises on
      absence of data).
"""

from sqlalchemy import and_, func, select

from approval_kernel.domain.approval import (
    ApprovalChain,
    ApprovalStep,
    ApprovalSubject,
    StepStatus,
    SubjectStatus,
)
from approval_kernel.domain.org import normalize_email
from approval_kernel.models.approval_subject import (
    ApprovalStepModel,
    ApprovalSubjectModel,
)
from approval_kernel.selectors.base import BaseSelector


class SubjectSelector(BaseSelector[ApprovalSubjectModel]):
    """
    Selector for subjects under approval.

    Guarantees:
        - Steps are eagerly loaded (selectin) with their subject.
        - Multi-subject results are ordered by creation time, then id.
    """

    def get_model(self, subject_id: str) -> ApprovalSubjectModel | None:
        """ORM row for ``subject_id``.  For the workflow engine's own use."""
        return self.session.execute(
            select(ApprovalSubjectModel).where(
                ApprovalSubjectModel.subject_id == subject_id
            )
        ).scalar_one_or_none()

    def get(self, subject_id: str) -> ApprovalSubject | None:
        model = self.get_model(subject_id)
        return model.to_dto() if model is not None else None

    def get_chain(
        self, subject_id: str, cycle: int | None = None,
    ) -> ApprovalChain | None:
        model = self.get_model(subject_id)
        if model is None:
            return None
        return model.chain_dto(cycle)

    def history(
        self, subject_id: str, cycle: int | None = None,
    ) -> tuple[ApprovalStep, ...] | None:
        chain = self.get_chain(subject_id, cycle)
        return chain.history() if chain is not None else None

    def cycles(self, subject_id: str) -> tuple[int, ...]:
        """Every cycle that has at least one step, ascending."""
        rows = self.session.execute(
            select(ApprovalStepModel.cycle)
            .join(ApprovalSubjectModel, ApprovalStepModel.subject_pk == ApprovalSubjectModel.id)
            .where(ApprovalSubjectModel.subject_id == subject_id)
            .distinct()
            .order_by(ApprovalStepModel.cycle)
        ).scalars()
        return tuple(rows)

    def get_pending_for_approver(self, approver_email: str) -> list[ApprovalSubject]:
        """Subjects whose currently active step belongs to ``approver_email``."""
        email = normalize_email(approver_email)
        if not email:
            return []

        stmt = (
            select(ApprovalSubjectModel)
            .join(
                ApprovalStepModel,
                and_(
                    ApprovalStepModel.subject_pk == ApprovalSubjectModel.id,
                    ApprovalStepModel.cycle == ApprovalSubjectModel.cycle,
                    ApprovalStepModel.level == ApprovalSubjectModel.current_approval_level,
                ),
            )
            .where(
                ApprovalSubjectModel.approval_status == SubjectStatus.IN_PROGRESS.value,
                ApprovalStepModel.status == StepStatus.PENDING.value,
                func.lower(ApprovalStepModel.approver_email) == email,
            )
            .order_by(ApprovalSubjectModel.created_at, ApprovalSubjectModel.subject_id)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars().unique()]

    def list_by_status(
        self, status: SubjectStatus, subject_type: str | None = None,
    ) -> list[ApprovalSubject]:
        stmt = select(ApprovalSubjectModel).where(
            ApprovalSubjectModel.approval_status == status.value
        )
        if subject_type is not None:
            stmt = stmt.where(ApprovalSubjectModel.subject_type == subject_type)
        stmt = stmt.order_by(ApprovalSubjectModel.created_at, ApprovalSubjectModel.subject_id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]
