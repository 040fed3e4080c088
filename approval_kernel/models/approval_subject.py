"""
Module: approval_kernel.models.approval_subject
Responsibility: ORM persistence for subjects under approval and their
    embedded approval chain steps.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - One subject row per subject_id (UNIQUE).
    - One step row per (subject, cycle, level) (UNIQUE).
    - Single writer per subject: ``version`` is the mapper's version_id_col,
      so an UPDATE that lost a race matches zero rows and SQLAlchemy raises
      StaleDataError.  Every chain transition changes at least one subject
      column (status, level or cycle), so every transition is version-checked.
    - Status values are limited by CHECK constraints.

Failure modes:
    - IntegrityError on duplicate subject_id (concurrent first assign).
    - StaleDataError on a concurrent transition of the same subject.

Audit relevance:
    Steps are never deleted.  Steps of earlier cycles stay attached to the
    subject after a resubmit and remain queryable as history.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import UUID, Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.approval import (
        ApprovalChain,
        ApprovalStep,
        ApprovalSubject,
    )


class ApprovalSubjectModel(Base):
    """Persistent subject with its approval pointer and status.

    Contract:
        Mutated only by WorkflowEngine.  ``current_approval_level`` and
        ``approval_status`` mirror the current cycle's ApprovalChain.
    """

    __tablename__ = "approval_subjects"

    __table_args__ = (
        UniqueConstraint("subject_id", name="uq_approval_subjects_subject_id"),
        CheckConstraint(
            "approval_status IN ('pending_assignment', 'in_progress', "
            "'approved', 'rejected')",
            name="ck_approval_subjects_valid_status",
        ),
        CheckConstraint(
            "current_approval_level >= 0",
            name="ck_approval_subjects_level_non_negative",
        ),
        Index(
            "ix_approval_subjects_status_level",
            "approval_status", "current_approval_level",
        ),
    )

    subject_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(100), nullable=False)
    policy_key: Mapped[str] = mapped_column(String(50), nullable=False)
    approval_status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="pending_assignment",
    )
    current_approval_level: Mapped[int] = mapped_column(nullable=False, default=0)
    cycle: Mapped[int] = mapped_column(nullable=False, default=1)
    version: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    steps: Mapped[list["ApprovalStepModel"]] = relationship(
        "ApprovalStepModel",
        back_populates="subject",
        order_by="ApprovalStepModel.level",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalSubject {self.subject_type}/{self.subject_id} "
            f"cycle={self.cycle} status={self.approval_status} "
            f"level={self.current_approval_level}>"
        )

    def steps_for_cycle(self, cycle: int | None = None) -> list[ApprovalStepModel]:
        cycle = self.cycle if cycle is None else cycle
        return sorted(
            (s for s in self.steps if s.cycle == cycle), key=lambda s: s.level,
        )

    def chain_dto(self, cycle: int | None = None) -> ApprovalChain:
        """The ApprovalChain of ``cycle`` (default: the current cycle)."""
        from approval_kernel.domain.approval import (
            ApprovalChain as ApprovalChainDTO,
            SubjectStatus,
        )

        steps = tuple(s.to_dto() for s in self.steps_for_cycle(cycle))
        if cycle is not None and cycle != self.cycle:
            return _closed_chain(steps)
        return ApprovalChainDTO(
            steps=steps,
            current_level=self.current_approval_level,
            overall_status=SubjectStatus(self.approval_status).to_chain(),
        )

    def to_dto(self) -> ApprovalSubject:
        """Convert ORM model to frozen domain DTO (current cycle)."""
        from approval_kernel.domain.approval import (
            ApprovalSubject as ApprovalSubjectDTO,
            SubjectStatus,
        )
        from approval_kernel.domain.policy import PolicyKey

        return ApprovalSubjectDTO(
            subject_type=self.subject_type,
            subject_id=self.subject_id,
            policy_key=PolicyKey(self.policy_key),
            approval_status=SubjectStatus(self.approval_status),
            chain=self.chain_dto(),
            cycle=self.cycle,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def apply_chain(self, chain: ApprovalChain, now: datetime) -> None:
        """Write a transitioned chain back onto this subject's current cycle.

        Existing step rows are updated in place; missing levels are created.
        """
        from approval_kernel.domain.approval import SubjectStatus

        existing = {s.level: s for s in self.steps_for_cycle()}
        for step in chain.steps:
            row = existing.get(step.level)
            if row is None:
                row = ApprovalStepModel(cycle=self.cycle, level=step.level)
                self.steps.append(row)
            row.update_from_dto(step)

        self.current_approval_level = chain.current_level
        self.approval_status = SubjectStatus.from_chain(chain.overall_status).value
        self.updated_at = now


def _closed_chain(steps: tuple[ApprovalStep, ...]) -> ApprovalChain:
    """Rebuild a past cycle's chain; it is terminal by construction."""
    from approval_kernel.domain.approval import (
        ApprovalChain as ApprovalChainDTO,
        ChainStatus,
        StepStatus,
    )

    if any(s.status == StepStatus.REJECTED for s in steps):
        status = ChainStatus.REJECTED
    else:
        status = ChainStatus.APPROVED
    return ApprovalChainDTO(steps=steps, current_level=0, overall_status=status)


class ApprovalStepModel(Base):
    """Persistent approval step.  Approver fields are a snapshot.

    Contract:
        Rows are updated as the step moves from pending to decided and when
        its notification is sent.  Rows are never deleted.
    """

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint(
            "subject_pk", "cycle", "level",
            name="uq_approval_steps_subject_cycle_level",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_approval_steps_valid_status",
        ),
        CheckConstraint("level >= 1", name="ck_approval_steps_level_positive"),
        Index("ix_approval_steps_approver_email", "approver_email"),
    )

    subject_pk: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_subjects.id"),
        nullable=False,
    )
    cycle: Mapped[int] = mapped_column(nullable=False)
    level: Mapped[int] = mapped_column(nullable=False)
    approver_name: Mapped[str] = mapped_column(String(200), nullable=False)
    approver_email: Mapped[str] = mapped_column(String(320), nullable=False)
    approver_role: Mapped[str] = mapped_column(String(200), nullable=False)
    approver_department: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    decision: Mapped[str | None] = mapped_column(String(20), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_timestamp: Mapped[datetime | None] = mapped_column(nullable=True)
    activated_timestamp: Mapped[datetime | None] = mapped_column(nullable=True)
    notification_sent: Mapped[bool] = mapped_column(nullable=False, default=False)
    notification_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    subject: Mapped["ApprovalSubjectModel"] = relationship(
        "ApprovalSubjectModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep cycle={self.cycle} level={self.level} "
            f"{self.approver_email} status={self.status}>"
        )

    def to_dto(self) -> ApprovalStep:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            ApprovalStep as ApprovalStepDTO,
            Decision,
            StepStatus,
        )
        from approval_kernel.domain.org import Person

        return ApprovalStepDTO(
            level=self.level,
            approver=Person(
                name=self.approver_name,
                email=self.approver_email,
                role=self.approver_role,
                department=self.approver_department,
            ),
            status=StepStatus(self.status),
            decision=Decision(self.decision) if self.decision else None,
            comments=self.comments,
            action_timestamp=self.action_timestamp,
            activated_timestamp=self.activated_timestamp,
            notification_sent=self.notification_sent,
            notification_sent_at=self.notification_sent_at,
        )

    def update_from_dto(self, step: ApprovalStep) -> None:
        self.approver_name = step.approver.name
        self.approver_email = step.approver.email
        self.approver_role = step.approver.role
        self.approver_department = step.approver.department
        self.status = step.status.value
        self.decision = step.decision.value if step.decision else None
        self.comments = step.comments
        self.action_timestamp = step.action_timestamp
        self.activated_timestamp = step.activated_timestamp
        self.notification_sent = step.notification_sent
        self.notification_sent_at = step.notification_sent_at
