"""
Approval chain domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the sequential approval workflow: step and chain
status enums, the chain lifecycle transition table, the immutable
``ApprovalStep`` / ``ApprovalChain`` values, and the derived read models
(history, summary).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Transitions are
implemented in ``approval_engines.chain_state``; only
``approval_kernel.services.workflow_engine`` persists their results.

Invariants enforced
-------------------
* Chain lifecycle -- ``CHAIN_TRANSITIONS`` defines the only valid
  overall-status transitions.  Terminal states have no outgoing edges.
* Single active step -- at most one step is pending *and* activated, and
  while in progress it is the step at ``current_level``.
* Prefix approved -- every step below ``current_level`` is approved while
  the chain is in progress.
* Snapshot -- approvers are copied ``Person`` values; later directory edits
  never change an existing chain.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from approval_kernel.domain.org import Person, normalize_email
from approval_kernel.domain.policy import PolicyKey


# =========================================================================
# Status enums and lifecycle
# =========================================================================


class StepStatus(str, Enum):
    """Per-step status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Decision(str, Enum):
    """Decisions an approver can record on the active step."""

    APPROVED = "approved"
    REJECTED = "rejected"


class ChainStatus(str, Enum):
    """Overall chain lifecycle states."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"


CHAIN_TRANSITIONS: dict[ChainStatus, frozenset[ChainStatus]] = {
    ChainStatus.NOT_STARTED: frozenset({ChainStatus.IN_PROGRESS}),
    ChainStatus.IN_PROGRESS: frozenset({
        ChainStatus.IN_PROGRESS,
        ChainStatus.APPROVED,
        ChainStatus.REJECTED,
    }),
    ChainStatus.APPROVED: frozenset(),
    ChainStatus.REJECTED: frozenset(),
}

TERMINAL_CHAIN_STATUSES: frozenset[ChainStatus] = frozenset({
    ChainStatus.APPROVED,
    ChainStatus.REJECTED,
})


class SubjectStatus(str, Enum):
    """Approval status as stored on the subject row."""

    PENDING_ASSIGNMENT = "pending_assignment"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def from_chain(cls, status: ChainStatus) -> SubjectStatus:
        if status == ChainStatus.NOT_STARTED:
            return cls.PENDING_ASSIGNMENT
        return cls(status.value)

    def to_chain(self) -> ChainStatus:
        if self == SubjectStatus.PENDING_ASSIGNMENT:
            return ChainStatus.NOT_STARTED
        return ChainStatus(self.value)


def stage_label(role: str) -> str:
    """``"Departmental Head"`` -> ``"pending_departmental_head"``."""
    slug = re.sub(r"[^a-z0-9]+", "_", role.lower()).strip("_")
    return f"pending_{slug or 'approval'}"


# =========================================================================
# Steps and chains
# =========================================================================


@dataclass(frozen=True)
class ApprovalStep:
    """One level of an approval chain. Immutable."""

    level: int
    approver: Person
    status: StepStatus = StepStatus.PENDING
    decision: Decision | None = None
    comments: str | None = None
    action_timestamp: datetime | None = None
    activated_timestamp: datetime | None = None
    notification_sent: bool = False
    notification_sent_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == StepStatus.PENDING and self.activated_timestamp is not None

    @property
    def is_decided(self) -> bool:
        return self.status != StepStatus.PENDING

    @property
    def stage(self) -> str:
        return stage_label(self.approver.role)


@dataclass(frozen=True)
class ApprovalChain:
    """Ordered approval steps for one cycle plus the active-level pointer.

    ``current_level`` is 0 when the chain is unassigned or terminal.
    """

    steps: tuple[ApprovalStep, ...] = ()
    current_level: int = 0
    overall_status: ChainStatus = ChainStatus.NOT_STARTED

    @classmethod
    def unassigned(cls) -> ApprovalChain:
        return cls()

    @property
    def is_assigned(self) -> bool:
        return self.overall_status != ChainStatus.NOT_STARTED

    @property
    def is_terminal(self) -> bool:
        return self.overall_status in TERMINAL_CHAIN_STATUSES

    def step_at(self, level: int) -> ApprovalStep | None:
        if 1 <= level <= len(self.steps):
            return self.steps[level - 1]
        return None

    @property
    def active_step(self) -> ApprovalStep | None:
        if self.overall_status != ChainStatus.IN_PROGRESS:
            return None
        return self.step_at(self.current_level)

    def current_approver(self) -> Person | None:
        step = self.active_step
        return step.approver if step is not None else None

    def is_current_approver(self, email: str) -> bool:
        approver = self.current_approver()
        return approver is not None and approver.identity == normalize_email(email)

    def approved_count(self) -> int:
        return sum(1 for s in self.steps if s.status == StepStatus.APPROVED)

    def progress(self) -> int:
        """Percentage of approved steps, rounded half up."""
        total = len(self.steps)
        if total == 0:
            return 0
        return (200 * self.approved_count() + total) // (2 * total)

    def history(self) -> tuple[ApprovalStep, ...]:
        """Decided steps ordered by level."""
        return tuple(sorted(
            (s for s in self.steps if s.is_decided),
            key=lambda s: s.level,
        ))

    def summary(self) -> ChainSummary:
        active = self.active_step
        return ChainSummary(
            total_levels=len(self.steps),
            approved=self.approved_count(),
            rejected=sum(1 for s in self.steps if s.status == StepStatus.REJECTED),
            pending=sum(1 for s in self.steps if s.status == StepStatus.PENDING),
            current_level=self.current_level,
            overall_status=self.overall_status,
            progress=self.progress(),
            current_approver=active.approver if active else None,
            stage=active.stage if active else None,
        )


@dataclass(frozen=True)
class ChainSummary:
    """Counts and progress of a chain (the dashboard view)."""

    total_levels: int
    approved: int
    rejected: int
    pending: int
    current_level: int
    overall_status: ChainStatus
    progress: int
    current_approver: Person | None = None
    stage: str | None = None


@dataclass(frozen=True)
class StepTransition:
    """Result of a state-machine transition.

    ``step`` is the step that was acted on (decided or, for assign, the
    first step).  ``activated`` is the step that became active, if any.
    """

    chain: ApprovalChain
    step: ApprovalStep
    activated: ApprovalStep | None = None

    @property
    def terminal(self) -> bool:
        return self.chain.is_terminal


# =========================================================================
# Subjects and requests
# =========================================================================


@dataclass(frozen=True)
class StartingIdentity:
    """Who or what a chain is resolved for.

    Supervisor-walk policies use ``name`` and ``department``; table-lookup
    policies use ``category`` first, then ``department``.
    """

    name: str | None = None
    department: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class ApprovalSubject:
    """A business record under approval and its current-cycle chain."""

    subject_type: str
    subject_id: str
    policy_key: PolicyKey
    approval_status: SubjectStatus = SubjectStatus.PENDING_ASSIGNMENT
    chain: ApprovalChain = field(default_factory=ApprovalChain.unassigned)
    cycle: int = 1
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def current_approval_level(self) -> int:
        return self.chain.current_level
