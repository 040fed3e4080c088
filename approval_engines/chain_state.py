"""
approval_engines.chain_state -- Pure approval chain state machine.

Responsibility:
    Implements the chain transitions (``assign_chain``, ``decide_step``)
    and the bookkeeping helpers (``mark_notified``,
    ``verify_chain_integrity``) over immutable ``ApprovalChain`` values.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Timestamps are passed in
    by the caller.  Persistence of the returned value is the workflow
    engine's job.

Invariants enforced:
    - Only ``CHAIN_TRANSITIONS`` edges are taken.
    - At most one step is active; it is the step at ``current_level``.
    - Steps below the pointer are approved while in progress.
    - A rejection terminates the chain and never activates a later level.
    - Authorization is a case-insensitive email equality against the
      active step's approver.  Roles are never consulted.
    - Every function returns a new chain; inputs are never mutated, so a
      raised error leaves the caller's chain untouched.

Failure modes:
    - AlreadyAssignedError: assign on a chain that is not ``not_started``.
    - ChainNotFoundError: decide on an unassigned chain.
    - AlreadyProcessedError: decide on a terminal chain.
    - NotCurrentApproverError: email does not match the active approver.
    - InvalidDecisionError: decision is not approved/rejected.
    - ChainIntegrityError: pointer and step statuses disagree.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import (
    CHAIN_TRANSITIONS,
    ApprovalChain,
    ApprovalStep,
    ChainStatus,
    Decision,
    StepStatus,
    StepTransition,
)
from approval_kernel.domain.org import Person
from approval_kernel.exceptions import (
    AlreadyAssignedError,
    AlreadyProcessedError,
    ChainIntegrityError,
    ChainNotFoundError,
    ConfigurationError,
    InvalidDecisionError,
    NotCurrentApproverError,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.chain_state")


def coerce_decision(value: Decision | str | None) -> Decision:
    """Accept a ``Decision`` or its string value; anything else is invalid."""
    if isinstance(value, Decision):
        return value
    try:
        return Decision(str(value).strip().lower())
    except ValueError:
        raise InvalidDecisionError(str(value)) from None


def build_steps(approvers: Sequence[Person], now: datetime) -> tuple[ApprovalStep, ...]:
    """Materialise steps for a resolved approver list; level 1 is activated."""
    return tuple(
        ApprovalStep(
            level=index,
            approver=person,
            activated_timestamp=now if index == 1 else None,
        )
        for index, person in enumerate(approvers, start=1)
    )


def _check_transition(
    subject_id: str, current: ChainStatus, target: ChainStatus,
) -> None:
    if target not in CHAIN_TRANSITIONS[current]:
        raise ChainIntegrityError(
            subject_id, f"illegal transition {current.value} -> {target.value}",
        )


def verify_chain_integrity(chain: ApprovalChain, subject_id: str) -> None:
    """Raise ChainIntegrityError if the pointer disagrees with the steps.

    The pointer is authoritative for transitions, but a chain whose stored
    pointer and step statuses have drifted apart is refused rather than
    repaired.
    """
    steps = chain.steps
    levels = [s.level for s in steps]
    if levels != list(range(1, len(steps) + 1)):
        raise ChainIntegrityError(subject_id, f"levels not contiguous: {levels}")

    status = chain.overall_status
    if status == ChainStatus.NOT_STARTED:
        if steps or chain.current_level != 0:
            raise ChainIntegrityError(subject_id, "unassigned chain has steps or a level")
        return

    if not steps:
        raise ChainIntegrityError(subject_id, f"{status.value} chain has no steps")

    if status == ChainStatus.IN_PROGRESS:
        k = chain.current_level
        if not 1 <= k <= len(steps):
            raise ChainIntegrityError(
                subject_id, f"current level {k} outside 1..{len(steps)}",
            )
        for step in steps:
            if step.level < k and step.status != StepStatus.APPROVED:
                raise ChainIntegrityError(
                    subject_id, f"level {step.level} below current level {k} is {step.status.value}",
                )
            if step.level == k and not step.is_active:
                raise ChainIntegrityError(
                    subject_id, f"current level {k} is not the active pending step",
                )
            if step.level > k and (step.is_decided or step.activated_timestamp is not None):
                raise ChainIntegrityError(
                    subject_id, f"level {step.level} above current level {k} was already activated",
                )
        return

    if chain.current_level != 0:
        raise ChainIntegrityError(
            subject_id, f"{status.value} chain still points at level {chain.current_level}",
        )

    if status == ChainStatus.APPROVED:
        if any(s.status != StepStatus.APPROVED for s in steps):
            raise ChainIntegrityError(subject_id, "approved chain has undecided or rejected steps")
        return

    rejected = [s for s in steps if s.status == StepStatus.REJECTED]
    if len(rejected) != 1:
        raise ChainIntegrityError(
            subject_id, f"rejected chain has {len(rejected)} rejected steps",
        )
    cut = rejected[0].level
    for step in steps:
        if step.level < cut and step.status != StepStatus.APPROVED:
            raise ChainIntegrityError(subject_id, f"level {step.level} before rejection not approved")
        if step.level > cut and (step.is_decided or step.activated_timestamp is not None):
            raise ChainIntegrityError(subject_id, f"level {step.level} activated after rejection")


def assign_chain(
    chain: ApprovalChain,
    approvers: Sequence[Person],
    now: datetime,
    subject_id: str,
) -> StepTransition:
    """Unassigned -> in progress at level 1."""
    if chain.overall_status != ChainStatus.NOT_STARTED:
        raise AlreadyAssignedError(subject_id, chain.overall_status.value)
    if not approvers:
        raise ConfigurationError(
            f"Refusing to assign an empty approval chain to subject {subject_id}",
        )
    _check_transition(subject_id, chain.overall_status, ChainStatus.IN_PROGRESS)

    steps = build_steps(approvers, now)
    new_chain = ApprovalChain(
        steps=steps,
        current_level=1,
        overall_status=ChainStatus.IN_PROGRESS,
    )
    return StepTransition(chain=new_chain, step=steps[0], activated=steps[0])


@traced_engine("chain_state", "1.0")
def decide_step(
    chain: ApprovalChain,
    approver_email: str,
    decision: Decision | str,
    comments: str | None,
    now: datetime,
    subject_id: str,
) -> StepTransition:
    """Record a decision on the active step and advance or terminate.

    Preconditions:
        ``chain`` is in progress and internally consistent.
    Postconditions:
        The returned chain differs from the input in the decided step, the
        next step's activation (approve, not last), the pointer and the
        overall status only.
    """
    if chain.overall_status == ChainStatus.NOT_STARTED:
        raise ChainNotFoundError(subject_id, "approval chain not assigned")
    if chain.is_terminal:
        raise AlreadyProcessedError(subject_id, chain.overall_status.value)

    verify_chain_integrity(chain, subject_id)
    active = chain.active_step
    assert active is not None

    if not active.approver.has_email(approver_email):
        raise NotCurrentApproverError(
            subject_id=subject_id,
            attempted_email=approver_email,
            current_level=active.level,
            current_approver_name=active.approver.name,
            current_approver_email=active.approver.email,
        )

    decision = coerce_decision(decision)
    decided = replace(
        active,
        status=StepStatus(decision.value),
        decision=decision,
        comments=comments,
        action_timestamp=now,
    )
    steps = list(chain.steps)
    steps[active.level - 1] = decided

    activated: ApprovalStep | None = None
    if decision == Decision.REJECTED:
        target = ChainStatus.REJECTED
        level = 0
    else:
        following = chain.step_at(active.level + 1)
        if following is not None:
            activated = replace(following, activated_timestamp=now)
            steps[following.level - 1] = activated
            target = ChainStatus.IN_PROGRESS
            level = following.level
        else:
            target = ChainStatus.APPROVED
            level = 0

    _check_transition(subject_id, chain.overall_status, target)
    new_chain = ApprovalChain(
        steps=tuple(steps), current_level=level, overall_status=target,
    )

    logger.debug(
        "chain_step_decided",
        extra={
            "subject_id": subject_id,
            "level": decided.level,
            "decision": decision.value,
            "next_level": level,
            "overall_status": target.value,
        },
    )
    return StepTransition(chain=new_chain, step=decided, activated=activated)


def mark_notified(chain: ApprovalChain, level: int, now: datetime) -> ApprovalChain:
    """Set the notification-sent flag on one step."""
    step = chain.step_at(level)
    if step is None:
        return chain
    steps = list(chain.steps)
    steps[level - 1] = replace(step, notification_sent=True, notification_sent_at=now)
    return replace(chain, steps=tuple(steps))
