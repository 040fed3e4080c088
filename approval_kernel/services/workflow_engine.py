"""
approval_kernel.services.workflow_engine -- Approval workflow operations.

Responsibility:
    The operations layer callers (HTTP handlers, batch jobs) invoke:
    resolve, assign, decide, the derived queries, batch decisions,
    resubmission and notification retry.  It is the ONLY component that
    mutates a stored approval chain.  One ``WorkflowEngine`` serves every
    ``PolicyKey``; the policy selects resolver strategy and fixed roles.

Architecture position:
    Kernel > Services.  Orchestrates the pure engines
    (``approval_engines.chain_resolver``, ``approval_engines.chain_state``),
    the SQLAlchemy store (``models`` / ``selectors``) and the injected
    ``NotificationPort``.

Invariants enforced:
    - Each operation runs in its own transaction (``session_scope``); a
      transition is stored completely or not at all.
    - Single writer per subject: the subject row's version column turns a
      lost race into ``ConflictError``.  No level is skipped or advanced
      twice.
    - Notifications happen after commit.  ``notify_activated`` is sent at
      most once per step (``notification_sent`` flag); a failed send is
      logged, never raised, and can be retried with ``retry_notification``.
      A failed write of the flag is logged the same way; the step stays
      unsent.
    - Batch decisions are independent per subject and are cancellable only
      between subjects.

Failure modes:
    - UnknownPolicyError / ConfigurationError / DepartmentNotFoundError
      from resolution (assignment aborted, nothing stored).
    - AlreadyAssignedError, AlreadyProcessedError, NotCurrentApproverError,
      ChainNotFoundError, InvalidDecisionError, ChainIntegrityError from
      the state machine.
    - ConflictError on a concurrent write to the same subject.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from approval_engines.chain_resolver import resolve_chain
from approval_engines.chain_state import (
    assign_chain,
    coerce_decision,
    decide_step,
    mark_notified,
)
from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import (
    ApprovalChain,
    ApprovalStep,
    ApprovalSubject,
    ChainSummary,
    Decision,
    StartingIdentity,
    StepStatus,
    SubjectStatus,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.org import Person
from approval_kernel.domain.policy import ApprovalConfiguration, PolicyKey
from approval_kernel.exceptions import (
    AlreadyAssignedError,
    ChainNotFoundError,
    ConflictError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval_subject import ApprovalSubjectModel
from approval_kernel.selectors.subject_selector import SubjectSelector
from approval_kernel.services.notification import (
    LoggingNotificationPort,
    NotificationPort,
)

logger = get_logger("services.workflow_engine")


# =========================================================================
# Batch types
# =========================================================================


@dataclass(frozen=True)
class DecisionRequest:
    """One entry of a ``decide_many`` batch."""

    subject_id: str
    approver_email: str
    decision: Decision | str
    comments: str | None = None


@dataclass(frozen=True)
class BatchSuccess:
    subject_id: str
    step: ApprovalStep


@dataclass(frozen=True)
class BatchFailure:
    subject_id: str
    error_code: str
    message: str


@dataclass(frozen=True)
class BatchResult:
    """Outcome of ``decide_many``.

    Entries keep request order; a subject decided at two levels in one
    batch appears twice in ``succeeded``.  ``cancelled`` lists subjects
    never attempted because the batch was cancelled.
    """

    succeeded: tuple[BatchSuccess, ...] = ()
    failed: tuple[BatchFailure, ...] = ()
    cancelled: tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.cancelled)


# =========================================================================
# Engine
# =========================================================================


class WorkflowEngine:
    """Sequential multi-level approval workflow over stored subjects."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: ApprovalConfiguration,
        notifier: NotificationPort | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._notifier = notifier or LoggingNotificationPort()
        self._clock = clock or SystemClock()

    @property
    def config(self) -> ApprovalConfiguration:
        return self._config

    # ------------------------------------------------------------------
    # Resolution and assignment
    # ------------------------------------------------------------------

    def resolve_chain(
        self, policy_key: PolicyKey | str, identity: StartingIdentity,
    ) -> tuple[Person, ...]:
        """Ordered approvers ``identity`` would get under ``policy_key``."""
        policy = self._config.policy_for(policy_key)
        return resolve_chain(
            policy=policy,
            directory=self._config.directory,
            identity=identity,
        )

    def assign(
        self,
        subject_id: str,
        policy_key: PolicyKey | str,
        identity: StartingIdentity,
        subject_type: str | None = None,
    ) -> ApprovalChain:
        """Resolve and attach a chain to ``subject_id``; activate level 1.

        The subject row is created on first assignment.  After commit the
        level-1 approver is notified.

        Raises:
            AlreadyAssignedError: the current cycle already has a chain.
            ConflictError: a concurrent writer got there first.
        """
        policy = self._config.policy_for(policy_key)
        with LogContext.bind(subject_id=subject_id, policy_key=policy.key.value):
            approvers = self.resolve_chain(policy.key, identity)

            try:
                with session_scope(self._session_factory) as session:
                    model = SubjectSelector(session).get_model(subject_id)
                    now = self._clock.now()
                    if model is None:
                        model = ApprovalSubjectModel(
                            subject_type=subject_type or policy.subject_type,
                            subject_id=subject_id,
                            policy_key=policy.key.value,
                            approval_status=SubjectStatus.PENDING_ASSIGNMENT.value,
                            current_approval_level=0,
                            cycle=1,
                            created_at=now,
                            updated_at=now,
                        )
                        session.add(model)

                    transition = assign_chain(model.chain_dto(), approvers, now, subject_id)
                    model.policy_key = policy.key.value
                    model.apply_chain(transition.chain, now)
                    session.flush()
                    subject = model.to_dto()
            except (StaleDataError, IntegrityError) as exc:
                raise ConflictError(subject_id) from exc

            logger.info(
                "chain_assigned",
                extra={
                    "subject_type": subject.subject_type,
                    "cycle": subject.cycle,
                    "levels": len(transition.chain.steps),
                    "first_approver": transition.step.approver.email,
                },
            )

            if self._notify_activated(subject, transition.activated):
                return mark_notified(transition.chain, 1, self._clock.now())
            return transition.chain

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        subject_id: str,
        approver_email: str,
        decision: Decision | str,
        comments: str | None = None,
    ) -> ApprovalStep:
        """Record ``decision`` by ``approver_email`` on the active step.

        Returns the decided step.  After commit, either the next approver
        or the terminal outcome is notified.

        Raises:
            ChainNotFoundError: unknown subject or no chain assigned.
            AlreadyProcessedError: chain already approved or rejected.
            NotCurrentApproverError: ``approver_email`` is not the active
                approver (carries the correct one).
            InvalidDecisionError: ``decision`` is not approved/rejected.
            ConflictError: a concurrent decision won the race.
        """
        decision = coerce_decision(decision)
        with LogContext.bind(subject_id=subject_id, actor_id=approver_email):
            try:
                with session_scope(self._session_factory) as session:
                    model = SubjectSelector(session).get_model(subject_id)
                    if model is None:
                        raise ChainNotFoundError(subject_id, "unknown subject")
                    chain = model.chain_dto()
                    now = self._clock.now()
                    transition = decide_step(
                        chain, approver_email, decision, comments, now, subject_id,
                    )
                    model.apply_chain(transition.chain, now)
                    session.flush()
                    subject = model.to_dto()
            except StaleDataError as exc:
                raise ConflictError(subject_id) from exc

            logger.info(
                "approval_decision_recorded",
                extra={
                    "level": transition.step.level,
                    "decision": decision.value,
                    "overall_status": transition.chain.overall_status.value,
                    "current_level": transition.chain.current_level,
                },
            )

            if transition.terminal:
                self._notify_terminal(subject, transition.chain)
            else:
                self._notify_activated(subject, transition.activated)
            return transition.step

    def decide_many(
        self,
        requests: Iterable[DecisionRequest],
        should_continue: Callable[[], bool] | None = None,
    ) -> BatchResult:
        """Apply ``decide`` to each request independently.

        A failure on one subject is recorded and the batch moves on.
        ``should_continue`` is consulted before each subject; once it
        returns False the remaining subjects are reported as cancelled.

        Records logged during the batch share one ``batch_id``.
        """
        with LogContext.bind(batch_id=uuid4().hex):
            pending = list(requests)
            succeeded: list[BatchSuccess] = []
            failed: list[BatchFailure] = []
            cancelled: tuple[str, ...] = ()

            for index, request in enumerate(pending):
                if should_continue is not None and not should_continue():
                    cancelled = tuple(r.subject_id for r in pending[index:])
                    logger.info(
                        "batch_cancelled",
                        extra={"processed": index, "remaining": len(cancelled)},
                    )
                    break
                try:
                    step = self.decide(
                        request.subject_id,
                        request.approver_email,
                        request.decision,
                        request.comments,
                    )
                except Exception as exc:
                    failed.append(BatchFailure(
                        subject_id=request.subject_id,
                        error_code=getattr(exc, "code", type(exc).__name__),
                        message=str(exc),
                    ))
                    logger.warning(
                        "batch_decision_failed",
                        extra={"batch_subject_id": request.subject_id},
                        exc_info=True,
                    )
                else:
                    succeeded.append(BatchSuccess(subject_id=request.subject_id, step=step))

            logger.info(
                "batch_completed",
                extra={
                    "succeeded": len(succeeded),
                    "failed": len(failed),
                    "cancelled": len(cancelled),
                },
            )
            return BatchResult(
                succeeded=tuple(succeeded), failed=tuple(failed), cancelled=cancelled,
            )

    # ------------------------------------------------------------------
    # Cycles and notification retry
    # ------------------------------------------------------------------

    def resubmit(self, subject_id: str) -> ApprovalSubject:
        """Open a new approval cycle on a subject whose chain is terminal.

        Steps of the closed cycle are kept for history.  The subject goes
        back to ``pending_assignment`` and needs a fresh ``assign``.

        Raises:
            ChainNotFoundError: unknown subject, or nothing assigned yet.
            AlreadyAssignedError: the current chain is still in progress.
            ConflictError: a concurrent writer changed the subject.
        """
        with LogContext.bind(subject_id=subject_id):
            try:
                with session_scope(self._session_factory) as session:
                    model = SubjectSelector(session).get_model(subject_id)
                    if model is None:
                        raise ChainNotFoundError(subject_id, "unknown subject")
                    chain = model.chain_dto()
                    if not chain.is_assigned:
                        raise ChainNotFoundError(subject_id, "no chain to resubmit")
                    if not chain.is_terminal:
                        raise AlreadyAssignedError(subject_id, chain.overall_status.value)

                    previous = chain.overall_status
                    model.cycle = model.cycle + 1
                    model.current_approval_level = 0
                    model.approval_status = SubjectStatus.PENDING_ASSIGNMENT.value
                    model.updated_at = self._clock.now()
                    session.flush()
                    subject = model.to_dto()
            except StaleDataError as exc:
                raise ConflictError(subject_id) from exc

            logger.info(
                "approval_resubmitted",
                extra={"cycle": subject.cycle, "previous_outcome": previous.value},
            )
            return subject

    def retry_notification(self, subject_id: str) -> bool:
        """Re-send ``notify_activated`` for the active step if still unsent.

        Returns True if a notification was delivered by this call.
        """
        subject = self.get_subject(subject_id)
        step = subject.chain.active_step
        if step is None or step.notification_sent:
            return False
        with LogContext.bind(subject_id=subject_id):
            return self._notify_activated(subject, step)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_subject(self, subject_id: str) -> ApprovalSubject:
        with session_scope(self._session_factory) as session:
            subject = SubjectSelector(session).get(subject_id)
        if subject is None:
            raise ChainNotFoundError(subject_id, "unknown subject")
        return subject

    def current_approver(self, subject_id: str) -> Person | None:
        return self.get_subject(subject_id).chain.current_approver()

    def progress(self, subject_id: str) -> int:
        return self.get_subject(subject_id).chain.progress()

    def summary(self, subject_id: str) -> ChainSummary:
        return self.get_subject(subject_id).chain.summary()

    def history(
        self, subject_id: str, cycle: int | None = None,
    ) -> tuple[ApprovalStep, ...]:
        """Decided steps of ``cycle`` (default: current cycle) by level."""
        with session_scope(self._session_factory) as session:
            steps = SubjectSelector(session).history(subject_id, cycle)
        if steps is None:
            raise ChainNotFoundError(subject_id, "unknown subject")
        return steps

    def get_pending_for_approver(self, approver_email: str) -> list[ApprovalSubject]:
        """Subjects whose *active* step belongs to ``approver_email``."""
        with session_scope(self._session_factory) as session:
            return SubjectSelector(session).get_pending_for_approver(approver_email)

    # ------------------------------------------------------------------
    # Notification helpers
    # ------------------------------------------------------------------

    def _notify_activated(
        self, subject: ApprovalSubject, step: ApprovalStep | None,
    ) -> bool:
        if step is None or step.notification_sent:
            return False
        try:
            self._notifier.notify_activated(step, subject)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={
                    "kind": "activated",
                    "level": step.level,
                    "recipient": step.approver.email,
                },
                exc_info=True,
            )
            return False

        try:
            self._record_notification(subject, step.level)
        except SQLAlchemyError:
            logger.warning(
                "notification_record_failed",
                extra={"level": step.level, "recipient": step.approver.email},
                exc_info=True,
            )
            return False
        return True

    def _notify_terminal(self, subject: ApprovalSubject, chain: ApprovalChain) -> None:
        try:
            self._notifier.notify_terminal(chain, subject)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={"kind": "terminal", "outcome": chain.overall_status.value},
                exc_info=True,
            )

    def _record_notification(self, subject: ApprovalSubject, level: int) -> None:
        """Set the sent flag on the step, if it is still the same pending step."""
        with session_scope(self._session_factory) as session:
            model = SubjectSelector(session).get_model(subject.subject_id)
            if model is None or model.cycle != subject.cycle:
                return
            for row in model.steps_for_cycle():
                if row.level == level and row.status == StepStatus.PENDING.value:
                    row.notification_sent = True
                    row.notification_sent_at = self._clock.now()
        logger.debug("notification_recorded", extra={"level": level})
