"""
approval_kernel.services.notification -- Outbound notification port.

Responsibility:
    Defines the one-way sink the workflow engine informs after each
    committed transition: the newly activated approver, or the terminal
    outcome.  Delivery (email, chat, ...) lives behind this port.

Architecture position:
    Kernel > Services.  Implementations are injected into
    ``WorkflowEngine``.

Invariants enforced:
    - Fire-and-forget: the engine never lets a port exception fail a
      transition.  Ports may raise ``NotificationError`` (or anything
      else); the engine logs it and leaves the step's notification flag
      unset so the send can be retried.
"""

from __future__ import annotations

from typing import Protocol

from approval_kernel.domain.approval import ApprovalChain, ApprovalStep, ApprovalSubject
from approval_kernel.logging_config import get_logger

logger = get_logger("services.notification")


class NotificationPort(Protocol):
    """Outbound notification contract."""

    def notify_activated(self, step: ApprovalStep, subject: ApprovalSubject) -> None:
        """``step`` just became the active step of ``subject``'s chain."""
        ...

    def notify_terminal(self, chain: ApprovalChain, subject: ApprovalSubject) -> None:
        """``subject``'s chain reached approved or rejected."""
        ...


class LoggingNotificationPort:
    """Default port: records each notification as a structured log line."""

    def notify_activated(self, step: ApprovalStep, subject: ApprovalSubject) -> None:
        logger.info(
            "approver_notified",
            extra={
                "subject_id": subject.subject_id,
                "subject_type": subject.subject_type,
                "level": step.level,
                "stage": step.stage,
                "recipient": step.approver.email,
            },
        )

    def notify_terminal(self, chain: ApprovalChain, subject: ApprovalSubject) -> None:
        logger.info(
            "approval_outcome_notified",
            extra={
                "subject_id": subject.subject_id,
                "subject_type": subject.subject_type,
                "outcome": chain.overall_status.value,
                "levels": len(chain.steps),
            },
        )
