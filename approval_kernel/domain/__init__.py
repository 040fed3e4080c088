"""
Pure domain layer.

This module contains pure value objects for the approval workflow
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.  Time enters only
through an injected Clock.
"""

from approval_kernel.domain.approval import (
    CHAIN_TRANSITIONS,
    TERMINAL_CHAIN_STATUSES,
    ApprovalChain,
    ApprovalStep,
    ApprovalSubject,
    ChainStatus,
    ChainSummary,
    Decision,
    StartingIdentity,
    StepStatus,
    StepTransition,
    SubjectStatus,
    stage_label,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.org import (
    Department,
    OrgDirectory,
    Person,
    Placement,
    Position,
    ReportsTo,
    ReportsToKind,
    StaticOrgDirectory,
    normalize_email,
)
from approval_kernel.domain.policy import (
    ApprovalConfiguration,
    ApprovalPolicy,
    PolicyKey,
    ResolverStrategy,
)

__all__ = [
    # Org directory
    "Person",
    "Position",
    "Department",
    "Placement",
    "ReportsTo",
    "ReportsToKind",
    "OrgDirectory",
    "StaticOrgDirectory",
    "normalize_email",
    # Policy
    "PolicyKey",
    "ResolverStrategy",
    "ApprovalPolicy",
    "ApprovalConfiguration",
    # Chain
    "StepStatus",
    "Decision",
    "ChainStatus",
    "SubjectStatus",
    "CHAIN_TRANSITIONS",
    "TERMINAL_CHAIN_STATUSES",
    "ApprovalStep",
    "ApprovalChain",
    "ChainSummary",
    "StepTransition",
    "StartingIdentity",
    "ApprovalSubject",
    "stage_label",
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
]
