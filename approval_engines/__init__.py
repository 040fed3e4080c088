"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the pure approval engines: chain
    resolution and the chain state machine.  This is the import surface
    for ``approval_kernel.services``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import ``approval_kernel.domain``, ``approval_kernel.exceptions``
    and ``approval_kernel.logging_config`` only.
    MUST NOT import ``approval_kernel.services`` or the persistence layer.

Invariants enforced:
    - Purity: engines never read the clock.  Timestamps are parameters.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine`` (see
    ``approval_engines.tracer``), emitting APPROVAL_ENGINE_TRACE records.

Usage:
    from approval_engines import resolve_chain, assign_chain, decide_step
"""

from approval_engines.chain_resolver import (
    DEPARTMENT_HEAD_ROLE,
    SUPERVISOR_ROLE,
    dedupe_by_email,
    default_chain,
    locate_person,
    resolve_chain,
    walk_supervisors,
)
from approval_engines.chain_state import (
    assign_chain,
    build_steps,
    coerce_decision,
    decide_step,
    mark_notified,
    verify_chain_integrity,
)
from approval_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    # Resolution
    "resolve_chain",
    "locate_person",
    "walk_supervisors",
    "default_chain",
    "dedupe_by_email",
    "SUPERVISOR_ROLE",
    "DEPARTMENT_HEAD_ROLE",
    # State machine
    "assign_chain",
    "decide_step",
    "build_steps",
    "coerce_decision",
    "mark_notified",
    "verify_chain_integrity",
    # Tracing
    "traced_engine",
    "compute_input_fingerprint",
]
