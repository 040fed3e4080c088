"""
approval_engines.chain_resolver -- Ordered approver list per policy.

Responsibility:
    Given a policy, the org directory and a starting identity, produce the
    ordered, de-duplicated tuple of ``Person`` values that becomes an
    approval chain.  Two strategies:

    * ``SUPERVISOR_WALK`` (cash requests, user provisioning): locate the
      starting person and follow typed ``reports_to`` edges upward, then
      append the top executive and the Finance verification step.
    * ``TABLE_LOOKUP`` (supplier invoices, supplier onboarding): map a
      category / department key through the policy's route table.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The directory and policy
    are injected; nothing here reads configuration.

Invariants enforced:
    - No approver email appears at two levels.  The first (bottom-most)
      occurrence wins.
    - Finance, when configured, is always the last step.
    - A known department always yields a non-empty chain.

Failure modes:
    - Starting person not found: logged as ``person_not_found`` and
      recovered with the default chain (department head, Finance, top
      executive).  Never raised.
    - DepartmentNotFoundError: the department is unknown and the policy has
      nothing to fall back to.
    - ConfigurationError: a route violates the policy's required level
      count, or resolution produced no approvers at all.
"""

from __future__ import annotations

from collections.abc import Iterable

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import StartingIdentity
from approval_kernel.domain.org import (
    OrgDirectory,
    Person,
    Placement,
    ReportsToKind,
)
from approval_kernel.domain.policy import ApprovalPolicy, ResolverStrategy
from approval_kernel.exceptions import (
    ConfigurationError,
    DepartmentNotFoundError,
    PersonNotFoundError,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.chain_resolver")

SUPERVISOR_ROLE = "Supervisor"
DEPARTMENT_HEAD_ROLE = "Departmental Head"

# Tokens containing this substring fall back to the department head.
HEAD_MARKER = "Head"


def dedupe_by_email(people: Iterable[Person]) -> tuple[Person, ...]:
    """Keep the first occurrence of each approver email."""
    seen: set[str] = set()
    result: list[Person] = []
    for person in people:
        if person.identity in seen:
            continue
        seen.add(person.identity)
        result.append(person)
    return tuple(result)


def _as_approver(placement: Placement) -> Person:
    role = DEPARTMENT_HEAD_ROLE if placement.is_head else SUPERVISOR_ROLE
    return Person(
        name=placement.person.name,
        email=placement.person.email,
        role=role,
        department=placement.department,
    )


def _department_head(directory: OrgDirectory, department: str | None) -> Person | None:
    if not department:
        return None
    record = directory.get_department(department)
    if record is None:
        return None
    return _as_approver(record.head_placement())


def locate_person(
    directory: OrgDirectory, name: str | None, department: str | None = None,
) -> Placement:
    """Find a person by exact display name.

    Department heads are searched first (the given department's head, then
    every other head in directory order), then every position occupant
    across all departments.

    Raises:
        PersonNotFoundError: no head or occupant has that name.
    """
    if not name:
        raise PersonNotFoundError(name, department)

    names = directory.list_departments()
    if department in names:
        names = (department,) + tuple(n for n in names if n != department)

    records = [directory.get_department(n) for n in names]
    records = [r for r in records if r is not None]

    for record in records:
        if record.head.name == name:
            return record.head_placement()

    for record in records:
        for position in record.positions:
            if position.occupant.name == name:
                return Placement(
                    person=position.occupant,
                    department=record.name,
                    reports_to=position.reports_to,
                )

    raise PersonNotFoundError(name, department)


def walk_supervisors(directory: OrgDirectory, start: Placement) -> list[Person]:
    """Follow ``reports_to`` edges from ``start`` up to the top.

    Resolution order for a position reference: position title / occupant
    name / occupant email in the same department, then the department head
    if the token contains ``"Head"``.  When both fail, or a person is
    reached twice, the walk is at a dead end: the department head is
    appended once if absent and the walk stops.
    """
    department = directory.get_department(start.department)
    if department is None:
        return []

    chain: list[Person] = []
    visited = {start.person.identity}
    current = start

    while True:
        ref = current.reports_to
        if ref.kind == ReportsToKind.TOP:
            break

        following: Placement | None = None
        if ref.kind == ReportsToKind.DEPARTMENT_HEAD:
            following = department.head_placement()
        else:
            position = department.find_position(ref.token)
            if position is not None:
                following = Placement(
                    person=position.occupant,
                    department=department.name,
                    reports_to=position.reports_to,
                )
            elif HEAD_MARKER in ref.token:
                following = department.head_placement()

        if following is None or following.person.identity in visited:
            logger.info(
                "supervisor_walk_dead_end",
                extra={
                    "department": department.name,
                    "reports_to": ref.token,
                    "cycle": following is not None,
                },
            )
            head = _as_approver(department.head_placement())
            if head.identity not in visited:
                chain.append(head)
            break

        visited.add(following.person.identity)
        chain.append(_as_approver(following))
        current = following

    return chain


def _append_fixed_roles(chain: list[Person], policy: ApprovalPolicy) -> list[Person]:
    top = policy.top_executive
    if top is not None and not any(
        p.role == top.role or p.identity == top.identity for p in chain
    ):
        chain.append(top)

    finance = policy.finance
    if finance is not None and not any(p.identity == finance.identity for p in chain):
        chain.append(finance)
    return chain


def default_chain(
    policy: ApprovalPolicy, directory: OrgDirectory, department: str | None,
) -> tuple[Person, ...]:
    """Department head (if known) -> Finance -> top executive."""
    people: list[Person] = []
    head = _department_head(directory, department)
    if head is not None:
        people.append(head)
    if policy.finance is not None:
        people.append(policy.finance)
    if policy.top_executive is not None:
        people.append(policy.top_executive)
    return dedupe_by_email(people)


def _resolve_supervisor_walk(
    policy: ApprovalPolicy, directory: OrgDirectory, identity: StartingIdentity,
) -> tuple[Person, ...]:
    try:
        start = locate_person(directory, identity.name, identity.department)
    except PersonNotFoundError as exc:
        logger.warning(
            "person_not_found",
            extra={
                "person_name": exc.name,
                "department": exc.department,
                "policy_key": policy.key.value,
                "fallback": "default_chain",
            },
        )
        if directory.get_department(identity.department or "") is None and not policy.has_fallback:
            raise DepartmentNotFoundError(identity.department, policy.key.value) from exc
        return default_chain(policy, directory, identity.department)

    chain = walk_supervisors(directory, start)
    return dedupe_by_email(_append_fixed_roles(chain, policy))


def _resolve_table_lookup(
    policy: ApprovalPolicy, identity: StartingIdentity,
) -> tuple[Person, ...]:
    candidates = (
        policy.normalize_route_key(identity.category),
        policy.normalize_route_key(identity.department),
        policy.fallback_route,
    )
    route_key = next((k for k in candidates if k and k in policy.routes), None)
    if route_key is None:
        raise DepartmentNotFoundError(
            identity.department or identity.category, policy.key.value,
        )
    if route_key == policy.fallback_route and route_key not in candidates[:2]:
        logger.info(
            "route_fallback_used",
            extra={
                "policy_key": policy.key.value,
                "department": identity.department,
                "category": identity.category,
                "route": route_key,
            },
        )

    people = [p for p in policy.routes[route_key] if not p.same_person(policy.finance)]
    if policy.finance is not None:
        people.append(policy.finance)
    chain = dedupe_by_email(people)

    if policy.required_levels is not None and len(chain) != policy.required_levels:
        raise ConfigurationError(
            f"Route {route_key!r} of policy {policy.key.value} resolves to "
            f"{len(chain)} levels, expected {policy.required_levels}",
            policy_key=policy.key.value,
        )
    return chain


@traced_engine(
    "chain_resolver", "1.0",
    fingerprint_fields=("policy", "identity"),
)
def resolve_chain(
    *,
    policy: ApprovalPolicy,
    directory: OrgDirectory,
    identity: StartingIdentity,
) -> tuple[Person, ...]:
    """Resolve the ordered approver list for ``identity`` under ``policy``.

    Levels are implied by position in the returned tuple (1..N).
    """
    if policy.strategy == ResolverStrategy.SUPERVISOR_WALK:
        chain = _resolve_supervisor_walk(policy, directory, identity)
    else:
        chain = _resolve_table_lookup(policy, identity)

    if not chain:
        raise ConfigurationError(
            f"Policy {policy.key.value} resolved an empty approval chain",
            policy_key=policy.key.value,
        )

    logger.info(
        "chain_resolved",
        extra={
            "policy_key": policy.key.value,
            "levels": len(chain),
            "approvers": [p.email for p in chain],
        },
    )
    return chain
