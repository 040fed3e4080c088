"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the YAML fragments of one configuration set and compiles them into
the frozen domain objects the engine runs on: a ``StaticOrgDirectory``
and one ``ApprovalPolicy`` per ``PolicyKey``.  This is build/test tooling;
the single runtime entry point is ``approval_config.get_active_config()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling above ``approval_kernel``.  The
kernel never imports this package.

Fragment structure::

    sets/default/
    +-- org_structure.yaml   # departments, heads, positions, reports_to
    +-- policies.yaml        # fixed roles + one entry per policy key

Person references in ``policies.yaml``:

* a string names an entry under ``fixed_roles`` (``finance``, ...);
* ``{head_of: <department>}`` is that department's head, looked up in the
  compiled directory, with an optional ``role`` override;
* ``{name, email, role, department}`` is an explicit person.

Invariants enforced
-------------------
* Every parsed object is a frozen domain value.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  of both fragments.

Failure modes
-------------
* Missing fragment  -> ``ConfigurationError``.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Dangling ``head_of`` / fixed-role reference, unknown policy key or
  strategy  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_kernel.domain.org import (
    Department,
    Person,
    Position,
    ReportsTo,
    StaticOrgDirectory,
    normalize_email,
)
from approval_kernel.domain.policy import (
    ApprovalConfiguration,
    ApprovalPolicy,
    PolicyKey,
    ResolverStrategy,
)
from approval_kernel.exceptions import ConfigurationError

ORG_STRUCTURE_FILE = "org_structure.yaml"
POLICIES_FILE = "policies.yaml"

DEFAULT_HEAD_ROLE = "Departmental Head"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Org structure
# ---------------------------------------------------------------------------


def parse_reports_to(
    value: Any, head: Person | None, top_role: str,
) -> ReportsTo:
    """Compile a ``reports_to`` entry into a typed reference.

    Accepted forms: ``null`` / ``{top: true}`` (top), ``{department_head:
    true}``, ``{position: <title>}``, or a legacy free-form string.  A
    string equal to the top role is TOP; a string naming the department
    head by name or email is DEPARTMENT_HEAD; anything else is a POSITION
    token and keeps the resolver's position-then-"Head" precedence.
    """
    if value is None:
        return ReportsTo.top(top_role)
    if isinstance(value, dict):
        if value.get("top"):
            return ReportsTo.top(top_role)
        if value.get("department_head"):
            return ReportsTo.department_head()
        if "position" in value:
            return ReportsTo.position(str(value["position"]))
        raise ConfigurationError(f"Unrecognised reports_to entry: {value!r}")

    token = str(value)
    if head is not None and (
        token == head.name or normalize_email(token) == head.identity
    ):
        return ReportsTo.department_head()
    return ReportsTo.from_token(token, top_role)


def parse_department(data: dict[str, Any], top_role: str) -> Department:
    name = data["name"]
    head_data = data["head"]
    head = Person(
        name=head_data["name"],
        email=head_data["email"],
        role=head_data.get("title", f"{name} Head"),
        department=name,
    )
    positions = tuple(
        Position(
            title=p["title"],
            occupant=Person(
                name=p["name"],
                email=p["email"],
                role=p["title"],
                department=name,
            ),
            reports_to=parse_reports_to(p.get("reports_to"), head, top_role),
        )
        for p in data.get("positions", [])
    )
    return Department(
        name=name,
        head=head,
        positions=positions,
        head_reports_to=parse_reports_to(head_data.get("reports_to"), None, top_role),
    )


def parse_org_structure(data: dict[str, Any]) -> StaticOrgDirectory:
    """Compile ``org_structure.yaml`` into an immutable directory."""
    top_role = data.get("top_role", "President")
    departments: list[Department] = []
    seen: set[str] = set()
    for entry in data.get("departments", []):
        department = parse_department(entry, top_role)
        if department.name in seen:
            raise ConfigurationError(f"Duplicate department: {department.name!r}")
        seen.add(department.name)
        departments.append(department)
    return StaticOrgDirectory(tuple(departments), top_role=top_role)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


def parse_person_ref(
    ref: Any,
    directory: StaticOrgDirectory,
    fixed_roles: dict[str, Person],
) -> Person:
    """Resolve a person reference from ``policies.yaml``."""
    if isinstance(ref, str):
        if ref not in fixed_roles:
            raise ConfigurationError(f"Unknown fixed role reference: {ref!r}")
        return fixed_roles[ref]

    if "head_of" in ref:
        department = directory.get_department(ref["head_of"])
        if department is None:
            raise ConfigurationError(
                f"head_of references unknown department {ref['head_of']!r}"
            )
        return Person(
            name=department.head.name,
            email=department.head.email,
            role=ref.get("role", DEFAULT_HEAD_ROLE),
            department=department.name,
        )

    return Person(
        name=ref["name"],
        email=ref["email"],
        role=ref["role"],
        department=ref.get("department", ""),
    )


def parse_policy(
    data: dict[str, Any],
    directory: StaticOrgDirectory,
    fixed_roles: dict[str, Person],
) -> ApprovalPolicy:
    try:
        key = PolicyKey(data["key"])
        strategy = ResolverStrategy(data["strategy"])
    except ValueError as exc:
        raise ConfigurationError(str(exc), policy_key=data.get("key")) from exc

    def ref(value: Any) -> Person | None:
        if value is None:
            return None
        return parse_person_ref(value, directory, fixed_roles)

    routes = {
        route_key: tuple(parse_person_ref(r, directory, fixed_roles) for r in people)
        for route_key, people in (data.get("routes") or {}).items()
    }
    fallback_route = data.get("fallback_route")
    if fallback_route is not None and fallback_route not in routes:
        raise ConfigurationError(
            f"fallback_route {fallback_route!r} has no route entry",
            policy_key=key.value,
        )

    return ApprovalPolicy(
        key=key,
        strategy=strategy,
        subject_type=data.get("subject_type", key.value),
        finance=ref(data.get("finance")),
        top_executive=ref(data.get("top_executive")),
        routes=routes,
        aliases=data.get("aliases") or {},
        fallback_route=fallback_route,
        required_levels=data.get("required_levels"),
        version=data.get("version", 1),
        description=data.get("description", ""),
    )


def parse_policies(
    data: dict[str, Any], directory: StaticOrgDirectory,
) -> dict[PolicyKey, ApprovalPolicy]:
    fixed_roles = {
        name: parse_person_ref(value, directory, {})
        for name, value in (data.get("fixed_roles") or {}).items()
    }
    policies: dict[PolicyKey, ApprovalPolicy] = {}
    for entry in data.get("policies", []):
        policy = parse_policy(entry, directory, fixed_roles)
        if policy.key in policies:
            raise ConfigurationError(
                f"Duplicate policy: {policy.key.value}", policy_key=policy.key.value,
            )
        policies[policy.key] = policy
    return policies


def load_config_set(fragment_dir: Path) -> ApprovalConfiguration:
    """Compose the fragments of one configuration set.

    Raises:
        ConfigurationError: if the directory or a required fragment is
            missing, or a reference cannot be resolved.
    """
    if not fragment_dir.is_dir():
        raise ConfigurationError(f"Configuration set not found: {fragment_dir}")

    org_path = fragment_dir / ORG_STRUCTURE_FILE
    policies_path = fragment_dir / POLICIES_FILE
    for path in (org_path, policies_path):
        if not path.exists():
            raise ConfigurationError(f"{path.name} not found in {fragment_dir}")

    org_data = load_yaml_file(org_path)
    policies_data = load_yaml_file(policies_path)

    directory = parse_org_structure(org_data)
    policies = parse_policies(policies_data, directory)

    checksum = compute_checksum({"org_structure": org_data, "policies": policies_data})

    return ApprovalConfiguration(
        directory=directory,
        policies=policies,
        config_id=org_data.get("config_id", fragment_dir.name),
        version=org_data.get("version", 1),
        checksum=checksum,
    )
