"""
Org directory domain types (``approval_kernel.domain.org``).

Responsibility
--------------
Immutable value objects describing the organisational hierarchy that
approval chains are resolved against: people, positions, departments and
the typed ``reports_to`` edges between them.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  The directory is
built once by ``approval_config`` and injected into resolvers; nothing in
the kernel holds it as a module-level singleton.

Invariants enforced
-------------------
* Person identity is the email address, compared case-insensitively.
* ``reports_to`` is a typed reference (position / department head / top)
  rather than a free-form string; the raw token is retained for
  resolution and diagnostics.
* A ``StaticOrgDirectory`` cannot be mutated after construction.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Protocol


def normalize_email(email: str | None) -> str:
    """Canonical form of an email for identity comparison."""
    return (email or "").strip().lower()


@dataclass(frozen=True)
class Person:
    """A person as snapshotted into an approval chain."""

    name: str
    email: str
    role: str
    department: str

    @property
    def identity(self) -> str:
        return normalize_email(self.email)

    def same_person(self, other: Person | None) -> bool:
        return other is not None and self.identity == other.identity

    def has_email(self, email: str | None) -> bool:
        return self.identity == normalize_email(email)


class ReportsToKind(str, Enum):
    """Kinds of supervisor reference, in resolution order."""

    POSITION = "position"
    DEPARTMENT_HEAD = "department_head"
    TOP = "top"


@dataclass(frozen=True)
class ReportsTo:
    """Typed supervisor reference.

    ``POSITION`` refs carry a token that is matched against position titles,
    occupant names and occupant emails of the same department.  The token is
    kept verbatim because the resolver falls back to the department head for
    tokens containing ``"Head"``.
    """

    kind: ReportsToKind
    token: str = ""

    @classmethod
    def position(cls, token: str) -> ReportsTo:
        return cls(ReportsToKind.POSITION, token)

    @classmethod
    def department_head(cls) -> ReportsTo:
        return cls(ReportsToKind.DEPARTMENT_HEAD)

    @classmethod
    def top(cls, token: str = "") -> ReportsTo:
        return cls(ReportsToKind.TOP, token)

    @classmethod
    def from_token(cls, token: str | None, top_role: str) -> ReportsTo:
        """Classify a legacy free-form ``reportsTo`` string.

        Only an exact match on the top role name becomes ``TOP``; everything
        else stays a position token so the resolver can apply its
        position-then-head precedence.
        """
        if token is None or token == top_role:
            return cls.top(token or top_role)
        return cls.position(token)


@dataclass(frozen=True)
class Position:
    """A titled seat in a department and the person occupying it."""

    title: str
    occupant: Person
    reports_to: ReportsTo

    def matches(self, token: str) -> bool:
        """True if ``token`` names this position by title, occupant or email."""
        return (
            token == self.title
            or token == self.occupant.name
            or normalize_email(token) == self.occupant.identity
        )


@dataclass(frozen=True)
class Department:
    """A department: its head and its positions, in declaration order."""

    name: str
    head: Person
    positions: tuple[Position, ...] = ()
    head_reports_to: ReportsTo = field(default_factory=ReportsTo.top)

    def find_position(self, token: str) -> Position | None:
        for position in self.positions:
            if position.matches(token):
                return position
        return None

    def head_placement(self) -> Placement:
        return Placement(
            person=self.head,
            department=self.name,
            reports_to=self.head_reports_to,
            is_head=True,
        )


@dataclass(frozen=True)
class Placement:
    """Where a person sits in the directory and who they report to."""

    person: Person
    department: str
    reports_to: ReportsTo
    is_head: bool = False


class OrgDirectory(Protocol):
    """Read-only org directory consumed by chain resolution."""

    def get_department(self, name: str) -> Department | None:
        """Return the department record, or None if unknown."""
        ...

    def list_departments(self) -> tuple[str, ...]:
        """Return every department name in declaration order."""
        ...


class StaticOrgDirectory:
    """Immutable in-memory org directory.

    Loaded once at process start (see ``approval_config``) and passed to
    resolvers explicitly so tests can inject fixture graphs.
    """

    def __init__(
        self,
        departments: Mapping[str, Department] | tuple[Department, ...],
        top_role: str = "President",
    ) -> None:
        if isinstance(departments, Mapping):
            ordered = dict(departments)
        else:
            ordered = {d.name: d for d in departments}
        self._departments: Mapping[str, Department] = MappingProxyType(ordered)
        self._names: tuple[str, ...] = tuple(ordered)
        self.top_role = top_role

    def get_department(self, name: str) -> Department | None:
        return self._departments.get(name)

    def list_departments(self) -> tuple[str, ...]:
        return self._names

    def __iter__(self) -> Iterator[Department]:
        return iter(self._departments.values())

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"<StaticOrgDirectory departments={len(self._names)} top_role={self.top_role!r}>"
