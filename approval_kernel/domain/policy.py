"""
Approval policy domain types (``approval_kernel.domain.policy``).

Responsibility
--------------
Describes, per subject type, how an approver chain is resolved: the
resolver strategy, the fixed roles appended to every chain, and for
table-driven policies the route table mapping a department / category key
to an ordered list of fixed approvers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  Compiled from YAML by
``approval_config``; consumed by ``approval_engines.chain_resolver``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from approval_kernel.domain.org import OrgDirectory, Person
from approval_kernel.exceptions import UnknownPolicyError


class PolicyKey(str, Enum):
    """Subject types that run through the approval engine."""

    CASH_REQUEST = "cash_request"
    SUPPLIER_INVOICE = "supplier_invoice"
    SUPPLIER_ONBOARDING = "supplier_onboarding"
    USER_HIERARCHY = "user_hierarchy"


class ResolverStrategy(str, Enum):
    """How the ordered approver list is produced."""

    SUPERVISOR_WALK = "supervisor_walk"
    TABLE_LOOKUP = "table_lookup"


def _frozen(mapping: Mapping | None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ApprovalPolicy:
    """A compiled, immutable approval policy.

    ``finance`` is always placed last in resolved chains; ``top_executive`` is
    appended by supervisor walks unless already present.  ``routes`` is only
    used by ``TABLE_LOOKUP`` policies and is keyed by normalised route key.
    """

    key: PolicyKey
    strategy: ResolverStrategy
    subject_type: str
    finance: Person | None = None
    top_executive: Person | None = None
    routes: Mapping[str, tuple[Person, ...]] = field(default_factory=dict)
    aliases: Mapping[str, str] = field(default_factory=dict)
    fallback_route: str | None = None
    required_levels: int | None = None
    version: int = 1
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "routes", _frozen(self.routes))
        object.__setattr__(self, "aliases", _frozen(self.aliases))

    def normalize_route_key(self, key: str | None) -> str | None:
        if key is None:
            return None
        key = key.strip()
        return self.aliases.get(key, key)

    @property
    def has_fallback(self) -> bool:
        """True if something can still be resolved for an unknown department."""
        if self.strategy == ResolverStrategy.TABLE_LOOKUP:
            return self.fallback_route is not None
        return self.finance is not None or self.top_executive is not None


@dataclass(frozen=True)
class ApprovalConfiguration:
    """The compiled runtime artifact: org directory plus policy table.

    Produced only by ``approval_config.get_active_config()`` (or built
    directly by tests).  ``checksum`` identifies the YAML source it was
    compiled from.
    """

    directory: OrgDirectory
    policies: Mapping[PolicyKey, ApprovalPolicy]
    config_id: str = "inline"
    version: int = 1
    checksum: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "policies", _frozen(self.policies))

    def policy_for(self, key: PolicyKey | str) -> ApprovalPolicy:
        try:
            policy_key = PolicyKey(key)
        except ValueError:
            raise UnknownPolicyError(str(key)) from None
        policy = self.policies.get(policy_key)
        if policy is None:
            raise UnknownPolicyError(policy_key.value)
        return policy
