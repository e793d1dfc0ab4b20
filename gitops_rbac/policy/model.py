"""
GITOPS RBAC - Compiled Policy Model

Immutable value types produced by the policy compiler. A PolicyGeneration
is never mutated after compilation; replacing policy means installing a
new generation.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from gitops_rbac.policy.patterns import ResourcePattern, SubjectPattern, Verb


@dataclass(frozen=True)
class Permission:
    """A (resource pattern, verb) pair granted by a role."""

    resource: ResourcePattern
    verb: Verb

    def matches(self, resource: str, verb: str) -> bool:
        if self.verb is not Verb.ANY and self.verb.value != verb:
            return False
        return self.resource.matches(resource)

    def __str__(self) -> str:
        return f"{self.verb.value} {self.resource}"


@dataclass(frozen=True)
class Role:
    """Named set of permissions."""

    name: str
    permissions: FrozenSet[Permission]

    def grants(self, resource: str, verb: str) -> bool:
        return any(p.matches(resource, verb) for p in self.permissions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "permissions": sorted(str(p) for p in self.permissions),
        }


@dataclass(frozen=True)
class Binding:
    """Maps a subject pattern to an ordered set of role names."""

    subject: SubjectPattern
    roles: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"subjectPattern": str(self.subject), "roles": list(self.roles)}


@dataclass(frozen=True)
class PolicyDiff:
    """Structural difference between two generations."""

    added_roles: Tuple[str, ...] = ()
    removed_roles: Tuple[str, ...] = ()
    changed_roles: Tuple[str, ...] = ()
    added_bindings: Tuple[Dict[str, Any], ...] = ()
    removed_bindings: Tuple[Dict[str, Any], ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (
            self.added_roles
            or self.removed_roles
            or self.changed_roles
            or self.added_bindings
            or self.removed_bindings
        )


@dataclass(frozen=True)
class PolicyGeneration:
    """
    Immutable, versioned snapshot of compiled roles and bindings.

    ``digest`` covers the structure only (not ``number`` or
    ``compiled_at``), so compiling the same document twice yields the
    same digest.
    """

    number: int
    roles: Mapping[str, Role]
    bindings: Tuple[Binding, ...]
    compiled_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )
    digest: str = field(default="", compare=False)

    def __post_init__(self):
        if not self.digest:
            object.__setattr__(self, "digest", self._compute_digest())

    def canonical(self) -> Dict[str, Any]:
        return {
            "roles": [self.roles[name].to_dict() for name in sorted(self.roles)],
            "bindings": [b.to_dict() for b in self.bindings],
        }

    def _compute_digest(self) -> str:
        return hashlib.sha256(
            json.dumps(self.canonical(), sort_keys=True).encode()
        ).hexdigest()

    def role(self, name: str) -> Optional[Role]:
        return self.roles.get(name)

    def matching_bindings(
        self,
        subject: str,
        groups: FrozenSet[str],
        email: Optional[str] = None,
    ) -> List[Binding]:
        return [b for b in self.bindings if b.subject.matches(subject, groups, email)]

    def diff(self, other: "PolicyGeneration") -> PolicyDiff:
        """Changes needed to go from ``other`` to this generation."""
        mine = {name: role.to_dict() for name, role in self.roles.items()}
        theirs = {name: role.to_dict() for name, role in other.roles.items()}
        my_bindings = [b.to_dict() for b in self.bindings]
        their_bindings = [b.to_dict() for b in other.bindings]

        return PolicyDiff(
            added_roles=tuple(sorted(set(mine) - set(theirs))),
            removed_roles=tuple(sorted(set(theirs) - set(mine))),
            changed_roles=tuple(
                sorted(n for n in set(mine) & set(theirs) if mine[n] != theirs[n])
            ),
            added_bindings=tuple(b for b in my_bindings if b not in their_bindings),
            removed_bindings=tuple(b for b in their_bindings if b not in my_bindings),
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "generation": self.number,
            "digest": self.digest,
            "compiled_at": self.compiled_at.isoformat(),
            "roles": sorted(self.roles),
            "bindings": len(self.bindings),
        }


def empty_generation() -> PolicyGeneration:
    """Generation 0: no roles, no bindings, everything denied."""
    return PolicyGeneration(number=0, roles={}, bindings=())
