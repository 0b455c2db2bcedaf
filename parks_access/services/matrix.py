"""Immutable permission matrix snapshot and the authorization decision."""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from parks_access.rbac import (
    Capability,
    PermissionAction,
    actions_for_level,
    all_capabilities,
    is_valid_role,
    make_capability,
    parse_capability_key,
)
from parks_access.errors import InvalidRole


@dataclass(frozen=True)
class PermissionMatrix:
    """Role -> granted capabilities, with a version stamp per role.

    Instances are never mutated; ``with_role`` returns a new snapshot so a
    reader holding an old one keeps a consistent view.
    """

    grants: Mapping[str, frozenset[Capability]] = field(default_factory=dict)
    versions: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "grants", MappingProxyType(dict(self.grants)))
        object.__setattr__(self, "versions", MappingProxyType(dict(self.versions)))

    @classmethod
    def from_grants(
        cls,
        grants: Mapping[str, Iterable[Capability]],
        versions: Mapping[str, int] | None = None,
    ) -> "PermissionMatrix":
        return cls(
            grants={role: frozenset(caps) for role, caps in grants.items()},
            versions=dict(versions or {role: 1 for role in grants}),
        )

    def roles(self) -> list[str]:
        return list(self.grants.keys())

    def grants_for(self, role: str) -> frozenset[Capability]:
        return self.grants.get(role, frozenset())

    def version_of(self, role: str) -> int:
        return self.versions.get(role, 0)

    def with_role(self, role: str, grants: Iterable[Capability]) -> "PermissionMatrix":
        new_grants = dict(self.grants)
        new_grants[role] = frozenset(grants)
        new_versions = dict(self.versions)
        new_versions[role] = self.version_of(role) + 1
        return PermissionMatrix(grants=new_grants, versions=new_versions)

    def to_document(self) -> dict[str, dict[str, bool]]:
        """Wire/persisted shape: every catalog capability listed for every role."""
        catalog = all_capabilities()
        return {
            role: {cap.key: cap in granted for cap in catalog}
            for role, granted in self.grants.items()
        }


def has_permission(matrix: PermissionMatrix, role: str, module: str, action: str | PermissionAction) -> bool:
    granted = matrix.grants.get(role)
    if not granted:
        return False
    try:
        wanted = Capability(module, PermissionAction(action))
    except ValueError:
        return False
    return wanted in granted


def grants_from_entries(entries: Mapping[str, object]) -> frozenset[Capability]:
    """Turn one role's wire entries into a validated grant set.

    Accepted entry shapes::

        {"parks.view": true, "parks.delete": false}
        {"parks": "write"}                 # ordinal level, expanded to actions
        {"parks": {"view": true, "edit": true}}
        {"parks": ["view", "edit"]}        # granted actions only
    """
    granted: set[Capability] = set()
    for key, value in entries.items():
        if isinstance(value, bool):
            cap = parse_capability_key(key)
            if value:
                granted.add(cap)
        elif isinstance(value, str):
            for action in actions_for_level(value):
                granted.add(make_capability(key, action))
        elif isinstance(value, (list, tuple)):
            for action in value:
                granted.add(make_capability(key, action))
        elif isinstance(value, Mapping):
            for action, allowed in value.items():
                cap = make_capability(key, action)
                if allowed:
                    granted.add(cap)
        else:
            cap = parse_capability_key(key)
            if value:
                granted.add(cap)
    return frozenset(granted)


def grants_from_document(document: Mapping[str, Mapping[str, object]]) -> dict[str, frozenset[Capability]]:
    """Validate a whole matrix document; nothing is returned unless every role passes."""
    parsed: dict[str, frozenset[Capability]] = {}
    for role, entries in document.items():
        if not is_valid_role(role):
            raise InvalidRole(role)
        parsed[role] = grants_from_entries(entries or {})
    return parsed
