"""Process-wide cache of the permission matrix backed by a storage backend.

Reads never touch storage: every guarded request evaluates against the
snapshot held in memory. Storage is read on ``init``/``reload`` and written
on every mutation, and the cache is only swapped after the write succeeded.

When storage cannot be read the store keeps serving the last good snapshot
(or the built-in defaults on first boot) and sets ``degraded``. That is a
conscious availability-over-strictness choice: locking every operator out
because MongoDB hiccuped is worse than serving slightly stale grants.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime

from parks_access.errors import (
    ConcurrentModification,
    InvalidCapability,
    InvalidRole,
    ProtectedRole,
    StorageUnavailable,
)
from parks_access.rbac import (
    DEFAULT_ROLE_GRANTS,
    Capability,
    PermissionAction,
    SystemRole,
    is_valid_role,
    parse_capability_key,
)
from parks_access.services.matrix import PermissionMatrix, grants_from_document, has_permission
from parks_access.services.storage import AuditRecord, PermissionStorage, StoredRoleGrants

logger = logging.getLogger(__name__)


def default_matrix() -> PermissionMatrix:
    grants = {role.value: DEFAULT_ROLE_GRANTS.get(role.value, frozenset()) for role in SystemRole}
    return PermissionMatrix.from_grants(grants)


def _keys(grants: Iterable[Capability]) -> list[str]:
    return sorted(cap.key for cap in grants)


class MatrixStore:
    def __init__(self, storage: PermissionStorage, *, protected_roles: Iterable[str] = ()) -> None:
        self._storage = storage
        self._protected = frozenset(protected_roles)
        self._matrix = default_matrix()
        self._lock = asyncio.Lock()
        self.degraded = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def init(self) -> PermissionMatrix:
        """Load the matrix, seeding defaults on first boot."""
        try:
            await self._storage.open()
            stored = await self._storage.load()
        except StorageUnavailable as exc:
            logger.warning("Permission storage unavailable at startup, serving default matrix: %s", exc)
            self._matrix = default_matrix()
            self.degraded = True
            return self._matrix

        if stored is None:
            self._matrix = default_matrix()
            try:
                await self._storage.save_all(self._records(self._matrix))
                for role in self._matrix.roles():
                    await self._audit("seed", role, frozenset(), self._matrix.grants_for(role), None)
            except StorageUnavailable as exc:
                logger.warning("Could not persist seed permission matrix: %s", exc)
                self.degraded = True
            else:
                logger.info("Seeded default permission matrix for %d roles", len(self._matrix.roles()))
                self.degraded = False
        else:
            self._matrix = await self._from_stored(stored)
            self.degraded = False
        return self._matrix

    async def shutdown(self) -> None:
        # every mutation is persisted before it is visible, nothing to flush
        await self._storage.close()

    async def reload(self) -> PermissionMatrix:
        # serialized with mutations so an older read never overwrites a newer write
        async with self._lock:
            return await self._resync()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_matrix(self) -> PermissionMatrix:
        return self._matrix

    def has_permission(self, role: str, module: str, action: str | PermissionAction) -> bool:
        return has_permission(self._matrix, role, module, action)

    def is_protected(self, role: str) -> bool:
        return role in self._protected

    async def audit_log(self, limit: int = 50, role: str | None = None) -> list[AuditRecord]:
        return await self._storage.list_audit(limit=limit, role=role)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def replace_role_grants(
        self,
        role: str,
        grants: Iterable[Capability | str],
        *,
        expected_version: int | None = None,
        actor: str | None = None,
    ) -> PermissionMatrix:
        """Replace *role*'s whole grant set; persisted before it becomes visible."""
        new_grants = self._validate(role, grants)
        async with self._lock:
            return await self._apply(role, new_grants, expected_version, actor)

    async def replace_matrix(
        self, document: Mapping[str, Mapping[str, object]], *, actor: str | None = None
    ) -> PermissionMatrix:
        """Full replacement from the wire document; every role validated before any write."""
        parsed = grants_from_document(document)
        for role, grants in parsed.items():
            self._check_editable(role, grants)
        async with self._lock:
            for role, grants in parsed.items():
                if role in self._protected:
                    continue
                await self._apply(role, grants, None, actor)
            return self._matrix

    async def reset_to_defaults(self, *, actor: str | None = None) -> PermissionMatrix:
        defaults = default_matrix()
        async with self._lock:
            current = self._matrix
            versions = {role: current.version_of(role) + 1 for role in defaults.roles()}
            matrix = PermissionMatrix(grants=defaults.grants, versions=versions)
            try:
                await self._storage.save_all(self._records(matrix, actor))
            except StorageUnavailable:
                # a bulk write may have landed partially; follow whatever storage now holds
                logger.warning("Reset to defaults failed, re-reading stored permission matrix")
                await self._resync()
                raise
            self._matrix = matrix
            self.degraded = False
            logger.info("Permission matrix reset to defaults by %s", actor or "system")
            for role in matrix.roles():
                before = current.grants_for(role)
                after = matrix.grants_for(role)
                if before != after:
                    await self._audit("reset", role, before, after, actor)
            return matrix

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _resync(self) -> PermissionMatrix:
        """Replace the cache with the stored matrix. Caller holds ``_lock``."""
        try:
            stored = await self._storage.load()
        except StorageUnavailable as exc:
            logger.warning("Permission storage unavailable, keeping cached matrix: %s", exc)
            self.degraded = True
            return self._matrix
        if stored is not None:
            self._matrix = await self._from_stored(stored)
        self.degraded = False
        return self._matrix

    def _check_editable(self, role: str, grants: frozenset[Capability]) -> None:
        if not is_valid_role(role):
            raise InvalidRole(role)
        # protected roles may be echoed back unchanged by a full-matrix save
        if role in self._protected and grants != self._matrix.grants_for(role):
            raise ProtectedRole(role)

    def _validate(self, role: str, grants: Iterable[Capability | str]) -> frozenset[Capability]:
        if not is_valid_role(role):
            raise InvalidRole(role)
        validated: set[Capability] = set()
        for item in grants:
            if isinstance(item, Capability):
                cap = parse_capability_key(item.key)
            elif isinstance(item, str):
                cap = parse_capability_key(item)
            else:
                raise InvalidCapability(repr(item))
            validated.add(cap)
        result = frozenset(validated)
        self._check_editable(role, result)
        return result

    async def _apply(
        self,
        role: str,
        grants: frozenset[Capability],
        expected_version: int | None,
        actor: str | None,
    ) -> PermissionMatrix:
        current = self._matrix
        version = current.version_of(role)
        if expected_version is not None and expected_version != version:
            raise ConcurrentModification(role, expected_version, version)
        before = current.grants_for(role)
        if before == grants and role in current.grants:
            return current

        updated = current.with_role(role, grants)
        record = StoredRoleGrants(
            grants=frozenset(_keys(grants)),
            version=updated.version_of(role),
            updated_by=actor,
            updated_at=datetime.utcnow(),
        )
        await self._storage.save_role(role, record)
        self._matrix = updated
        logger.info(
            "Permissions for role %s replaced by %s (%d grants, version %d)",
            role, actor or "system", len(grants), record.version,
        )
        await self._audit("update", role, before, grants, actor)
        return updated

    async def _audit(
        self,
        action: str,
        role: str,
        before: frozenset[Capability],
        after: frozenset[Capability],
        actor: str | None,
    ) -> None:
        entry = AuditRecord(
            role=role,
            action=action,
            granted=_keys(after - before),
            revoked=_keys(before - after),
            version=self._matrix.version_of(role),
            performed_by=actor,
        )
        try:
            await self._storage.append_audit(entry)
        except StorageUnavailable as exc:
            # the grant change itself is already persisted
            logger.warning("Could not record permission audit entry for %s: %s", role, exc)

    def _records(self, matrix: PermissionMatrix, actor: str | None = None) -> dict[str, StoredRoleGrants]:
        return {
            role: StoredRoleGrants(
                grants=frozenset(_keys(matrix.grants_for(role))),
                version=matrix.version_of(role),
                updated_by=actor,
            )
            for role in matrix.roles()
        }

    async def _from_stored(self, stored: Mapping[str, StoredRoleGrants]) -> PermissionMatrix:
        grants: dict[str, frozenset[Capability]] = {}
        versions: dict[str, int] = {}
        for role, record in stored.items():
            if not is_valid_role(role):
                logger.warning("Ignoring stored permissions for unknown role %r", role)
                continue
            caps: set[Capability] = set()
            for key in record.grants:
                try:
                    caps.add(parse_capability_key(key))
                except InvalidCapability:
                    logger.warning("Ignoring unknown permission %r stored for role %s", key, role)
            grants[role] = frozenset(caps)
            versions[role] = record.version

        missing = [role.value for role in SystemRole if role.value not in grants]
        for role in missing:
            # never leave a known role undefined; an empty set is explicit default-deny
            grants[role] = frozenset()
            versions[role] = 1
            try:
                await self._storage.save_role(role, StoredRoleGrants(grants=frozenset(), version=1))
            except StorageUnavailable as exc:
                logger.warning("Could not backfill role %s: %s", role, exc)
        return PermissionMatrix(grants=grants, versions=versions)
