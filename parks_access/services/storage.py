"""Durable storage backends for the role permission matrix.

The store only ever talks to :class:`PermissionStorage`, so the MongoDB
backend used in deployments and the in-process backend used in local
development and tests are interchangeable.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from beanie.exceptions import CollectionWasNotInitialized
from pymongo.errors import PyMongoError

from parks_access.errors import StorageUnavailable
from parks_access.models.role import PermissionAuditEntry, RolePermissions

if TYPE_CHECKING:
    from parks_access.config import Settings

logger = logging.getLogger(__name__)

_MONGO_ERRORS = (PyMongoError, CollectionWasNotInitialized)


@dataclass
class StoredRoleGrants:
    grants: frozenset[str]
    version: int = 1
    updated_by: str | None = None
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class AuditRecord:
    role: str
    action: str
    granted: list[str]
    revoked: list[str]
    version: int
    performed_by: str | None = None
    created_at: datetime = field(default_factory=datetime.utcnow)


class PermissionStorage(ABC):
    """Abstract persistence for the role -> grants document."""

    @abstractmethod
    async def load(self) -> dict[str, StoredRoleGrants] | None:
        """Return every stored role, or ``None`` if nothing was ever saved."""

    @abstractmethod
    async def save_role(self, role: str, record: StoredRoleGrants) -> None:
        """Persist one role's grant set, replacing whatever was there."""

    @abstractmethod
    async def save_all(self, records: dict[str, StoredRoleGrants]) -> None:
        """Persist a full matrix (first boot and reset)."""

    @abstractmethod
    async def append_audit(self, entry: AuditRecord) -> None:
        ...

    @abstractmethod
    async def list_audit(self, limit: int = 50, role: str | None = None) -> list[AuditRecord]:
        """Most recent entries first."""

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None


class MemoryPermissionStorage(PermissionStorage):
    """In-process backend. ``fail_reads``/``fail_writes`` simulate an outage."""

    def __init__(self, initial: dict[str, StoredRoleGrants] | None = None, audit_size: int = 500) -> None:
        self._roles: dict[str, StoredRoleGrants] | None = dict(initial) if initial is not None else None
        self._audit: deque[AuditRecord] = deque(maxlen=audit_size)
        self.fail_reads = False
        self.fail_writes = False
        self.writes = 0

    def _check(self, failing: bool) -> None:
        if failing:
            raise StorageUnavailable("Permission storage is unavailable (simulated)")

    async def load(self) -> dict[str, StoredRoleGrants] | None:
        self._check(self.fail_reads)
        if self._roles is None:
            return None
        return dict(self._roles)

    async def save_role(self, role: str, record: StoredRoleGrants) -> None:
        self._check(self.fail_writes)
        if self._roles is None:
            self._roles = {}
        self._roles[role] = record
        self.writes += 1

    async def save_all(self, records: dict[str, StoredRoleGrants]) -> None:
        self._check(self.fail_writes)
        self._roles = dict(records)
        self.writes += 1

    async def append_audit(self, entry: AuditRecord) -> None:
        self._check(self.fail_writes)
        self._audit.append(entry)

    async def list_audit(self, limit: int = 50, role: str | None = None) -> list[AuditRecord]:
        self._check(self.fail_reads)
        entries = [e for e in reversed(self._audit) if role is None or e.role == role]
        return entries[:limit]


class MongoPermissionStorage(PermissionStorage):
    """Beanie-backed storage. Connection is (re)attempted lazily until it succeeds."""

    def __init__(self) -> None:
        self._ready = False

    async def open(self) -> None:
        if self._ready:
            return
        from parks_access.db import init_db

        try:
            await init_db()
        except PyMongoError as exc:
            raise StorageUnavailable(f"Could not connect to MongoDB: {exc}") from exc
        self._ready = True

    async def load(self) -> dict[str, StoredRoleGrants] | None:
        await self.open()
        try:
            docs = await RolePermissions.find_all().to_list()
        except _MONGO_ERRORS as exc:
            raise StorageUnavailable(f"Could not read role permissions: {exc}") from exc
        if not docs:
            return None
        return {
            doc.role: StoredRoleGrants(
                grants=frozenset(doc.grants),
                version=doc.version,
                updated_by=doc.updated_by,
                updated_at=doc.updated_at,
            )
            for doc in docs
        }

    async def save_role(self, role: str, record: StoredRoleGrants) -> None:
        await self.open()
        try:
            doc = await RolePermissions.find_one(RolePermissions.role == role)
            if doc is None:
                doc = RolePermissions(role=role)
            doc.grants = sorted(record.grants)
            doc.version = record.version
            doc.updated_by = record.updated_by
            doc.updated_at = record.updated_at
            await doc.save()
        except _MONGO_ERRORS as exc:
            raise StorageUnavailable(f"Could not save permissions for role '{role}': {exc}") from exc

    async def save_all(self, records: dict[str, StoredRoleGrants]) -> None:
        for role, record in records.items():
            await self.save_role(role, record)

    async def append_audit(self, entry: AuditRecord) -> None:
        await self.open()
        try:
            await PermissionAuditEntry(
                role=entry.role,
                action=entry.action,
                granted=entry.granted,
                revoked=entry.revoked,
                version=entry.version,
                performed_by=entry.performed_by,
                created_at=entry.created_at,
            ).insert()
        except _MONGO_ERRORS as exc:
            raise StorageUnavailable(f"Could not write audit entry: {exc}") from exc

    async def list_audit(self, limit: int = 50, role: str | None = None) -> list[AuditRecord]:
        await self.open()
        try:
            if role:
                query = PermissionAuditEntry.find(PermissionAuditEntry.role == role)
            else:
                query = PermissionAuditEntry.find_all()
            docs = await query.sort(-PermissionAuditEntry.created_at).limit(limit).to_list()
        except _MONGO_ERRORS as exc:
            raise StorageUnavailable(f"Could not read audit log: {exc}") from exc
        return [
            AuditRecord(
                role=d.role,
                action=d.action,
                granted=list(d.granted),
                revoked=list(d.revoked),
                version=d.version,
                performed_by=d.performed_by,
                created_at=d.created_at,
            )
            for d in docs
        ]

    async def close(self) -> None:
        from parks_access.db import db_shutdown

        await db_shutdown()
        self._ready = False


def choose_storage(settings: Settings) -> PermissionStorage:
    """Select the backend named by ``settings.permissions_backend``."""
    backend = settings.permissions_backend.lower()
    if backend == "memory":
        logger.warning("Using in-memory permission storage; changes are lost on restart")
        return MemoryPermissionStorage()
    if backend == "mongo":
        return MongoPermissionStorage()
    raise ValueError(f"Unknown permissions backend: {settings.permissions_backend}")
