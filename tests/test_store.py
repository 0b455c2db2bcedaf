import asyncio

import pytest

from parks_access.errors import (
    ConcurrentModification,
    InvalidCapability,
    InvalidRole,
    ProtectedRole,
    StorageUnavailable,
)
from parks_access.rbac import Capability, PermissionAction, SystemRole, all_capabilities
from parks_access.services.storage import MemoryPermissionStorage, StoredRoleGrants
from parks_access.services.store import MatrixStore, default_matrix


async def test_first_boot_seeds_and_persists_defaults(store, storage):
    stored = await storage.load()
    assert set(stored) == {r.value for r in SystemRole}
    assert "users.delete" in stored["admin"].grants
    assert dict(store.get_matrix().grants) == dict(default_matrix().grants)
    assert not store.degraded


async def test_replace_is_total_and_leaves_other_roles_alone(store):
    before = store.get_matrix()
    await store.replace_role_grants("instructor", ["activities.view", "activities.edit"])

    assert not store.has_permission("instructor", "activities", "create")
    assert store.has_permission("instructor", "activities", "edit")
    # previous instructor grants are gone
    assert not store.has_permission("instructor", "parks", "view")

    after = store.get_matrix()
    for role in before.roles():
        if role != "instructor":
            assert after.grants_for(role) == before.grants_for(role)
    expected = {Capability("activities", PermissionAction.VIEW), Capability("activities", PermissionAction.EDIT)}
    for cap in all_capabilities():
        assert store.has_permission("instructor", cap.module, cap.action) == (cap in expected)


async def test_replace_is_persisted_before_it_returns(store, storage):
    await store.replace_role_grants("guardia", ["incidents.view"])
    stored = await storage.load()
    assert stored["guardia"].grants == frozenset({"incidents.view"})
    assert stored["guardia"].version == store.get_matrix().version_of("guardia")


async def test_replace_twice_is_idempotent(store, storage):
    await store.replace_role_grants("voluntario", ["volunteers.view"])
    snapshot = store.get_matrix()
    writes = storage.writes
    await store.replace_role_grants("voluntario", ["volunteers.view"])
    assert store.get_matrix().to_document() == snapshot.to_document()
    assert dict(store.get_matrix().versions) == dict(snapshot.versions)
    assert storage.writes == writes


async def test_unknown_role_is_rejected_without_changes(store, storage):
    before = store.get_matrix().to_document()
    with pytest.raises(InvalidRole):
        await store.replace_role_grants("ghost-role", ["parks.view"])
    assert "ghost-role" not in store.get_matrix().to_document()
    assert store.get_matrix().to_document() == before


async def test_unknown_capability_is_rejected_without_changes(store):
    before = store.get_matrix().to_document()
    with pytest.raises(InvalidCapability):
        await store.replace_role_grants("instructor", ["activities.view", "parks.fly"])
    assert store.get_matrix().to_document() == before


async def test_role_can_be_emptied_but_not_removed(store):
    await store.replace_role_grants("ciudadano", [])
    matrix = store.get_matrix()
    assert "ciudadano" in matrix.roles()
    assert matrix.grants_for("ciudadano") == frozenset()
    assert not store.has_permission("ciudadano", "parks", "view")


async def test_stale_version_raises_concurrent_modification(store):
    version = store.get_matrix().version_of("supervisor")
    await store.replace_role_grants("supervisor", ["parks.view"], expected_version=version)
    with pytest.raises(ConcurrentModification) as exc_info:
        await store.replace_role_grants("supervisor", ["parks.edit"], expected_version=version)
    assert exc_info.value.current == version + 1
    assert store.has_permission("supervisor", "parks", "view")


async def test_protected_role_cannot_change(store):
    with pytest.raises(ProtectedRole):
        await store.replace_role_grants("super_admin", [])
    assert store.has_permission("super_admin", "permissions", "edit")


async def test_full_document_replacement_accepts_unchanged_protected_roles(store):
    document = store.get_matrix().to_document()
    document["guardia"] = {"parks.view": True, "incidents": "write"}
    await store.replace_matrix(document, actor="admin-1")
    assert store.has_permission("guardia", "incidents", "edit")
    assert not store.has_permission("guardia", "activities", "view")
    assert store.has_permission("super_admin", "users", "delete")


async def test_full_document_is_validated_before_any_write(store, storage):
    writes = storage.writes
    with pytest.raises(InvalidRole):
        await store.replace_matrix({"guardia": {"parks.view": False}, "ghost-role": {}})
    assert storage.writes == writes
    assert store.has_permission("guardia", "parks", "view")


async def test_failed_write_leaves_cache_untouched(store, storage):
    storage.fail_writes = True
    with pytest.raises(StorageUnavailable):
        await store.replace_role_grants("instructor", [])
    assert store.has_permission("instructor", "activities", "create")


async def test_reads_keep_serving_cache_during_outage(store, storage):
    await store.replace_role_grants("guardia", ["incidents.view"])
    storage.fail_reads = True
    matrix = await store.reload()
    assert store.degraded
    assert matrix is store.get_matrix()
    assert store.has_permission("guardia", "incidents", "view")

    storage.fail_reads = False
    await store.reload()
    assert not store.degraded


async def test_startup_outage_falls_back_to_defaults():
    storage = MemoryPermissionStorage()
    storage.fail_reads = True
    store = MatrixStore(storage)
    await store.init()
    assert store.degraded
    assert store.has_permission("admin", "users", "delete")
    assert not store.has_permission("ciudadano", "users", "delete")


async def test_load_backfills_missing_roles_and_drops_unknown_entries():
    storage = MemoryPermissionStorage(initial={
        "admin": StoredRoleGrants(grants=frozenset({"users.delete", "legacy.view"}), version=4),
        "retired-role": StoredRoleGrants(grants=frozenset({"parks.view"})),
    })
    store = MatrixStore(storage)
    await store.init()
    matrix = store.get_matrix()
    assert matrix.grants_for("admin") == {Capability("users", PermissionAction.DELETE)}
    assert matrix.version_of("admin") == 4
    assert "retired-role" not in matrix.roles()
    assert matrix.grants_for("ciudadano") == frozenset()
    assert "ciudadano" in (await storage.load())


async def test_reset_restores_seed_matrix(store):
    await store.replace_role_grants("instructor", [])
    await store.reset_to_defaults(actor="admin-1")
    assert dict(store.get_matrix().grants) == dict(default_matrix().grants)
    assert store.has_permission("instructor", "activities", "create")


async def test_mutations_are_audited(store):
    await store.replace_role_grants("guardia", ["parks.view", "activities.view", "incidents.view"], actor="admin-1")
    entries = await store.audit_log(limit=1)
    assert entries[0].role == "guardia"
    assert entries[0].action == "update"
    assert entries[0].revoked == ["incidents.create"]
    assert entries[0].granted == []
    assert entries[0].performed_by == "admin-1"

    only_guardia = await store.audit_log(role="guardia")
    assert {e.role for e in only_guardia} == {"guardia"}


class _SlowLoadStorage(MemoryPermissionStorage):
    async def load(self):
        snapshot = await super().load()
        await asyncio.sleep(0.05)
        return snapshot


async def test_reload_never_overwrites_a_concurrent_replace():
    storage = _SlowLoadStorage()
    store = MatrixStore(storage)
    await store.init()

    reloading = asyncio.create_task(store.reload())
    await asyncio.sleep(0)
    await store.replace_role_grants("guardia", ["incidents.view"])
    await reloading

    stored = await storage.load()
    assert stored["guardia"].grants == frozenset({"incidents.view"})
    assert not store.has_permission("guardia", "parks", "view")
    assert store.has_permission("guardia", "incidents", "view")
    assert store.get_matrix().version_of("guardia") == stored["guardia"].version


class _PartialBulkStorage(MemoryPermissionStorage):
    """``save_all`` writes role by role and loses the connection after *fail_after* roles."""

    def __init__(self, fail_after: int) -> None:
        super().__init__()
        self.fail_after = fail_after
        self.armed = False

    async def save_all(self, records):
        if not self.armed:
            return await super().save_all(records)
        for written, (role, record) in enumerate(records.items()):
            if written == self.fail_after:
                raise StorageUnavailable("connection lost")
            await self.save_role(role, record)


async def test_partial_reset_leaves_cache_matching_storage():
    storage = _PartialBulkStorage(fail_after=7)
    store = MatrixStore(storage)
    await store.init()
    await store.replace_role_grants("instructor", [])
    await store.replace_role_grants("guardia", [])

    storage.armed = True
    with pytest.raises(StorageUnavailable):
        await store.reset_to_defaults(actor="admin-1")

    stored = await storage.load()
    matrix = store.get_matrix()
    # roles before the failure point were reset, the rest were not
    assert store.has_permission("instructor", "activities", "create")
    assert not store.has_permission("guardia", "parks", "view")
    for role, record in stored.items():
        assert sorted(cap.key for cap in matrix.grants_for(role)) == sorted(record.grants)
        assert matrix.version_of(role) == record.version
    assert not store.degraded
