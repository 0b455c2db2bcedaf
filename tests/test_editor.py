import pytest

from parks_access.errors import ConcurrentModification, StorageUnavailable
from parks_access.services.editor import EditorState, MatrixEditor


@pytest.fixture
def editor(store):
    matrix_editor = MatrixEditor(store, actor="admin-1")
    matrix_editor.load()
    return matrix_editor


async def test_editor_requires_load(store):
    fresh = MatrixEditor(store)
    assert fresh.state is EditorState.LOADING
    with pytest.raises(RuntimeError):
        fresh.toggle("instructor", "parks", "view")


async def test_toggle_marks_pending_changes(editor):
    assert editor.state is EditorState.CLEAN
    assert editor.toggle("instructor", "activities", "delete") is True
    assert editor.state is EditorState.DIRTY
    assert editor.has_changes
    assert editor.pending_roles() == ["instructor"]

    # toggling back returns to a clean grid
    editor.toggle("instructor", "activities", "delete")
    assert editor.state is EditorState.CLEAN
    assert not editor.has_changes


async def test_save_writes_each_modified_role(editor, store):
    editor.toggle("instructor", "activities", "delete", granted=True)
    editor.set_module("guardia", "incidents", False)
    await editor.save()

    assert editor.state is EditorState.CLEAN
    assert store.has_permission("instructor", "activities", "delete")
    assert not store.has_permission("guardia", "incidents", "view")
    audited = {entry.role for entry in await store.audit_log(limit=2)}
    assert audited == {"instructor", "guardia"}


async def test_revert_discards_local_edits(editor, store):
    editor.toggle("ciudadano", "users", "delete", granted=True)
    editor.revert()
    assert editor.state is EditorState.CLEAN
    assert not editor.is_granted("ciudadano", "users", "delete")
    assert not store.has_permission("ciudadano", "users", "delete")


async def test_failed_save_keeps_edits_for_retry(editor, store, storage):
    editor.toggle("voluntario", "activities", "create", granted=True)
    storage.fail_writes = True
    with pytest.raises(StorageUnavailable):
        await editor.save()
    assert editor.state is EditorState.DIRTY
    assert editor.has_changes
    assert editor.last_error
    assert not store.has_permission("voluntario", "activities", "create")

    storage.fail_writes = False
    await editor.save()
    assert editor.state is EditorState.CLEAN
    assert editor.last_error is None
    assert store.has_permission("voluntario", "activities", "create")


async def test_second_editor_with_stale_view_is_rejected(store):
    first = MatrixEditor(store, actor="admin-1")
    second = MatrixEditor(store, actor="admin-2")
    first.load()
    second.load()

    first.toggle("supervisor", "reports", "view", granted=False)
    await first.save()

    second.toggle("supervisor", "assets", "view", granted=True)
    with pytest.raises(ConcurrentModification):
        await second.save()
    assert second.state is EditorState.DIRTY

    second.revert()
    assert not second.is_granted("supervisor", "reports", "view")


async def test_grid_lists_submodules_with_per_action_cells(editor):
    rows = {row["module"]: row for row in editor.grid()}
    assert "finance.incomes" in rows
    assert rows["parks"]["roles"]["ciudadano"] == {"view": True, "create": False, "edit": False, "delete": False}
