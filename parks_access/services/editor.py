"""Editing session behind the administrative permissions grid.

The grid loads the whole matrix, lets an administrator toggle cells locally
and saves each modified role with one ``replace_role_grants`` call. Pending
edits survive a failed save so the administrator can retry.
"""
from __future__ import annotations

import logging
from enum import Enum

from parks_access.errors import PermissionsError
from parks_access.rbac import Capability, PermissionAction, list_modules, make_capability
from parks_access.services.matrix import PermissionMatrix
from parks_access.services.store import MatrixStore

logger = logging.getLogger(__name__)


class EditorState(str, Enum):
    LOADING = "loading"
    CLEAN = "clean"
    DIRTY = "dirty"
    SAVING = "saving"


class MatrixEditor:
    def __init__(self, store: MatrixStore, *, actor: str | None = None) -> None:
        self._store = store
        self._actor = actor
        self._base: PermissionMatrix | None = None
        self._draft: dict[str, set[Capability]] = {}
        self.state = EditorState.LOADING
        self.last_error: str | None = None

    def load(self) -> None:
        self._base = self._store.get_matrix()
        self._draft = {role: set(grants) for role, grants in self._base.grants.items()}
        self.state = EditorState.CLEAN
        self.last_error = None

    @property
    def has_changes(self) -> bool:
        return self.state in (EditorState.DIRTY, EditorState.SAVING) and bool(self.pending_roles())

    def pending_roles(self) -> list[str]:
        if self._base is None:
            return []
        return [role for role, grants in self._draft.items() if frozenset(grants) != self._base.grants_for(role)]

    def is_granted(self, role: str, module: str, action: str | PermissionAction) -> bool:
        return make_capability(module, action) in self._draft.get(role, set())

    def toggle(self, role: str, module: str, action: str | PermissionAction, granted: bool | None = None) -> bool:
        """Flip (or set) one cell; returns the new value."""
        self._require_loaded()
        if role not in self._draft:
            self._draft[role] = set()
        cap = make_capability(module, action)
        cell = self._draft[role]
        value = (cap not in cell) if granted is None else granted
        if value:
            cell.add(cap)
        else:
            cell.discard(cap)
        self._refresh_state()
        return value

    def set_module(self, role: str, module: str, granted: bool) -> None:
        for action in PermissionAction:
            self.toggle(role, module, action, granted)

    def grid(self) -> list[dict]:
        """Module x role view; each cell maps action -> granted."""
        rows = []
        for module in list_modules():
            for descriptor in (module, *module.children):
                rows.append({
                    "module": descriptor.key,
                    "name": descriptor.name,
                    "roles": {
                        role: {a.value: Capability(descriptor.key, a) in grants for a in PermissionAction}
                        for role, grants in self._draft.items()
                    },
                })
        return rows

    def revert(self) -> None:
        """Discard unsaved edits and reload from the store."""
        self.load()

    async def save(self) -> PermissionMatrix:
        self._require_loaded()
        pending = self.pending_roles()
        if not pending:
            self.state = EditorState.CLEAN
            return self._store.get_matrix()
        self.state = EditorState.SAVING
        try:
            for role in pending:
                await self._store.replace_role_grants(
                    role,
                    self._draft[role],
                    expected_version=self._base.version_of(role),
                    actor=self._actor,
                )
        except PermissionsError as exc:
            logger.warning("Saving permission matrix failed: %s", exc.message)
            self.last_error = exc.message
            self._rebase_saved(pending)
            self.state = EditorState.DIRTY
            raise
        self.load()
        return self._base

    def _rebase_saved(self, roles: list[str]) -> None:
        # roles already written keep their new version so a retry does not trip the version check
        current = self._store.get_matrix()
        grants = dict(self._base.grants)
        versions = dict(self._base.versions)
        for role in roles:
            if current.grants_for(role) == frozenset(self._draft[role]):
                grants[role] = current.grants_for(role)
                versions[role] = current.version_of(role)
        self._base = PermissionMatrix(grants=grants, versions=versions)

    def _refresh_state(self) -> None:
        self.state = EditorState.DIRTY if self.pending_roles() else EditorState.CLEAN

    def _require_loaded(self) -> None:
        if self.state == EditorState.LOADING or self._base is None:
            raise RuntimeError("Editor has not loaded the permission matrix yet")
