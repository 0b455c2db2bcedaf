"""RBAC module/action catalog and default grants."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from parks_access.errors import InvalidCapability


class PermissionAction(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


class AccessLevel(str, Enum):
    """Ordinal per-module scale used by older permission documents."""

    NONE = "none"
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


class SystemRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    DIRECTOR = "director"
    MANAGER = "manager"
    SUPERVISOR = "supervisor"
    INSTRUCTOR = "instructor"
    VOLUNTARIO = "voluntario"
    CIUDADANO = "ciudadano"
    GUARDAPARQUES = "guardaparques"
    GUARDIA = "guardia"
    CONCESIONARIO = "concesionario"
    USER = "user"


ACTION_BY_METHOD: dict[str, PermissionAction] = {
    "GET": PermissionAction.VIEW,
    "HEAD": PermissionAction.VIEW,
    "OPTIONS": PermissionAction.VIEW,
    "POST": PermissionAction.CREATE,
    "PUT": PermissionAction.EDIT,
    "PATCH": PermissionAction.EDIT,
    "DELETE": PermissionAction.DELETE,
}

_LEVEL_ACTIONS: dict[AccessLevel, frozenset[PermissionAction]] = {
    AccessLevel.NONE: frozenset(),
    AccessLevel.READ: frozenset({PermissionAction.VIEW}),
    AccessLevel.WRITE: frozenset({PermissionAction.VIEW, PermissionAction.CREATE, PermissionAction.EDIT}),
    AccessLevel.ADMIN: frozenset(PermissionAction),
}


@dataclass(frozen=True)
class ModuleDescriptor:
    key: str
    name: str
    icon: str
    children: tuple["ModuleDescriptor", ...] = field(default_factory=tuple)

    def as_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "icon": self.icon,
            "children": [child.as_dict() for child in self.children],
        }


@dataclass(frozen=True, order=True)
class Capability:
    module: str
    action: PermissionAction

    @property
    def key(self) -> str:
        return f"{self.module}.{self.action.value}"

    def __str__(self) -> str:
        return self.key


def _module(key: str, name: str, icon: str, *children: tuple[str, str, str]) -> ModuleDescriptor:
    return ModuleDescriptor(
        key=key,
        name=name,
        icon=icon,
        children=tuple(ModuleDescriptor(key=f"{key}.{c[0]}", name=c[1], icon=c[2]) for c in children),
    )


SYSTEM_MODULES: tuple[ModuleDescriptor, ...] = (
    _module("dashboard", "Dashboard", "home"),
    _module("parks", "Parques", "map"),
    _module("assets", "Activos", "box"),
    _module("incidents", "Incidentes", "alert-circle"),
    _module("activities", "Actividades", "calendar",
            ("calendar", "Calendario", "calendar-days")),
    _module("instructors", "Instructores", "graduation-cap"),
    _module("volunteers", "Voluntarios", "heart-handshake"),
    _module("concessions", "Concesiones", "store"),
    _module("sponsorships", "Patrocinios", "award"),
    _module("finance", "Finanzas", "dollar-sign",
            ("catalog", "Catálogo", "tag"),
            ("incomes", "Ingresos", "trending-up"),
            ("expenses", "Egresos", "trending-down")),
    _module("accounting", "Contabilidad", "calculator"),
    _module("hr", "Recursos Humanos", "briefcase"),
    _module("communications", "Comunicaciones", "mail"),
    _module("reports", "Reportes", "bar-chart"),
    _module("users", "Usuarios", "users"),
    _module("settings", "Configuración", "settings"),
    _module("permissions", "Permisos", "shield"),
)


def list_modules() -> list[ModuleDescriptor]:
    return list(SYSTEM_MODULES)


def module_keys() -> list[str]:
    keys: list[str] = []
    for module in SYSTEM_MODULES:
        keys.append(module.key)
        keys.extend(child.key for child in module.children)
    return keys


MODULE_KEYS = frozenset(module_keys())
ROLE_KEYS = frozenset(role.value for role in SystemRole)


def list_actions() -> list[PermissionAction]:
    return list(PermissionAction)


def all_capabilities() -> list[Capability]:
    return [Capability(module, action) for module in module_keys() for action in PermissionAction]


def is_valid_role(role: str) -> bool:
    return role in ROLE_KEYS


def is_valid_capability(module: str, action: str) -> bool:
    if module not in MODULE_KEYS:
        return False
    return action in {a.value for a in PermissionAction}


def make_capability(module: str, action: str | PermissionAction) -> Capability:
    """Build a validated capability, raising ``InvalidCapability`` for unknown input."""
    action_value = action.value if isinstance(action, PermissionAction) else action
    if not is_valid_capability(module, action_value):
        raise InvalidCapability(f"{module}.{action_value}")
    return Capability(module, PermissionAction(action_value))


def parse_capability_key(key: str) -> Capability:
    """Parse ``"<module>.<action>"``; the module part may itself be dotted."""
    module, sep, action = key.rpartition(".")
    if not sep:
        raise InvalidCapability(key)
    return make_capability(module, action)


def actions_for_level(level: str | AccessLevel) -> frozenset[PermissionAction]:
    try:
        return _LEVEL_ACTIONS[AccessLevel(level)]
    except ValueError:
        raise InvalidCapability(f"unknown access level {level!r}") from None


def _grants(flags_by_module: dict[str, str]) -> frozenset[Capability]:
    """Expand ``{"parks": "vce"}`` shorthand (v=view, c=create, e=edit, d=delete)."""
    letters = {"v": PermissionAction.VIEW, "c": PermissionAction.CREATE,
               "e": PermissionAction.EDIT, "d": PermissionAction.DELETE}
    return frozenset(Capability(module, letters[ch]) for module, flags in flags_by_module.items() for ch in flags)


_EVERYTHING = frozenset(all_capabilities())

DEFAULT_ROLE_GRANTS: dict[str, frozenset[Capability]] = {
    SystemRole.SUPER_ADMIN.value: _EVERYTHING,
    SystemRole.ADMIN.value: _EVERYTHING,
    SystemRole.DIRECTOR.value: _grants({
        "dashboard": "v",
        "users": "vce",
        "parks": "vce",
        "assets": "vce",
        "incidents": "vce",
        "activities": "vce",
        "activities.calendar": "vce",
        "instructors": "vce",
        "volunteers": "vce",
        "concessions": "vce",
        "sponsorships": "vce",
        "finance": "v",
        "finance.catalog": "v",
        "finance.incomes": "v",
        "finance.expenses": "v",
        "reports": "v",
        "settings": "v",
    }),
    SystemRole.MANAGER.value: _grants({
        "dashboard": "v",
        "users": "v",
        "parks": "vce",
        "assets": "vce",
        "activities": "vced",
        "activities.calendar": "vced",
        "instructors": "vce",
        "volunteers": "vce",
        "reports": "v",
    }),
    SystemRole.SUPERVISOR.value: _grants({
        "dashboard": "v",
        "users": "v",
        "parks": "ve",
        "incidents": "vce",
        "activities": "vce",
        "instructors": "ve",
        "volunteers": "ve",
        "reports": "v",
    }),
    SystemRole.INSTRUCTOR.value: _grants({
        "parks": "v",
        "activities": "vce",
        "activities.calendar": "v",
        "instructors": "ve",
    }),
    SystemRole.VOLUNTARIO.value: _grants({
        "parks": "v",
        "activities": "v",
        "volunteers": "ve",
    }),
    SystemRole.CIUDADANO.value: _grants({"parks": "v", "activities": "v"}),
    SystemRole.GUARDAPARQUES.value: _grants({"parks": "ve", "activities": "v", "incidents": "vc"}),
    SystemRole.GUARDIA.value: _grants({"parks": "v", "activities": "v", "incidents": "vc"}),
    SystemRole.CONCESIONARIO.value: _grants({"parks": "v", "activities": "v", "concessions": "v"}),
    SystemRole.USER.value: _grants({"parks": "v", "activities": "v"}),
}
