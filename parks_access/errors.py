"""Domain errors raised by the permission catalog and matrix store."""
from __future__ import annotations


class PermissionsError(Exception):
    """Base class; ``status_code`` is what the HTTP layer answers with."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRole(PermissionsError):
    status_code = 422

    def __init__(self, role: str):
        super().__init__(f"Unknown role: {role}")
        self.role = role


class InvalidCapability(PermissionsError):
    status_code = 422

    def __init__(self, capability: str):
        super().__init__(f"Unknown permission: {capability}")
        self.capability = capability


class ProtectedRole(PermissionsError):
    status_code = 403

    def __init__(self, role: str):
        super().__init__(f"Permissions of role '{role}' cannot be modified")
        self.role = role


class ConcurrentModification(PermissionsError):
    status_code = 409

    def __init__(self, role: str, expected: int, current: int):
        super().__init__(
            f"Permissions of role '{role}' changed since they were loaded "
            f"(version {expected}, now {current}); reload and try again"
        )
        self.role = role
        self.expected = expected
        self.current = current


class StorageUnavailable(PermissionsError):
    status_code = 503

    def __init__(self, message: str = "Permission storage is unavailable"):
        super().__init__(message)
