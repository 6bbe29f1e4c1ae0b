"""
Shared error handling for the clinic permissions engine.
"""

from typing import Dict, Any, Optional


class PermissionEngineException(Exception):
    """Base exception for the permissions engine."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DuplicatePermission(PermissionEngineException):
    """A (resource, action) pair already exists in the catalog."""

    def __init__(self, resource: str, action: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "DUPLICATE_PERMISSION",
            f"Permission '{resource}:{action}' already exists",
            {"resource": resource, "action": action, **(details or {})}
        )


class DuplicateGroup(PermissionEngineException):
    """A group with the same name already exists in the tenant."""

    def __init__(self, name: str, tenant_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "DUPLICATE_GROUP",
            f"Group '{name}' already exists in tenant '{tenant_id}'",
            {"name": name, "tenant_id": tenant_id, **(details or {})}
        )


class ProtectedGroupViolation(PermissionEngineException):
    """Attempted to deactivate, delete or rename the protected group."""

    def __init__(self, group_name: str, operation: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "PROTECTED_GROUP_VIOLATION",
            f"Group '{group_name}' is protected and cannot be {operation}",
            {"group_name": group_name, "operation": operation, **(details or {})}
        )


class NotFound(PermissionEngineException):
    """Referenced principal, group, permission or row does not exist."""

    def __init__(self, entity: str, identifier: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "NOT_FOUND",
            f"{entity} '{identifier}' not found",
            {"entity": entity, "id": identifier, **(details or {})}
        )


class StoreUnavailable(PermissionEngineException):
    """The external permission store failed to answer."""

    def __init__(self, operation: str, message: str = "Permission store unavailable",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "STORE_UNAVAILABLE",
            f"{operation}: {message}",
            {"operation": operation, **(details or {})}
        )


class ValidationError(PermissionEngineException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)
