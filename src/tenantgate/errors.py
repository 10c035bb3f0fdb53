from __future__ import annotations


class AppError(Exception):
    """Base error for expected failures."""

    def __init__(self, message: str, *, http_status: int = 400):
        super().__init__(message)
        self.message = message
        self.http_status = http_status


class AuthError(AppError):
    def __init__(self, message: str = "unauthorized"):
        super().__init__(message, http_status=401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "forbidden"):
        super().__init__(message, http_status=403)


class NotFoundError(AppError):
    def __init__(self, message: str = "not found"):
        super().__init__(message, http_status=404)


class ConflictError(AppError):
    def __init__(self, message: str = "conflict"):
        super().__init__(message, http_status=409)


class ValidationError(AppError):
    def __init__(self, message: str = "invalid request"):
        super().__init__(message, http_status=400)


class TenantNotFound(AppError):
    """Unknown or inactive tenant. Both cases share one message."""

    def __init__(self, tenant_id: str | None = None):
        super().__init__("tenant unavailable", http_status=403)
        self.tenant_id = tenant_id


class TenantConnectionError(AppError):
    """Tenant store unreachable after bounded retry."""

    def __init__(self, tenant_id: str | None = None, message: str = "tenant store unavailable"):
        super().__init__(message, http_status=503)
        self.tenant_id = tenant_id


class InvalidRoleTemplate(AppError):
    """Cyclic, too deep, or dangling template chain. A configuration error."""

    def __init__(self, message: str = "invalid role template", *, template_id: str | None = None):
        super().__init__(message, http_status=500)
        self.template_id = template_id


class InvalidRoleAssignment(AppError):
    def __init__(self, message: str = "invalid role assignment", *, user_id: str | None = None):
        super().__init__(message, http_status=500)
        self.user_id = user_id


class AuthorizationDenied(ForbiddenError):
    """Expected deny outcome. The message never carries the cause."""

    def __init__(self) -> None:
        super().__init__("forbidden")
