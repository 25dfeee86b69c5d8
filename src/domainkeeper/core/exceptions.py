"""Exceptions raised to callers of the lifecycle managers.

These are caller errors: the requested operation was rejected and no
state was changed. Failures of external systems are not raised past the
managers; they are recorded on the domain record instead. The one
exception is StorageCorruptedError, which refuses every operation until
the storage file is repaired.
"""

from __future__ import annotations


class DomainKeeperError(Exception):
    """Base class for rejected operations."""

    code = "UNKNOWN_ERROR"
    http_status = 400

    def to_dict(self) -> dict[str, object]:
        return {"error": self.code, "message": str(self)}


class InvalidHostnameError(DomainKeeperError):
    code = "INVALID_HOSTNAME"
    http_status = 400


class DomainNotFoundError(DomainKeeperError):
    code = "DOMAIN_NOT_FOUND"
    http_status = 404

    def __init__(self, hostname: str) -> None:
        super().__init__(f"Domain not found: {hostname}")
        self.hostname = hostname


class DomainConflictError(DomainKeeperError):
    code = "DOMAIN_ALREADY_REGISTERED"
    http_status = 409

    def __init__(self, hostname: str) -> None:
        super().__init__(f"Domain {hostname} is already registered")
        self.hostname = hostname


class InvalidTransitionError(DomainKeeperError):
    """Raised when the record is not in a state the operation accepts."""

    code = "INVALID_STATE"
    http_status = 409

    def __init__(self, operation: str, current: str, allowed: tuple[str, ...] = ()) -> None:
        message = f"Cannot {operation} while domain is {current}"
        if allowed:
            message += f" (allowed: {', '.join(allowed)})"
        super().__init__(message)
        self.operation = operation
        self.current = current
        self.allowed = allowed


class RateLimitExceededError(DomainKeeperError):
    """Raised when a check is requested before the stored next-allowed time."""

    code = "RATE_LIMIT_EXCEEDED"
    http_status = 429

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Please wait {retry_after} seconds before checking again")
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class SubdomainConflictError(DomainKeeperError):
    code = "SUBDOMAIN_TAKEN"
    http_status = 409


class SubdomainNotFoundError(DomainKeeperError):
    code = "SUBDOMAIN_NOT_FOUND"
    http_status = 404


class InvalidRequestError(DomainKeeperError):
    code = "INVALID_REQUEST"
    http_status = 400


class MissingTenantError(DomainKeeperError):
    code = "TENANT_REQUIRED"
    http_status = 401

    def __init__(self) -> None:
        super().__init__("X-Tenant-Id header is required")


class StorageCorruptedError(DomainKeeperError):
    """The storage file exists but cannot be decoded; nothing is overwritten."""

    code = "STORAGE_CORRUPTED"
    http_status = 500

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Storage file {path} is unreadable: {reason}")
        self.path = path
