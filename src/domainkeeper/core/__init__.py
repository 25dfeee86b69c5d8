"""Core."""

from .config import (
    DomainKeeperConfig,
    LifecycleConfig,
    PlatformConfig,
    ProviderConfig,
    ProxyConfig,
    ReconcilerConfig,
    StorageConfig,
    clear_config,
    get_config,
)
from .exceptions import (
    DomainConflictError,
    DomainKeeperError,
    DomainNotFoundError,
    InvalidHostnameError,
    InvalidRequestError,
    InvalidTransitionError,
    MissingTenantError,
    RateLimitExceededError,
    SubdomainConflictError,
    SubdomainNotFoundError,
)

__all__ = [
    "DomainKeeperConfig",
    "LifecycleConfig",
    "PlatformConfig",
    "ProviderConfig",
    "ProxyConfig",
    "ReconcilerConfig",
    "StorageConfig",
    "clear_config",
    "get_config",
    "DomainKeeperError",
    "DomainConflictError",
    "DomainNotFoundError",
    "InvalidHostnameError",
    "InvalidRequestError",
    "InvalidTransitionError",
    "MissingTenantError",
    "RateLimitExceededError",
    "SubdomainConflictError",
    "SubdomainNotFoundError",
]
