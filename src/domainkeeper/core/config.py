"""Configuration types with environment variable support.

All settings can be configured via environment variables with the DOMAINKEEPER_ prefix.
Example: DOMAINKEEPER_CNAME_TARGET=proxy.platform.io sets the CNAME tenants must point at.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


SECTIONS = ("platform", "proxy", "provider", "lifecycle", "reconciler", "storage")


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten a nested config file into field names.

    Top-level section names are dropped because the fields inside them
    already carry their full names, as printed by ``domainkeeper config
    show``. Any other nesting is joined with underscores.

    Examples:
        >>> flatten_config({"proxy": {"proxy_timeout": 5}, "ssl": {"poll_interval": 2}})
        {'proxy_timeout': 5, 'ssl_poll_interval': 2}
    """
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            nested_prefix = "" if not prefix and key in SECTIONS else full_key
            result.update(flatten_config(value, nested_prefix))
        else:
            result[full_key] = value
    return result


def apply_config_file(path: str | Path) -> dict[str, str]:
    """Turn a config file into DOMAINKEEPER_* environment entries.

    The caller decides whether to export them.
    """
    flat = flatten_config(load_config_from_file(path))
    return {
        f"DOMAINKEEPER_{key.upper()}": str(value).lower() if isinstance(value, bool) else str(value)
        for key, value in flat.items()
        if value is not None
    }


_SETTINGS = SettingsConfigDict(
    env_prefix="DOMAINKEEPER_",
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
)


class PlatformConfig(BaseSettings):
    """Where tenant domains must point and how ownership records are named.

    - DOMAINKEEPER_PLATFORM_NAME: label used in `_<name>-verify.<host>` records
    - DOMAINKEEPER_BASE_DOMAIN: platform domain that hosts free subdomains
    - DOMAINKEEPER_CNAME_TARGET: CNAME target for custom domains (empty = A record only)
    - DOMAINKEEPER_PUBLIC_IP: edge IP address for A records
    """

    model_config = _SETTINGS

    platform_name: str = Field(
        default="platform",
        description="Label used in ownership TXT record names and well-known file paths.",
    )
    base_domain: str = Field(
        default="platform.io",
        description="Platform base domain for subdomains ({slug}.{namespace}.{base}).",
    )
    cname_target: str = Field(
        default="proxy.platform.io",
        description="Hostname tenants CNAME their domain to. Empty disables CNAME instructions.",
    )
    public_ip: str = Field(
        default="127.0.0.1",
        description="Public IP of the edge proxy, used for A records.",
    )
    verification_ttl: int = Field(
        default=3600,
        description="TTL suggested in DNS instructions (seconds).",
    )


class ProxyConfig(BaseSettings):
    """Reverse-proxy admin API settings."""

    model_config = _SETTINGS

    proxy_admin_url: str = Field(
        default="http://localhost:2019",
        description="Base URL of the edge proxy admin API.",
    )
    proxy_upstream: str = Field(
        default="localhost:3000",
        description="Backend host:port the edge proxy forwards custom-domain traffic to.",
    )
    proxy_server_name: str = Field(
        default="srv0",
        description="HTTP server block that owns custom-domain routes.",
    )
    proxy_timeout: float = Field(
        default=10.0,
        description="Timeout for admin API calls (seconds).",
    )


class ProviderConfig(BaseSettings):
    """Cloud DNS provider settings for platform subdomains."""

    model_config = _SETTINGS

    provider_api_url: str = Field(
        default="https://api.timeweb.cloud/api/v1",
        description="Base URL of the cloud DNS provider API.",
    )
    provider_api_token: str = Field(
        default="",
        description="Bearer token for the provider API.",
    )
    provider_timeout: float = Field(
        default=30.0,
        description="Timeout for provider API calls (seconds).",
    )
    provisioning_mode: Literal["dns_record", "app_domain"] = Field(
        default="dns_record",
        description="Second saga step: create an A record, or attach the FQDN to the frontend app.",
    )
    app_cache_ttl: float = Field(
        default=3600.0,
        description="How long a resolved frontend app id is trusted (seconds).",
    )


class LifecycleConfig(BaseSettings):
    """Timing and threshold settings for the domain state machine."""

    model_config = _SETTINGS

    min_check_interval: float = Field(
        default=300.0,
        description="Minimum seconds between tenant-triggered checks.",
    )
    extended_check_interval: float = Field(
        default=1800.0,
        description="Seconds between checks once the failure threshold is reached.",
    )
    failure_threshold: int = Field(
        default=3,
        description="Consecutive failures before the extended interval applies.",
    )
    ssl_wait_timeout: float = Field(
        default=60.0,
        description="How long activation waits for a certificate to appear (seconds).",
    )
    ssl_poll_interval: float = Field(
        default=5.0,
        description="Interval between TLS probes while waiting for a certificate (seconds).",
    )
    tls_probe_timeout: float = Field(
        default=10.0,
        description="Timeout for a single TLS handshake probe (seconds).",
    )
    http_probe_timeout: float = Field(
        default=10.0,
        description="Timeout for the well-known ownership file fetch (seconds).",
    )


class ReconcilerConfig(BaseSettings):
    """Background sweep settings."""

    model_config = _SETTINGS

    health_check_interval: float = Field(
        default=6 * 3600.0,
        description="Seconds between domain health sweeps.",
    )
    subdomain_poll_interval: float = Field(
        default=30.0,
        description="Seconds between pending-subdomain polls.",
    )
    sweep_concurrency: int = Field(
        default=10,
        description="Maximum domains checked concurrently within one sweep.",
    )
    suspend_threshold: int = Field(
        default=3,
        description="Consecutive failed health checks before a domain is suspended.",
    )
    stall_timeout: float = Field(
        default=600.0,
        description="Seconds after which a transient state is considered stalled.",
    )


class StorageConfig(BaseSettings):
    """Storage locations."""

    model_config = _SETTINGS

    domains_path: str = Field(
        default="domains.json",
        description="JSON file holding custom domain records.",
    )
    subdomains_path: str = Field(
        default="subdomains.json",
        description="JSON file holding platform subdomain records.",
    )


class DomainKeeperConfig(BaseSettings):
    """Master configuration combining all settings.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.platform.cname_target)
        print(config.lifecycle.min_check_interval)
    """

    model_config = _SETTINGS

    @property
    def platform(self) -> PlatformConfig:
        return PlatformConfig()

    @property
    def proxy(self) -> ProxyConfig:
        return ProxyConfig()

    @property
    def provider(self) -> ProviderConfig:
        return ProviderConfig()

    @property
    def lifecycle(self) -> LifecycleConfig:
        return LifecycleConfig()

    @property
    def reconciler(self) -> ReconcilerConfig:
        return ReconcilerConfig()

    @property
    def storage(self) -> StorageConfig:
        return StorageConfig()

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display.

        The provider token is masked.
        """
        provider = self.provider.model_dump()
        if provider["provider_api_token"]:
            provider["provider_api_token"] = "***"
        return {
            "platform": self.platform.model_dump(),
            "proxy": self.proxy.model_dump(),
            "provider": provider,
            "lifecycle": self.lifecycle.model_dump(),
            "reconciler": self.reconciler.model_dump(),
            "storage": self.storage.model_dump(),
        }


_config: DomainKeeperConfig | None = None


def get_config() -> DomainKeeperConfig:
    """Get the global configuration instance.

    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = DomainKeeperConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration."""
    global _config
    _config = None
