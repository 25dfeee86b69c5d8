"""Hostname and slug validation.

Custom domains are validated here before they reach storage or any
external client, so the proxy and provider clients can assume every
hostname they receive is well-formed:
    - api.example.com is accepted
    - API.Example.COM. is normalized to api.example.com
    - localhost, 10.0.0.1 and *.example.com are rejected
    - anything under the platform's own base domain is rejected
"""

from __future__ import annotations

import re
from functools import lru_cache

MAX_HOSTNAME_LENGTH = 253

_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
_TLD_RE = re.compile(r"^[a-z]{2,63}$|^xn--[a-z0-9-]{1,59}$")
_SLUG_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,61}[a-z0-9])$")

RESERVED_SLUGS = frozenset(
    {
        "www",
        "api",
        "admin",
        "app",
        "mail",
        "static",
        "cdn",
        "proxy",
        "status",
        "dashboard",
    }
)


def normalize_hostname(hostname: str) -> str:
    """Lower-case a hostname and strip whitespace and the trailing root dot.

    Examples:
        >>> normalize_hostname(" Shop.Example.COM. ")
        'shop.example.com'
    """
    return hostname.strip().lower().rstrip(".")


def validate_hostname(hostname: str, platform_domain: str | None = None) -> tuple[bool, str | None]:
    """Validate a tenant-supplied hostname.

    Args:
        hostname: Normalized hostname to validate.
        platform_domain: The platform's own base domain; hostnames under it
            are platform subdomains and cannot be claimed as custom domains.

    Returns:
        Tuple of (is_valid, error_message).
        If valid, error_message is None.

    Examples:
        >>> validate_hostname("shop.example.com")
        (True, None)
        >>> validate_hostname("example")
        (False, 'Hostname must contain at least two labels')
    """
    if not hostname:
        return False, "Hostname is empty"

    if len(hostname) > MAX_HOSTNAME_LENGTH:
        return False, f"Hostname exceeds {MAX_HOSTNAME_LENGTH} characters"

    if "*" in hostname:
        return False, "Wildcard hostnames are not supported"

    labels = hostname.split(".")
    if len(labels) < 2:
        return False, "Hostname must contain at least two labels"

    for label in labels:
        if not _LABEL_RE.match(label):
            return False, f"Invalid label: {label!r}"

    if not _TLD_RE.match(labels[-1]):
        return False, f"Invalid top-level domain: {labels[-1]!r}"

    if platform_domain:
        platform_domain = normalize_hostname(platform_domain)
        if hostname == platform_domain or hostname.endswith(f".{platform_domain}"):
            return False, f"Hostnames under {platform_domain} are managed by the platform"

    return True, None


def validate_slug(slug: str) -> tuple[bool, str | None]:
    """Validate a platform subdomain slug.

    Examples:
        >>> validate_slug("myshop")
        (True, None)
        >>> validate_slug("-bad")
        (False, 'Slug must be 3-63 characters of a-z, 0-9 and inner hyphens')
    """
    if not _SLUG_RE.match(slug):
        return False, "Slug must be 3-63 characters of a-z, 0-9 and inner hyphens"
    if slug in RESERVED_SLUGS:
        return False, f"Slug {slug!r} is reserved"
    return True, None


@lru_cache(maxsize=1000)
def route_id(hostname: str) -> str:
    """Deterministic reverse-proxy route id for a hostname.

    Examples:
        >>> route_id("shop.example.com")
        'route_shop_example_com'
    """
    return "route_" + hostname.replace(".", "_")
