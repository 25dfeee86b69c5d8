"""Tests for hostname and slug validation."""

from __future__ import annotations

import pytest

from domainkeeper.domains.hostnames import (
    RESERVED_SLUGS,
    normalize_hostname,
    route_id,
    validate_hostname,
    validate_slug,
)


class TestNormalizeHostname:
    """Tests for normalize_hostname."""

    def test_lowercases_and_strips(self):
        assert normalize_hostname("  Shop.Example.COM ") == "shop.example.com"

    def test_strips_root_dot(self):
        assert normalize_hostname("shop.example.com.") == "shop.example.com"


class TestValidateHostname:
    """Tests for validate_hostname."""

    @pytest.mark.parametrize(
        "hostname",
        ["shop.example.com", "example.com", "a-b.c-d.example.co", "xn--80ak6aa92e.com", "123.example.org"],
    )
    def test_valid(self, hostname):
        assert validate_hostname(hostname) == (True, None)

    def test_empty(self):
        valid, error = validate_hostname("")
        assert valid is False
        assert "empty" in error

    def test_single_label(self):
        valid, error = validate_hostname("localhost")
        assert valid is False
        assert "two labels" in error

    def test_wildcard(self):
        valid, error = validate_hostname("*.example.com")
        assert valid is False
        assert "Wildcard" in error

    @pytest.mark.parametrize("hostname", ["-shop.example.com", "shop-.example.com", "sh_op.example.com", "shop..com"])
    def test_invalid_label(self, hostname):
        valid, error = validate_hostname(hostname)
        assert valid is False
        assert "label" in error

    def test_numeric_tld_rejected(self):
        valid, error = validate_hostname("10.0.0.1")
        assert valid is False
        assert "top-level" in error

    def test_too_long(self):
        hostname = ".".join(["a" * 63] * 4) + ".com"
        valid, error = validate_hostname(hostname)
        assert valid is False
        assert "253" in error

    def test_platform_domain_rejected(self):
        valid, error = validate_hostname("myshop.shops.platform.io", "platform.io")
        assert valid is False
        assert "platform.io" in error

    def test_platform_apex_rejected(self):
        valid, _ = validate_hostname("platform.io", "platform.io")
        assert valid is False

    def test_lookalike_of_platform_domain_allowed(self):
        assert validate_hostname("notplatform.io", "platform.io") == (True, None)


class TestValidateSlug:
    """Tests for validate_slug."""

    @pytest.mark.parametrize("slug", ["myshop", "abc", "my-shop-2", "a" * 63])
    def test_valid(self, slug):
        assert validate_slug(slug) == (True, None)

    @pytest.mark.parametrize("slug", ["ab", "a" * 64, "-shop", "shop-", "My-Shop", "my_shop", "my.shop", ""])
    def test_malformed(self, slug):
        valid, error = validate_slug(slug)
        assert valid is False
        assert "3-63" in error

    def test_reserved(self):
        for slug in RESERVED_SLUGS:
            valid, error = validate_slug(slug)
            assert valid is False
            assert "reserved" in error


class TestRouteId:
    """Tests for route_id."""

    def test_dots_replaced(self):
        assert route_id("shop.example.com") == "route_shop_example_com"

    def test_hyphens_kept(self):
        assert route_id("my-shop.example.com") != route_id("my_shop.example.com")
        assert route_id("my-shop.example.com") == "route_my-shop_example_com"
