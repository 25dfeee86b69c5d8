"""Tests for domain and subdomain records."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from domainkeeper.domains.models import (
    BookingTarget,
    CustomDomain,
    DnsCheck,
    DomainStatus,
    IssueCode,
    PageTarget,
    ShopTarget,
    SslCheck,
    TargetType,
    VerificationMethod,
    make_target,
    target_from_dict,
    target_to_dict,
)
from domainkeeper.subdomains.models import Namespace, PlatformSubdomain, SubdomainStatus

T0 = datetime(2025, 1, 15, 10, 0, tzinfo=UTC)
T1 = datetime(2025, 1, 15, 10, 30, tzinfo=UTC)


class TestTargets:
    """Tests for the domain target union."""

    def test_make_target(self):
        assert make_target("shop", "42") == ShopTarget("42")
        assert make_target(TargetType.BOOKING, "7") == BookingTarget("7")
        assert make_target("page", "p1") == PageTarget("p1")

    def test_type_is_class_level(self):
        assert ShopTarget("42").type == TargetType.SHOP
        assert PageTarget("1").type == TargetType.PAGE

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            make_target("blog", "1")

    def test_empty_id(self):
        with pytest.raises(ValueError):
            make_target("shop", "")

    def test_dict_form(self):
        data = target_to_dict(BookingTarget("7"))
        assert data == {"type": "booking", "id": "7"}
        assert target_from_dict(data) == BookingTarget("7")


class TestCustomDomain:
    """Tests for CustomDomain."""

    def _domain(self) -> CustomDomain:
        return CustomDomain(
            hostname="shop.example.com",
            tenant_id="tenant-1",
            target=ShopTarget("42"),
            verification_token="abc123",
            created_at=T0,
            updated_at=T0,
        )

    def test_defaults(self):
        domain = self._domain()
        assert domain.status == DomainStatus.AWAITING_DNS
        assert domain.verified is False
        assert domain.consecutive_failures == 0
        assert domain.errors == []
        assert domain.warnings == []

    def test_to_dict(self):
        domain = self._domain()
        domain.status = DomainStatus.ACTIVE
        domain.verified = True
        domain.verification_method = VerificationMethod.DNS_TXT
        domain.verified_at = T1
        domain.last_dns_check = DnsCheck(T1, True, "CNAME", ["proxy.platform.io"])
        domain.last_ssl_check = SslCheck(T1, True, days_until_expiry=80)

        data = domain.to_dict()

        assert data["hostname"] == "shop.example.com"
        assert data["target"] == {"type": "shop", "id": "42"}
        assert data["status"] == "active"
        assert data["tenant_id"] == "tenant-1"
        assert data["verification_method"] == "dns_txt"
        assert data["verified_at"] == "2025-01-15T10:30:00+00:00"
        assert data["last_dns_check"]["records"] == ["proxy.platform.io"]
        assert data["last_ssl_check"]["days_until_expiry"] == 80
        assert data["created_at"] == "2025-01-15T10:00:00+00:00"

    def test_from_dict_minimal(self):
        domain = CustomDomain.from_dict(
            {
                "hostname": "shop.example.com",
                "tenant_id": "tenant-1",
                "target": {"type": "page", "id": "p1"},
                "verification_token": "abc123",
            }
        )

        assert domain.target == PageTarget("p1")
        assert domain.status == DomainStatus.AWAITING_DNS
        assert domain.verification_method is None
        assert domain.last_dns_check is None
        assert domain.next_allowed_check is None

    def test_from_dict_keeps_issues(self):
        domain = self._domain()
        domain.add_error(IssueCode.NO_DNS_RECORDS, "nothing", T1)
        domain.set_warning(IssueCode.TOO_MANY_FAILURES, "slow down", T1)
        domain.notifications_sent.append("dns_warning")

        restored = CustomDomain.from_dict(domain.to_dict())

        assert restored.errors[0].code == IssueCode.NO_DNS_RECORDS
        assert restored.errors[0].timestamp == T1
        assert restored.warnings[0].code == IssueCode.TOO_MANY_FAILURES
        assert restored.notifications_sent == ["dns_warning"]

    def test_add_error_dedups_by_code(self):
        domain = self._domain()
        domain.add_error(IssueCode.SSL_EXPIRED, "first", T0)
        domain.add_error(IssueCode.SSL_EXPIRED, "second", T1)

        assert len(domain.errors) == 1
        assert domain.errors[0].message == "first"

    def test_set_warning_replaces_by_code(self):
        domain = self._domain()
        domain.set_warning(IssueCode.SSL_EXPIRING_SOON, "20 days", T0)
        domain.set_warning(IssueCode.SSL_EXPIRING_SOON, "5 days", T1)

        assert len(domain.warnings) == 1
        assert domain.warnings[0].message == "5 days"
        assert domain.has_warning(IssueCode.SSL_EXPIRING_SOON)

        domain.clear_warning(IssueCode.SSL_EXPIRING_SOON)
        assert not domain.has_warning(IssueCode.SSL_EXPIRING_SOON)

    def test_copy_is_deep(self):
        domain = self._domain()
        clone = domain.copy()
        clone.errors.append(None)
        assert domain.errors == []


class TestPlatformSubdomain:
    """Tests for PlatformSubdomain."""

    def test_key_and_fqdn(self):
        sub = PlatformSubdomain(slug="myshop", namespace=Namespace.SHOPS, target_id="42")
        assert sub.key == "myshop.shops"
        assert sub.fqdn("platform.io") == "myshop.shops.platform.io"

    def test_dict_form(self):
        sub = PlatformSubdomain(
            slug="myshop",
            namespace=Namespace.SHOPS,
            target_id="42",
            status=SubdomainStatus.ACTIVE,
            tenant_id="tenant-1",
            url="https://myshop.shops.platform.io",
            activated_at=T1,
            created_at=T0,
            updated_at=T1,
        )

        data = sub.to_dict()
        assert data["namespace"] == "shops"
        assert data["status"] == "active"
        assert data["tenant_id"] == "tenant-1"

        restored = PlatformSubdomain.from_dict(data)
        assert restored == sub
