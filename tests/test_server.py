"""Tests for the HTTP API."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from aiohttp import test_utils
from conftest import make_cert, point_cname, publish_txt

from domainkeeper.domains.models import ShopTarget
from domainkeeper.server.api import TENANT_HEADER, create_app
from domainkeeper.subdomains.provider import SagaResult

HOST = "shop.example.com"
TENANT = {TENANT_HEADER: "tenant-1"}
OTHER_TENANT = {TENANT_HEADER: "tenant-2"}


@pytest_asyncio.fixture
async def client(services):
    async with test_utils.TestClient(test_utils.TestServer(create_app(services))) as client:
        yield client


async def _create(client, hostname: str = HOST):
    return await client.post(
        "/domains",
        json={"hostname": hostname, "target_type": "shop", "target_id": "42"},
        headers=TENANT,
    )


class TestTlsGuard:
    """Tests for GET /verify-domain."""

    @pytest.mark.asyncio
    async def test_unknown_domain_refused(self, client):
        resp = await client.get("/verify-domain", params={"domain": "unknown.example.com"})

        assert resp.status == 404
        assert await resp.json() == {"allowed": False}

    @pytest.mark.asyncio
    async def test_unverified_domain_refused(self, client):
        await _create(client)

        resp = await client.get("/verify-domain", params={"domain": HOST})
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_active_domain_allowed(self, client, manager, resolver, clock):
        domain = await manager.create_domain(HOST, "tenant-1", ShopTarget("42"))
        point_cname(resolver)
        await manager.request_dns_check(HOST)
        clock.advance(300)
        publish_txt(resolver, domain.verification_token)
        resolver.probe_tls_certificate.return_value = make_cert(clock(), 90)
        await manager.request_ownership_verification(HOST)

        resp = await client.get("/verify-domain", params={"domain": "SHOP.example.com"})

        assert resp.status == 200
        assert await resp.json() == {"allowed": True}

    @pytest.mark.asyncio
    async def test_store_failure_refuses(self, client, manager, monkeypatch):
        monkeypatch.setattr(manager.store, "get", AsyncMock(side_effect=OSError("disk gone")))

        resp = await client.get("/verify-domain", params={"domain": HOST})

        assert resp.status == 404
        assert await resp.json() == {"allowed": False}

    @pytest.mark.asyncio
    async def test_missing_parameter_refused(self, client):
        resp = await client.get("/verify-domain")
        assert resp.status == 404


class TestDomainRoutes:
    """Tests for the tenant domain routes."""

    @pytest.mark.asyncio
    async def test_tenant_header_required(self, client):
        resp = await client.get("/domains")

        assert resp.status == 401
        assert (await resp.json())["error"] == "TENANT_REQUIRED"

    @pytest.mark.asyncio
    async def test_create(self, client):
        resp = await _create(client)

        assert resp.status == 201
        data = await resp.json()
        assert data["hostname"] == HOST
        assert data["status"] == "awaiting_dns"
        assert data["dns_instructions"][0]["type"] == "CNAME"
        assert data["verification_instructions"]["dns_txt"]["value"] == data["verification_token"]

    @pytest.mark.asyncio
    async def test_create_invalid_body(self, client):
        resp = await client.post(
            "/domains",
            json={"hostname": HOST, "target_type": "castle", "target_id": "42"},
            headers=TENANT,
        )

        assert resp.status == 400
        data = await resp.json()
        assert data["error"] == "INVALID_REQUEST"
        assert "target_type" in data["message"]

    @pytest.mark.asyncio
    async def test_create_not_json(self, client):
        resp = await client.post("/domains", data="hostname=x", headers=TENANT)
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_create_invalid_hostname(self, client):
        resp = await _create(client, "localhost")

        assert resp.status == 400
        assert (await resp.json())["error"] == "INVALID_HOSTNAME"

    @pytest.mark.asyncio
    async def test_create_duplicate(self, client):
        await _create(client)
        resp = await _create(client)

        assert resp.status == 409
        assert (await resp.json())["error"] == "DOMAIN_ALREADY_REGISTERED"

    @pytest.mark.asyncio
    async def test_list_is_tenant_scoped(self, client):
        await _create(client)

        mine = await (await client.get("/domains", headers=TENANT)).json()
        theirs = await (await client.get("/domains", headers=OTHER_TENANT)).json()

        assert [d["hostname"] for d in mine["domains"]] == [HOST]
        assert theirs == {"domains": []}

    @pytest.mark.asyncio
    async def test_get_other_tenant_not_found(self, client):
        await _create(client)

        resp = await client.get(f"/domains/{HOST}", headers=OTHER_TENANT)

        assert resp.status == 404
        assert (await resp.json())["error"] == "DOMAIN_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_check_dns_rate_limited(self, client, resolver):
        await _create(client)

        first = await client.post(f"/domains/{HOST}/check-dns", headers=TENANT)
        second = await client.post(f"/domains/{HOST}/check-dns", headers=TENANT)

        assert first.status == 200
        assert (await first.json())["status"] == "dns_invalid"
        assert second.status == 429
        assert second.headers["Retry-After"] == "300"
        body = await second.json()
        assert body["error"] == "RATE_LIMIT_EXCEEDED"
        assert body["retry_after"] == 300
        assert resolver.resolve_cname.await_count == 1

    @pytest.mark.asyncio
    async def test_verify_in_wrong_state(self, client):
        await _create(client)

        resp = await client.post(f"/domains/{HOST}/verify", headers=TENANT)

        assert resp.status == 409
        assert (await resp.json())["error"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_delete(self, client, proxy):
        await _create(client)

        resp = await client.delete(f"/domains/{HOST}", headers=TENANT)

        assert resp.status == 200
        assert await resp.json() == {"deleted": True, "route_removed": True}
        assert (await client.get(f"/domains/{HOST}", headers=TENANT)).status == 404

    @pytest.mark.asyncio
    async def test_stats(self, client):
        await _create(client)

        resp = await client.get("/domains/stats", headers=TENANT)

        data = await resp.json()
        assert data["total"] == 1
        assert data["pending"] == 1


class TestSubdomainRoutes:
    """Tests for the platform subdomain routes."""

    @pytest.mark.asyncio
    async def test_register_and_list(self, client):
        resp = await client.post(
            "/subdomains",
            json={"slug": "myshop", "namespace": "shops", "target_id": "42"},
            headers=TENANT,
        )

        assert resp.status == 201
        data = await resp.json()
        assert data["fqdn"] == "myshop.shops.platform.io"
        assert data["status"] == "activating"

        listed = await (await client.get("/subdomains", params={"namespace": "shops"}, headers=TENANT)).json()
        assert [s["slug"] for s in listed["subdomains"]] == ["myshop"]

    @pytest.mark.asyncio
    async def test_unknown_namespace(self, client):
        resp = await client.get("/subdomains/castles/myshop", headers=TENANT)

        assert resp.status == 400
        assert (await resp.json())["error"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_reserved_slug(self, client):
        resp = await client.post(
            "/subdomains",
            json={"slug": "admin", "namespace": "shops", "target_id": "42"},
            headers=TENANT,
        )
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_remove(self, client, subdomain_manager):
        await subdomain_manager.register("myshop", "shops", "42", "tenant-1")

        resp = await client.delete("/subdomains/shops/myshop", params={"target_id": "42"}, headers=TENANT)

        assert resp.status == 200
        assert await resp.json() == {"removed": True}

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_remove(self, client, subdomain_manager, provider):
        await subdomain_manager.register("myshop", "shops", "42", "tenant-1")

        resp = await client.delete("/subdomains/shops/myshop", headers=OTHER_TENANT)

        assert resp.status == 404
        assert (await resp.json())["error"] == "SUBDOMAIN_NOT_FOUND"
        provider.unregister_subdomain.assert_not_awaited()
        assert (await client.get("/subdomains/shops/myshop", headers=TENANT)).status == 200

    @pytest.mark.asyncio
    async def test_subdomains_are_tenant_scoped(self, client):
        await client.post(
            "/subdomains",
            json={"slug": "myshop", "namespace": "shops", "target_id": "42"},
            headers=TENANT,
        )

        theirs = await (await client.get("/subdomains", headers=OTHER_TENANT)).json()
        other = await client.get("/subdomains/shops/myshop", headers=OTHER_TENANT)
        checked = await client.post("/subdomains/shops/myshop/check", headers=OTHER_TENANT)

        assert theirs == {"subdomains": []}
        assert other.status == 404
        assert checked.status == 404

    @pytest.mark.asyncio
    async def test_remove_failure(self, client, subdomain_manager, provider):
        await subdomain_manager.register("myshop", "shops", "42", "tenant-1")
        provider.unregister_subdomain.side_effect = None
        provider.unregister_subdomain.return_value = SagaResult(False, "myshop.shops.platform.io", error="down")

        resp = await client.delete("/subdomains/shops/myshop", headers=TENANT)

        assert resp.status == 502
        assert await resp.json() == {"removed": False}

    @pytest.mark.asyncio
    async def test_rename_and_check(self, client, subdomain_manager, resolver):
        await subdomain_manager.register("oldshop", "shops", "42", "tenant-1")
        resolver.probe_https.return_value = True

        renamed = await client.post(
            "/subdomains/shops/oldshop/rename",
            json={"new_slug": "newshop", "target_id": "42"},
            headers=TENANT,
        )
        checked = await client.post("/subdomains/shops/newshop/check", headers=TENANT)

        assert renamed.status == 200
        assert (await renamed.json())["slug"] == "newshop"
        assert (await checked.json())["status"] == "active"

    @pytest.mark.asyncio
    async def test_get_missing(self, client):
        resp = await client.get("/subdomains/shops/ghost", headers=TENANT)

        assert resp.status == 404
        assert (await resp.json())["error"] == "SUBDOMAIN_NOT_FOUND"


class TestOperationalRoutes:
    """Tests for /health and /metrics."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")

        assert resp.status == 200
        assert await resp.json() == {"status": "healthy", "store": True, "proxy": True}

    @pytest.mark.asyncio
    async def test_health_degraded(self, client, proxy):
        proxy.health_check.return_value = False

        resp = await client.get("/health")

        assert resp.status == 503
        assert (await resp.json())["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        await client.get("/verify-domain", params={"domain": "unknown.example.com"})

        resp = await client.get("/metrics")

        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/plain")
        assert "domainkeeper_tls_guard_decisions_total" in await resp.text()
