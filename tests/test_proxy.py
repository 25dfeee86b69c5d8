"""Tests for the reverse-proxy route client."""

from __future__ import annotations

import json

import httpx
import pytest

from domainkeeper.domains.models import BookingTarget, ShopTarget
from domainkeeper.domains.proxy import ReverseProxyClient


class RecordingAdmin:
    """Admin API stand-in that records requests and answers from a table."""

    def __init__(self, responses: dict[tuple[str, str], int] | None = None) -> None:
        self.responses = responses or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.responses.get((request.method, request.url.path), 200)
        return httpx.Response(status, json={})

    @property
    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests]


def _client(admin: RecordingAdmin) -> ReverseProxyClient:
    return ReverseProxyClient(
        admin_url="http://caddy:2019/",
        upstream="app:3000",
        server_name="srv0",
        transport=httpx.MockTransport(admin),
    )


class TestBuildRoute:
    """Tests for the route body."""

    def test_route_shape(self):
        route = ReverseProxyClient(upstream="app:3000").build_route("shop.example.com", ShopTarget("42"))

        assert route["@id"] == "route_shop_example_com"
        assert route["match"] == [{"host": ["shop.example.com"]}]
        assert route["terminal"] is True
        handler = route["handle"][0]
        assert handler["handler"] == "reverse_proxy"
        assert handler["upstreams"] == [{"dial": "app:3000"}]
        headers = handler["headers"]["request"]["set"]
        assert headers["X-Custom-Domain"] == ["shop.example.com"]
        assert headers["X-Target-Type"] == ["shop"]
        assert headers["X-Target-Id"] == ["42"]
        assert headers["X-Forwarded-Proto"] == ["https"]


class TestAddRoute:
    """Tests for add_route."""

    @pytest.mark.asyncio
    async def test_creates_route(self):
        admin = RecordingAdmin()

        assert await _client(admin).add_route("shop.example.com", BookingTarget("7"))

        assert admin.calls == [("POST", "/config/apps/http/servers/srv0/routes")]
        body = json.loads(admin.requests[0].content)
        assert body["@id"] == "route_shop_example_com"
        assert body["handle"][0]["headers"]["request"]["set"]["X-Target-Type"] == ["booking"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("conflict", [400, 409])
    async def test_existing_id_is_patched(self, conflict):
        admin = RecordingAdmin({("POST", "/config/apps/http/servers/srv0/routes"): conflict})

        assert await _client(admin).add_route("shop.example.com", ShopTarget("42"))

        assert admin.calls == [
            ("POST", "/config/apps/http/servers/srv0/routes"),
            ("PATCH", "/id/route_shop_example_com"),
        ]

    @pytest.mark.asyncio
    async def test_server_error(self):
        admin = RecordingAdmin({("POST", "/config/apps/http/servers/srv0/routes"): 500})
        assert not await _client(admin).add_route("shop.example.com", ShopTarget("42"))

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = ReverseProxyClient(transport=httpx.MockTransport(handler))
        assert not await client.add_route("shop.example.com", ShopTarget("42"))


class TestRemoveRoute:
    """Tests for remove_route, route_exists and health_check."""

    @pytest.mark.asyncio
    async def test_remove(self):
        admin = RecordingAdmin()
        assert await _client(admin).remove_route("shop.example.com")
        assert admin.calls == [("DELETE", "/id/route_shop_example_com")]

    @pytest.mark.asyncio
    async def test_remove_missing_is_success(self):
        admin = RecordingAdmin({("DELETE", "/id/route_shop_example_com"): 404})
        assert await _client(admin).remove_route("shop.example.com")

    @pytest.mark.asyncio
    async def test_remove_error(self):
        admin = RecordingAdmin({("DELETE", "/id/route_shop_example_com"): 500})
        assert not await _client(admin).remove_route("shop.example.com")

    @pytest.mark.asyncio
    async def test_route_exists(self):
        admin = RecordingAdmin({("GET", "/id/route_gone_example_com"): 404})
        client = _client(admin)

        assert await client.route_exists("shop.example.com")
        assert not await client.route_exists("gone.example.com")

    @pytest.mark.asyncio
    async def test_health_check(self):
        admin = RecordingAdmin()
        assert await _client(admin).health_check()
        assert admin.calls == [("GET", "/config/")]
