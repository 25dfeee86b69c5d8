"""Route management on the edge proxy admin API (Caddy-style).

Each custom domain gets one route whose @id is derived from the
hostname, so every operation is idempotent:
    POST   /config/apps/http/servers/<server>/routes   create
    PATCH  /id/<route_id>                             update in place
    DELETE /id/<route_id>                             remove (404 is success)
    GET    /id/<route_id>                             existence check

An unreachable admin API is not an error for callers: methods log and
return False, and the reconciler re-drives the route later.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from domainkeeper.domains.hostnames import route_id
from domainkeeper.domains.models import DomainTarget
from domainkeeper.observability.metrics import EXTERNAL_CALLS

logger = structlog.get_logger()


class ReverseProxyClient:
    """Idempotent CRUD over reverse-proxy routes."""

    def __init__(
        self,
        admin_url: str = "http://localhost:2019",
        upstream: str = "localhost:3000",
        server_name: str = "srv0",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize proxy client.

        Args:
            admin_url: Base URL of the proxy admin API.
            upstream: host:port that custom-domain traffic is forwarded to.
            server_name: Server block that holds the routes.
            timeout: Timeout for each admin call.
            transport: Optional httpx transport, used by tests.
        """
        self.admin_url = admin_url.rstrip("/")
        self.upstream = upstream
        self.server_name = server_name
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.admin_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    def build_route(self, hostname: str, target: DomainTarget) -> dict[str, Any]:
        return {
            "@id": route_id(hostname),
            "match": [{"host": [hostname]}],
            "handle": [
                {
                    "handler": "reverse_proxy",
                    "upstreams": [{"dial": self.upstream}],
                    "headers": {
                        "request": {
                            "set": {
                                "X-Custom-Domain": [hostname],
                                "X-Target-Type": [target.type.value],
                                "X-Target-Id": [target.id],
                                "X-Forwarded-Proto": ["https"],
                            }
                        }
                    },
                }
            ],
            "terminal": True,
        }

    async def add_route(self, hostname: str, target: DomainTarget) -> bool:
        """Create the route, or update it in place if the id already exists.

        Returns:
            True if the proxy now holds the route.
        """
        route = self.build_route(hostname, target)
        rid = route["@id"]
        try:
            async with self._client() as client:
                response = await client.post(
                    f"/config/apps/http/servers/{self.server_name}/routes",
                    json=route,
                )
                if response.status_code in (400, 409):
                    logger.debug("Route id taken, updating in place", route_id=rid)
                    response = await client.patch(f"/id/{rid}", json=route)
        except httpx.HTTPError as e:
            EXTERNAL_CALLS.labels(service="proxy", outcome="unreachable").inc()
            logger.warning("Proxy admin API unreachable", operation="add_route", hostname=hostname, error=str(e))
            return False

        if response.is_success:
            EXTERNAL_CALLS.labels(service="proxy", outcome="ok").inc()
            logger.info("Route added", hostname=hostname, route_id=rid)
            return True

        EXTERNAL_CALLS.labels(service="proxy", outcome="error").inc()
        logger.error(
            "Failed to add route",
            hostname=hostname,
            route_id=rid,
            status=response.status_code,
            body=response.text,
        )
        return False

    async def remove_route(self, hostname: str) -> bool:
        """Delete the route. A route that does not exist counts as removed."""
        rid = route_id(hostname)
        try:
            async with self._client() as client:
                response = await client.delete(f"/id/{rid}")
        except httpx.HTTPError as e:
            EXTERNAL_CALLS.labels(service="proxy", outcome="unreachable").inc()
            logger.warning("Proxy admin API unreachable", operation="remove_route", hostname=hostname, error=str(e))
            return False

        if response.is_success or response.status_code == 404:
            EXTERNAL_CALLS.labels(service="proxy", outcome="ok").inc()
            logger.info("Route removed", hostname=hostname, route_id=rid)
            return True

        EXTERNAL_CALLS.labels(service="proxy", outcome="error").inc()
        logger.error(
            "Failed to remove route",
            hostname=hostname,
            route_id=rid,
            status=response.status_code,
            body=response.text,
        )
        return False

    async def route_exists(self, hostname: str) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(f"/id/{route_id(hostname)}")
        except httpx.HTTPError as e:
            logger.warning("Proxy admin API unreachable", operation="route_exists", hostname=hostname, error=str(e))
            return False
        return response.status_code == 200

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/config/")
        except httpx.HTTPError:
            return False
        return response.is_success
