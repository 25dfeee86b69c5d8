"""Cloud DNS provider client for platform subdomains (Timeweb-style API).

Resources are addressed by FQDN under a bearer-token authenticated REST API:
    POST   /domains/{base}/subdomains/{relative}     create subdomain object
    DELETE /domains/{base}/subdomains/{relative}     delete subdomain object
    GET    /domains/{fqdn}                           subdomain object details
    GET    /domains/{fqdn}/dns-records               list records
    POST   /domains/{fqdn}/dns-records               create record {type, value}
    DELETE /domains/{fqdn}/dns-records/{id}          delete record
    GET    /apps, GET /apps/{id}                     hosting apps (app_domain mode)
    POST   /apps/{id}/domains, DELETE /apps/{id}/domains/{fqdn}

Provisioning a subdomain is a two-step saga (subdomain object, then an
A record or an app-domain binding). If the second step fails the first
is undone before the failure is reported.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from domainkeeper.observability.metrics import EXTERNAL_CALLS

logger = structlog.get_logger()


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ProviderError(Exception):
    """A provider call failed or returned an unexpected status."""

    def __init__(self, message: str, status_code: int | None = None, response_body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


@dataclass
class AppLookupEntry:
    app_id: str
    ip: str
    fetched_at: datetime


def needs_refresh(
    entry: AppLookupEntry | None,
    now: datetime,
    ttl: float,
    expected_ip: str,
    observed_ip: str | None = None,
) -> bool:
    """Decide whether a cached frontend-app lookup must be re-resolved.

    A lookup is dropped when it is missing, older than ttl, was resolved
    for a different IP, or the app now reports an IP other than expected.
    """
    if entry is None:
        return True
    if (now - entry.fetched_at).total_seconds() >= ttl:
        return True
    if entry.ip != expected_ip:
        return True
    return observed_ip is not None and observed_ip != expected_ip


class AppLookupCache:
    """Time-bounded memory of which hosting app serves the platform IP."""

    def __init__(self, ttl: float = 3600.0) -> None:
        self.ttl = ttl
        self.entry: AppLookupEntry | None = None

    def get(self, now: datetime, expected_ip: str) -> str | None:
        if needs_refresh(self.entry, now, self.ttl, expected_ip):
            return None
        return self.entry.app_id if self.entry else None

    def put(self, app_id: str, ip: str, now: datetime) -> None:
        self.entry = AppLookupEntry(app_id=app_id, ip=ip, fetched_at=now)

    def invalidate(self) -> None:
        self.entry = None


@dataclass
class SagaResult:
    """Outcome of a register/unregister saga."""

    success: bool
    fqdn: str
    error: str | None = None
    compensated: bool = False
    record_id: str | None = None


class CloudDnsClient:
    """Provisioning of platform subdomains at the DNS provider."""

    def __init__(
        self,
        api_url: str,
        api_token: str,
        base_domain: str,
        public_ip: str,
        timeout: float = 30.0,
        provisioning_mode: str = "dns_record",
        app_cache: AppLookupCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize provider client.

        Args:
            api_url: Provider API base URL.
            api_token: Bearer token.
            base_domain: Platform domain that owns the subdomains.
            public_ip: Address A records point at, and the IP of the frontend app.
            timeout: Timeout for each provider call.
            provisioning_mode: "dns_record" or "app_domain" for the second saga step.
            app_cache: Frontend app lookup cache, used in app_domain mode.
            transport: Optional httpx transport, used by tests.
            clock: Source of the current time for the app cache.
        """
        self.api_url = api_url.rstrip("/")
        self.base_domain = base_domain
        self.public_ip = public_ip
        self.timeout = timeout
        self.provisioning_mode = provisioning_mode
        self.app_cache = app_cache or AppLookupCache()
        self.clock = clock
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }
        self._transport = transport

    def relative_name(self, slug: str, namespace: str) -> str:
        return f"{slug}.{namespace}"

    def fqdn(self, slug: str, namespace: str) -> str:
        return f"{slug}.{namespace}.{self.base_domain}"

    async def _request(
        self,
        method: str,
        path: str,
        json_data: dict[str, Any] | None = None,
        allow: tuple[int, ...] = (),
    ) -> httpx.Response:
        """Make a provider call.

        Statuses listed in allow are returned to the caller instead of raising.

        Raises:
            ProviderError: On transport failure or an unexpected status.
        """
        url = f"{self.api_url}{path}"
        logger.debug("Provider request", method=method, url=url, body=json_data)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers, json=json_data)
        except httpx.HTTPError as e:
            EXTERNAL_CALLS.labels(service="provider", outcome="unreachable").inc()
            logger.error("Provider unreachable", method=method, url=url, error=str(e))
            raise ProviderError(f"{method} {path} failed: {e}") from e

        logger.debug(
            "Provider response",
            method=method,
            url=url,
            status=response.status_code,
            body=response.text,
        )
        if response.is_success or response.status_code in allow:
            EXTERNAL_CALLS.labels(service="provider", outcome="ok").inc()
            return response

        EXTERNAL_CALLS.labels(service="provider", outcome="error").inc()
        logger.error(
            "Provider call failed",
            method=method,
            url=url,
            status=response.status_code,
            body=response.text,
        )
        raise ProviderError(
            f"{method} {path} returned HTTP {response.status_code}",
            status_code=response.status_code,
            response_body=response.text,
        )

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    # Subdomain objects

    async def get_subdomain(self, fqdn: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/domains/{fqdn}", allow=(404,))
        if response.status_code == 404:
            return None
        data = self._json(response)
        return data.get("domain", data)

    async def subdomain_exists(self, slug: str, namespace: str) -> bool:
        return await self.get_subdomain(self.fqdn(slug, namespace)) is not None

    async def create_subdomain(self, slug: str, namespace: str) -> dict[str, Any]:
        """Create the subdomain object, reusing it if it already exists."""
        relative = self.relative_name(slug, namespace)
        response = await self._request(
            "POST",
            f"/domains/{self.base_domain}/subdomains/{relative}",
            allow=(409,),
        )
        if response.status_code == 409:
            existing = await self.get_subdomain(self.fqdn(slug, namespace))
            if existing is None:
                raise ProviderError(
                    f"Subdomain {relative} reported as existing but cannot be fetched",
                    status_code=409,
                    response_body=response.text,
                )
            logger.info("Reusing existing subdomain object", subdomain=relative)
            return existing
        data = self._json(response)
        return data.get("domain", data)

    async def delete_subdomain(self, slug: str, namespace: str) -> None:
        relative = self.relative_name(slug, namespace)
        await self._request(
            "DELETE",
            f"/domains/{self.base_domain}/subdomains/{relative}",
            allow=(404,),
        )

    # DNS records

    async def list_records(self, fqdn: str) -> list[dict[str, Any]]:
        response = await self._request("GET", f"/domains/{fqdn}/dns-records", allow=(404,))
        if response.status_code == 404:
            return []
        return list(self._json(response).get("dns_records", []))

    async def create_a_record(self, fqdn: str) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"/domains/{fqdn}/dns-records",
            json_data={"type": "A", "value": self.public_ip},
        )
        data = self._json(response)
        return data.get("dns_record", data)

    async def delete_record(self, fqdn: str, record_id: str | int) -> None:
        await self._request("DELETE", f"/domains/{fqdn}/dns-records/{record_id}", allow=(404,))

    # Hosting apps

    async def list_apps(self) -> list[dict[str, Any]]:
        response = await self._request("GET", "/apps")
        return list(self._json(response).get("apps", []))

    async def get_app(self, app_id: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/apps/{app_id}", allow=(404,))
        if response.status_code == 404:
            return None
        data = self._json(response)
        return data.get("app", data)

    async def resolve_frontend_app_id(self) -> str:
        """Find the hosting app that serves the platform's public IP.

        Raises:
            ProviderError: If no app has that IP.
        """
        now = self.clock()
        cached = self.app_cache.get(now, self.public_ip)
        if cached is not None:
            app = await self.get_app(cached)
            observed_ip = app.get("ip") if app else None
            if app is not None and not needs_refresh(
                self.app_cache.entry, now, self.app_cache.ttl, self.public_ip, observed_ip
            ):
                return cached
            logger.info("Cached frontend app no longer matches, re-resolving", app_id=cached)
            self.app_cache.invalidate()

        for app in await self.list_apps():
            if app.get("ip") == self.public_ip:
                app_id = str(app["id"])
                self.app_cache.put(app_id, self.public_ip, now)
                return app_id
        raise ProviderError(f"No hosting app found with IP {self.public_ip}")

    async def attach_app_domain(self, fqdn: str) -> str:
        app_id = await self.resolve_frontend_app_id()
        await self._request("POST", f"/apps/{app_id}/domains", json_data={"fqdn": fqdn}, allow=(409,))
        return app_id

    async def detach_app_domain(self, fqdn: str) -> None:
        app_id = await self.resolve_frontend_app_id()
        await self._request("DELETE", f"/apps/{app_id}/domains/{fqdn}", allow=(404,))

    # Sagas

    async def register_subdomain(self, slug: str, namespace: str) -> SagaResult:
        """Create the subdomain object, then point it at the platform.

        If the second step fails, the subdomain object is deleted again.
        """
        fqdn = self.fqdn(slug, namespace)
        try:
            await self.create_subdomain(slug, namespace)
        except ProviderError as e:
            return SagaResult(False, fqdn, error=f"Subdomain creation failed: {e}")

        record_id: str | None = None
        try:
            if self.provisioning_mode == "app_domain":
                await self.attach_app_domain(fqdn)
            else:
                record = await self.create_a_record(fqdn)
                record_id = str(record["id"]) if record.get("id") is not None else None
        except ProviderError as e:
            logger.error("Subdomain provisioning failed, rolling back", fqdn=fqdn, error=str(e))
            compensated = await self._compensate(slug, namespace)
            return SagaResult(
                False,
                fqdn,
                error=f"Pointing {fqdn} at the platform failed: {e}",
                compensated=compensated,
            )

        logger.info("Subdomain provisioned", fqdn=fqdn, mode=self.provisioning_mode)
        return SagaResult(True, fqdn, record_id=record_id)

    async def _compensate(self, slug: str, namespace: str) -> bool:
        try:
            await self.delete_subdomain(slug, namespace)
        except ProviderError as e:
            logger.error(
                "Rollback failed, subdomain object left behind",
                fqdn=self.fqdn(slug, namespace),
                error=str(e),
            )
            return False
        return True

    async def unregister_subdomain(self, slug: str, namespace: str) -> SagaResult:
        """Delete every record under the FQDN, then the subdomain object.

        Anything already gone counts as deleted.
        """
        fqdn = self.fqdn(slug, namespace)
        try:
            if self.provisioning_mode == "app_domain":
                await self.detach_app_domain(fqdn)
            for record in await self.list_records(fqdn):
                if record.get("id") is not None:
                    await self.delete_record(fqdn, record["id"])
            await self.delete_subdomain(slug, namespace)
        except ProviderError as e:
            return SagaResult(False, fqdn, error=f"Removing {fqdn} failed: {e}")

        logger.info("Subdomain deprovisioned", fqdn=fqdn)
        return SagaResult(True, fqdn)
