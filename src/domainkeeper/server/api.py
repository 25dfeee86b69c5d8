"""HTTP API for tenants, the edge proxy and monitoring.

Routes:
    GET    /verify-domain?domain=<host>           on-demand TLS guard
    GET    /health                                store and proxy status
    GET    /metrics                               Prometheus metrics
    GET    /domains                               list tenant domains
    POST   /domains                               register a domain
    GET    /domains/stats                         tenant counters
    GET    /domains/{hostname}                    state plus instructions
    DELETE /domains/{hostname}
    POST   /domains/{hostname}/check-dns
    POST   /domains/{hostname}/verify
    POST   /domains/{hostname}/reactivate
    GET    /subdomains[?namespace=]
    POST   /subdomains
    GET    /subdomains/{namespace}/{slug}
    DELETE /subdomains/{namespace}/{slug}
    POST   /subdomains/{namespace}/{slug}/rename
    POST   /subdomains/{namespace}/{slug}/check

Tenant routes identify the caller by the X-Tenant-Id header, which an
upstream gateway is expected to set after authenticating the request.
"""

from __future__ import annotations

from typing import Any

import structlog
from aiohttp import web
from pydantic import BaseModel, Field, ValidationError

from domainkeeper.core.exceptions import (
    DomainKeeperError,
    InvalidRequestError,
    MissingTenantError,
    RateLimitExceededError,
)
from domainkeeper.domains.models import CustomDomain, TargetType, make_target
from domainkeeper.observability.metrics import TLS_GUARD_DECISIONS, generate_metrics, get_content_type
from domainkeeper.services import Services
from domainkeeper.subdomains.models import Namespace, PlatformSubdomain

logger = structlog.get_logger()

TENANT_HEADER = "X-Tenant-Id"

SERVICES_KEY = web.AppKey("services", Services)


class CreateDomainRequest(BaseModel):
    hostname: str = Field(min_length=1)
    target_type: TargetType
    target_id: str = Field(min_length=1)


class RegisterSubdomainRequest(BaseModel):
    slug: str = Field(min_length=1)
    namespace: Namespace
    target_id: str = Field(min_length=1)


class RenameSubdomainRequest(BaseModel):
    new_slug: str = Field(min_length=1)
    target_id: str = Field(min_length=1)


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Turn rejected operations into JSON error responses."""
    try:
        return await handler(request)
    except DomainKeeperError as e:
        headers = None
        if isinstance(e, RateLimitExceededError):
            headers = {"Retry-After": str(e.retry_after)}
        logger.debug(
            "Request rejected",
            method=request.method,
            path=request.path,
            error=e.code,
            message=str(e),
        )
        return web.json_response(e.to_dict(), status=e.http_status, headers=headers)


def _tenant(request: web.Request) -> str:
    tenant_id = request.headers.get(TENANT_HEADER, "").strip()
    if not tenant_id:
        raise MissingTenantError()
    return tenant_id


def _namespace(value: str) -> Namespace:
    try:
        return Namespace(value)
    except ValueError:
        allowed = ", ".join(n.value for n in Namespace)
        raise InvalidRequestError(f"Unknown namespace {value!r} (allowed: {allowed})") from None


async def _parse(request: web.Request, model: type[BaseModel]) -> Any:
    try:
        data = await request.json()
    except ValueError:
        raise InvalidRequestError("Request body must be a JSON object") from None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "body" for err in e.errors())
        raise InvalidRequestError(f"Invalid request body: {fields}") from None


class DomainKeeperApi:
    """Request handlers bound to one set of services."""

    def __init__(self, services: Services) -> None:
        self.services = services

    @property
    def domains(self):
        return self.services.domains

    @property
    def subdomains(self):
        return self.services.subdomains

    def register_routes(self, app: web.Application) -> None:
        app.router.add_get("/verify-domain", self._handle_verify_domain)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/metrics", self._handle_metrics)

        app.router.add_get("/domains", self._handle_list_domains)
        app.router.add_post("/domains", self._handle_create_domain)
        app.router.add_get("/domains/stats", self._handle_domain_stats)
        app.router.add_get("/domains/{hostname}", self._handle_get_domain)
        app.router.add_delete("/domains/{hostname}", self._handle_delete_domain)
        app.router.add_post("/domains/{hostname}/check-dns", self._handle_check_dns)
        app.router.add_post("/domains/{hostname}/verify", self._handle_verify)
        app.router.add_post("/domains/{hostname}/reactivate", self._handle_reactivate)

        app.router.add_get("/subdomains", self._handle_list_subdomains)
        app.router.add_post("/subdomains", self._handle_register_subdomain)
        app.router.add_get("/subdomains/{namespace}/{slug}", self._handle_get_subdomain)
        app.router.add_delete("/subdomains/{namespace}/{slug}", self._handle_remove_subdomain)
        app.router.add_post("/subdomains/{namespace}/{slug}/rename", self._handle_rename_subdomain)
        app.router.add_post("/subdomains/{namespace}/{slug}/check", self._handle_check_subdomain)

    def _domain_view(self, domain: CustomDomain) -> dict[str, Any]:
        return self.domains.describe(domain).to_dict()

    def _subdomain_view(self, sub: PlatformSubdomain) -> dict[str, Any]:
        data = sub.to_dict()
        data["fqdn"] = sub.fqdn(self.subdomains.base_domain)
        return data

    # Edge and monitoring

    async def _handle_verify_domain(self, request: web.Request) -> web.Response:
        """On-demand TLS guard.

        200 lets the proxy request a certificate, anything else refuses.
        Errors refuse as well.
        """
        hostname = request.query.get("domain", "")
        try:
            allowed = await self.domains.is_domain_allowed_for_tls(hostname)
        except Exception as e:
            TLS_GUARD_DECISIONS.labels(decision="error").inc()
            logger.error("TLS guard check failed", hostname=hostname, error=str(e))
            return web.json_response({"allowed": False}, status=404)

        if allowed:
            TLS_GUARD_DECISIONS.labels(decision="allowed").inc()
            return web.json_response({"allowed": True})
        TLS_GUARD_DECISIONS.labels(decision="denied").inc()
        logger.info("TLS certificate refused", hostname=hostname)
        return web.json_response({"allowed": False}, status=404)

    async def _handle_health(self, request: web.Request) -> web.Response:
        try:
            await self.domains.store.list_all()
            store_ok = True
        except Exception as e:
            logger.error("Store health check failed", error=str(e))
            store_ok = False
        proxy_ok = await self.domains.proxy.health_check()

        healthy = store_ok and proxy_ok
        return web.json_response(
            {
                "status": "healthy" if healthy else "degraded",
                "store": store_ok,
                "proxy": proxy_ok,
            },
            status=200 if healthy else 503,
        )

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(body=generate_metrics(), headers={"Content-Type": get_content_type()})

    # Custom domains

    async def _handle_list_domains(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        domains = await self.domains.list_domains(tenant_id)
        return web.json_response({"domains": [self._domain_view(d) for d in domains]})

    async def _handle_create_domain(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        body: CreateDomainRequest = await _parse(request, CreateDomainRequest)
        domain = await self.domains.create_domain(
            body.hostname, tenant_id, make_target(body.target_type, body.target_id)
        )
        return web.json_response(self._domain_view(domain), status=201)

    async def _handle_domain_stats(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        stats = await self.domains.stats(tenant_id)
        return web.json_response(stats.to_dict())

    async def _handle_get_domain(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        domain = await self.domains.get_domain(request.match_info["hostname"], tenant_id)
        return web.json_response(self._domain_view(domain))

    async def _handle_delete_domain(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        hostname = request.match_info["hostname"]
        route_removed = await self.domains.delete_domain(hostname, tenant_id)
        return web.json_response({"deleted": True, "route_removed": route_removed})

    async def _handle_check_dns(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        domain = await self.domains.request_dns_check(request.match_info["hostname"], tenant_id)
        return web.json_response(self._domain_view(domain))

    async def _handle_verify(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        domain = await self.domains.request_ownership_verification(
            request.match_info["hostname"], tenant_id
        )
        return web.json_response(self._domain_view(domain))

    async def _handle_reactivate(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        domain = await self.domains.reactivate_domain(request.match_info["hostname"], tenant_id)
        return web.json_response(self._domain_view(domain))

    # Platform subdomains

    async def _handle_list_subdomains(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        namespace = request.query.get("namespace")
        subs = await self.subdomains.list_subdomains(
            _namespace(namespace) if namespace else None, tenant_id
        )
        return web.json_response({"subdomains": [self._subdomain_view(s) for s in subs]})

    async def _handle_register_subdomain(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        body: RegisterSubdomainRequest = await _parse(request, RegisterSubdomainRequest)
        sub = await self.subdomains.register(body.slug, body.namespace, body.target_id, tenant_id)
        return web.json_response(self._subdomain_view(sub), status=201)

    async def _handle_get_subdomain(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        sub = await self.subdomains.get(
            request.match_info["slug"], _namespace(request.match_info["namespace"]), tenant_id
        )
        return web.json_response(self._subdomain_view(sub))

    async def _handle_remove_subdomain(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        removed = await self.subdomains.remove(
            request.match_info["slug"],
            _namespace(request.match_info["namespace"]),
            request.query.get("target_id"),
            tenant_id,
        )
        return web.json_response({"removed": removed}, status=200 if removed else 502)

    async def _handle_rename_subdomain(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        body: RenameSubdomainRequest = await _parse(request, RenameSubdomainRequest)
        sub = await self.subdomains.rename(
            request.match_info["slug"],
            body.new_slug,
            _namespace(request.match_info["namespace"]),
            body.target_id,
            tenant_id,
        )
        return web.json_response(self._subdomain_view(sub))

    async def _handle_check_subdomain(self, request: web.Request) -> web.Response:
        tenant_id = _tenant(request)
        sub = await self.subdomains.check_status(
            request.match_info["slug"], _namespace(request.match_info["namespace"]), tenant_id
        )
        return web.json_response(self._subdomain_view(sub))


def create_app(services: Services) -> web.Application:
    """Build the aiohttp application around a set of services."""
    app = web.Application(middlewares=[error_middleware])
    app[SERVICES_KEY] = services
    DomainKeeperApi(services).register_routes(app)
    return app
