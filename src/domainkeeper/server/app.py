"""API server process: the aiohttp site plus the reconciler tickers."""

from __future__ import annotations

import structlog
from aiohttp import web

from domainkeeper.core.config import DomainKeeperConfig, get_config
from domainkeeper.scheduler import Ticker
from domainkeeper.server.api import create_app
from domainkeeper.services import Services, build_services

logger = structlog.get_logger()


class ApiServer:
    """Serves the HTTP API and runs the background sweeps."""

    def __init__(
        self,
        config: DomainKeeperConfig | None = None,
        services: Services | None = None,
        host: str = "0.0.0.0",
        port: int = 8080,
        run_reconciler: bool = True,
    ) -> None:
        self.config = config or get_config()
        self.services = services or build_services(self.config)
        self.host = host
        self.port = port
        self.run_reconciler = run_reconciler
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._tickers: list[Ticker] = []

    async def start(self) -> None:
        self._app = create_app(self.services)
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("API server started", host=self.host, port=self.port)

        if self.run_reconciler:
            reconciler = self.services.reconciler
            settings = self.config.reconciler
            self._tickers = [
                Ticker(
                    "domain-health",
                    settings.health_check_interval,
                    reconciler.reconcile_domains,
                    run_immediately=True,
                ),
                Ticker(
                    "subdomain-poll",
                    settings.subdomain_poll_interval,
                    reconciler.reconcile_subdomains,
                ),
            ]
            for ticker in self._tickers:
                ticker.start()

    async def stop(self) -> None:
        logger.info("Stopping API server...")
        for ticker in self._tickers:
            await ticker.stop()
        self._tickers = []
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("API server stopped")
