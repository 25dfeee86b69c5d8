"""DomainKeeper Server - Main entry point."""

import asyncio
import logging
import os

import click
import structlog
from rich.console import Console

from domainkeeper.core.config import DomainKeeperConfig, apply_config_file, clear_config, get_config
from domainkeeper.server.app import ApiServer

console = Console()

BANNER = """
 ___                  _      _  __
|   \\ ___ _ __  __ _(_)_ _ | |/ /___ ___ _ __  ___ _ _
| |) / _ \\ '  \\/ _` | | ' \\| ' </ -_) -_) '_ \\/ -_) '_|
|___/\\___/_|_|_\\__,_|_|_||_|_|\\_\\___\\___| .__/\\___|_|
                                        |_|
                           API SERVER
"""


@click.command()
@click.option("--host", default="0.0.0.0", envvar="DOMAINKEEPER_HOST", help="Bind address")
@click.option("--port", default=8080, type=int, envvar="DOMAINKEEPER_PORT", help="Bind port")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML or TOML config file (environment variables take precedence)",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="info",
    help="Log level (default: info)",
)
@click.option("--no-reconciler", is_flag=True, help="Serve the API without background sweeps")
def main(host: str, port: int, config_path: str | None, log_level: str, no_reconciler: bool):
    """Run the DomainKeeper API server."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
    )
    console.print(BANNER, style="cyan")

    if config_path:
        for key, value in apply_config_file(config_path).items():
            os.environ.setdefault(key, value)
        clear_config()

    config = get_config()
    platform = config.platform
    reconciler = config.reconciler

    console.print(f"Starting API server on {host}:{port}...", style="yellow")
    console.print(f"Platform domain: {platform.base_domain}", style="dim")
    console.print(f"Custom domains point at: {platform.cname_target or platform.public_ip}", style="dim")
    console.print(f"Proxy admin: {config.proxy.proxy_admin_url}", style="dim")
    if no_reconciler:
        console.print("Reconciler: disabled", style="dim")
    else:
        console.print(
            f"Reconciler: health every {reconciler.health_check_interval}s, "
            f"subdomain poll every {reconciler.subdomain_poll_interval}s",
            style="dim",
        )

    asyncio.run(run_server(config, host, port, run_reconciler=not no_reconciler))


async def run_server(
    config: DomainKeeperConfig, host: str, port: int, run_reconciler: bool = True
):
    """Run the API server until interrupted."""
    server = ApiServer(config, host=host, port=port, run_reconciler=run_reconciler)

    try:
        await server.start()
        console.print("Server started, press Ctrl+C to stop", style="green")

        await asyncio.Event().wait()
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")
    finally:
        await server.stop()


if __name__ == "__main__":
    main()
