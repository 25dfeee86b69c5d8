"""DomainKeeper CLI - Operator command line interface."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from collections.abc import Coroutine
from datetime import UTC, datetime
from typing import Any

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from domainkeeper.core.exceptions import DomainKeeperError
from domainkeeper.services import Services, build_services

console = Console()

BANNER = """
 ___                  _      _  __
|   \\ ___ _ __  __ _(_)_ _ | |/ /___ ___ _ __  ___ _ _
| |) / _ \\ '  \\/ _` | | ' \\| ' </ -_) -_) '_ \\/ -_) '_|
|___/\\___/_|_|_\\__,_|_|_||_|_|\\_\\___\\___| .__/\\___|_|
                                        |_|
        Custom domains, verified and kept healthy
"""

STATUS_COLORS = {
    "awaiting_dns": "yellow",
    "validating_dns": "cyan",
    "dns_invalid": "red",
    "awaiting_verification": "yellow",
    "validating_ownership": "cyan",
    "issuing_ssl": "cyan",
    "active": "green",
    "ssl_expiring": "yellow",
    "ssl_error": "red",
    "suspended": "red",
    "dns_creating": "cyan",
    "activating": "cyan",
    "error": "red",
    "removing": "yellow",
}


def _color(status: str) -> str:
    return STATUS_COLORS.get(status, "white")


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a command coroutine, reporting rejected operations as errors."""
    try:
        return asyncio.run(coro)
    except DomainKeeperError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def _services() -> Services:
    return build_services()


def _format_dt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "N/A"


@click.group()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to YAML or TOML config file",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="warning",
    help="Log level (default: warning)",
)
def main(config_file: str | None, log_level: str):
    """Manage tenant custom domains and platform subdomains.

    Settings come from DOMAINKEEPER_* environment variables, a .env file
    or --config.
    """
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
    )
    if config_file:
        from domainkeeper.core.config import apply_config_file, clear_config

        for key, value in apply_config_file(config_file).items():
            os.environ.setdefault(key, value)
        clear_config()


@main.command()
def version():
    """Show version information."""
    from domainkeeper import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


@main.group()
def config():
    """View configuration settings.

    All settings can be configured via environment variables with the
    DOMAINKEEPER_ prefix.
    """
    pass


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--section", "-s", help="Show only one section (platform, proxy, provider, lifecycle, reconciler, storage)")
def config_show(json_output: bool, section: str | None):
    """Show current configuration settings."""
    from domainkeeper.core.config import get_config

    display = get_config().to_display_dict()

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {section}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if json_output:
        click.echo(json.dumps(display, indent=2))
        return

    console.print("[bold]Current Configuration[/bold]\n")
    for section_name, settings in display.items():
        table = Table(title=section_name.title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Env Variable", style="dim")
        for key, value in settings.items():
            value_str = str(value) if value not in (None, "") else "[dim]-[/dim]"
            table.add_row(key, value_str, f"DOMAINKEEPER_{key.upper()}")
        console.print(table)
        console.print()


# Custom domains


@main.group()
def domain():
    """Manage tenant custom domains.

    Examples:

        domainkeeper domain add shop.example.com -t tenant-1 --target-id 42

        domainkeeper domain check-dns shop.example.com

        domainkeeper domain verify shop.example.com

        domainkeeper domain status shop.example.com
    """
    pass


def _domain_panel(services: Services, record: Any, title: str) -> Panel:
    info = services.domains.describe(record)
    d = info.domain
    color = _color(d.status.value)
    content = (
        f"[bold]Domain:[/bold] {d.hostname}\n"
        f"[bold]Tenant:[/bold] {d.tenant_id}\n"
        f"[bold]Target:[/bold] {d.target.type.value} {d.target.id}\n"
        f"[bold]Status:[/bold] [{color}]{d.status.value}[/{color}]\n"
        f"[bold]Verified:[/bold] {'Yes' if d.verified else 'No'}"
    )
    if d.verified_at:
        content += f" ({d.verification_method.value if d.verification_method else '?'}, {_format_dt(d.verified_at)})"
    content += f"\n[bold]Certificate:[/bold] {info.ssl_state}"
    if d.ssl_expires_at:
        content += f" (expires {_format_dt(d.ssl_expires_at)}, issuer {d.ssl_issuer or 'unknown'})"
    if not info.can_check_now:
        content += f"\n[bold]Next check in:[/bold] {info.seconds_until_next_check}s"

    if not d.verified:
        content += "\n\n[yellow]Point the domain at the platform:[/yellow]\n"
        for dns in info.dns_records:
            content += f"  {dns.type}  {dns.name}  ->  {dns.value}  (TTL {dns.ttl})\n"
        txt = info.verification.txt_record
        content += (
            "\n[yellow]Then prove ownership with one of:[/yellow]\n"
            f"  TXT  {txt.name}  =  {txt.value}\n"
            f"  HTTP {info.verification.http_url}  containing  {info.verification.http_content}"
        )

    for error in d.errors:
        content += f"\n[red]{error.code.value}:[/red] {error.message}"
    for warning in d.warnings:
        content += f"\n[yellow]{warning.code.value}:[/yellow] {warning.message}"

    return Panel(content, title=title, border_style=color)


@domain.command("add")
@click.argument("hostname")
@click.option("--tenant", "-t", "tenant_id", required=True, help="Owning tenant ID")
@click.option(
    "--target-type",
    type=click.Choice(["shop", "booking", "page"]),
    default="shop",
    help="Kind of object the domain serves",
)
@click.option("--target-id", required=True, help="ID of the served object")
def domain_add(hostname: str, tenant_id: str, target_type: str, target_id: str):
    """Register a new custom domain.

    After registration, you'll receive the DNS records to configure.
    """
    _run(_domain_add_async(hostname, tenant_id, target_type, target_id))


async def _domain_add_async(hostname: str, tenant_id: str, target_type: str, target_id: str):
    from domainkeeper.domains.models import make_target

    services = _services()
    created = await services.domains.create_domain(
        hostname, tenant_id, make_target(target_type, target_id)
    )
    console.print(_domain_panel(services, created, "Domain Registered"))
    console.print(f"After configuring DNS, run:\n  [cyan]domainkeeper domain check-dns {created.hostname}[/cyan]")


@domain.command("list")
@click.option("--tenant", "-t", "tenant_id", help="Only this tenant's domains")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def domain_list(tenant_id: str | None, json_output: bool):
    """List registered domains."""
    _run(_domain_list_async(tenant_id, json_output))


async def _domain_list_async(tenant_id: str | None, json_output: bool):
    services = _services()
    domains = await services.domains.list_domains(tenant_id)

    if json_output:
        click.echo(json.dumps([d.to_dict() for d in domains], indent=2))
        return

    if not domains:
        console.print("[dim]No domains registered[/dim]")
        return

    table = Table(title="Custom Domains")
    table.add_column("Domain", style="cyan")
    table.add_column("Tenant", style="dim")
    table.add_column("Target")
    table.add_column("Status")
    table.add_column("Verified", justify="center")
    table.add_column("Created At")

    for d in domains:
        color = _color(d.status.value)
        table.add_row(
            d.hostname,
            d.tenant_id,
            f"{d.target.type.value}:{d.target.id}",
            f"[{color}]{d.status.value}[/{color}]",
            "[green]Yes[/green]" if d.verified else "[yellow]No[/yellow]",
            _format_dt(d.created_at),
        )
    console.print(table)


@domain.command("stats")
@click.option("--tenant", "-t", "tenant_id", help="Only this tenant's domains")
def domain_stats(tenant_id: str | None):
    """Show domain counters."""
    _run(_domain_stats_async(tenant_id))


async def _domain_stats_async(tenant_id: str | None):
    stats = await _services().domains.stats(tenant_id)
    table = Table(title="Domain Stats")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Total", str(stats.total))
    table.add_row("Active", str(stats.active))
    table.add_row("Pending", str(stats.pending))
    table.add_row("With issues", str(stats.with_issues))
    table.add_row("SSL expiring soon", str(stats.ssl_expiring_soon))
    for status, count in sorted(stats.by_status.items()):
        table.add_row(f"  {status}", str(count), style="dim")
    console.print(table)


@domain.command("status")
@click.argument("hostname")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def domain_status(hostname: str, json_output: bool):
    """Show detailed status for a domain."""
    _run(_domain_status_async(hostname, json_output))


async def _domain_status_async(hostname: str, json_output: bool):
    services = _services()
    d = await services.domains.get_domain(hostname)
    if json_output:
        click.echo(json.dumps(services.domains.describe(d).to_dict(), indent=2))
        return
    console.print(_domain_panel(services, d, f"Domain Status: {d.hostname}"))


@domain.command("check-dns")
@click.argument("hostname")
def domain_check_dns(hostname: str):
    """Check that the domain points at the platform."""
    _run(_domain_check_dns_async(hostname))


async def _domain_check_dns_async(hostname: str):
    services = _services()
    console.print(f"Checking DNS for [cyan]{hostname}[/cyan]...", style="yellow")
    d = await services.domains.request_dns_check(hostname)
    check = d.last_dns_check
    if check and check.success:
        console.print(
            f"[green]DNS is correct[/green] ({check.record_type} -> {', '.join(check.records)})"
        )
        console.print(f"Next, prove ownership:\n  [cyan]domainkeeper domain verify {d.hostname}[/cyan]")
        return
    console.print(_domain_panel(services, d, "DNS Check Failed"))
    sys.exit(1)


@domain.command("verify")
@click.argument("hostname")
def domain_verify(hostname: str):
    """Prove ownership and activate the domain."""
    _run(_domain_verify_async(hostname))


async def _domain_verify_async(hostname: str):
    services = _services()
    console.print(f"Verifying ownership of [cyan]{hostname}[/cyan]...", style="yellow")
    d = await services.domains.request_ownership_verification(hostname)
    if d.verified:
        console.print(_domain_panel(services, d, "Verification Successful"))
        return
    console.print(_domain_panel(services, d, "Verification Failed"))
    sys.exit(1)


@domain.command("activate")
@click.argument("hostname")
def domain_activate(hostname: str):
    """Retry route activation for a verified domain."""
    _run(_domain_activate_async(hostname))


async def _domain_activate_async(hostname: str):
    services = _services()
    d = await services.domains.activate_domain(hostname)
    console.print(_domain_panel(services, d, "Activation"))
    if d.status.value == "ssl_error":
        sys.exit(1)


@domain.command("reactivate")
@click.argument("hostname")
def domain_reactivate(hostname: str):
    """Restart a suspended domain from the DNS step."""
    _run(_domain_reactivate_async(hostname))


async def _domain_reactivate_async(hostname: str):
    services = _services()
    d = await services.domains.reactivate_domain(hostname)
    console.print(_domain_panel(services, d, "Domain Reactivated"))


@domain.command("allowed")
@click.argument("hostname")
def domain_allowed(hostname: str):
    """Answer the on-demand TLS question for a hostname (exit 0 if allowed)."""
    allowed = _run(_services().domains.is_domain_allowed_for_tls(hostname))
    if allowed:
        console.print(f"[green]allowed[/green] {hostname}")
        return
    console.print(f"[red]denied[/red] {hostname}")
    sys.exit(1)


@domain.command("remove")
@click.argument("hostname")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def domain_remove(hostname: str, yes: bool):
    """Remove a domain and its proxy route."""
    if not yes and not click.confirm(f"Are you sure you want to remove '{hostname}'?"):
        console.print("[dim]Cancelled[/dim]")
        return
    _run(_domain_remove_async(hostname))


async def _domain_remove_async(hostname: str):
    route_removed = await _services().domains.delete_domain(hostname)
    console.print(f"[green]Domain removed:[/green] {hostname}")
    if not route_removed:
        console.print("[yellow]Warning:[/yellow] the proxy route could not be removed")


# Platform subdomains


@main.group()
def subdomain():
    """Manage platform subdomains ({slug}.{namespace}.{base domain}).

    Examples:

        domainkeeper subdomain register myshop -n shops --target-id 42

        domainkeeper subdomain rename myshop newshop -n shops --target-id 42

        domainkeeper subdomain list -n shops
    """
    pass


NAMESPACE_OPTION = click.option(
    "--namespace", "-n",
    type=click.Choice(["shops", "booking", "pages"]),
    required=True,
    help="Subdomain namespace",
)


def _subdomain_panel(services: Services, sub: Any, title: str) -> Panel:
    color = _color(sub.status.value)
    content = (
        f"[bold]Subdomain:[/bold] {sub.fqdn(services.subdomains.base_domain)}\n"
        f"[bold]Target:[/bold] {sub.target_id}\n"
        f"[bold]Tenant:[/bold] {sub.tenant_id or '-'}\n"
        f"[bold]Status:[/bold] [{color}]{sub.status.value}[/{color}]\n"
        f"[bold]Activated:[/bold] {_format_dt(sub.activated_at)}"
    )
    if sub.url:
        content += f"\n[bold]URL:[/bold] {sub.url}"
    if sub.error:
        content += f"\n[red]Error:[/red] {sub.error}"
    return Panel(content, title=title, border_style=color)


@subdomain.command("register")
@click.argument("slug")
@NAMESPACE_OPTION
@click.option("--target-id", required=True, help="ID of the served object")
@click.option("--tenant", "-t", "tenant_id", help="Owning tenant ID")
def subdomain_register(slug: str, namespace: str, target_id: str, tenant_id: str | None):
    """Provision a platform subdomain."""
    _run(_subdomain_register_async(slug, namespace, target_id, tenant_id))


async def _subdomain_register_async(
    slug: str, namespace: str, target_id: str, tenant_id: str | None
):
    services = _services()
    sub = await services.subdomains.register(slug, namespace, target_id, tenant_id)
    console.print(_subdomain_panel(services, sub, "Subdomain Registration"))
    if sub.status.value == "error":
        sys.exit(1)


@subdomain.command("remove")
@click.argument("slug")
@NAMESPACE_OPTION
@click.option("--target-id", help="Only remove if owned by this target")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def subdomain_remove(slug: str, namespace: str, target_id: str | None, yes: bool):
    """Deprovision a platform subdomain."""
    if not yes and not click.confirm(f"Are you sure you want to remove '{slug}.{namespace}'?"):
        console.print("[dim]Cancelled[/dim]")
        return
    _run(_subdomain_remove_async(slug, namespace, target_id))


async def _subdomain_remove_async(slug: str, namespace: str, target_id: str | None):
    if await _services().subdomains.remove(slug, namespace, target_id):
        console.print(f"[green]Subdomain removed:[/green] {slug}.{namespace}")
        return
    console.print(f"[red]Removal failed:[/red] {slug}.{namespace} kept in error state")
    sys.exit(1)


@subdomain.command("rename")
@click.argument("old_slug")
@click.argument("new_slug")
@NAMESPACE_OPTION
@click.option("--target-id", required=True, help="ID of the served object")
def subdomain_rename(old_slug: str, new_slug: str, namespace: str, target_id: str):
    """Move a target to a new slug."""
    _run(_subdomain_rename_async(old_slug, new_slug, namespace, target_id))


async def _subdomain_rename_async(old_slug: str, new_slug: str, namespace: str, target_id: str):
    services = _services()
    sub = await services.subdomains.rename(old_slug, new_slug, namespace, target_id)
    console.print(_subdomain_panel(services, sub, "Subdomain Rename"))
    if sub.slug != new_slug.strip().lower() or sub.status.value == "error":
        sys.exit(1)


@subdomain.command("status")
@click.argument("slug")
@NAMESPACE_OPTION
@click.option("--refresh", is_flag=True, help="Check the provider and HTTPS first")
def subdomain_status(slug: str, namespace: str, refresh: bool):
    """Show the status of a platform subdomain."""
    _run(_subdomain_status_async(slug, namespace, refresh))


async def _subdomain_status_async(slug: str, namespace: str, refresh: bool):
    services = _services()
    if refresh:
        sub = await services.subdomains.check_status(slug, namespace)
    else:
        sub = await services.subdomains.get(slug, namespace)
    console.print(_subdomain_panel(services, sub, f"Subdomain Status: {sub.key}"))


@subdomain.command("list")
@click.option(
    "--namespace", "-n",
    type=click.Choice(["shops", "booking", "pages"]),
    help="Only this namespace",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def subdomain_list(namespace: str | None, json_output: bool):
    """List platform subdomains."""
    _run(_subdomain_list_async(namespace, json_output))


async def _subdomain_list_async(namespace: str | None, json_output: bool):
    services = _services()
    subs = await services.subdomains.list_subdomains(namespace)

    if json_output:
        click.echo(json.dumps([s.to_dict() for s in subs], indent=2))
        return

    if not subs:
        console.print("[dim]No subdomains registered[/dim]")
        return

    table = Table(title="Platform Subdomains")
    table.add_column("Subdomain", style="cyan")
    table.add_column("Target", style="dim")
    table.add_column("Status")
    table.add_column("Created At")
    for s in subs:
        color = _color(s.status.value)
        table.add_row(
            s.fqdn(services.subdomains.base_domain),
            s.target_id,
            f"[{color}]{s.status.value}[/{color}]",
            _format_dt(s.created_at),
        )
    console.print(table)


# Reconciliation


@main.command()
@click.option("--domains-only", is_flag=True, help="Skip the subdomain poll")
@click.option("--subdomains-only", is_flag=True, help="Skip the domain health sweep")
def reconcile(domains_only: bool, subdomains_only: bool):
    """Run one reconciliation sweep now."""
    if domains_only and subdomains_only:
        console.print("[red]Error:[/red] --domains-only and --subdomains-only are exclusive")
        sys.exit(1)
    _run(_reconcile_async(domains_only, subdomains_only))


async def _reconcile_async(domains_only: bool, subdomains_only: bool):
    reconciler = _services().reconciler
    now = datetime.now(UTC)
    if domains_only:
        report = await reconciler.reconcile_domains(now)
    elif subdomains_only:
        report = await reconciler.reconcile_subdomains(now)
    else:
        report = await reconciler.reconcile_once(now)

    table = Table(title="Reconciliation")
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in report.to_dict().items():
        table.add_row(key.replace("_", " "), str(value))
    console.print(table)
    if report.errors:
        sys.exit(1)


if __name__ == "__main__":
    main()
