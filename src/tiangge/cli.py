"""Tiangge CLI - Command line interface."""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

_shutdown_requested = False

BANNER = """
 _____ _
|_   _(_) __ _ _ __   __ _  __ _  ___
  | | | |/ _` | '_ \\ / _` |/ _` |/ _ \\
  | | | | (_| | | | | (_| | (_| |  __/
  |_| |_|\\__,_|_| |_|\\__, |\\__, |\\___|
                     |___/ |___/
        Your store, your domain
"""


def _load_server_config(config_file: str | None, **overrides: Any):
    """Build a ServerConfig from an optional config file plus CLI overrides."""
    from tiangge.core.config import ServerConfig, load_config_from_file

    data: dict[str, Any] = {}
    if config_file:
        data.update(load_config_from_file(config_file).get("server", {}) or {})
    data.update({k: v for k, v in overrides.items() if v is not None})
    return ServerConfig(**data)


def _create_registry(server_config):
    """Wire a DomainRegistry from the server config and TIANGGE_ settings."""
    from tiangge.core.config import get_config
    from tiangge.domains import (
        AttemptLimiter,
        BindingCache,
        DNSVerifier,
        DomainRegistry,
        JsonBindingStore,
    )

    cfg = get_config()
    domains_cfg = cfg.domains
    dns_cfg = cfg.dns
    routing_cfg = cfg.routing

    return DomainRegistry(
        JsonBindingStore(server_config.storage_path),
        verifier=DNSVerifier(
            timeout=dns_cfg.timeout,
            retries=dns_cfg.retries,
            nameservers=dns_cfg.nameservers or None,
            record_prefix=domains_cfg.txt_record_prefix,
        ),
        limiter=AttemptLimiter(
            max_attempts=domains_cfg.max_verification_attempts,
            count_transient_failures=domains_cfg.count_transient_failures,
        ),
        cache=BindingCache(ttl=routing_cfg.cache_ttl, max_entries=routing_cfg.cache_max_entries),
        serving_ip=server_config.serving_ip,
        canonical_hostname=server_config.canonical_hostname,
        token_bytes=domains_cfg.token_bytes,
        record_prefix=domains_cfg.txt_record_prefix,
    )


@click.group()
def main():
    """Tiangge - custom domains for storefronts."""
    pass


@main.command()
def version():
    """Show version information."""
    from tiangge import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


@main.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--bind", "-b", default=None, help="Address to listen on (default: 0.0.0.0:8080)")
@click.option("--platform-domain", default=None, help="Platform root domain (default: tiangge.shop)")
@click.option("--storage", default=None, help="Path to domain storage file")
@click.option("--tenants-file", default=None, help="YAML/JSON file mapping API tokens to tenants")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="info",
    help="Log level (default: info)",
)
def serve(
    config_file: str | None,
    bind: str | None,
    platform_domain: str | None,
    storage: str | None,
    tenants_file: str | None,
    log_level: str,
):
    """Run the storefront server with custom domain routing."""
    global _shutdown_requested
    _shutdown_requested = False

    import logging

    import structlog

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
    )

    server_config = _load_server_config(
        config_file,
        bind=bind,
        platform_domain=platform_domain,
        storage_path=storage,
        tenants_file=tenants_file,
    )

    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    main_task = loop.create_task(_serve_async(server_config))

    def signal_handler(sig: int, frame: object) -> None:
        """Handle Ctrl+C signal."""
        global _shutdown_requested
        if _shutdown_requested:
            console.print("\n[red]Force shutdown![/red]")
            sys.exit(1)
        _shutdown_requested = True
        console.print("\n[yellow]Shutting down gracefully...[/yellow]")
        main_task.cancel()

    signal.signal(signal.SIGINT, signal_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, signal_handler)

    try:
        loop.run_until_complete(main_task)
    except (asyncio.CancelledError, KeyboardInterrupt):
        pass
    finally:
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


async def _serve_async(server_config):
    """Async implementation of the serve command."""
    from tiangge.core.config import get_config
    from tiangge.routing import RouteTable
    from tiangge.security import create_entitlement_gate
    from tiangge.server import StorefrontServer

    cfg = get_config()
    registry = _create_registry(server_config)
    gate = create_entitlement_gate(
        server_config.entitlement_backend,
        tenants_file=server_config.tenants_file,
        entitlement_url=server_config.entitlement_url,
        timeout=server_config.entitlement_timeout,
    )
    server = StorefrontServer(
        server_config,
        registry,
        gate,
        route_table=RouteTable.from_prefixes(cfg.routing.platform_prefixes),
        require_premium_for_verify=cfg.domains.require_premium_for_verify,
    )

    console.print(BANNER, style="cyan")
    console.print(
        f"Serving [cyan]{server_config.platform_domain}[/cyan] on "
        f"[bold]{server_config.bind}[/bold]"
    )

    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


@main.group()
def config():
    """View configuration settings.

    All settings can be configured via environment variables with the
    TIANGGE_ prefix.

    Examples:

        tiangge config show            # Show all config settings

        tiangge config show --json     # Machine-readable output
    """
    pass


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--section", "-s", help="Show only specific section (domains, dns, routing)")
def config_show(json_output: bool, section: str | None):
    """Show current configuration settings.

    Values come from environment variables or defaults.
    """
    from tiangge.core.config import get_config

    cfg = get_config()
    display = cfg.to_display_dict()

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {section}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if json_output:
        import json
        click.echo(json.dumps(display, indent=2))
        return

    console.print("[bold]Current Configuration[/bold]\n")

    env_prefixes = {"dns": "TIANGGE_DNS_"}
    for section_name, settings in display.items():
        table = Table(title=section_name.replace("_", " ").title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Env Variable", style="dim")

        prefix = env_prefixes.get(section_name, "TIANGGE_")
        for key, value in settings.items():
            value_str = str(value) if value is not None else "[dim]None[/dim]"
            table.add_row(key, value_str, f"{prefix}{key.upper()}")

        console.print(table)
        console.print()


@main.group()
def domain():
    """Manage custom domain bindings (operator tools).

    Each store can bind one custom domain (e.g., shop.mycompany.com)
    instead of tiangge.shop/<store>.

    Examples:

        tiangge domain add shop.mycompany.com --tenant-id abc123 --slug acme

        tiangge domain verify shop.mycompany.com --tenant-id abc123

        tiangge domain enable --tenant-id abc123

        tiangge domain list

        tiangge domain reset-attempts --tenant-id abc123
    """
    pass


def _run_domain_command(coro_factory, storage: str) -> None:
    """Run an async domain command, printing domain errors and exiting 1."""
    from tiangge.errors import DomainError

    server_config = _load_server_config(None, storage_path=storage)
    registry = _create_registry(server_config)
    try:
        asyncio.run(coro_factory(registry))
    except DomainError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        sys.exit(1)


@domain.command("add")
@click.argument("domain_name")
@click.option("--tenant-id", "-t", required=True, help="Tenant (store owner) ID")
@click.option("--slug", default=None, help="Store slug to route to (default: tenant ID)")
@click.option("--storage", default="domains.json", help="Path to domain storage file")
def domain_add(domain_name: str, tenant_id: str, slug: str | None, storage: str):
    """Bind a custom domain to a store.

    After registration, you'll receive the TXT record to publish.
    """
    _run_domain_command(lambda r: _domain_add_async(r, domain_name, tenant_id, slug), storage)


async def _domain_add_async(registry, domain_name: str, tenant_id: str, slug: str | None):
    """Async implementation of domain add command."""
    from tiangge.domains import txt_record_name

    binding = await registry.register(tenant_id, domain_name, tenant_slug=slug)

    console.print(
        Panel(
            f"[green]Domain registered successfully![/green]\n\n"
            f"[bold]Domain:[/bold] {binding.domain}\n"
            f"[bold]Tenant ID:[/bold] {binding.tenant_id}\n"
            f"[bold]Store:[/bold] {binding.tenant_slug}\n"
            f"[bold]Status:[/bold] Pending verification\n\n"
            f"[yellow]Publish this DNS record:[/yellow]\n\n"
            f"   Type: TXT\n"
            f"   Name: {txt_record_name(binding.domain, registry.record_prefix)}\n"
            f"   Value: {binding.verification_token}\n\n"
            f"After configuring DNS, run:\n"
            f"  [cyan]tiangge domain verify {binding.domain} --tenant-id {tenant_id}[/cyan]",
            title="Domain Registration",
            border_style="green",
        )
    )


@domain.command("verify")
@click.argument("domain_name")
@click.option("--tenant-id", "-t", required=True, help="Tenant (store owner) ID")
@click.option("--storage", default="domains.json", help="Path to domain storage file")
def domain_verify(domain_name: str, tenant_id: str, storage: str):
    """Check the TXT record for a domain (uses one attempt)."""
    _run_domain_command(lambda r: _domain_verify_async(r, domain_name, tenant_id), storage)


async def _domain_verify_async(registry, domain_name: str, tenant_id: str):
    """Async implementation of domain verify command."""
    console.print(f"Verifying DNS records for [cyan]{domain_name}[/cyan]...", style="yellow")
    outcome = await registry.verify(tenant_id, domain_name)

    if outcome.is_verified:
        records = "\n".join(
            f"   {r['type']:<6} {r['name']:<4} -> {r['value']}" for r in outcome.dns_instructions
        )
        console.print(
            Panel(
                f"[green]Domain verified successfully![/green]\n\n"
                f"[bold]Domain:[/bold] {outcome.binding.domain}\n\n"
                f"[yellow]Now point the domain at the platform:[/yellow]\n{records}\n\n"
                f"Then enable routing with:\n"
                f"  [cyan]tiangge domain enable --tenant-id {tenant_id}[/cyan]",
                title="Verification Successful",
                border_style="green",
            )
        )
        return

    error = outcome.result.error if outcome.result else None
    console.print(
        Panel(
            f"[yellow]Verification failed[/yellow]\n\n"
            f"[bold]Domain:[/bold] {outcome.binding.domain}\n"
            f"[bold]Attempts remaining:[/bold] {outcome.attempts_remaining}\n\n"
            f"[red]Error:[/red] {error or 'TXT record not found or does not match'}",
            title="Verification Status",
            border_style="yellow",
        )
    )
    sys.exit(1)


@domain.command("list")
@click.option("--storage", default="domains.json", help="Path to domain storage file")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def domain_list(storage: str, json_output: bool):
    """List all domain bindings."""
    _run_domain_command(lambda r: _domain_list_async(r, json_output), storage)


async def _domain_list_async(registry, json_output: bool):
    """Async implementation of domain list command."""
    import json

    bindings = await registry.list_bindings()

    if json_output:
        data = [b.to_dict() for b in bindings]
        click.echo(json.dumps(data, indent=2, default=str))
        return

    if not bindings:
        console.print("[dim]No domains registered[/dim]")
        return

    table = Table(title="Custom Domains")
    table.add_column("Domain", style="cyan")
    table.add_column("Tenant ID", style="dim")
    table.add_column("Store")
    table.add_column("State", justify="center")
    table.add_column("Enabled", justify="center")
    table.add_column("Attempts", justify="right")
    table.add_column("Created At")

    state_colors = {"pending": "yellow", "verified": "green", "locked": "red"}
    for binding in bindings:
        color = state_colors.get(binding.state.value, "white")
        table.add_row(
            binding.domain,
            binding.tenant_id[:12] + "..." if len(binding.tenant_id) > 12 else binding.tenant_id,
            binding.tenant_slug,
            f"[{color}]{binding.state.value}[/{color}]",
            "[green]Yes[/green]" if binding.enabled else "No",
            str(binding.attempt_count),
            binding.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@domain.command("status")
@click.option("--tenant-id", "-t", required=True, help="Tenant (store owner) ID")
@click.option("--storage", default="domains.json", help="Path to domain storage file")
def domain_status(tenant_id: str, storage: str):
    """Show detailed status for a tenant's domain."""
    _run_domain_command(lambda r: _domain_status_async(r, tenant_id), storage)


async def _domain_status_async(registry, tenant_id: str):
    """Async implementation of domain status command."""
    summary = await registry.status(tenant_id)

    if summary is None:
        console.print(f"[red]No custom domain configured for tenant:[/red] {tenant_id}")
        sys.exit(1)

    status_colors = {"pending": "yellow", "verified": "green", "locked": "red"}
    status_color = status_colors.get(summary.state.value, "white")

    content = (
        f"[bold]Domain:[/bold] {summary.domain}\n"
        f"[bold]State:[/bold] [{status_color}]{summary.state.value}[/{status_color}]\n"
        f"[bold]Enabled:[/bold] {'Yes' if summary.enabled else 'No'}\n"
        f"[bold]SSL:[/bold] {summary.ssl_status.value}\n"
        f"[bold]TXT Record:[/bold] {summary.txt_record_name}\n"
        f"[bold]Verification Code:[/bold] {summary.verification_token}\n"
        f"[bold]Attempts Remaining:[/bold] {summary.attempts_remaining}"
    )

    if summary.verified_at:
        content += f"\n[bold]Verified At:[/bold] {summary.verified_at.strftime('%Y-%m-%d %H:%M')}"

    if summary.dns_instructions:
        records = "\n".join(
            f"  {r['type']:<6} {r['name']:<4} -> {r['value']}" for r in summary.dns_instructions
        )
        content += f"\n\n[yellow]DNS Records:[/yellow]\n{records}"

    console.print(
        Panel(
            content,
            title=f"Domain Status: {summary.domain}",
            border_style=status_color,
        )
    )


@domain.command("remove")
@click.option("--tenant-id", "-t", required=True, help="Tenant (store owner) ID")
@click.option("--storage", default="domains.json", help="Path to domain storage file")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def domain_remove(tenant_id: str, storage: str, yes: bool):
    """Remove a tenant's domain binding."""
    if not yes and not click.confirm(f"Are you sure you want to remove the domain for '{tenant_id}'?"):
        console.print("[dim]Cancelled[/dim]")
        return

    _run_domain_command(lambda r: _domain_remove_async(r, tenant_id), storage)


async def _domain_remove_async(registry, tenant_id: str):
    """Async implementation of domain remove command."""
    removed = await registry.unregister(tenant_id)

    if removed:
        console.print(f"[green]Domain removed:[/green] {removed.domain}")
    else:
        console.print(f"[dim]No custom domain configured for tenant:[/dim] {tenant_id}")


@domain.command("enable")
@click.option("--tenant-id", "-t", required=True, help="Tenant (store owner) ID")
@click.option("--storage", default="domains.json", help="Path to domain storage file")
def domain_enable(tenant_id: str, storage: str):
    """Start routing a verified domain to its store."""
    _run_domain_command(lambda r: _domain_set_enabled_async(r, tenant_id, True), storage)


@domain.command("disable")
@click.option("--tenant-id", "-t", required=True, help="Tenant (store owner) ID")
@click.option("--storage", default="domains.json", help="Path to domain storage file")
def domain_disable(tenant_id: str, storage: str):
    """Stop routing a domain without removing it."""
    _run_domain_command(lambda r: _domain_set_enabled_async(r, tenant_id, False), storage)


async def _domain_set_enabled_async(registry, tenant_id: str, enabled: bool):
    binding = await registry.set_enabled(tenant_id, enabled)
    word = "enabled" if enabled else "disabled"
    console.print(f"[green]Domain {word}:[/green] {binding.domain}")


@domain.command("reset-attempts")
@click.option("--tenant-id", "-t", required=True, help="Tenant (store owner) ID")
@click.option("--storage", default="domains.json", help="Path to domain storage file")
def domain_reset_attempts(tenant_id: str, storage: str):
    """Unlock a domain that ran out of verification attempts."""
    _run_domain_command(lambda r: _domain_reset_attempts_async(r, tenant_id), storage)


async def _domain_reset_attempts_async(registry, tenant_id: str):
    binding = await registry.reset_attempts(tenant_id)
    console.print(
        f"[green]Verification attempts reset:[/green] {binding.domain} "
        f"({registry.limiter.max_attempts} attempts available)"
    )


if __name__ == "__main__":
    main()
