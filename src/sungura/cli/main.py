"""
CLI for the sungura offline and sync layers.

Commands:
    sungura sync FARM_ID - Reconcile farm snapshots with the server
    sungura snapshot FARM_ID KIND - Print a local snapshot
    sungura stores - List durable cache stores
    sungura install - Install and activate the offline controller
    sungura compat FARM_ID DOE BUCK - Check a breeding pair
    sungura alerts FARM_ID - Show dashboard alerts
    sungura config - Show current configuration
    sungura version - Print version
"""

from __future__ import annotations

import asyncio
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sungura import __version__
from sungura.breeding.alerts import AlertVariant, breeding_summary, generate_alerts
from sungura.breeding.compatibility import check_compatibility
from sungura.config import Settings, clear_settings_cache, get_settings
from sungura.context import AppContext
from sungura.exceptions import ReconcileError
from sungura.logging import setup_logging
from sungura.types import EntityKind, Rabbit

app = typer.Typer(
    name="sungura",
    help="Sungura Master - offline cache and farm record sync",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

_VARIANT_STYLES = {
    AlertVariant.DESTRUCTIVE: "red",
    AlertVariant.SECONDARY: "yellow",
    AlertVariant.OUTLINE: "cyan",
}


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _require_settings() -> Settings:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'sungura config' to see what's wrong."
        )
        raise typer.Exit(1)
    setup_logging(log_level=settings.LOG_LEVEL)
    return settings


def _parse_kind(value: str) -> EntityKind:
    try:
        return EntityKind(value)
    except ValueError:
        choices = ", ".join(k.value for k in EntityKind)
        error_console.print(f"[red]Error:[/red] Unknown kind '{value}'. Choose from: {choices}")
        raise typer.Exit(1)


def _entity_table(title: str, items: list) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Name / Type")
    table.add_column("Details", style="dim")
    for item in items:
        data = item.to_dict()
        name = data.get("name") or data.get("type") or data.get("reason") or ""
        details = ", ".join(
            f"{k}={v}"
            for k, v in data.items()
            if k in ("gender", "breed", "hutch_id", "row_name", "amount", "date", "is_pregnant")
            and v not in (None, "", [])
        )
        table.add_row(str(item.identity or "-"), str(name), details)
    return table


@app.command()
def sync(
    farm_id: Annotated[str, typer.Argument(help="Farm ID")],
    kind: Annotated[
        Optional[str],
        typer.Option("--kind", "-k", help="Only reconcile this kind (rabbits, hutches, rows, ...)"),
    ] = None,
) -> None:
    """Reconcile local snapshots with the server.

    Without --kind, rows, hutches and rabbits are reconciled concurrently.
    """
    settings = _require_settings()
    kinds = (_parse_kind(kind),) if kind else None

    async def run() -> dict:
        ctx = await AppContext.create(settings)
        try:
            if kinds is None:
                return await ctx.reconciler.reconcile_all(farm_id)
            return await ctx.reconciler.reconcile_all(farm_id, kinds)
        finally:
            await ctx.aclose()

    outcome = asyncio.run(run())

    failed = False
    for entity_kind, result in outcome.items():
        if isinstance(result, ReconcileError):
            failed = True
            error_console.print(
                f"[red]{entity_kind.value}:[/red] {result.message} "
                f"[dim](showing {len(result.stale)} saved)[/dim]"
            )
            continue
        console.print(_entity_table(f"{entity_kind.value} ({len(result)})", result))

    if failed:
        raise typer.Exit(1)


@app.command()
def snapshot(
    farm_id: Annotated[str, typer.Argument(help="Farm ID")],
    kind: Annotated[str, typer.Argument(help="Entity kind (rabbits, hutches, rows, ...)")],
) -> None:
    """Print the local snapshot of one entity kind."""
    settings = _require_settings()
    entity_kind = _parse_kind(kind)

    async def run() -> tuple[list, int]:
        ctx = await AppContext.create(settings)
        try:
            items = ctx.reconciler.load(farm_id, entity_kind)
            return items, ctx.entity_store.version(farm_id, entity_kind)
        finally:
            await ctx.aclose()

    items, version = asyncio.run(run())
    console.print(_entity_table(f"{entity_kind.value} snapshot v{version} ({len(items)})", items))


@app.command()
def stores() -> None:
    """List durable cache stores and storage usage."""
    settings = _require_settings()

    async def run() -> tuple[list[str], object]:
        ctx = await AppContext.create(settings)
        try:
            return await ctx.cache_storage.keys(), await ctx.cache_storage.estimate()
        finally:
            await ctx.aclose()

    names, estimate = asyncio.run(run())

    table = Table(title="Cache stores", show_header=True)
    table.add_column("Store", style="cyan")
    table.add_column("Status")
    for name in names:
        status = "[green]current[/green]" if name == settings.current_cache_name else "[dim]stale[/dim]"
        table.add_row(name, status)
    console.print(table)
    if estimate is not None:
        console.print(f"[dim]Usage:[/dim] {estimate.usage} / {estimate.quota} bytes ({estimate.ratio:.1%})")


@app.command()
def install() -> None:
    """Install and activate the offline controller against APP_ORIGIN."""
    settings = _require_settings()

    async def run():
        ctx = await AppContext.create(settings)
        try:
            controller = await ctx.install_controller()
            return controller, list(ctx.signals.history)
        finally:
            await ctx.aclose()

    controller, signals = asyncio.run(run())
    console.print(
        Panel(
            f"[bold]Cache:[/bold] {controller.cache_name}\n"
            f"[bold]Origin:[/bold] {controller.origin}\n"
            f"[bold]State:[/bold] {controller.state.value}\n"
            f"[bold]Signals:[/bold] {', '.join(signals)}",
            title="[bold cyan]Offline controller[/bold cyan]",
            border_style="cyan",
        )
    )


def _load_rabbits(settings: Settings, farm_id: str) -> list[Rabbit]:
    async def run() -> list[Rabbit]:
        ctx = await AppContext.create(settings)
        try:
            return ctx.reconciler.load(farm_id, EntityKind.RABBITS)
        finally:
            await ctx.aclose()

    return asyncio.run(run())


@app.command()
def compat(
    farm_id: Annotated[str, typer.Argument(help="Farm ID")],
    doe: Annotated[str, typer.Argument(help="Doe ID")],
    buck: Annotated[str, typer.Argument(help="Buck ID")],
) -> None:
    """Check whether a doe and a buck may be bred (uses the local snapshot)."""
    settings = _require_settings()
    rabbits = _load_rabbits(settings, farm_id)
    result = check_compatibility(doe, buck, rabbits)

    style = "green" if result.compatible else "red"
    console.print(f"[{style}]{result.reason}[/{style}] [dim]({result.code.value})[/dim]")
    if not result.compatible:
        raise typer.Exit(1)


@app.command()
def alerts(
    farm_id: Annotated[str, typer.Argument(help="Farm ID")],
    limit: Annotated[int, typer.Option("--limit", "-l", help="Maximum alerts shown")] = 3,
) -> None:
    """Show dashboard alerts from the local rabbit snapshot."""
    settings = _require_settings()
    rabbits = _load_rabbits(settings, farm_id)

    summary = breeding_summary(rabbits)
    console.print(
        f"[bold]Available does:[/bold] {summary.available_does}  "
        f"[bold]Pregnant:[/bold] {summary.pregnant_does}  "
        f"[bold]Bucks:[/bold] {summary.bucks}"
    )

    found = generate_alerts(rabbits, limit=limit)
    if not found:
        console.print("[dim]No alerts.[/dim]")
        return
    for alert in found:
        style = _VARIANT_STYLES[alert.variant]
        console.print(f"[{style}]{alert.type}[/{style}] {alert.message}")


@app.command()
def config() -> None:
    """Show current configuration.

    Displays all configuration values with the API token redacted.
    """
    console.print()
    console.print("[bold]Sungura Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()
    if settings is None:
        error_console.print("[red]Configuration is invalid or incomplete.[/red]")
        error_console.print()
        error_console.print("Check these environment variables:")
        error_console.print("  - API_BASE_URL and APP_ORIGIN (must be http(s) URLs)")
        error_console.print("  - QUOTA_PURGE_THRESHOLD (between 0 and 1)")
        error_console.print("  - OFFLINE_URL (must start with '/')")
        error_console.print()
        error_console.print("Create a .env file or set environment variables.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()
    console.print(f"[bold]Current cache store:[/bold] {settings.current_cache_name}")
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"sungura version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
