"""
CLI for the Klaviyo marketing manager.

Commands:
    klaviyo-cli get-campaigns - List campaigns (and the other get-* commands)
    klaviyo-cli cache-stats - Show cache hit/miss counters
    klaviyo-cli config - Show current configuration
    klaviyo-cli version - Print version

Results are written to stdout as JSON. Errors go to stderr with exit code 1.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Optional

import orjson
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from kmm import __version__
from kmm.config import Settings, clear_settings_cache, get_settings
from kmm.data.klaviyo_client import KlaviyoClient
from kmm.exceptions import KMMError, ValidationError
from kmm.logging import log_context, setup_logging

app = typer.Typer(
    name="klaviyo-cli",
    help="Klaviyo email marketing operations",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


class Channel(str, Enum):
    """Campaign message channels."""

    EMAIL = "email"
    SMS = "sms"
    MOBILE_PUSH = "mobile_push"


class LogLevel(str, Enum):
    """Console logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class CLIState:
    """Global options shared by all commands."""

    no_cache: bool = False
    timeout: float | None = None


Operation = Callable[[KlaviyoClient], Awaitable[Any]]


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _create_client(settings: Settings) -> KlaviyoClient:
    return KlaviyoClient.from_settings(settings)


def _emit(result: Any) -> None:
    typer.echo(orjson.dumps(result, option=orjson.OPT_INDENT_2).decode())


def _fail(message: str) -> typer.Exit:
    error_console.print(f"[red]Error:[/red] {escape(message)}")
    return typer.Exit(1)


async def _execute(
    settings: Settings,
    state: CLIState,
    command: str,
    operation: Operation,
) -> Any:
    with log_context(command=command):
        client = _create_client(settings)
        if state.no_cache:
            client.disable_cache()
        if state.timeout is not None:
            client.set_timeout(state.timeout)
        async with client:
            return await operation(client)


def _run(ctx: typer.Context, operation: Operation) -> None:
    """Build a client, run one operation and print its result."""
    settings = _get_settings_safe()
    if settings is None:
        raise _fail("Configuration is invalid. Run 'klaviyo-cli config' to see what's wrong.")

    state = ctx.obj if isinstance(ctx.obj, CLIState) else CLIState()
    command = ctx.info_name or "klaviyo-cli"

    try:
        result = asyncio.run(_execute(settings, state, command, operation))
    except (KMMError, ValueError) as e:
        raise _fail(str(e)) from e

    _emit(result)


def _parse_timeframe(timeframe: str | None) -> dict[str, str] | None:
    """Parse --timeframe as JSON, falling back to a preset key."""
    if not timeframe:
        return None
    try:
        parsed = orjson.loads(timeframe)
    except orjson.JSONDecodeError:
        return {"key": timeframe}
    if not isinstance(parsed, dict):
        return {"key": timeframe}
    return parsed


def _parse_statistics(statistics: str | None) -> list[str] | None:
    if not statistics:
        return None
    try:
        parsed = orjson.loads(statistics)
    except orjson.JSONDecodeError as e:
        raise ValidationError(
            "--statistics must be valid JSON array",
            context={"value": statistics},
        ) from e
    if not isinstance(parsed, list) or not all(isinstance(s, str) for s in parsed):
        raise ValidationError(
            "--statistics must be valid JSON array",
            context={"value": statistics},
        )
    return parsed


@app.callback()
def main_options(
    ctx: typer.Context,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Bypass the response cache for this run"),
    ] = False,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", min=0.001, help="Request timeout in seconds"),
    ] = None,
    log_level: Annotated[
        Optional[LogLevel],
        typer.Option("--log-level", help="Console log level (stderr)"),
    ] = None,
) -> None:
    """Klaviyo email marketing operations."""
    settings = _get_settings_safe()
    level = log_level.value if log_level else (settings.LOG_LEVEL if settings else "WARNING")
    setup_logging(log_level=level, log_file=settings.LOG_FILE if settings else None)
    ctx.obj = CLIState(no_cache=no_cache, timeout=timeout)


@app.command("list-tools")
def list_tools() -> None:
    """List all available commands."""
    _emit(KlaviyoClient.get_tools())


# ==================== Campaigns ====================


@app.command("get-campaigns")
def get_campaigns(
    ctx: typer.Context,
    filter: Annotated[
        Optional[str], typer.Option("--filter", help="Filter string for queries")
    ] = None,
    channel: Annotated[
        Channel, typer.Option("--channel", help="Channel type")
    ] = Channel.EMAIL,
) -> None:
    """List all campaigns."""
    _run(ctx, lambda client: client.get_campaigns(channel=channel.value, filter=filter))


@app.command("get-campaign")
def get_campaign(
    ctx: typer.Context,
    campaign: Annotated[str, typer.Option("--campaign", help="Campaign ID")],
) -> None:
    """Get campaign details."""
    _run(ctx, lambda client: client.get_campaign(campaign))


@app.command("get-campaign-report")
def get_campaign_report(
    ctx: typer.Context,
    timeframe: Annotated[
        Optional[str],
        typer.Option("--timeframe", help="Timeframe preset (e.g., last_30_days) or JSON"),
    ] = None,
    statistics: Annotated[
        Optional[str],
        typer.Option("--statistics", help="JSON array of statistics to fetch"),
    ] = None,
    conversion_metric: Annotated[
        Optional[str],
        typer.Option("--conversion-metric", help="Conversion metric ID"),
    ] = None,
) -> None:
    """Get campaign performance report."""

    async def operation(client: KlaviyoClient) -> Any:
        parsed_stats = _parse_statistics(statistics)
        parsed_timeframe = _parse_timeframe(timeframe)

        metric_id = conversion_metric or await client.find_placed_order_metric_id()
        if not metric_id:
            raise ValidationError(
                "--conversion-metric is required. Use get-metrics to find available metric IDs."
            )

        return await client.get_campaign_report(
            conversion_metric_id=metric_id,
            timeframe=parsed_timeframe,
            statistics=parsed_stats,
        )

    _run(ctx, operation)


# ==================== Flows ====================


@app.command("get-flows")
def get_flows(
    ctx: typer.Context,
    filter: Annotated[
        Optional[str], typer.Option("--filter", help="Filter string for queries")
    ] = None,
) -> None:
    """List all flows."""
    _run(ctx, lambda client: client.get_flows(filter=filter))


@app.command("get-flow")
def get_flow(
    ctx: typer.Context,
    flow: Annotated[str, typer.Option("--flow", help="Flow ID")],
) -> None:
    """Get flow details."""
    _run(ctx, lambda client: client.get_flow(flow))


@app.command("get-flow-actions")
def get_flow_actions(
    ctx: typer.Context,
    flow: Annotated[str, typer.Option("--flow", help="Flow ID")],
    all_pages: Annotated[
        bool,
        typer.Option("--all", help="Fetch all pages (default: first page only)"),
    ] = False,
) -> None:
    """Get actions (steps) for a flow."""

    async def operation(client: KlaviyoClient) -> Any:
        if all_pages:
            actions = await client.get_all_flow_actions(flow)
            return {"data": actions, "totalCount": len(actions)}
        return await client.get_flow_actions(flow)

    _run(ctx, operation)


@app.command("get-flow-report")
def get_flow_report(
    ctx: typer.Context,
    timeframe: Annotated[
        Optional[str],
        typer.Option("--timeframe", help="Timeframe preset (e.g., last_30_days) or JSON"),
    ] = None,
) -> None:
    """Get flow performance report."""
    _run(ctx, lambda client: client.get_flow_report(timeframe=_parse_timeframe(timeframe)))


# ==================== Segments ====================


@app.command("get-segments")
def get_segments(ctx: typer.Context) -> None:
    """List all segments."""
    _run(ctx, lambda client: client.get_segments())


@app.command("get-segment")
def get_segment(
    ctx: typer.Context,
    segment: Annotated[str, typer.Option("--segment", help="Segment ID")],
) -> None:
    """Get segment details."""
    _run(ctx, lambda client: client.get_segment(segment))


# ==================== Lists ====================


@app.command("get-lists")
def get_lists(ctx: typer.Context) -> None:
    """List all subscriber lists."""
    _run(ctx, lambda client: client.get_lists())


@app.command("get-list")
def get_list(
    ctx: typer.Context,
    list_id: Annotated[str, typer.Option("--list", help="List ID")],
) -> None:
    """Get list details."""
    _run(ctx, lambda client: client.get_list(list_id))


# ==================== Profiles ====================


@app.command("get-profiles")
def get_profiles(
    ctx: typer.Context,
    filter: Annotated[
        Optional[str], typer.Option("--filter", help="Filter string for queries")
    ] = None,
) -> None:
    """Get profiles (with optional filter)."""
    _run(ctx, lambda client: client.get_profiles(filter=filter))


@app.command("get-profile")
def get_profile(
    ctx: typer.Context,
    profile: Annotated[str, typer.Option("--profile", help="Profile ID")],
) -> None:
    """Get a profile by ID."""
    _run(ctx, lambda client: client.get_profile(profile))


# ==================== Metrics ====================


@app.command("get-metrics")
def get_metrics(ctx: typer.Context) -> None:
    """List all tracked metrics."""
    _run(ctx, lambda client: client.get_metrics())


@app.command("get-metric")
def get_metric(
    ctx: typer.Context,
    metric: Annotated[str, typer.Option("--metric", help="Metric ID")],
) -> None:
    """Get metric details."""
    _run(ctx, lambda client: client.get_metric(metric))


# ==================== Account ====================


@app.command("get-account")
def get_account(ctx: typer.Context) -> None:
    """Get account details."""
    _run(ctx, lambda client: client.get_account())


# ==================== Cache ====================


@app.command("cache-stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show cache statistics."""

    async def operation(client: KlaviyoClient) -> Any:
        return client.get_cache_stats().to_dict()

    _run(ctx, operation)


@app.command("cache-clear")
def cache_clear(ctx: typer.Context) -> None:
    """Clear all cached data."""

    async def operation(client: KlaviyoClient) -> Any:
        return {"cleared": client.clear_cache()}

    _run(ctx, operation)


@app.command("cache-invalidate")
def cache_invalidate(
    ctx: typer.Context,
    key: Annotated[str, typer.Option("--key", help="Cache key to invalidate")],
) -> None:
    """Invalidate a specific cache key."""

    async def operation(client: KlaviyoClient) -> Any:
        return {"key": key, "invalidated": client.invalidate_cache_key(key)}

    _run(ctx, operation)


# ==================== Meta ====================


@app.command()
def config() -> None:
    """Show current configuration.

    Displays configuration values with the API key redacted and reports
    whether an API key can be found.
    """
    console.print()
    console.print("[bold]Klaviyo Marketing Manager Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print()
        error_console.print("Check the environment variables and .env file:")
        error_console.print("  - REQUEST_TIMEOUT_SECONDS / REPORT_TIMEOUT_SECONDS must be positive")
        error_console.print("  - MAX_PAGES must be at least 1")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()

    try:
        settings.resolve_api_key()
    except KMMError as e:
        console.print(f"[yellow]API key not found:[/yellow] {escape(str(e))}")
        console.print("Set KLAVIYO_API_KEY or create config.json with klaviyo.apiKey.")
    else:
        console.print("[bold]API key:[/bold] found")

    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"klaviyo-marketing-manager version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
