"""
CLI interface for AI Usage Graph.

Provides command-line access to pricing resolution, aggregation and reports.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ai_usage_graph.config.loader import (
    AnalyticsConfig,
    load_analytics_config,
    load_pricing_catalog,
)
from ai_usage_graph.core.aggregator import aggregate_by_interval, filter_messages
from ai_usage_graph.core.pricing import PricingResolver, price_messages
from ai_usage_graph.core.reports import get_model_report, get_monthly_report
from ai_usage_graph.core.summary import build_graph_result
from ai_usage_graph.storage.models import UnifiedMessage
from ai_usage_graph.storage.repository import MessageRepository

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

PRICING_HELP = "Pricing dataset (YAML or JSON); recomputes each message's cost"
CONFIG_HELP = "Analytics settings file (YAML)"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """AI Usage Graph CLI."""
    _configure_logging(verbose)
    if ctx.invoked_subcommand is None:
        console.print("AI Usage Graph - Use --help to see available commands")


def _merge_config(
    config_path: Optional[str],
    sources: Optional[List[str]],
    since: Optional[str],
    until: Optional[str],
    year: Optional[str],
    workers: Optional[int],
    interval_minutes: Optional[float] = None,
) -> AnalyticsConfig:
    """Combine the config file (if any) with CLI options; CLI options win."""
    base = load_analytics_config(config_path) if config_path else AnalyticsConfig()
    return AnalyticsConfig(
        workers=workers if workers is not None else base.workers,
        interval_minutes=interval_minutes if interval_minutes is not None else base.interval_minutes,
        sources=tuple(sources) if sources else base.sources,
        since=since if since is not None else base.since,
        until=until if until is not None else base.until,
        year=year if year is not None else base.year,
    )


def _load_messages(
    messages_path: str,
    pricing_path: Optional[str],
    config: AnalyticsConfig,
) -> List[UnifiedMessage]:
    messages = MessageRepository(messages_path).load()
    if pricing_path:
        resolver = PricingResolver(load_pricing_catalog(pricing_path))
        messages = price_messages(messages, resolver)
    return filter_messages(
        messages,
        sources=config.sources,
        since=config.since,
        until=config.until,
        year=config.year,
    )


def _prepare(
    messages_path: str,
    pricing_path: Optional[str],
    config_path: Optional[str],
    sources: Optional[List[str]],
    since: Optional[str],
    until: Optional[str],
    year: Optional[str],
    workers: Optional[int],
    interval_minutes: Optional[float] = None,
) -> Tuple[List[UnifiedMessage], AnalyticsConfig]:
    config = _merge_config(config_path, sources, since, until, year, workers, interval_minutes)
    return _load_messages(messages_path, pricing_path, config), config


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/] {str(error)}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def graph(
    messages_path: str = typer.Argument(..., help="Usage records (JSON array or JSON lines)"),
    pricing: Optional[str] = typer.Option(None, "--pricing", "-p", help=PRICING_HELP),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    sources: Optional[List[str]] = typer.Option(None, "--source", "-s", help="Only include this source"),
    since: Optional[str] = typer.Option(None, "--since", help="First date to include (YYYY-MM-DD)"),
    until: Optional[str] = typer.Option(None, "--until", help="Last date to include (YYYY-MM-DD)"),
    year: Optional[str] = typer.Option(None, "--year", help="Only include this year (YYYY)"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Worker threads"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write JSON here instead of stdout"),
):
    """
    Build the daily contribution graph as JSON.

    The result holds metadata, a summary, per-year rollups and one entry
    per day with its source and model breakdown.
    """
    try:
        messages, settings = _prepare(messages_path, pricing, config, sources, since, until, year, workers)
        result = build_graph_result(messages, workers=settings.workers)
        payload = json.dumps(result.to_dict(), indent=2)
        if output:
            Path(output).write_text(payload, encoding="utf-8")
            console.print(
                f"[green]✓[/] Wrote {len(result.contributions)} days to {output}"
            )
        else:
            typer.echo(payload)
    except Exception as e:
        _fail(e)
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${amount:,.2f}"


def _format_rate(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:,.1f}"


def _format_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


@app.command()
def intervals(
    messages_path: str = typer.Argument(..., help="Usage records (JSON array or JSON lines)"),
    interval_minutes: Optional[float] = typer.Option(
        None, "--interval-minutes", "-i", help="Bucket width in minutes (default 15)"
    ),
    pricing: Optional[str] = typer.Option(None, "--pricing", "-p", help=PRICING_HELP),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    sources: Optional[List[str]] = typer.Option(None, "--source", "-s", help="Only include this source"),
    since: Optional[str] = typer.Option(None, "--since", help="First date to include (YYYY-MM-DD)"),
    until: Optional[str] = typer.Option(None, "--until", help="Last date to include (YYYY-MM-DD)"),
    year: Optional[str] = typer.Option(None, "--year", help="Only include this year (YYYY)"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Worker threads"),
):
    """Show usage in fixed-width time buckets with token rates."""
    try:
        messages, settings = _prepare(
            messages_path, pricing, config, sources, since, until, year, workers, interval_minutes
        )
        buckets = aggregate_by_interval(messages, settings.interval_ms, workers=settings.workers)
    except Exception as e:
        _fail(e)

    if not buckets:
        console.print("\n[bold yellow]No usage data found[/]\n")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Usage per {settings.interval_minutes:g} minutes (UTC)")
    table.add_column("Start")
    table.add_column("Messages", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Avg tok/min", justify="right")
    table.add_column("Max tok/min", justify="right")
    table.add_column("Min tok/min", justify="right")
    for bucket in buckets:
        stats = bucket.rate_stats
        table.add_row(
            _format_ms(bucket.start_ms),
            str(bucket.messages),
            f"{bucket.token_breakdown.total:,}",
            _format_currency(bucket.cost),
            _format_rate(stats.avg_tokens_per_min if stats else None),
            _format_rate(stats.max_tokens_per_min if stats else None),
            _format_rate(stats.min_tokens_per_min if stats else None),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def models(
    messages_path: str = typer.Argument(..., help="Usage records (JSON array or JSON lines)"),
    pricing: Optional[str] = typer.Option(None, "--pricing", "-p", help=PRICING_HELP),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    sources: Optional[List[str]] = typer.Option(None, "--source", "-s", help="Only include this source"),
    since: Optional[str] = typer.Option(None, "--since", help="First date to include (YYYY-MM-DD)"),
    until: Optional[str] = typer.Option(None, "--until", help="Last date to include (YYYY-MM-DD)"),
    year: Optional[str] = typer.Option(None, "--year", help="Only include this year (YYYY)"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Worker threads"),
):
    """Show usage and cost per source and model, most expensive first."""
    try:
        messages, settings = _prepare(messages_path, pricing, config, sources, since, until, year, workers)
        report = get_model_report(messages, workers=settings.workers)
    except Exception as e:
        _fail(e)

    table = Table(title="Usage by model")
    for column in ("Source", "Model", "Provider"):
        table.add_column(column)
    for column in ("Input", "Output", "Cache read", "Cache write", "Reasoning", "Messages", "Cost"):
        table.add_column(column, justify="right")
    for entry in report.entries:
        table.add_row(
            entry.source,
            entry.model,
            entry.provider,
            f"{entry.tokens.input:,}",
            f"{entry.tokens.output:,}",
            f"{entry.tokens.cache_read:,}",
            f"{entry.tokens.cache_write:,}",
            f"{entry.tokens.reasoning:,}",
            f"{entry.message_count:,}",
            _format_currency(entry.cost),
        )
    console.print(table)
    console.print(
        f"Total: {report.total_messages:,} messages, {report.total_tokens.total:,} tokens, "
        f"{_format_currency(report.total_cost)}"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def monthly(
    messages_path: str = typer.Argument(..., help="Usage records (JSON array or JSON lines)"),
    pricing: Optional[str] = typer.Option(None, "--pricing", "-p", help=PRICING_HELP),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    sources: Optional[List[str]] = typer.Option(None, "--source", "-s", help="Only include this source"),
    since: Optional[str] = typer.Option(None, "--since", help="First date to include (YYYY-MM-DD)"),
    until: Optional[str] = typer.Option(None, "--until", help="Last date to include (YYYY-MM-DD)"),
    year: Optional[str] = typer.Option(None, "--year", help="Only include this year (YYYY)"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Worker threads"),
):
    """Show usage and cost per calendar month."""
    try:
        messages, settings = _prepare(messages_path, pricing, config, sources, since, until, year, workers)
        report = get_monthly_report(messages, workers=settings.workers)
    except Exception as e:
        _fail(e)

    table = Table(title="Usage by month")
    table.add_column("Month")
    table.add_column("Models")
    for column in ("Input", "Output", "Cache read", "Cache write", "Messages", "Cost"):
        table.add_column(column, justify="right")
    for entry in report.entries:
        table.add_row(
            entry.month,
            ", ".join(entry.models),
            f"{entry.tokens.input:,}",
            f"{entry.tokens.output:,}",
            f"{entry.tokens.cache_read:,}",
            f"{entry.tokens.cache_write:,}",
            f"{entry.message_count:,}",
            _format_currency(entry.cost),
        )
    console.print(table)
    console.print(f"Total cost: {_format_currency(report.total_cost)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def cost(
    model_id: str = typer.Argument(..., help="Model identifier to price"),
    pricing: str = typer.Option(..., "--pricing", "-p", help="Pricing dataset (YAML or JSON)"),
    input_tokens: int = typer.Option(0, "--input", min=0, help="Input tokens"),
    output_tokens: int = typer.Option(0, "--output", min=0, help="Output tokens"),
    cache_read: int = typer.Option(0, "--cache-read", min=0, help="Cache read tokens"),
    cache_write: int = typer.Option(0, "--cache-write", min=0, help="Cache write tokens"),
    reasoning: int = typer.Option(0, "--reasoning", min=0, help="Reasoning tokens (billed as output)"),
):
    """Calculate the cost of a token count for a model."""
    try:
        resolver = PricingResolver(load_pricing_catalog(pricing))
    except Exception as e:
        _fail(e)

    if resolver.resolve(model_id) is None:
        console.print(f"[yellow]No pricing found for {model_id}; cost is $0[/]")
    amount = resolver.calculate_cost(
        model_id, input_tokens, output_tokens, cache_read, cache_write, reasoning
    )
    console.print(f"{model_id}: ${amount:,.6f}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def resolve(
    model_id: str = typer.Argument(..., help="Model identifier to look up"),
    pricing: str = typer.Option(..., "--pricing", "-p", help="Pricing dataset (YAML or JSON)"),
):
    """Show which per-token rates a model identifier resolves to."""
    try:
        resolver = PricingResolver(load_pricing_catalog(pricing))
    except Exception as e:
        _fail(e)

    rates = resolver.resolve(model_id)
    if rates is None:
        console.print(f"[yellow]No pricing found for {model_id}[/]")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Pricing for {model_id} (per 1M tokens)")
    table.add_column("Rate")
    table.add_column("Cost", justify="right")
    table.add_row("Input", f"${rates.input_cost_per_token * 1_000_000:,.4f}")
    table.add_row("Output", f"${rates.output_cost_per_token * 1_000_000:,.4f}")
    table.add_row("Cache read", f"${rates.cache_read_input_token_cost * 1_000_000:,.4f}")
    table.add_row("Cache write", f"${rates.cache_creation_input_token_cost * 1_000_000:,.4f}")
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
