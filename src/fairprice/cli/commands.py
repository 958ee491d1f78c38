"""CLI command definitions for the fair-price valuation engine."""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from fairprice.config import Config
from fairprice.domain.models.financials import QuoteNotFoundError, UserAssumptions, ValuationResult
from fairprice.domain.services.valuation import ValuationEngine, resolve_quote
from fairprice.domain.services.valuators import MODEL_REGISTRY
from fairprice.infrastructure.input_file import InputFileError, load_request
from fairprice.settings.loader import load_settings
from fairprice.utils.logging import configure_logging

console = Console()
app = typer.Typer(help="Estimate fair value ranges from financial statements and market quotes.")

SIGNAL_STYLES = {
    "green": "bold green",
    "lightgreen": "green",
    "yellow": "yellow",
    "orange": "dark_orange",
    "red": "bold red",
}


@dataclass
class AppContext:
    """Holds reusable process-wide objects for CLI commands."""

    config: Config
    engine: ValuationEngine


@app.callback()
def main_callback(
    ctx: typer.Context,
    debug: Optional[bool] = typer.Option(
        None,
        "--debug/--no-debug",
        help="Temporarily toggle verbose logging without touching environment variables.",
    ),
) -> None:
    """Attach the lazily constructed application context to Typer."""
    config = load_settings(debug_override=debug)
    configure_logging(debug=config.debug)
    ctx.obj = AppContext(config=config, engine=ValuationEngine())


@app.command()
def value(
    ctx: typer.Context,
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON valuation request."),
    ticker: Optional[str] = typer.Option(None, "--ticker", help="Quote to value; defaults to the only one."),
    treasury_shares: Optional[float] = typer.Option(None, "--treasury-shares", help="Treasury share count."),
    target_per: Optional[float] = typer.Option(None, "--target-per", help="Target P/E multiple (e.g., 10)."),
    discount_rate: Optional[float] = typer.Option(
        None, "--discount-rate", help="Required return in percent (e.g., 8)."
    ),
    peg_ratio: Optional[float] = typer.Option(None, "--peg-ratio", help="PEG multiplier (e.g., 1.0)."),
    emit_json: bool = typer.Option(False, "--json", help="Persist the full result to JSON."),
) -> None:
    """Run every fair-price model for one company and present the outcome."""
    if ctx.obj is None:
        raise typer.Exit(code=1)
    context: AppContext = ctx.obj

    try:
        request = load_request(input_path)
    except InputFileError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    if ticker is None and len(request.quotes) == 1:
        ticker = next(iter(request.quotes))
    assumptions = request.assumptions(defaults=context.config.default_assumptions())
    overrides = {
        key: val
        for key, val in {
            "treasury_shares": treasury_shares,
            "target_per": target_per,
            "discount_rate": discount_rate,
            "peg_ratio": peg_ratio,
        }.items()
        if val is not None
    }
    if overrides:
        assumptions = UserAssumptions.from_raw(overrides, defaults=assumptions)

    try:
        quote = resolve_quote(request.quotes, ticker or "")
        result = context.engine.run(
            request.series,
            quote,
            price_history=request.price_history or None,
            assumptions=assumptions,
        )
    except QuoteNotFoundError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    console.rule(f"Fair value for {result.name} ({result.ticker})")
    _print_models(result)
    _print_summary(result)

    if emit_json:
        context.config.ensure_directories()
        target = context.config.output_dir / f"{result.ticker}_valuation.json"
        payload = json.dumps(result.to_dict(), default=_json_serializer, indent=2, ensure_ascii=False)
        target.write_text(payload, encoding="utf-8")
        console.print(f"Result saved to {target}")


@app.command()
def models() -> None:
    """Display the registered valuation models for quick operator reference."""
    table = Table(title="Valuation Models")
    table.add_column("Id", style="cyan")
    table.add_column("Category")
    table.add_column("Description")
    for model in MODEL_REGISTRY:
        table.add_row(model.model_id, model.category.value, model.label)
    console.print(table)


def _print_models(result: ValuationResult) -> None:
    outliers = {m.model_id: m.reason for m in result.outliers}
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Model")
    table.add_column("Category")
    table.add_column("Price", justify="right")
    table.add_column("Status")

    groups = (
        result.categorized.asset_based,
        result.categorized.earnings_based,
        result.categorized.mixed,
        result.categorized.reference_only,
    )
    for group in groups:
        for model in group:
            if model.is_reference:
                status = "[dim]reference[/dim]"
            elif model.model_id in outliers:
                status = f"[yellow]outlier ({outliers[model.model_id]})[/yellow]"
            else:
                status = "normal"
            table.add_row(model.label, model.category.value, _fmt(model.value), status)
    console.print(table)


def _print_summary(result: ValuationResult) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key")
    table.add_column("Value")

    signal = result.price_signal
    style = SIGNAL_STYLES.get(signal.band, "dim")
    table.add_row("Current price", _fmt(result.current_price))
    table.add_row(
        "Fair range (low / mid / high)",
        f"{_fmt(result.price_range.low)} / {_fmt(result.price_range.mid)} / {_fmt(result.price_range.high)}",
    )
    table.add_row("Signal", f"[{style}]{signal.band}[/{style}] {signal.message}")
    table.add_row("Reliability", f"{result.reliability.score}/10 {result.reliability.message}")
    table.add_row("Risk", f"{result.risk.level} ({result.risk.score:.2f}) {result.risk.message}")
    table.add_row("Trailing P/E", f"{_fmt(result.trailing_per)} ({result.per_status.status})")
    table.add_row("Average EPS / P/E", f"{_fmt(result.average_eps)} / {_fmt(result.average_per)}")
    table.add_row("Growth / PEG P/E", f"{result.growth_rate:.2f}% / {_fmt(result.peg_per)}")
    console.print(table)


def _fmt(number: float) -> str:
    if number is None or not math.isfinite(number):
        return "N/A"
    return f"{number:,.2f}"


def _json_serializer(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "tolist"):
        return value.tolist()
    return str(value)
