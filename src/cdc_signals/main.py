"""
Command Line Entrypoint.

Runs the CDC Action Zone backtest, multi-instrument signal scans and triangle
scans over CSV candle exports (timestamp/time/date + OHLCV columns).

Usage:
    cdc-signals backtest data/BTC.csv --days 365
    cdc-signals scan data/BTC.csv data/ETH.csv --market crypto
    cdc-signals pattern data/NVDA.csv
"""

import json
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger

from cdc_signals.analysis.patterns import PatternAnalyzer
from cdc_signals.analysis.structural import warmup_jit
from cdc_signals.config import get_settings
from cdc_signals.domain.schemas import MarketType
from cdc_signals.engine.backtest import BacktestEngine, BacktestValidationError
from cdc_signals.engine.signal_generator import Instrument, SignalGenerator
from cdc_signals.market.data_processor import MarketDataProcessor, load_candles_csv
from cdc_signals.market.exceptions import MarketDataError
from cdc_signals.observability import (
    configure_logging,
    console,
    create_backtest_table,
    create_pattern_table,
    create_signal_table,
    create_trades_table,
    log_execution_time,
    timed,
)

app = typer.Typer(help="CDC Action Zone signals, triangle patterns and backtests.")


def _fail(message: str) -> None:
    console.print(f"[bold red]{message}[/bold red]")
    raise typer.Exit(code=1)


@timed("warmup_jit")
def _warmup() -> None:
    warmup_jit()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Override LOG_LEVEL for this run"
    ),
):
    """Configure logging before any command runs."""
    settings = get_settings()
    configure_logging(level=(log_level or settings.LOG_LEVEL).upper())


@app.command()
def backtest(
    csv_path: Path = typer.Argument(..., help="Candle CSV export"),
    days: int = typer.Option(365, "--days", "-d", help="Trailing candles to simulate"),
    capital: Optional[float] = typer.Option(None, "--capital", help="Initial capital"),
    symbol: Optional[str] = typer.Option(None, "--symbol", "-s", help="Instrument label"),
    json_output: bool = typer.Option(False, "--json", help="Print the result as JSON"),
):
    """
    Replay the EMA 12/26 crossover strategy over historical candles.
    """
    settings = get_settings()
    config = settings.backtest_config()
    if not config.min_days <= days <= config.max_days:
        _fail(f"--days must be between {config.min_days} and {config.max_days}")

    label = (symbol or csv_path.stem).upper()
    try:
        candles = load_candles_csv(csv_path)
        result = BacktestEngine(config).run(candles, days, capital, symbol=label)
    except (MarketDataError, BacktestValidationError) as e:
        _fail(f"Backtest failed: {e}")

    if json_output:
        typer.echo(result.model_dump_json(by_alias=True, indent=2))
        return

    console.print(create_backtest_table(result))
    if result.trades:
        console.print(create_trades_table(result))


@app.command()
def scan(
    csv_paths: List[Path] = typer.Argument(..., help="One candle CSV per instrument"),
    market: MarketType = typer.Option(
        MarketType.CRYPTO, "--market", "-m", help="Market of every instrument"
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1),
    json_output: bool = typer.Option(False, "--json", help="Print events as JSON"),
):
    """
    Generate crossover and pattern signal events for several instruments.

    The instrument symbol is the upper-cased file name without extension.
    """
    settings = get_settings()

    _warmup()

    universe = []
    for path in csv_paths:
        try:
            universe.append(Instrument(path.stem.upper(), load_candles_csv(path), market))
        except MarketDataError as e:
            _fail(f"Cannot load {path}: {e}")

    generator = SignalGenerator(
        pattern_analyzer=PatternAnalyzer(settings.pattern_config()),
        processor=MarketDataProcessor(settings.processor_config()),
        indicator_config=settings.indicator_config(),
    )
    with log_execution_time(logger, "scan", instruments=len(universe)):
        report = generator.scan(universe, max_workers=workers or settings.MAX_WORKERS)

    if json_output:
        payload = {
            "events": [e.model_dump(mode="json") for e in report.events],
            "stats": report.stats.to_dict(),
            "errors": report.errors,
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    if report.events:
        console.print(create_signal_table(report.events))
    else:
        console.print("[dim]No signals.[/dim]")
    for symbol, error in report.errors.items():
        console.print(f"[bold red]{symbol}: {error}[/bold red]")

    stats = report.stats
    console.print(
        f"Processed {stats.processed_symbols} instruments, "
        f"{stats.rejected_symbols} rejected ({stats.rejection_rate}%), "
        f"{stats.limited_symbols} limited ({stats.limiting_rate}%)"
    )


@app.command()
def pattern(
    csv_path: Path = typer.Argument(..., help="Candle CSV export"),
    symbol: Optional[str] = typer.Option(None, "--symbol", "-s", help="Instrument label"),
    json_output: bool = typer.Option(False, "--json", help="Print the result as JSON"),
):
    """
    Scan the latest candles for an ascending, descending or symmetrical triangle.
    """
    settings = get_settings()
    label = (symbol or csv_path.stem).upper()

    try:
        candles = load_candles_csv(csv_path)
    except MarketDataError as e:
        _fail(f"Cannot load {csv_path}: {e}")

    _warmup()
    result = PatternAnalyzer(settings.pattern_config()).detect_triangles(candles, label)

    if json_output:
        typer.echo(result.model_dump_json(indent=2))
        return
    console.print(create_pattern_table(result))


if __name__ == "__main__":
    app()
