"""
Logging and Reporting Utilities.

This module wires loguru to a rich console, provides timing helpers that log
the start, completion and failure of an operation, and renders analysis
results as rich tables.
"""

import time
from contextlib import contextmanager
from functools import wraps
from typing import Any, Iterable, Optional

from loguru import logger
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from cdc_signals.domain.schemas import (
    BacktestResult,
    PatternResult,
    SignalEvent,
    SignalValue,
)

console = Console()
err_console = Console(stderr=True)

_SIGNAL_STYLES = {
    SignalValue.BUY: "bold green",
    SignalValue.SELL: "bold red",
    SignalValue.WATCH: "bold yellow",
    SignalValue.HOLD: "dim",
}


def configure_logging(level: str = "INFO") -> None:
    """Route loguru output through a RichHandler on the stderr console."""
    logger.remove()
    logger.add(
        RichHandler(console=err_console, show_path=False, rich_tracebacks=True),
        level=level,
        format="{message}",
        backtrace=False,
    )


@contextmanager
def log_execution_time(logger_instance: Any, operation: str, **context):
    """
    Context manager to log execution time of an operation.

    Args:
        logger_instance: loguru logger (or any object exposing info/opt)
        operation: Name of the operation being timed
        **context: Additional context to include in log messages
    """
    context_str = " | ".join(f"{k}={v}" for k, v in context.items())
    full_context = f" | {context_str}" if context_str else ""

    start_time = time.time()
    logger_instance.info(f"Starting: {operation}{full_context}")

    try:
        yield
    except Exception as e:
        elapsed = time.time() - start_time
        logger_instance.opt(exception=True).error(
            f"Failed: {operation} | duration={elapsed:.2f}s{full_context} | error={e}"
        )
        raise
    else:
        elapsed = time.time() - start_time
        logger_instance.info(
            f"Completed: {operation} | duration={elapsed:.2f}s{full_context}"
        )


def timed(operation_name: Optional[str] = None):
    """
    Decorator to automatically log execution time of a function.
    """

    def decorator(func):
        op_name = operation_name or func.__name__

        @wraps(func)
        def wrapper(*args, **kwargs):
            with log_execution_time(logger, op_name):
                return func(*args, **kwargs)

        return wrapper

    return decorator


# =============================================================================
# RICH REPORTS
# =============================================================================


def _fmt_time(value: Any) -> str:
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d")
    return str(value)


def create_backtest_table(result: BacktestResult) -> Table:
    """Summary table of a backtest run."""
    title = f"CDC Action Zone Backtest: {result.symbol}" if result.symbol else "CDC Action Zone Backtest"
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    pnl_style = "green" if result.total_pnl > 0 else "red" if result.total_pnl < 0 else "white"
    table.add_row("Period", f"{_fmt_time(result.period.from_)} -> {_fmt_time(result.period.to)}")
    table.add_row("Initial Capital", f"{result.initial_capital:,.2f}")
    table.add_row("Final Value", f"{result.final_value:,.2f}")
    table.add_row("Total PnL", f"[{pnl_style}]{result.total_pnl:+.2f}%[/{pnl_style}]")
    table.add_row("Trades", str(result.total_trades))
    table.add_row("Completed", str(result.completed_trades))
    table.add_row("Wins / Losses", f"{result.wins} / {result.losses}")
    table.add_row("Win Rate", f"{result.win_rate:.2f}%")
    table.add_row("Max Drawdown", f"[red]{result.max_drawdown:.2f}%[/red]")
    if result.still_in_position:
        table.add_row("Open Position", f"{result.unrealized_pnl:+.2f}% unrealized")
    return table


def create_trades_table(result: BacktestResult) -> Table:
    table = Table(title="Trades")
    table.add_column("Type", style="bold")
    table.add_column("Time")
    table.add_column("Price", justify="right")
    table.add_column("Capital", justify="right")
    table.add_column("PnL", justify="right")

    for trade in result.trades:
        style = "green" if trade.type.value == "BUY" else "red"
        pnl = f"{trade.pnl:+.2f}%" if trade.pnl is not None else "-"
        table.add_row(
            f"[{style}]{trade.type.value}[/{style}]",
            _fmt_time(trade.time),
            f"{trade.price:,.4f}",
            f"{trade.capital:,.2f}",
            pnl,
        )
    return table


def create_signal_table(events: Iterable[SignalEvent]) -> Table:
    """One row per signal event."""
    table = Table(title="Signal Events")
    table.add_column("Symbol", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Signal")
    table.add_column("Price", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Details")

    for event in events:
        style = _SIGNAL_STYLES.get(event.signal, "white")
        if event.crossover is not None:
            details = f"fast={event.crossover.fast_ema:.4f} slow={event.crossover.slow_ema:.4f}"
        elif event.pattern_type is not None:
            details = f"{event.pattern_type.value} ({event.breakout_status.value})"
        else:
            details = ""
        table.add_row(
            event.symbol,
            event.event_type.value,
            f"[{style}]{event.signal.value}[/{style}]",
            f"{event.price:,.4f}",
            f"{event.confidence:g}%",
            details,
        )
    return table


def create_pattern_table(result: PatternResult) -> Table:
    """Geometry, breakout and trading plan of a detected triangle."""
    pattern = result.pattern
    symbol = pattern.symbol if pattern is not None else None
    table = Table(title=f"Triangle Scan: {symbol}" if symbol else "Triangle Scan")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")

    if pattern is None:
        table.add_row("Result", result.reason or "-")
        return table

    breakout = pattern.breakout
    plan = pattern.trading_plan
    table.add_row("Pattern", pattern.pattern_type.value)
    table.add_row("Direction", pattern.direction.value)
    table.add_row("Confidence", f"{pattern.confidence}% ({pattern.reliability.value})")
    table.add_row("Status", breakout.status.value)
    table.add_row("Resistance", f"{breakout.resistance_price:,.4f}")
    table.add_row("Support", f"{breakout.support_price:,.4f}")
    table.add_row("Long Trigger / Stop", f"{plan.long.trigger:,.4f} / {plan.long.stop_loss:,.4f}")
    table.add_row("Long Targets", f"{plan.long.target_1:,.4f} / {plan.long.target_2:,.4f}")
    table.add_row("Short Trigger / Stop", f"{plan.short.trigger:,.4f} / {plan.short.stop_loss:,.4f}")
    table.add_row("Short Targets", f"{plan.short.target_1:,.4f} / {plan.short.target_2:,.4f}")
    for alert in plan.alerts:
        table.add_row(alert.type.value, alert.message)
    return table
