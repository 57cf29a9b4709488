"""
WatchTower CLI Main Entry Point

Run the monitoring engine, check a single monitor, or evaluate a condition
set against a data snapshot.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Any, Optional

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from watchtower import __version__
from watchtower.config import EngineSettings, get_settings
from watchtower.monitoring.conditions import (
    EvaluationContext,
    EvaluationResult,
    GroupEvaluationResult,
    evaluate_alert,
    parse_conditions,
)
from watchtower.monitoring.engine import MonitoringEngine, MonitoringResult
from watchtower.monitoring.models import MonitorType
from watchtower.monitoring.probe import HttpProbe, ProbeExecutor
from watchtower.monitoring.retry import RetryPolicy
from watchtower.monitoring.store import InMemoryStore
from watchtower.notifications.channels import default_clients
from watchtower.notifications.dispatcher import NotificationDispatcher
from watchtower.notifications.entitlements import PlanGate


def configure_logging(verbose: bool = False) -> None:
    """Configure structlog on top of stdlib logging."""
    logging.basicConfig(
        format="%(message)s",
        level=logging.DEBUG if verbose else logging.INFO,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)
console = Console()

app = typer.Typer(
    name="watchtower",
    help="WatchTower - scheduled monitoring with condition-based alerts",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(
            Panel(
                Text.from_markup(
                    f"[bold cyan]WatchTower[/bold cyan] v{__version__}\n"
                    "[dim]Scheduled monitoring with condition-based alerts[/dim]"
                ),
                title="Version",
                border_style="cyan",
            )
        )
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
) -> None:
    """
    WatchTower - continuous monitoring engine.

    Probes monitors on their schedule, evaluates alert conditions and
    notifies the configured channels when an alert triggers.
    """
    configure_logging(verbose)


def build_engine(
    settings: EngineSettings,
    store: InMemoryStore,
) -> tuple[MonitoringEngine, HttpProbe]:
    """Wire an engine with the HTTP probe and the settings-configured channels."""
    http_probe = HttpProbe(user_agent=settings.user_agent)
    executor = ProbeExecutor(
        probes={
            MonitorType.HTTP: http_probe,
            MonitorType.HTTPS: http_probe,
            MonitorType.KEYWORD: http_probe,
        },
        default_probe=http_probe,
        default_timeout=settings.default_timeout,
    )
    gate = PlanGate(store)
    dispatcher = NotificationDispatcher(
        store,
        gate,
        clients=default_clients(settings),
        retry_policy=RetryPolicy.for_notifications(settings),
    )
    engine = MonitoringEngine(store, executor, dispatcher, settings=settings, gate=gate)
    return engine, http_probe


def _load_store(config: Path, persist: str | None) -> InMemoryStore:
    store = InMemoryStore(persist_path=persist)
    try:
        data = json.loads(config.read_text())
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Could not read {config}: {e}[/red]")
        raise typer.Exit(1)
    store.load_dict(data)
    return store


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Could not read {path}: {e}[/red]")
        raise typer.Exit(1)


def _result_rows(
    results: list[EvaluationResult | GroupEvaluationResult],
    depth: int = 0,
) -> list[tuple[str, str]]:
    rows: list[tuple[str, str]] = []
    for result in results:
        style = "green" if result.passed else "red"
        rows.append(("  " * depth + result.message, style))
        if isinstance(result, GroupEvaluationResult):
            rows.extend(_result_rows(result.results, depth + 1))
    return rows


def _print_result(result: MonitoringResult) -> None:
    probe = result.probe_result
    status = "[green]SUCCESS[/green]" if result.success else "[red]FAILED[/red]"
    summary = f"{status}\n\n[cyan]Monitor:[/cyan] {result.monitor_id}\n"
    if probe:
        summary += (
            f"[cyan]Status code:[/cyan] {probe.status_code or '-'}\n"
            f"[cyan]Response time:[/cyan] {probe.response_time:.0f}ms\n"
        )
    if result.error:
        summary += f"[cyan]Error:[/cyan] {result.error}\n"
    console.print(Panel(summary.rstrip(), title="Check", border_style="cyan"))

    for alert_id, evaluation in result.evaluations.items():
        table = Table(
            title=f"Alert {alert_id}",
            caption="[red]TRIGGERED[/red]" if evaluation.triggered else "[green]ok[/green]",
        )
        table.add_column("Result")
        for message, style in _result_rows([*evaluation.results, *evaluation.group_results]):
            table.add_row(f"[{style}]{message}[/{style}]")
        console.print(table)

    if result.incident_ids:
        console.print(f"[yellow]Incidents created:[/yellow] {', '.join(result.incident_ids)}")
    for record in result.notifications:
        console.print(
            f"  [dim]{record.channel.value}[/dim] {record.status.value}"
            + (f" [dim]({record.error})[/dim]" if record.error else "")
        )


@app.command()
def run(
    config: Annotated[Path, typer.Argument(help="JSON file with users, monitors and alerts")],
    persist: Annotated[
        Optional[str],
        typer.Option("--persist", "-p", help="Path to persist monitors"),
    ] = None,
) -> None:
    """
    Run the monitoring engine in the foreground.

    Use Ctrl+C to stop; in-flight checks are allowed to finish.

    Example:
        watchtower run monitors.json
    """
    settings = get_settings()
    store = _load_store(config, persist or settings.persist_path)

    async def _run() -> None:
        engine, http_probe = build_engine(settings, store)
        await engine.start()
        stats = engine.get_stats()

        console.print(Panel(
            f"[green]Monitoring engine started[/green]\n\n"
            f"[cyan]Active monitors:[/cyan] {stats.active_monitors}\n"
            f"[cyan]Max concurrent jobs:[/cyan] {settings.max_concurrent_jobs}\n"
            f"[dim]Press Ctrl+C to stop[/dim]",
            title="WatchTower",
            border_style="green",
        ))

        try:
            while True:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await engine.stop()
            await http_probe.close()
            console.print("[yellow]Monitoring engine stopped[/yellow]")

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@app.command()
def check(
    config: Annotated[Path, typer.Argument(help="JSON file with users, monitors and alerts")],
    monitor_id: Annotated[str, typer.Argument(help="ID of the monitor to check")],
) -> None:
    """
    Run one monitor once and show the evaluation.

    Example:
        watchtower check monitors.json shop-prices
    """
    settings = get_settings()
    store = _load_store(config, None)

    async def _check() -> MonitoringResult:
        engine, http_probe = build_engine(settings, store)
        try:
            return await engine.execute_monitor(monitor_id)
        finally:
            await http_probe.close()

    try:
        result = asyncio.run(_check())
    except Exception as e:
        console.print(f"[red]Check failed: {e}[/red]")
        raise typer.Exit(1)

    _print_result(result)


@app.command()
def evaluate(
    conditions_file: Annotated[Path, typer.Argument(help="JSON condition list or group")],
    data_file: Annotated[Path, typer.Argument(help="JSON snapshot of probe fields")],
    previous: Annotated[
        Optional[Path],
        typer.Option("--previous", help="JSON snapshot of the previous probe fields"),
    ] = None,
) -> None:
    """
    Evaluate a condition set against a data snapshot.

    Exits with status 2 when the conditions would trigger an alert.

    Example:
        watchtower evaluate conditions.json current.json --previous before.json
    """
    try:
        conditions = parse_conditions(_load_json(conditions_file))
    except (ValueError, TypeError) as e:
        console.print(f"[red]Invalid conditions: {e}[/red]")
        raise typer.Exit(1)

    context = EvaluationContext(
        current_data=_load_json(data_file),
        previous_data=_load_json(previous) if previous else None,
        monitor_id="cli",
    )
    evaluation = evaluate_alert(conditions, context)

    table = Table(title="Condition Evaluation", border_style="cyan")
    table.add_column("Result")
    for message, style in _result_rows([*evaluation.results, *evaluation.group_results]):
        table.add_row(f"[{style}]{message}[/{style}]")
    console.print(table)

    if evaluation.triggered:
        console.print("[red]Alert would trigger[/red]")
        raise typer.Exit(2)
    console.print("[green]Alert would not trigger[/green]")


if __name__ == "__main__":
    app()
