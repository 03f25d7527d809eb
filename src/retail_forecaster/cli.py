"""Command-line interface for Retail Forecaster.

Operator commands for running the API server and driving a forecasting job
by hand: submit, poll, deploy, forecast and clean up.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Callable, NoReturn

import pandas as pd
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import ConfigProvider, configure_logging, load_settings
from .exceptions import RetailForecastError
from .models import DataPoint, ResourceNames
from .orchestrator import JobLifecycleOrchestrator

app = typer.Typer(
    name="retail-forecaster",
    help="Retail Forecaster - SageMaker Autopilot demand forecasting CLI",
    rich_markup_mode="rich",
)
console = Console()

ConfigOption = typer.Option(None, "--config-path", help="Settings YAML file (defaults to environment)")


def _orchestrator(config_path: Path | None) -> JobLifecycleOrchestrator:
    settings = load_settings(config_path)
    configure_logging(settings.log_level)
    return JobLifecycleOrchestrator(settings, ConfigProvider(settings))


def _fail(message: str, exc: Exception) -> NoReturn:
    if isinstance(exc, RetailForecastError):
        console.print(f"[bold red]❌ {message}: {escape(str(exc))} ({exc.kind.value})[/bold red]")
    else:
        console.print(f"[bold red]💥 Unexpected error: {escape(str(exc))}[/bold red]")
    sys.exit(1)


def read_history_csv(path: Path, date_column: str = "date", value_column: str = "value") -> list[DataPoint]:
    """Load history from a CSV; blank values become missing actuals."""
    frame = pd.read_csv(path)
    missing = [c for c in (date_column, value_column) if c not in frame.columns]
    if missing:
        raise typer.BadParameter(f"{path} is missing column(s): {', '.join(missing)}")
    return [
        DataPoint(date=row[date_column], actual=None if pd.isna(row[value_column]) else float(row[value_column]))
        for _, row in frame.iterrows()
    ]


def poll_until_terminal(
    fetch: Callable[[], object],
    interval: float,
    timeout: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
):
    """Call ``fetch`` until the returned snapshot's status is terminal.

    Returns the last snapshot, which is not terminal if ``timeout`` elapsed.
    """
    started = clock()
    while True:
        snapshot = fetch()
        status = snapshot.status
        console.print(f"Status: [cyan]{status.value}[/cyan]")
        if status.is_terminal:
            return snapshot
        if timeout is not None and clock() - started + interval > timeout:
            return snapshot
        sleep(interval)


@app.command()
def serve(
    config_path: Path | None = ConfigOption,
    host: str | None = typer.Option(None, help="Host to bind to"),
    port: int | None = typer.Option(None, help="Port to bind to"),
) -> None:
    """Run the HTTP API server."""
    import uvicorn

    from .api import create_app

    settings = load_settings(config_path)
    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )


@app.command("config")
def show_config(config_path: Path | None = ConfigOption) -> None:
    """Show the resolved application configuration."""
    try:
        orchestrator = _orchestrator(config_path)
        config = orchestrator.config_provider.get_config()
    except Exception as e:
        _fail("Configuration unavailable", e)

    table = Table(title="Application Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in config.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def submit(
    history_path: Path = typer.Argument(..., exists=True, help="CSV with date and value columns"),
    date_column: str = typer.Option("date", help="Date column name"),
    value_column: str = typer.Option("value", help="Value column name"),
    target_field: str | None = typer.Option(None, help="Target attribute name for Autopilot"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Upload history and start an Autopilot forecasting job."""
    console.print("[bold blue]🏋️  Submitting forecasting job...[/bold blue]")
    try:
        history = read_history_csv(history_path, date_column, value_column)
        job = _orchestrator(config_path).submit_job(history, target_field)
    except typer.BadParameter:
        raise
    except Exception as e:
        _fail("Submission failed", e)

    console.print(f"[bold green]✅ Job {job.job_name} submitted[/bold green]")
    console.print(f"ARN: {job.job_arn}")


@app.command()
def status(job_name: str, config_path: Path | None = ConfigOption) -> None:
    """Show the status of a forecasting job."""
    try:
        job = _orchestrator(config_path).poll_job(job_name)
    except Exception as e:
        _fail("Status check failed", e)

    table = Table(title=f"Job {job_name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in job.to_dict().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@app.command()
def deploy(job_name: str, config_path: Path | None = ConfigOption) -> None:
    """Deploy the best candidate of a completed job."""
    console.print("[bold blue]🚀 Deploying best candidate...[/bold blue]")
    try:
        names = _orchestrator(config_path).deploy_best_model(job_name)
    except Exception as e:
        _fail("Deployment failed", e)

    console.print(f"Model: {names.model_name}")
    console.print(f"Endpoint config: {names.endpoint_config_name}")
    console.print(f"[bold green]✅ Endpoint {names.endpoint_name} is being created[/bold green]")


@app.command("endpoint-status")
def endpoint_status(endpoint_name: str, config_path: Path | None = ConfigOption) -> None:
    """Show the status of an endpoint."""
    try:
        snapshot = _orchestrator(config_path).get_endpoint_status(endpoint_name)
    except Exception as e:
        _fail("Status check failed", e)

    table = Table(title=f"Endpoint {endpoint_name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in snapshot.to_dict().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@app.command()
def wait(
    name: str = typer.Argument(..., help="Job name, or endpoint name with --endpoint"),
    endpoint: bool = typer.Option(False, "--endpoint", help="Wait for an endpoint instead of a job"),
    interval: float = typer.Option(30.0, min=1.0, help="Seconds between polls"),
    timeout: float | None = typer.Option(None, help="Give up after this many seconds"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Poll a job or endpoint until it reaches a terminal state."""
    try:
        orchestrator = _orchestrator(config_path)
        fetch = (
            (lambda: orchestrator.get_endpoint_status(name))
            if endpoint
            else (lambda: orchestrator.poll_job(name))
        )
        snapshot = poll_until_terminal(fetch, interval, timeout)
    except Exception as e:
        _fail("Polling failed", e)

    if not snapshot.status.is_terminal:
        console.print(f"[bold yellow]⏳ Timed out while {snapshot.status.value}[/bold yellow]")
        sys.exit(2)
    if snapshot.failure_reason:
        console.print(f"[bold red]❌ {snapshot.status.value}: {escape(snapshot.failure_reason)}[/bold red]")
        sys.exit(1)
    console.print(f"[bold green]✅ {snapshot.status.value}[/bold green]")


@app.command()
def forecast(
    endpoint_name: str,
    history_path: Path = typer.Argument(..., exists=True, help="CSV with date and value columns"),
    horizon: int = typer.Option(6, min=1, help="Number of monthly periods to forecast"),
    date_column: str = typer.Option("date", help="Date column name"),
    value_column: str = typer.Option("value", help="Value column name"),
    output_path: Path | None = typer.Option(None, help="Write the forecast to this CSV"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Forecast from a deployed endpoint."""
    console.print("[bold blue]🔮 Generating forecast...[/bold blue]")
    try:
        history = read_history_csv(history_path, date_column, value_column)
        points = _orchestrator(config_path).forecast(endpoint_name, history, horizon)
    except typer.BadParameter:
        raise
    except Exception as e:
        _fail("Forecasting failed", e)

    table = Table(title="Forecast")
    table.add_column("Date", style="cyan")
    table.add_column("Forecast", style="green")
    for point in points:
        table.add_row(point.date.isoformat(), f"{point.forecast:.2f}")
    console.print(table)

    if output_path:
        pd.DataFrame([point.to_dict() for point in points]).to_csv(output_path, index=False)
        console.print(f"💾 Forecast saved to: {output_path}")


@app.command()
def cleanup(
    job_name: str = typer.Argument(..., help="Job whose hosting resources should be deleted"),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Delete the endpoint, endpoint config and model created for a job."""
    names = ResourceNames.from_job_name(job_name)
    if not yes:
        typer.confirm(f"Delete {names.endpoint_name}, {names.endpoint_config_name} and {names.model_name}?", abort=True)

    try:
        result = _orchestrator(config_path).cleanup(
            names.endpoint_name, names.endpoint_config_name, names.model_name
        )
    except Exception as e:
        _fail("Cleanup failed", e)

    for name in result.deleted:
        console.print(f"🗑️  Deleted {name}")
    console.print(f"[bold green]✅ {result.message}[/bold green]")


def main() -> None:
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
