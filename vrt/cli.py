"""CLI entry point for the visual regression runner."""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from vrt.capture.worker_pool import PoolProgress
from vrt.errors import ApiError, ConfigurationError
from vrt.models.config import VrtConfig, create_default_config, find_config_file, load_config
from vrt.models.scenario import CaptureTask
from vrt.models.test_result import DIMENSION_MISMATCH, TestRunSummary
from vrt.orchestrator import Orchestrator, find_generated_data, remove_generated_data
from vrt.reporter.server import DEFAULT_PORT, serve_report

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config_or_exit(path: str | None) -> VrtConfig:
    try:
        return load_config(path)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        if find_config_file() is None and path is None:
            console.print("Run 'vrt init' to create a default config.")
        sys.exit(1)


@contextmanager
def _progress(description: str) -> Iterator:
    """Rich progress bar fed by worker pool progress callbacks."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("{task.fields[status]}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task(description, total=None, status="")

        def _update(state: PoolProgress, task: CaptureTask) -> None:
            failed = f"[red]{state.failed} failed[/red]" if state.failed else "0 failed"
            progress.update(
                task_id,
                total=state.total,
                completed=state.completed,
                status=f"[green]{state.passed} ok[/green] | {failed} | {task.name}",
            )

        yield _update


def _print_run_summary(summary: TestRunSummary) -> None:
    for r in summary.results:
        if r.passed:
            note = " [yellow](dimension mismatch)[/yellow]" if r.warning == DIMENSION_MISMATCH else ""
            console.print(f"  [green]PASS[/green] {r.name}{note}")
        else:
            detail = r.error or f"{r.diff_pixels} pixels differ ({r.diff_percentage or 0:.2f}%)"
            console.print(f"  [red]FAIL[/red] {r.name} - {detail}")

    table = Table(title="Results Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Total Tests", str(summary.total))
    table.add_row("Passed", f"[green]{summary.passed}[/green]")
    table.add_row("Failed", f"[red]{summary.failed}[/red]")
    table.add_row("Pass Rate", f"{summary.pass_rate:.1f}%")
    table.add_row("Duration", f"{summary.duration_seconds}s")
    console.print(table)


@click.group()
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual regression testing for scenario pages served by a VRT API."""
    setup_logging(verbose)


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def init(force: bool) -> None:
    """Create a default .vrtrc.json in the current directory."""
    existing = find_config_file(Path.cwd())
    if existing and existing.parent == Path.cwd().resolve() and not force:
        console.print(f"[yellow]Config already exists: {existing}[/yellow]")
        console.print("Use --force to overwrite it.")
        sys.exit(1)
    path = create_default_config(Path.cwd() / ".vrtrc.json")
    console.print(f"[green]Created config:[/green] {path}")
    console.print("Set 'endpoint' (and 'token' if required), then run 'vrt test-connection'.")


@cli.command("test-connection")
@click.option("--config", "-c", default=None, help="Config file path")
def test_connection(config: str | None) -> None:
    """Check that the scenarios endpoint is reachable and valid."""
    cfg = _load_config_or_exit(config)
    result = Orchestrator(cfg).test_connection()

    table = Table(title="Connection Test")
    table.add_column("Check", style="bold")
    table.add_column("Value")
    table.add_row("Endpoint", result.endpoint)
    table.add_row("Status", "[green]OK[/green]" if result.success else "[red]FAILED[/red]")
    if result.status_code is not None:
        table.add_row("HTTP Status", str(result.status_code))
    if result.response_time_ms is not None:
        table.add_row("Response Time", f"{result.response_time_ms}ms")
    if result.success:
        table.add_row("Scenarios", str(result.scenario_count))
        table.add_row("Viewports", str(result.viewport_count))
        table.add_row("Token Required", "yes" if result.token_required else "no")
        if result.is_regenerating:
            table.add_row("Regenerating", "[yellow]yes[/yellow]")
    else:
        table.add_row("Error", f"[red]{result.error}[/red]")
    console.print(table)

    if not result.success:
        sys.exit(1)


@cli.command("list")
@click.option("--config", "-c", default=None, help="Config file path")
@click.option("--scenario", "-s", multiple=True, help="Filter by scenario id or title (repeatable)")
@click.option("--viewport", "-v", multiple=True, help="Filter by viewport key (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Print the payload as JSON")
def list_scenarios(config: str | None, scenario: tuple[str, ...], viewport: tuple[str, ...],
                   as_json: bool) -> None:
    """List scenarios and viewports served by the endpoint."""
    cfg = _load_config_or_exit(config)
    try:
        payload = Orchestrator(cfg).list_scenarios(list(scenario) or None, list(viewport) or None)
    except ApiError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(payload.model_dump(), indent=2))
        return

    viewports = Table(title=f"Viewports ({len(payload.viewports)})")
    viewports.add_column("Key", style="bold")
    viewports.add_column("Label")
    viewports.add_column("Size")
    viewports.add_column("Full Page")
    for v in payload.viewports:
        size = f"{v.width}x{v.height or 'auto'} @{v.device_scale_factor:g}x"
        viewports.add_row(v.key, v.label, size, "yes" if v.full_page else "no")
    console.print(viewports)

    scenarios = Table(title=f"Scenarios ({len(payload.scenarios)})")
    scenarios.add_column("ID", style="bold")
    scenarios.add_column("Title")
    scenarios.add_column("URL")
    scenarios.add_column("Viewports")
    scenarios.add_column("Interactions", justify="right")
    for s in payload.scenarios:
        scenarios.add_row(s.id, s.title, s.url, ", ".join(s.viewport_keys), str(len(s.interactions)))
    console.print(scenarios)
    console.print(f"Total screenshots: {payload.total_tasks}")


@cli.command("generate-baseline")
@click.option("--config", "-c", default=None, help="Config file path")
@click.option("--scenario", "-s", multiple=True, help="Filter by scenario id or title (repeatable)")
@click.option("--viewport", "-v", multiple=True, help="Filter by viewport key (repeatable)")
@click.option("--headed", is_flag=True, help="Show the browser while capturing")
@click.option("--failed", "-f", is_flag=True, help="Only regenerate pairs that failed in the last run")
def generate_baseline(config: str | None, scenario: tuple[str, ...], viewport: tuple[str, ...],
                      headed: bool, failed: bool) -> None:
    """Capture baseline screenshots."""
    cfg = _load_config_or_exit(config)
    orchestrator = Orchestrator(cfg, headless=False if headed else None)

    if failed and not orchestrator.tracker.has_failed_tests():
        console.print("[green]No failed tests recorded in the last run.[/green]")
        return
    if cfg.baseline_domain:
        console.print(f"Baseline domain: [magenta]{cfg.baseline_domain}[/magenta]")

    try:
        with _progress("Capturing baselines") as on_progress:
            result = orchestrator.generate_baseline(
                list(scenario) or None, list(viewport) or None, failed=failed, on_progress=on_progress,
            )
    except ApiError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if result.total == 0:
        console.print("[yellow]No scenarios to process. Check your --scenario/--viewport filters.[/yellow]")
        return

    table = Table(title="Baseline Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Total", str(result.total))
    table.add_row("Captured", f"[green]{result.captured}[/green]")
    table.add_row("Failed", f"[red]{result.failed}[/red]")
    table.add_row("Duration", f"{result.duration_seconds}s")
    table.add_row("Directory", cfg.baseline_dir)
    console.print(table)

    if result.failed:
        sys.exit(1)


@cli.command("run-tests")
@click.option("--config", "-c", default=None, help="Config file path")
@click.option("--scenario", "-s", multiple=True, help="Filter by scenario id or title (repeatable)")
@click.option("--viewport", "-v", multiple=True, help="Filter by viewport key (repeatable)")
@click.option("--update-baseline", "-u", is_flag=True, help="Create missing baselines and refresh passing ones")
@click.option("--headed", is_flag=True, help="Show the browser while capturing")
@click.option("--failed", "-f", is_flag=True, help="Only re-run pairs that failed in the last run")
def run_tests(config: str | None, scenario: tuple[str, ...], viewport: tuple[str, ...],
              update_baseline: bool, headed: bool, failed: bool) -> None:
    """Capture screenshots and compare them against baselines."""
    cfg = _load_config_or_exit(config)
    orchestrator = Orchestrator(cfg, headless=False if headed else None)

    if failed and not orchestrator.tracker.has_failed_tests():
        console.print("[green]No failed tests to re-run. All tests passed in the last run![/green]")
        return
    if cfg.test_domain:
        console.print(f"Test domain: [magenta]{cfg.test_domain}[/magenta]")
    if update_baseline:
        console.print("[yellow]Mode: update baselines on pass[/yellow]")

    try:
        with _progress("Testing") as on_progress:
            summary = orchestrator.run_tests(
                list(scenario) or None, list(viewport) or None,
                update_baseline=update_baseline, failed=failed, on_progress=on_progress,
            )
    except ApiError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if summary.total == 0:
        console.print("[yellow]No scenarios to process. Check your --scenario/--viewport filters.[/yellow]")
        return

    _print_run_summary(summary)
    for fmt, path in orchestrator.last_reports.items():
        console.print(f"  {fmt.upper()} report: [blue]{path}[/blue]")
    console.print("View the report with 'vrt report'.")

    if summary.failed > 0:
        sys.exit(1)


@cli.command()
@click.option("--config", "-c", default=None, help="Config file path")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
def clean(config: str | None, yes: bool) -> None:
    """Remove baselines, screenshots, diffs, reports and failed-test records."""
    cfg: VrtConfig | None = None
    if config or find_config_file() is not None:
        try:
            cfg = load_config(config)
        except ConfigurationError as e:
            logging.getLogger(__name__).debug("Using default paths: %s", e)

    items = find_generated_data(cfg)
    if not items:
        console.print("[green]Nothing to clean.[/green]")
        return

    console.print("The following will be removed:")
    for item in items:
        console.print(f"  {item.name}: {item.path}")
    if not yes and not click.confirm("Continue?", default=False):
        console.print("Aborted.")
        return

    removed = remove_generated_data(items)
    console.print(f"[green]Removed {removed} file(s).[/green]")


@cli.command()
@click.option("--config", "-c", default=None, help="Config file path")
@click.option("--port", "-p", default=DEFAULT_PORT, show_default=True, help="Port to serve on")
@click.option("--no-serve", is_flag=True, help="Print the report path instead of serving it")
def report(config: str | None, port: int, no_serve: bool) -> None:
    """Serve the last HTML report and open it in the browser."""
    report_dir = Path(VrtConfig.model_fields["report_dir"].default)
    if config or find_config_file() is not None:
        try:
            report_dir = Path(load_config(config).report_dir)
        except ConfigurationError as e:
            logging.getLogger(__name__).debug("Using default report directory: %s", e)

    index = report_dir / "index.html"
    if not index.is_file():
        console.print("[red]No report found. Run 'vrt run-tests' first.[/red]")
        sys.exit(1)
    if no_serve:
        console.print(f"Report: [blue]{index.resolve()}[/blue]")
        return

    def _announce(url: str, already_running: bool) -> None:
        if already_running:
            console.print(f"[yellow]Report server is already running:[/yellow] {url}")
        else:
            console.print(f"[green]Serving report at[/green] {url} (Ctrl+C to stop)")

    serve_report(report_dir, port=port, on_ready=_announce)


if __name__ == "__main__":
    cli()
