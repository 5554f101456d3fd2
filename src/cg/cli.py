"""CLI commands for running CodeGuard against a repository."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from .config import DEFAULT_CONFIG_NAME, EngineConfig, default_config_data, load_config, write_config
from .errors import CheckpointRestoreError, CodeGuardError
from .memory.schema import ExecutionPlan, Severity
from .orchestrator import Orchestrator, RunContext
from .report import FinalReport, build_report, latest_report, load_report, render_text, write_report

APP_HELP = "CodeGuard: analyze a repository and apply validated, reversible fixes."

EXIT_UNRESOLVED = 1
EXIT_FATAL = 2

app = typer.Typer(help=APP_HELP)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_severity(value: str) -> Severity:
    try:
        return Severity(value.strip().lower())
    except ValueError:
        choices = ", ".join(level.value for level in Severity)
        raise typer.BadParameter(f"Unknown severity '{value}' (choose from {choices})") from None


def _load(config: str) -> EngineConfig:
    try:
        return load_config(Path(config))
    except CodeGuardError as error:
        typer.echo(f"Configuration error: {error}", err=True)
        raise typer.Exit(code=EXIT_FATAL) from error


def _emit(report: FinalReport, *, as_json: bool, config: EngineConfig) -> Path:
    path = write_report(report, config.reports_dir)
    if as_json:
        typer.echo(report.model_dump_json(indent=2))
    else:
        typer.echo(render_text(report))
        typer.echo(f"\nReport written to {path}")
    return path


def _finish(report: FinalReport, fail_on: Severity) -> None:
    unresolved = report.unresolved(fail_on)
    if unresolved:
        raise typer.Exit(code=EXIT_UNRESOLVED)


def _render_plan(plan: ExecutionPlan, context: RunContext) -> None:
    typer.echo(
        f"Plan: {len(plan.tasks)} task(s) in {len(plan.batches)} batch(es), "
        f"{plan.parallelizable_tasks} parallelizable, ~{plan.estimated_duration_minutes} min"
    )
    for index, batch in enumerate(plan.batches, start=1):
        typer.echo(f"Batch {index}:")
        for task in batch:
            issue = context.store.get(task.issue_ref)
            label = f"{issue.type} {issue.file or ''}".strip() if issue else task.issue_ref
            typer.echo(f"  - {task.id} [{task.priority:g}] {label}")
    if plan.manual_only:
        typer.echo("Manual only:")
        for item in plan.manual_only:
            typer.echo(f"  - {item.issue_id}: {item.reason}")
    if plan.high_risk:
        typer.echo("High risk (report only):")
        for issue_id in plan.high_risk:
            typer.echo(f"  - {issue_id}")


CONFIG_OPTION = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the CodeGuard configuration file.")
JSON_OPTION = typer.Option(False, "--json", help="Print the report as JSON.")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")
FAIL_ON_OPTION = typer.Option(
    "high",
    "--fail-on",
    help="Exit with status 1 when unresolved issues at or above this severity remain.",
)


@app.command()
def init(
    config: str = CONFIG_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
    repo_root: str = typer.Option(".", "--repo-root", help="Repository root relative to the config file."),
) -> None:
    """Write a default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"{config_path} already exists; use --force to overwrite.", err=True)
        raise typer.Exit(code=EXIT_UNRESOLVED)
    data = default_config_data()
    data["project"]["repo_root"] = repo_root
    write_config(config_path, data)
    typer.echo(f"Wrote {config_path}")


@app.command()
def analyze(
    config: str = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
    verbose: bool = VERBOSE_OPTION,
    fail_on: str = FAIL_ON_OPTION,
) -> None:
    """Establish the baseline and run every analyzer."""
    _configure_logging(verbose)
    threshold = _parse_severity(fail_on)
    engine_config = _load(config)
    try:
        state = Orchestrator(engine_config).start().establish_baseline().analyze()
    except CodeGuardError as error:
        typer.echo(f"Analysis failed: {error}", err=True)
        raise typer.Exit(code=EXIT_FATAL) from error
    report = state.report()
    _emit(report, as_json=as_json, config=engine_config)
    _finish(report, threshold)


@app.command()
def plan(
    config: str = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
    verbose: bool = VERBOSE_OPTION,
    fail_on: str = FAIL_ON_OPTION,
) -> None:
    """Analyze, then print the remediation plan without changing anything."""
    _configure_logging(verbose)
    threshold = _parse_severity(fail_on)
    engine_config = _load(config)
    try:
        state = Orchestrator(engine_config).start().establish_baseline().analyze().plan()
    except CodeGuardError as error:
        typer.echo(f"Planning failed: {error}", err=True)
        raise typer.Exit(code=EXIT_FATAL) from error

    report = state.report()
    execution_plan = state.context.plan or ExecutionPlan()
    if as_json:
        payload = {
            "plan": execution_plan.model_dump(mode="json"),
            "report": report.model_dump(mode="json"),
        }
        typer.echo(json.dumps(payload, indent=2))
    else:
        _render_plan(execution_plan, state.context)
    write_report(report, engine_config.reports_dir)
    _finish(report, threshold)


@app.command()
def execute(
    config: str = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
    verbose: bool = VERBOSE_OPTION,
    fail_on: str = FAIL_ON_OPTION,
) -> None:
    """Run all phases: baseline, analysis, planning and validated execution."""
    _configure_logging(verbose)
    threshold = _parse_severity(fail_on)
    engine_config = _load(config)
    planned = None
    try:
        planned = Orchestrator(engine_config).start().establish_baseline().analyze().plan()
        completed = planned.execute()
    except CheckpointRestoreError as error:
        typer.echo(f"FATAL: checkpoint restore failed, run halted: {error}", err=True)
        if planned is not None:
            path = write_report(build_report(planned.context), engine_config.reports_dir)
            typer.echo(f"Partial report written to {path}", err=True)
        raise typer.Exit(code=EXIT_FATAL) from error
    except CodeGuardError as error:
        typer.echo(f"Execution failed: {error}", err=True)
        raise typer.Exit(code=EXIT_FATAL) from error

    report = completed.report()
    _emit(report, as_json=as_json, config=engine_config)
    _finish(report, threshold)


@app.command()
def report(
    path: Optional[Path] = typer.Argument(None, help="Stored report JSON; defaults to the latest one."),
    config: str = CONFIG_OPTION,
    as_json: bool = JSON_OPTION,
    fail_on: str = FAIL_ON_OPTION,
) -> None:
    """Re-render a stored report."""
    threshold = _parse_severity(fail_on)
    source = path
    if source is None:
        source = latest_report(_load(config).reports_dir)
        if source is None:
            typer.echo("No stored reports found.", err=True)
            raise typer.Exit(code=EXIT_FATAL)
    try:
        stored = load_report(source)
    except CodeGuardError as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(code=EXIT_FATAL) from error
    typer.echo(stored.model_dump_json(indent=2) if as_json else render_text(stored))
    _finish(stored, threshold)


if __name__ == "__main__":
    app()
