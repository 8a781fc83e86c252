"""changegate CLI - classify changes, run gated job groups, verify results."""

import json
import logging
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from changegate import __version__
from changegate.aggregator import aggregate, parse_outcomes
from changegate.classifier import classify, classify_paths
from changegate.git import DEFAULT_BASE, ChangeSetError, compute_change_set
from changegate.pipeline import run_pipeline
from changegate.report import REPORT_JSON_FILENAME, REPORT_MD_FILENAME, write_github_output
from changegate.rules import ConfigError, load_config, write_default_config
from changegate.types import ChangeSet, GateDecision

PULL_REQUEST_EVENT = "pull_request"

cli = typer.Typer(
    name="changegate",
    help="Decide which CI job groups run for a change and gate on their results.",
    no_args_is_help=True,
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"changegate {__version__}")
        raise typer.Exit()


@cli.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log classification and job details"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """changegate command line."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _is_pull_request(event: str | None) -> bool:
    return (event or "").strip() == PULL_REQUEST_EVENT


def _fail_config(exc: Exception) -> NoReturn:
    err_console.print(f"[red]Configuration error:[/red] {exc}")
    raise typer.Exit(2) from exc


def _load_results_mapping(text: str, source: str) -> dict:
    decoded = json.loads(text)
    if not isinstance(decoded, dict):
        raise ValueError(f"{source}: expected a JSON object mapping job group to status")
    return decoded


def _print_decision(decision: GateDecision) -> None:
    table = Table(title="Job groups")
    table.add_column("Job group")
    table.add_column("Result")
    for name, outcome in decision.outcomes.items():
        table.add_row(name, outcome.value)
    if decision.outcomes:
        console.print(table)

    if decision.passed:
        console.print("[green]All checks passed[/green]")
    else:
        console.print(
            f"[red]At least one check failed or was cancelled:[/red] {', '.join(decision.failed_groups)}"
        )


@cli.command(name="classify")
def classify_cmd(
    event: str | None = typer.Option(
        None,
        "--event",
        envvar="GITHUB_EVENT_NAME",
        help="Trigger event name; only 'pull_request' inspects the diff",
    ),
    base: str = typer.Option(DEFAULT_BASE, "--base", help="Diff base revision"),
    paths: list[str] | None = typer.Option(
        None,
        "--path",
        "-p",
        help="Changed path (repeatable); skips git when given",
    ),
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Repository root"),
    github_output: str | None = typer.Option(
        None,
        "--github-output",
        envvar="GITHUB_OUTPUT",
        help="Append buildDocs/buildNbs/testCode to this step output file",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print flags as JSON"),
) -> None:
    """Classify a change and print which gates are open."""
    is_pull_request = _is_pull_request(event)
    try:
        config = load_config(repo_root)
        if paths:
            change_set = ChangeSet.of(paths)
        elif is_pull_request:
            change_set = compute_change_set(repo_root, base=base)
        else:
            change_set = ChangeSet()
    except (ChangeSetError, ConfigError) as exc:
        _fail_config(exc)

    result = classify(change_set, is_pull_request, config.rules)

    if github_output:
        write_github_output(Path(github_output), result)

    if as_json:
        typer.echo(json.dumps(result.to_outputs(), sort_keys=True))
        return

    if change_set:
        console.print("Changed files:")
        for path, category in classify_paths(change_set, config.rules).items():
            console.print(f"  {path} [dim]({category.value})[/dim]", highlight=False)
    for key, value in result.to_outputs().items():
        typer.echo(f"{key}={value}")


@cli.command()
def verify(
    results: list[str] | None = typer.Option(
        None,
        "--result",
        "-r",
        help="Job group result as name=status (repeatable)",
    ),
    results_file: Path | None = typer.Option(
        None,
        "--results-file",
        help="JSON file mapping job group to status or to {'result': status}",
    ),
    results_json: str | None = typer.Option(
        None,
        "--results-json",
        help="Inline JSON, e.g. the CI needs context",
    ),
) -> None:
    """Aggregate job group results; exit 0 when all passed, 1 otherwise."""
    raw: dict = {}
    try:
        if results_file is not None:
            raw.update(_load_results_mapping(results_file.read_text(encoding="utf-8"), str(results_file)))
        if results_json:
            raw.update(_load_results_mapping(results_json, "--results-json"))
        for item in results or []:
            name, sep, status = item.partition("=")
            if not sep or not name.strip():
                raise ValueError(f"expected name=status, got {item!r}")
            raw[name.strip()] = status
        outcomes = parse_outcomes(raw)
    except (OSError, ValueError) as exc:
        _fail_config(exc)

    decision = aggregate(outcomes)
    _print_decision(decision)
    raise typer.Exit(decision.exit_code)


@cli.command()
def run(
    event: str | None = typer.Option(
        None,
        "--event",
        envvar="GITHUB_EVENT_NAME",
        help="Trigger event name; only 'pull_request' inspects the diff",
    ),
    ref: str | None = typer.Option(None, "--ref", help="Revision override passed to job groups"),
    base: str = typer.Option(DEFAULT_BASE, "--base", help="Diff base revision"),
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Repository root"),
    out: Path | None = typer.Option(None, "--out", "-o", help="Directory for report files"),
    timestamp_mode: str = typer.Option(
        "deterministic",
        "--timestamp-mode",
        help="Timestamp mode: deterministic or wallclock",
    ),
    max_workers: int | None = typer.Option(None, "--max-workers", help="Parallel job groups"),
) -> None:
    """Classify, run gated job groups in parallel, and gate on their results."""
    if timestamp_mode not in ("deterministic", "wallclock"):
        _fail_config(ValueError(f"unknown timestamp mode: {timestamp_mode}"))

    try:
        report = run_pipeline(
            repo_root.resolve(),
            _is_pull_request(event),
            ref=ref or None,
            base=base,
            out_dir=out,
            timestamp_mode=timestamp_mode,
            max_workers=max_workers,
        )
    except (ChangeSetError, ConfigError) as exc:
        _fail_config(exc)

    console.print(f"\nChange Gate: [bold]{report.status.upper()}[/bold]")
    for key, value in report.classification.items():
        console.print(f"  {key}={value}", highlight=False)
    for name, job in report.jobs.items():
        console.print(f"  {name}: {job['result']}", highlight=False)

    if out is not None:
        console.print("\nReports written to:")
        console.print(f"  {out / REPORT_JSON_FILENAME}", highlight=False)
        console.print(f"  {out / REPORT_MD_FILENAME}", highlight=False)

    raise typer.Exit(report.exit_code)


@cli.command(name="init-config")
def init_config(
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Repository root"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config"),
) -> None:
    """Write the default .changegate/pipeline.yaml."""
    try:
        path = write_default_config(repo_root, force=force)
    except FileExistsError as exc:
        err_console.print(f"[yellow]{exc}[/yellow] (use --force to overwrite)")
        raise typer.Exit(2) from exc
    console.print(f"[green]Created {path}[/green]")
