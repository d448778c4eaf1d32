"""Typer CLI entrypoint for image releases."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import ReleaseConfig, load_config, save_resolved_config
from ..core.exceptions import ConfigError, MetadataError, ReleaseError
from ..core.logging import configure_logging
from ..core.secrets import SecretManager, SecretsConfig
from ..orchestration import RunCoordinator, RunOutcome, RunReport, TargetOutcome
from ..publishing.auth import resolve_credentials
from ..publishing.events import RunEvent
from ..publishing.metadata import resolve_tags
from ..targets import TargetRegistry

LOGGER = logging.getLogger(__name__)

app = typer.Typer(no_args_is_help=True, help="Build, publish and attest container images for a release.")
console = Console()
err_console = Console(stderr=True)

# Run-level failures (bad config, bad credentials) use a distinct exit status
# from "some targets failed".
EXIT_TARGET_FAILED = 1
EXIT_RUN_ABORTED = 2
SUMMARY_EXCERPT_LINES = 5

CONFIG_OPTION = typer.Option(Path("configs/release.yaml"), "--config", "-c", help="Release configuration file.")
OVERRIDE_OPTION = typer.Option(None, "--set", help="Override a config value, e.g. execution.max_parallel=2.")
VERSION_OPTION = typer.Option(None, "--version", help="Release version; defaults to the CI event.")
EVENT_OPTION = typer.Option(None, "--event-file", help="GitHub event payload (defaults to $GITHUB_EVENT_PATH).")
TARGET_OPTION = typer.Option(None, "--target", "-t", help="Only handle this image (repeatable).")


def _load(config_path: Path, overrides: Optional[List[str]]) -> ReleaseConfig:
    try:
        return load_config(config_path, overrides)
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_RUN_ABORTED) from exc


def _resolve_event(version: Optional[str], event_file: Optional[Path]) -> RunEvent:
    try:
        if version:
            return RunEvent.from_version(version)
        if event_file:
            return RunEvent.from_github_event(event_file)
        return RunEvent.from_environment()
    except ConfigError as exc:
        err_console.print(f"[red]Event error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_RUN_ABORTED) from exc


def _failure_detail(result: TargetOutcome) -> str:
    lines = [escape(result.cause or "")]
    error = result.error or {}
    if error.get("pushed_tags"):
        lines.append(f"pushed before failing: {escape(', '.join(error['pushed_tags']))}")
    if error.get("log_excerpt"):
        excerpt = "\n".join(error["log_excerpt"].splitlines()[-SUMMARY_EXCERPT_LINES:])
        lines.append(f"[dim]{escape(excerpt)}[/dim]")
    return "\n".join(lines)


def render_summary(outcome: RunOutcome) -> Table:
    table = Table(title=f"Release run {outcome.run_id}")
    table.add_column("Target")
    table.add_column("State")
    table.add_column("Stage")
    table.add_column("Digest")
    table.add_column("Detail", overflow="fold")
    for result in outcome.outcomes:
        state_style = "green" if result.succeeded else "red"
        if result.succeeded:
            detail = ", ".join(result.tags.tags) if result.tags else ""
            if result.warnings:
                detail = f"{detail}\n[yellow]{escape('; '.join(result.warnings))}[/yellow]"
        else:
            detail = _failure_detail(result)
        table.add_row(
            result.target.image,
            f"[{state_style}]{result.state.value}[/{state_style}]",
            result.stage.value if result.stage else "",
            result.digest or "",
            detail,
        )
    return table


@app.command()
def targets(config: Path = CONFIG_OPTION, overrides: Optional[List[str]] = OVERRIDE_OPTION) -> None:
    """List the configured build targets."""

    release_config = _load(config, overrides)
    table = Table(title="Build targets")
    table.add_column("Image")
    table.add_column("Context")
    table.add_column("Dockerfile")
    for target in TargetRegistry.from_config(release_config).list_targets():
        table.add_row(target.image, str(target.context), str(target.dockerfile))
    console.print(table)


@app.command()
def plan(
    config: Path = CONFIG_OPTION,
    overrides: Optional[List[str]] = OVERRIDE_OPTION,
    version: Optional[str] = VERSION_OPTION,
    event_file: Optional[Path] = EVENT_OPTION,
    only: Optional[List[str]] = TARGET_OPTION,
) -> None:
    """Show the tags and labels each target would be published with."""

    release_config = _load(config, overrides)
    event = _resolve_event(version, event_file)
    registry = TargetRegistry.from_config(release_config)
    if only:
        try:
            registry = registry.select(only)
        except ConfigError as exc:
            err_console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
            raise typer.Exit(code=EXIT_RUN_ABORTED) from exc
    for target in registry.list_targets():
        try:
            tag_set = resolve_tags(target.image, event, release_config.tags, extra_labels=release_config.labels)
        except MetadataError as exc:
            err_console.print(f"[red]{target.image}:[/red] {escape(str(exc))}")
            raise typer.Exit(code=EXIT_TARGET_FAILED) from exc
        console.print(f"[bold]{target.image}[/bold]")
        for ref in tag_set.references(target.image):
            console.print(f"  tag    {escape(ref)}")
        for key, value in tag_set.labels.items():
            console.print(f"  label  {escape(key)}={escape(value)}")


@app.command()
def run(
    config: Path = CONFIG_OPTION,
    overrides: Optional[List[str]] = OVERRIDE_OPTION,
    version: Optional[str] = VERSION_OPTION,
    event_file: Optional[Path] = EVENT_OPTION,
    only: Optional[List[str]] = TARGET_OPTION,
    run_id: Optional[str] = typer.Option(None, "--run-id", help="Correlation id for logs and the report."),
    json_logs: Optional[bool] = typer.Option(None, "--json-logs/--plain-logs", help="Override logging.json_logs."),
) -> None:
    """Build, push and attest every target; exit non-zero if any target failed."""

    release_config = _load(config, overrides)
    log_settings = release_config.logging
    configure_logging(
        log_settings.level,
        Path(log_settings.log_dir) if log_settings.log_dir else None,
        json_logs=log_settings.json_logs if json_logs is None else json_logs,
    )
    event = _resolve_event(version, event_file)

    try:
        coordinator = RunCoordinator.from_config(release_config, only=only)
        credentials = resolve_credentials(release_config.registry, SecretManager(SecretsConfig.from_env()))
        outcome = coordinator.run(event, credentials, run_id=run_id)
    except ReleaseError as exc:
        LOGGER.error("Release aborted before any target ran: %s", exc)
        err_console.print(f"[red]Release aborted ({exc.code}):[/red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_RUN_ABORTED) from exc

    console.print(render_summary(outcome))
    report_dir = release_config.report_directory()
    report_path = RunReport.from_outcome(outcome, event, config_path=str(config)).save(report_dir)
    save_resolved_config(release_config, report_dir / outcome.run_id)
    console.print(f"Report written to {report_path}")

    if not outcome.succeeded:
        raise typer.Exit(code=EXIT_TARGET_FAILED)


def main() -> None:  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
