"""artguard CLI.

Main entry point for the artguard command.
"""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import ContractConfig, get_config
from .contract.errors import RollbackError, ValidationError
from .contract.validator import validate_with_retry
from .contract.wrapper import detect_error_wrapper
from .recovery.checkpoints import RollbackManager
from .recovery.classifier import classify_failure
from .recovery.json_recovery import JsonRecoveryParser
from .recovery.strategies import RecoveryLevel
from .retry.controller import AdaptiveRetryController, AttemptRecord
from .utils.errors import handle_exception, set_debug_mode

console = Console()

LEVEL_CHOICES = click.Choice([level.name.lower() for level in RecoveryLevel])


def _state_dir(state_dir: str | None) -> Path:
    return Path(state_dir or get_config().rollback.state_dir)


def _no_sleep(_seconds: float) -> None:
    return None


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="Show version and exit")
@click.option("--debug", "-d", is_flag=True, help="Enable debug mode with verbose error output")
@click.option("--verbose", is_flag=True, help="Log recovery, retry and rollback progress")
@click.pass_context
def main(ctx: click.Context, version: bool, debug: bool, verbose: bool) -> None:
    """artguard - resilient validation for AI pipeline artifacts.

    Use --debug for verbose error output with stack traces.
    """
    if debug:
        set_debug_mode(True)

    if verbose or debug:
        logging.basicConfig(
            level=logging.DEBUG if debug else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )

    if version:
        console.print(f"artguard version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command("recover")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--level", "-l", type=LEVEL_CHOICES, default=None, help="Highest recovery level")
@click.option("--report", is_flag=True, help="Show the recovery report instead of the JSON")
def recover_cmd(file: Path, level: str | None, report: bool) -> None:
    """Recover valid JSON from a noisy FILE."""
    try:
        parser = JsonRecoveryParser(level or get_config().contract.recovery_level)
    except ValueError as e:
        handle_exception(console, e, "recover")
        return
    result = parser.recover(file.read_text(encoding="utf-8", errors="replace"))

    if report:
        console.print(result.format_report(), markup=False, highlight=False)
    elif result.is_valid:
        click.echo(result.recovered_text)
        for fix in result.applied_fixes:
            click.echo(f"fix: {fix}", err=True)
    else:
        console.print("[red]✗ Failed to recover valid JSON[/red]")
        for fix in result.applied_fixes:
            console.print(f"  tried: {escape(fix)}")
        for warning in result.warnings:
            console.print(f"  [yellow]warning:[/yellow] {escape(warning)}")

    if not result.is_valid:
        sys.exit(1)


@main.command("detect")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def detect_cmd(file: Path) -> None:
    """Check whether FILE is a pipeline error wrapper."""
    data = file.read_bytes()
    result = detect_error_wrapper(data)
    info = result.debug_info(len(data))

    if result.is_wrapper:
        console.print(f"[yellow]Error wrapper detected[/yellow] (confidence: {result.confidence.value})")
    else:
        console.print("[green]Not an error wrapper[/green]")
    console.print(f"Fields matched: {', '.join(info.fields_matched) or '-'}", highlight=False)

    if result.is_wrapper:
        console.print(f"Extracted {info.extracted_length} bytes from {info.extraction_method}:")
        click.echo(result.extracted_payload.decode("utf-8", errors="replace"))


@main.command("classify")
@click.argument("message")
@click.option("--contract-type", "-t", default=None, help="Treat MESSAGE as a validation error of this contract type")
def classify_cmd(message: str, contract_type: str | None) -> None:
    """Classify a validation failure MESSAGE."""
    error: ValidationError | str = message
    if contract_type:
        error = ValidationError(contract_type=contract_type, message=message)

    classification = classify_failure(error)
    if classification is None:
        return

    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Category", classification.category.value)
    table.add_row("Confidence", f"{classification.confidence:.2f}")
    table.add_row("Retryable", "yes" if classification.retryable else "no")
    console.print(table)

    if classification.suggestions:
        console.print("\n[bold]Suggestions:[/bold]")
        for i, suggestion in enumerate(classification.suggestions, 1):
            console.print(f"  {i}. {escape(suggestion)}")


@main.command("validate")
@click.argument("workspace", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--schema", "-s", "schema_path", default=None, help="Schema file (relative to WORKSPACE)")
@click.option("--source", default=None, help="Artifact path relative to WORKSPACE")
@click.option("--level", "-l", type=LEVEL_CHOICES, default=None, help="Highest recovery level")
@click.option("--max-attempts", "-n", type=click.IntRange(min=1), default=None, help="Attempt budget")
@click.option("--no-wait", is_flag=True, help="Retry without backoff delays")
def validate_cmd(
    workspace: Path,
    schema_path: str | None,
    source: str | None,
    level: str | None,
    max_attempts: int | None,
    no_wait: bool,
) -> None:
    """Validate the artifact in WORKSPACE against its JSON schema."""
    config = get_config()
    try:
        contract = ContractConfig.from_settings(
            config,
            schema_path=schema_path,
            source=source,
            recovery_level=level,
            max_attempts=max_attempts,
        )
        controller = AdaptiveRetryController(
            max_attempts=contract.max_attempts,
            base_delay=config.retry.base_delay,
            max_delay=config.retry.max_delay,
            backoff_factor=config.retry.backoff_factor,
            sleep=_no_sleep if no_wait else time.sleep,
        )

        def show_retry(record: AttemptRecord) -> None:
            console.print(
                f"[yellow]Attempt {record.attempt} failed[/yellow] ({record.category.value}), "
                f"retrying in {record.delay:.1f}s"
            )

        session = validate_with_retry(contract, workspace, controller=controller, on_retry=show_retry)
    except ValueError as e:
        handle_exception(console, e, "validate")
        return

    if session.success:
        console.print(f"[green]{escape(session.format_summary())}[/green]")
        for warning in session.result.warnings:
            console.print(f"  [yellow]⚠[/yellow] {escape(warning)}")
        return

    console.print(escape(session.format_summary()))
    if session.last_repair_prompt:
        console.print("\n[bold]Repair prompt for the next attempt:[/bold]")
        console.print(session.last_repair_prompt, markup=False, highlight=False)
    if isinstance(session.final_error, Exception):
        handle_exception(console, session.final_error, "validate")
    sys.exit(1)


@main.group("rollback")
def rollback_group() -> None:
    """Inspect and revert pipeline side effects."""


@rollback_group.command("plan")
@click.argument("pipeline_id")
@click.option("--to", "to_step", default=None, help="Stop at the checkpoint of this step")
@click.option("--state-dir", default=None, help="Rollback state directory")
def rollback_plan_cmd(pipeline_id: str, to_step: str | None, state_dir: str | None) -> None:
    """Show what rolling back PIPELINE_ID would do."""
    manager = RollbackManager(_state_dir(state_dir))
    try:
        plan = manager.get_rollback_plan(pipeline_id, to_step)
    except RollbackError as e:
        handle_exception(console, e, "rollback plan")
        return
    console.print(plan.format(), markup=False, highlight=False)


@rollback_group.command("run")
@click.argument("pipeline_id")
@click.option("--to", "to_step", default=None, help="Stop at the checkpoint of this step")
@click.option("--state-dir", default=None, help="Rollback state directory")
def rollback_run_cmd(pipeline_id: str, to_step: str | None, state_dir: str | None) -> None:
    """Revert the recorded operations of PIPELINE_ID."""
    manager = RollbackManager(_state_dir(state_dir))
    try:
        report = manager.rollback(pipeline_id, to_step)
    except RollbackError as e:
        handle_exception(console, e, "rollback")
        return

    console.print(report.format(), markup=False, highlight=False)
    if not report.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
