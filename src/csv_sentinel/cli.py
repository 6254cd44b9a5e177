"""Command line interface for csv-sentinel.

Thin typer front end over UpdateOrchestrator. Every command loads Settings
(``--config`` plus ``CSV_SENTINEL_*`` environment overrides), configures
logging and runs one coroutine.

Commands:
---------
    csv-sentinel watch FILE...          Monitor files until interrupted
    csv-sentinel validate FILE          Validate once (exit 1 when invalid)
    csv-sentinel diff OLD NEW           Compare two files and print a report
    csv-sentinel backup create|list|verify|restore|delete
    csv-sentinel log recent|summary|export
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Coroutine, List, Optional

import typer

from .backup import BackupFilter, format_backup_record
from .changelog import format_change_log_entry, format_change_log_summary
from .config import Settings, load_settings
from .diff import ReportGenerator
from .exceptions import ConfigError, ReportError, SentinelError
from .pipeline import UpdateOrchestrator, format_status
from .utils import configure_logging, from_iso

__all__ = ["app"]

app = typer.Typer(name="csv-sentinel", help="Watch, back up, validate and diff tabular data files", add_completion=False)
backup_app = typer.Typer(help="Manage versioned backups", add_completion=False)
log_app = typer.Typer(help="Inspect the change log", add_completion=False)
app.add_typer(backup_app, name="backup")
app.add_typer(log_app, name="log")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML configuration file"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging.level"),
):
    """Load settings once for every subcommand."""
    try:
        settings = load_settings(config)
    except (FileNotFoundError, ConfigError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    level = log_level or settings.logging.level
    try:
        configure_logging(level, settings.logging.structured)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    ctx.obj = settings


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj if isinstance(ctx.obj, Settings) else Settings()


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run one command coroutine; startup failures exit 1 with a message."""
    try:
        return asyncio.run(coro)
    except SentinelError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


# =============================================================================
# watch / validate / diff
# =============================================================================


@app.command()
def watch(
    ctx: typer.Context,
    files: List[Path] = typer.Argument(..., help="Files to monitor"),
):
    """Monitor files and run the update pipeline on every change (Ctrl-C to stop)."""
    settings = _settings(ctx)

    async def run() -> int:
        async with UpdateOrchestrator(settings) as orchestrator:
            failed = 0
            for path in files:
                result = await orchestrator.watch(path)
                if result.success:
                    typer.echo(f"Watching {result.path}")
                else:
                    failed += 1
                    typer.echo(result.error, err=True)
            if failed == len(files):
                return 1

            try:
                while True:
                    await asyncio.sleep(3600)
            except asyncio.CancelledError:
                pass
            typer.echo(format_status(await orchestrator.get_status()))
            return 0

    try:
        code = _run(run())
    except KeyboardInterrupt:
        code = 0
    raise typer.Exit(code)


@app.command()
def validate(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="File to validate"),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
):
    """Validate a file once. Exits 1 when the file is invalid."""
    settings = _settings(ctx)
    orchestrator = UpdateOrchestrator(settings)
    result = _run(orchestrator.validate_file(file))

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
    else:
        status = "VALID" if result.is_valid else "INVALID"
        typer.echo(f"{file}: {status} ({result.row_count or 0} rows, {len(result.errors)} errors, {len(result.warnings)} warnings)")
        for issue in result.errors:
            where = f" row {issue.row}" if issue.row is not None else ""
            column = f" [{issue.column}]" if issue.column else ""
            typer.echo(f"  {issue.severity.value.upper()}{where}{column}: {issue.message}")
        for warning in result.warnings:
            typer.echo(f"  WARNING: {warning.message}")

    raise typer.Exit(0 if result.is_valid else 1)


@app.command()
def diff(
    ctx: typer.Context,
    old: Path = typer.Argument(..., help="Old version"),
    new: Path = typer.Argument(..., help="New version"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="text | schema | structured | hybrid"),
    key: Optional[List[str]] = typer.Option(None, "--key", "-k", help="Key column (repeatable)"),
    format: str = typer.Option("console", "--format", "-f", help="console | html | json | markdown"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the report here instead of stdout"),
):
    """Compare two files and print or write a report."""
    if mode is not None and mode not in ("text", "schema", "structured", "hybrid"):
        typer.echo(f"Error: unknown diff mode '{mode}'", err=True)
        raise typer.Exit(2)
    if format not in ("console", "html", "json", "markdown"):
        typer.echo(f"Error: unknown report format '{format}'", err=True)
        raise typer.Exit(2)

    settings = _settings(ctx)
    orchestrator = UpdateOrchestrator(settings)
    outcome = _run(orchestrator.compare_files(old, new, mode=mode, key_columns=key or None))
    if not outcome.success or outcome.result is None:
        typer.echo(f"Error: {outcome.error}", err=True)
        raise typer.Exit(1)

    generator = ReportGenerator(orchestrator.reports.options)
    try:
        text = generator.render(outcome.result, format, output)
    except ReportError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if output is not None:
        typer.echo(f"Report written to {output}")
    else:
        typer.echo(text)


# =============================================================================
# backup
# =============================================================================


@backup_app.command("create")
def backup_create(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="File to back up"),
    context: Optional[str] = typer.Option(None, "--context", help="Reason for the backup"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Tag (repeatable)"),
):
    """Snapshot a file now."""

    async def run():
        async with UpdateOrchestrator(_settings(ctx)) as orchestrator:
            return await orchestrator.create_backup(file, context=context, tags=tag or None)

    result = _run(run())
    if not result.success:
        typer.echo(f"Error: {result.error}", err=True)
        raise typer.Exit(1)
    typer.echo(format_backup_record(result.record))
    for removed in result.retention_deleted:
        typer.echo(f"  retention removed {removed}")


@backup_app.command("list")
def backup_list(
    ctx: typer.Context,
    file: Optional[Path] = typer.Argument(None, help="Only backups of this file"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Match any of these tags"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum records"),
    since: Optional[str] = typer.Option(None, "--since", help="ISO-8601 lower bound (naive means UTC)"),
    until: Optional[str] = typer.Option(None, "--until", help="ISO-8601 upper bound (naive means UTC)"),
):
    """List backups, newest first."""
    try:
        from_date = from_iso(since) if since else None
        to_date = from_iso(until) if until else None
    except ValueError as e:
        typer.echo(f"Error: invalid date: {e}", err=True)
        raise typer.Exit(2)

    query = BackupFilter(
        original_path=str(file.expanduser().resolve()) if file is not None else None,
        from_date=from_date,
        to_date=to_date,
        tags=tag or [],
        limit=limit,
    )

    async def run():
        async with UpdateOrchestrator(_settings(ctx)) as orchestrator:
            return await orchestrator.list_backups(query)

    records = _run(run())
    if not records:
        typer.echo("No backups found")
        return
    for record in records:
        typer.echo(format_backup_record(record))


@backup_app.command("verify")
def backup_verify(
    ctx: typer.Context,
    backup_id: str = typer.Argument(..., help="Backup id"),
):
    """Recompute a backup's checksum. Exits 1 when it does not match."""

    async def run():
        async with UpdateOrchestrator(_settings(ctx)) as orchestrator:
            return await orchestrator.verify_backup(backup_id)

    ok = _run(run())
    typer.echo(f"{backup_id}: {'OK' if ok else 'FAILED'}")
    raise typer.Exit(0 if ok else 1)


@backup_app.command("restore")
def backup_restore(
    ctx: typer.Context,
    backup_id: str = typer.Argument(..., help="Backup id"),
    target: Optional[Path] = typer.Option(None, "--target", help="Restore here instead of the original path"),
):
    """Restore a backup over its original file (or --target)."""

    async def run():
        async with UpdateOrchestrator(_settings(ctx)) as orchestrator:
            return await orchestrator.restore_backup(backup_id, target)

    result = _run(run())
    if not result.success:
        typer.echo(f"Error: {result.error}", err=True)
        if result.rollback_error:
            typer.echo(f"Rollback failed: {result.rollback_error}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Restored {backup_id} to {result.target_path}")
    if result.safety_backup_id:
        typer.echo(f"Previous content saved as {result.safety_backup_id}")


@backup_app.command("delete")
def backup_delete(
    ctx: typer.Context,
    backup_id: str = typer.Argument(..., help="Backup id"),
):
    """Delete a backup and its payload."""

    async def run():
        async with UpdateOrchestrator(_settings(ctx)) as orchestrator:
            return await orchestrator.delete_backup(backup_id)

    if not _run(run()):
        typer.echo(f"Backup not found: {backup_id}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Deleted {backup_id}")


# =============================================================================
# log
# =============================================================================


@log_app.command("recent")
def log_recent(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-n", help="Number of entries"),
    file: Optional[Path] = typer.Option(None, "--file", help="Only entries for this file"),
):
    """Show the most recent change log entries."""
    orchestrator = UpdateOrchestrator(_settings(ctx))
    if file is not None:
        entries = _run(orchestrator.get_file_changes(file, limit))
    else:
        entries = _run(orchestrator.get_recent_changes(limit))

    if not entries:
        typer.echo("No changes recorded")
        return
    for entry in entries:
        typer.echo(format_change_log_entry(entry))


@log_app.command("summary")
def log_summary(ctx: typer.Context):
    """Totals by change kind and by file."""
    orchestrator = UpdateOrchestrator(_settings(ctx))
    typer.echo(format_change_log_summary(_run(orchestrator.get_change_log_summary())))


@log_app.command("export")
def log_export(
    ctx: typer.Context,
    format: str = typer.Option("json", "--format", "-f", help="json | csv"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write here instead of stdout"),
):
    """Export the whole change log, oldest first."""
    if format not in ("json", "csv"):
        typer.echo(f"Error: unknown export format '{format}'", err=True)
        raise typer.Exit(2)

    orchestrator = UpdateOrchestrator(_settings(ctx))
    text = _run(orchestrator.export_change_log(format))
    if output is not None:
        output.write_text(text, encoding="utf-8")
        typer.echo(f"Change log exported to {output}")
    else:
        typer.echo(text, nl=False)


@app.command()
def status(ctx: typer.Context):
    """Print a status snapshot (change log totals, hooks, validators, backups)."""
    orchestrator = UpdateOrchestrator(_settings(ctx))

    async def run():
        await orchestrator.initialize()
        return await orchestrator.get_status()

    typer.echo(format_status(_run(run())))


if __name__ == "__main__":
    app()