"""Update orchestration module for csv-sentinel.

Owns the Settings and every component, reacts to ChangeEvents and runs one
pipeline cycle per event. This module is the only place where Settings are
split into per-component configuration.

Architecture:
-------------
    filesystem -> ChangeMonitor -> per-path queue -> process_event()
        -> BackupStore -> ValidationPipeline -> DiffEngine/ReportGenerator
        -> ChangeLog -> HookRegistry

Each watched path owns one asyncio.Queue and one worker task, so cycles for
the same path run strictly one after another while different paths proceed
independently. The monitor only enqueues; a slow cycle never delays change
detection.

Cycle (per ChangeEvent):
------------------------
    1. backing-up   added/changed and auto-backup on: snapshot the file
    2. validating   added/changed and auto-validate on: validate; when the
                    file is invalid, backup-on-failure is on and no backup was
                    taken this cycle, snapshot it now
    3. diffing      diff enabled, the auto-backup succeeded and
                    compare-with-backups on: diff the most recent other backup
                    of the path against the file and write the configured
                    report formats
                    when auto-generate-reports is on
    4. logged       exactly one ChangeLogEntry embedding the backup id,
                    validation summary and report paths
    5. hooks-run    every enabled rebuild hook, in order, isolated

Deleted and renamed events skip steps 1-3 but are still logged and still
run hooks. A disabled step is skipped, not faked. A failure in any step is
recorded in the bounded recent-error list, published as
``orchestrator.error`` and never prevents the log entry or later hooks.

Example:
--------
>>> from csv_sentinel.config import load_settings
>>> from csv_sentinel.pipeline import UpdateOrchestrator
>>>
>>> async with UpdateOrchestrator(load_settings("sentinel.toml")) as orchestrator:
...     await orchestrator.watch("data/bookstores.csv")
...     ...
...     print(format_status(await orchestrator.get_status()))
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
from pathlib import Path
import tempfile
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .backup import BackupFilter, BackupRecord, BackupResult, BackupStore, RestoreResult
from .changelog import ChangeLog, ChangeLogEntry, ChangeLogMetadata, ChangeLogQuery, ChangeLogSummary
from .config import Settings
from .diff import REPORT_EXTENSIONS, DiffEngine, DiffMode, DiffResult, ReportFormat, ReportGenerator, ReportOptions
from .exceptions import HookError, SentinelError
from .hooks import HookOutcome, HookRegistry, RebuildHook, bookstore_rebuild_hooks
from .monitor import ChangeEvent, ChangeKind, ChangeMonitor, normalize_path
from .notifier import Notifier
from .utils import to_iso, utc_now
from .validation import FieldValidator, ValidationPipeline, ValidationResult

__all__ = [
    "UpdateOrchestrator",
    "PipelineState",
    "CycleReport",
    "WatchResult",
    "DiffOutcome",
    "OrchestratorStatus",
    "format_status",
]

logger = logging.getLogger(__name__)


# =============================================================================
# Result Models
# =============================================================================


class PipelineState(str, Enum):
    """Where a watched path currently is in its cycle."""

    IDLE = "idle"
    WATCH_STARTED = "watch-started"
    CHANGE_PENDING = "change-pending"
    BACKING_UP = "backing-up"
    VALIDATING = "validating"
    DIFFING = "diffing"
    LOGGED = "logged"
    HOOKS_RUN = "hooks-run"


class WatchResult(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    success: bool
    error: Optional[str] = None


class DiffOutcome(BaseModel):
    """Outcome of a comparison requested through the orchestrator.

    Attributes:
        success: False when the comparison or a report write failed
        result: The DiffResult, when the comparison ran
        rendered: Report text per format
        report_paths: Files written, in format order
        error: Failure description
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool
    result: Optional[DiffResult] = None
    rendered: Dict[str, str] = Field(default_factory=dict)
    report_paths: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class CycleReport(BaseModel):
    """Everything one pipeline cycle did for one ChangeEvent.

    Attributes:
        event: The ChangeEvent processed
        states: Pipeline states entered, in order
        backup_id: Backup taken this cycle (auto or on validation failure)
        validation: Validation result, if validation ran
        diff: Diff outcome, if a comparison ran
        entry: The ChangeLogEntry written (None if the write failed)
        hook_outcomes: One outcome per enabled hook
        errors: Step failures, in order
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    event: ChangeEvent
    states: List[PipelineState] = Field(default_factory=list)
    backup_id: Optional[str] = None
    validation: Optional[ValidationResult] = None
    diff: Optional[DiffOutcome] = None
    entry: Optional[ChangeLogEntry] = None
    hook_outcomes: List[HookOutcome] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class OrchestratorStatus(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    is_monitoring: bool
    watched_files: List[str] = Field(default_factory=list)
    states: Dict[str, str] = Field(default_factory=dict)
    total_changes: int = 0
    last_change: Optional[datetime] = None
    registered_hooks: List[str] = Field(default_factory=list)
    validators: List[str] = Field(default_factory=list)
    backups: Optional[Dict[str, Any]] = None
    errors: List[str] = Field(default_factory=list)


@dataclass
class _PathWorker:
    queue: asyncio.Queue
    task: Optional[asyncio.Task] = None
    state: PipelineState = PipelineState.IDLE
    processed: int = 0
    history: deque = field(default_factory=lambda: deque(maxlen=20))


_CONTENT_KINDS = (ChangeKind.ADDED, ChangeKind.CHANGED)


# =============================================================================
# Orchestrator
# =============================================================================


class UpdateOrchestrator:
    """State machine tying the monitor, backups, validation, diffing, log and hooks together."""

    def __init__(self, settings: Settings | None = None, notifier: Notifier | None = None):
        self.settings = settings or Settings()
        self.notifier = notifier or Notifier()

        s = self.settings
        self.monitor = ChangeMonitor(s.monitor, self.notifier)
        self.backups: BackupStore | None = BackupStore(s.backup, self.notifier) if s.backup.enabled else None
        self.validator = ValidationPipeline(s.validation, s.dialect, notifier=self.notifier)
        self.diff_engine: DiffEngine | None = DiffEngine(s.diff, s.dialect, self.notifier) if s.diff.enabled else None
        self.reports = ReportGenerator(
            ReportOptions(max_rows_to_show=s.diff.max_rows_in_report, theme=s.diff.report_theme)
        )
        self.change_log = ChangeLog(s.changelog.directory, s.changelog.file_name)
        self.hooks = HookRegistry()

        self._errors: deque[str] = deque(maxlen=s.orchestrator.error_buffer_size)
        self._workers: dict[str, _PathWorker] = {}
        self._retiring: set[asyncio.Task] = set()
        self._initialized = False

        if s.orchestrator.bookstore_hooks:
            for hook in bookstore_rebuild_hooks(dialect=s.dialect):
                self.hooks.register(hook)

        self.monitor.subscribe(self._enqueue)
        self.monitor.subscribe_errors(self._on_monitor_error)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """Prepare the change log and backup store.

        Raises:
            SentinelError: If either cannot be initialized
        """
        try:
            await asyncio.to_thread(self.change_log.initialize)
            if self.backups is not None:
                await self.backups.initialize()
        except SentinelError as e:
            await self._add_error(f"Failed to initialize orchestrator: {e}")
            raise

        self._initialized = True
        logger.info("Orchestrator initialized")
        await self.notifier.publish("orchestrator.initialized")

    async def close(self) -> None:
        """Stop watching, let queued cycles finish and stop the workers."""
        await self.monitor.close()
        for key in list(self._workers):
            self._stop_worker(key)
        if self._retiring:
            await asyncio.gather(*list(self._retiring), return_exceptions=True)
        logger.info("Orchestrator closed")

    async def __aenter__(self) -> "UpdateOrchestrator":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    # =========================================================================
    # Watching
    # =========================================================================

    async def watch(self, path: Path | str) -> WatchResult:
        """Start monitoring a file. Failures are returned, not raised."""
        key = normalize_path(path)
        try:
            await self._ensure_initialized()
            await self.monitor.watch(key)
        except SentinelError as e:
            message = f"Failed to watch file {key}: {e}"
            await self._add_error(message)
            return WatchResult(path=key, success=False, error=message)

        worker = self._worker_for(key)
        worker.state = PipelineState.WATCH_STARTED
        await self.notifier.publish("watch.started", path=key)
        return WatchResult(path=key, success=True)

    async def unwatch(self, path: Path | str) -> bool:
        """Stop monitoring a file. Queued cycles for it still run to completion."""
        key = normalize_path(path)
        removed = await self.monitor.unwatch(key)
        self._stop_worker(key)
        if removed:
            await self.notifier.publish("watch.stopped", path=key)
        return removed

    async def unwatch_all(self) -> None:
        for key in self.monitor.watched_paths:
            await self.unwatch(key)

    async def drain(self) -> None:
        """Wait until pending debounce timers fired and every queued cycle finished."""
        await self.monitor.drain()
        for worker in list(self._workers.values()):
            await worker.queue.join()
        if self._retiring:
            await asyncio.gather(*list(self._retiring), return_exceptions=True)

    def _worker_for(self, key: str) -> _PathWorker:
        worker = self._workers.get(key)
        if worker is None or worker.task is None or worker.task.done():
            previous = worker
            worker = _PathWorker(queue=asyncio.Queue())
            if previous is not None:
                worker.state = previous.state
                worker.processed = previous.processed
            worker.task = asyncio.create_task(self._run_worker(key, worker), name=f"csv-sentinel:{Path(key).name}")
            self._workers[key] = worker
        return worker

    def _stop_worker(self, key: str) -> None:
        worker = self._workers.pop(key, None)
        if worker is not None and worker.task is not None and not worker.task.done():
            # Sentinel: stop after everything already queued
            worker.queue.put_nowait(None)
            self._retiring.add(worker.task)
            worker.task.add_done_callback(self._retiring.discard)

    async def _run_worker(self, key: str, worker: _PathWorker) -> None:
        while True:
            event = await worker.queue.get()
            try:
                if event is None:
                    return
                await self.process_event(event)
            except Exception as e:
                await self._add_error(f"Error handling file change for {key}: {e}")
            finally:
                worker.queue.task_done()

    def _enqueue(self, event: ChangeEvent) -> None:
        # A classification in flight during unwatch can still emit
        if not self.monitor.is_watching(event.path):
            logger.debug(f"Dropped {event.kind.value} for {event.path}: no longer watched")
            return
        worker = self._worker_for(event.path)
        worker.state = PipelineState.CHANGE_PENDING
        worker.queue.put_nowait(event)
        logger.debug(f"Queued {event.kind.value} for {event.path} ({worker.queue.qsize()} pending)")

    async def _on_monitor_error(self, path: str, error: Exception) -> None:
        await self._add_error(f"Monitor error for {path}: {error}")

    # =========================================================================
    # Cycle
    # =========================================================================

    def _set_state(self, key: str, state: PipelineState, states: list[PipelineState]) -> None:
        states.append(state)
        worker = self._workers.get(key)
        if worker is not None:
            worker.state = state

    async def process_event(self, event: ChangeEvent) -> CycleReport:
        """Run one full cycle for ``event`` and report what happened.

        Called by the per-path worker; callers driving the pipeline by hand
        must not call it concurrently for the same path.
        """
        await self._ensure_initialized()
        key = event.path
        s = self.settings
        states: list[PipelineState] = []
        errors: list[str] = []
        backup_id: str | None = None
        auto_backup_id: str | None = None
        validation: ValidationResult | None = None
        diff: DiffOutcome | None = None
        carries_content = event.kind in _CONTENT_KINDS

        logger.info(f"Processing {event.kind.value} for {key}")

        async def fail(message: str) -> None:
            errors.append(message)
            await self._add_error(message)

        # ---------------------------------------------------------------------
        # Step 1: Auto-backup
        # ---------------------------------------------------------------------
        if carries_content and self.backups is not None and s.backup.auto_backup:
            self._set_state(key, PipelineState.BACKING_UP, states)
            result = await self.backups.create_backup(
                key,
                context=f"Auto-backup before {event.kind.value} event",
                tags=["auto-backup", event.kind.value],
            )
            await self._note_retention_failure(result)
            if result.success:
                backup_id = auto_backup_id = result.backup_id
            else:
                await fail(f"Auto-backup failed for {key}: {result.error}")

        # ---------------------------------------------------------------------
        # Step 2: Validation
        # ---------------------------------------------------------------------
        if carries_content and s.validation.enabled:
            self._set_state(key, PipelineState.VALIDATING, states)
            validation = await self.validator.validate_file(key)

            if (
                not validation.is_valid
                and self.backups is not None
                and s.backup.backup_on_validation_failure
                and backup_id is None
            ):
                self._set_state(key, PipelineState.BACKING_UP, states)
                result = await self.backups.create_backup(
                    key,
                    context="Backup due to validation failure",
                    tags=["validation-failure", event.kind.value],
                )
                await self._note_retention_failure(result)
                if result.success:
                    backup_id = result.backup_id
                else:
                    await fail(f"Validation failure backup failed for {key}: {result.error}")

        # ---------------------------------------------------------------------
        # Step 3: Diff against the previous backup
        # ---------------------------------------------------------------------
        if (
            carries_content
            and self.diff_engine is not None
            and auto_backup_id is not None
            and s.diff.compare_with_backups
        ):
            self._set_state(key, PipelineState.DIFFING, states)
            diff = await self._diff_with_previous_backup(key, auto_backup_id)
            if diff is not None and not diff.success:
                await fail(f"Automatic diff report generation failed for {key}: {diff.error}")

        # ---------------------------------------------------------------------
        # Step 4: Change log
        # ---------------------------------------------------------------------
        metadata = ChangeLogMetadata(
            backup_id=backup_id,
            validation=validation.summary() if validation is not None else None,
            validation_errors=[issue.message for issue in validation.errors] if validation is not None else [],
            validation_warnings=[w.message for w in validation.warnings] if validation is not None else [],
            row_count=validation.row_count if validation is not None else None,
            column_count=len(validation.headers) if validation is not None and validation.headers else None,
            headers=validation.headers if validation is not None else None,
            diff_reports=diff.report_paths if diff is not None else [],
            errors=list(errors),
        )
        entry: ChangeLogEntry | None = None
        try:
            entry = await asyncio.to_thread(self.change_log.append, event, metadata)
            self._set_state(key, PipelineState.LOGGED, states)
            await self.notifier.publish("changelog.appended", path=key, entry_id=entry.id, sequence=entry.sequence)
        except SentinelError as e:
            await fail(f"Failed to log change for {key}: {e}")

        # ---------------------------------------------------------------------
        # Step 5: Rebuild hooks
        # ---------------------------------------------------------------------
        outcomes: list[HookOutcome] = []
        if entry is not None:
            outcomes = await self.hooks.run(event, entry)
            for outcome in outcomes:
                await self.notifier.publish(
                    "hook.executed", name=outcome.name, path=key, success=outcome.success, error=outcome.error
                )
                if not outcome.success:
                    await fail(outcome.error or f"Hook '{outcome.name}' failed")
            self._set_state(key, PipelineState.HOOKS_RUN, states)

        worker = self._workers.get(key)
        if worker is not None:
            worker.state = PipelineState.IDLE
            worker.processed += 1
            worker.history.append(event.kind.value)

        report = CycleReport(
            event=event,
            states=states,
            backup_id=backup_id,
            validation=validation,
            diff=diff,
            entry=entry,
            hook_outcomes=outcomes,
            errors=errors,
        )
        logger.info(f"Cycle for {key} finished: {' -> '.join(st.value for st in states) or 'nothing to do'}")
        await self.notifier.publish("orchestrator.cycle_completed", path=key, kind=event.kind.value, success=report.success)
        return report

    async def _note_retention_failure(self, result: BackupResult) -> None:
        if result.retention_error:
            await self._add_error(result.retention_error)

    async def _diff_with_previous_backup(self, key: str, current_backup_id: str) -> DiffOutcome | None:
        if self.backups is None:
            return None
        history = await self.backups.list_backups(BackupFilter(original_path=key, sort_by="version"))
        previous = next((record for record in history if record.id != current_backup_id), None)
        if previous is None:
            logger.debug(f"No earlier backup of {key} to compare with")
            return None

        return await self.compare_with_backup(
            key,
            previous.id,
            formats=self.settings.diff.report_formats if self.settings.diff.auto_generate_reports else (),
            output_dir=self.settings.diff.report_dir,
        )

    # =========================================================================
    # Errors
    # =========================================================================

    async def _add_error(self, message: str) -> None:
        entry = f"[{to_iso(utc_now())}] {message}"
        self._errors.append(entry)
        logger.error(message)
        await self.notifier.publish("orchestrator.error", message=entry)

    @property
    def errors(self) -> list[str]:
        return list(self._errors)

    def clear_errors(self) -> None:
        self._errors.clear()

    # =========================================================================
    # Status
    # =========================================================================

    async def get_status(self) -> OrchestratorStatus:
        summary = await self.get_change_log_summary()
        backups = None
        if self.backups is not None:
            stats = await self.backups.get_stats()
            backups = {
                "enabled": True,
                "total_backups": stats.total_backups,
                "total_size": stats.total_size,
                "auto_backup": self.settings.backup.auto_backup,
            }

        watched = self.monitor.watched_paths
        return OrchestratorStatus(
            is_monitoring=bool(watched),
            watched_files=watched,
            states={key: worker.state.value for key, worker in sorted(self._workers.items())},
            total_changes=summary.total_changes,
            last_change=summary.last_change,
            registered_hooks=self.hooks.names(),
            validators=self.validator.validators.names(),
            backups=backups,
            errors=self.errors,
        )

    # =========================================================================
    # Validation
    # =========================================================================

    async def validate_file(self, path: Path | str) -> ValidationResult:
        return await self.validator.validate_file(path)

    def register_custom_validator(self, validator: FieldValidator) -> None:
        self.validator.register_custom_validator(validator)

    def unregister_custom_validator(self, name: str) -> bool:
        return self.validator.unregister_custom_validator(name)

    def get_validation_stats(self) -> list[dict[str, Any]]:
        return self.validator.get_validator_stats()

    # =========================================================================
    # Hooks
    # =========================================================================

    def register_hook(self, hook: RebuildHook) -> None:
        self.hooks.register(hook)
        logger.debug(f"Hook registered: {hook.name}")

    def unregister_hook(self, name: str) -> bool:
        try:
            self.hooks.unregister(name)
        except HookError as e:
            logger.warning(str(e))
            return False
        return True

    def toggle_hook(self, name: str, enabled: bool) -> bool:
        try:
            self.hooks.toggle(name, enabled)
        except HookError as e:
            logger.warning(str(e))
            return False
        logger.debug(f"Hook {name} {'enabled' if enabled else 'disabled'}")
        return True

    def get_registered_hooks(self) -> list[RebuildHook]:
        return self.hooks.hooks()

    # =========================================================================
    # Backups
    # =========================================================================

    def _backups_disabled(self) -> str:
        return "Backup store is disabled (backup.enabled = false)"

    async def _backups_unavailable(self) -> str | None:
        """Why the backup store cannot serve a request, or None when it can."""
        if self.backups is None:
            return self._backups_disabled()
        try:
            await self._ensure_initialized()
        except SentinelError as e:
            return f"Backup store unavailable: {e}"
        return None

    async def create_backup(
        self, path: Path | str, context: str | None = None, tags: Iterable[str] | None = None
    ) -> BackupResult:
        unavailable = await self._backups_unavailable()
        if unavailable is not None:
            return BackupResult(success=False, error=unavailable)
        result = await self.backups.create_backup(path, context=context or "Manual backup", tags=tags or ["manual"])
        await self._note_retention_failure(result)
        if not result.success:
            await self._add_error(f"Backup failed: {result.error}")
        return result

    async def list_backups(self, query: BackupFilter | None = None, **kwargs: Any) -> list[BackupRecord]:
        if await self._backups_unavailable() is not None:
            return []
        return await self.backups.list_backups(query, **kwargs)

    async def verify_backup(self, backup_id: str) -> bool:
        if await self._backups_unavailable() is not None:
            return False
        return await self.backups.verify_backup(backup_id)

    async def restore_backup(self, backup_id: str, target_path: Path | str | None = None) -> RestoreResult:
        unavailable = await self._backups_unavailable()
        if unavailable is not None:
            return RestoreResult(success=False, backup_id=backup_id, error=unavailable)
        result = await self.backups.restore_from_backup(backup_id, target_path)
        if not result.success:
            message = f"Restore failed: {result.error}"
            if result.rollback_error:
                message += f" (rollback failed: {result.rollback_error})"
            await self._add_error(message)
        return result

    async def delete_backup(self, backup_id: str) -> bool:
        if await self._backups_unavailable() is not None:
            return False
        return await self.backups.delete_backup(backup_id)

    # =========================================================================
    # Diffing
    # =========================================================================

    def _diff_disabled(self) -> DiffOutcome:
        return DiffOutcome(success=False, error="Diff engine is disabled (diff.enabled = false)")

    async def compare_files(
        self,
        old_path: Path | str,
        new_path: Path | str,
        mode: DiffMode | None = None,
        key_columns: List[str] | None = None,
    ) -> DiffOutcome:
        """Compare two files. Failures are returned, not raised."""
        if self.diff_engine is None:
            return self._diff_disabled()
        try:
            result = await self.diff_engine.compare_files(old_path, new_path, mode=mode, key_columns=key_columns)
        except SentinelError as e:
            message = f"Diff operation failed: {e}"
            await self._add_error(message)
            return DiffOutcome(success=False, error=message)
        return DiffOutcome(success=True, result=result)

    async def compare_with_backup(
        self,
        path: Path | str,
        backup_id: str,
        formats: Iterable[ReportFormat] = (),
        output_dir: Path | str | None = None,
    ) -> DiffOutcome:
        """Compare a backup (old side) with the current file (new side).

        The verified payload is exported to a scratch directory that is
        removed afterwards. With ``formats`` the reports are rendered and,
        with ``output_dir``, written there.
        """
        if self.diff_engine is None:
            return self._diff_disabled()
        if self.backups is None:
            return DiffOutcome(success=False, error=self._backups_disabled())

        key = normalize_path(path)
        try:
            with tempfile.TemporaryDirectory(prefix="csv-sentinel-") as scratch:
                exported = await self.backups.export_payload(backup_id, Path(scratch) / Path(key).name)
                result = await self.diff_engine.compare_files(
                    exported, key, old_label=f"backup:{backup_id}", new_label=key
                )
        except SentinelError as e:
            message = f"Failed to compare {key} with backup {backup_id}: {e}"
            await self._add_error(message)
            return DiffOutcome(success=False, error=message)

        await self.notifier.publish("diff.backup_compared", path=key, backup_id=backup_id)
        return await self._render_reports(result, list(formats), output_dir, Path(key).stem)

    async def generate_diff_report(
        self,
        old_path: Path | str,
        new_path: Path | str,
        formats: Iterable[ReportFormat] = ("console",),
        output_dir: Path | str | None = None,
    ) -> DiffOutcome:
        """Compare two files and render the result in each format."""
        outcome = await self.compare_files(old_path, new_path)
        if not outcome.success or outcome.result is None:
            return outcome
        return await self._render_reports(outcome.result, list(formats), output_dir, Path(new_path).stem)

    async def _render_reports(
        self,
        result: DiffResult,
        formats: list[ReportFormat],
        output_dir: Path | str | None,
        stem: str,
    ) -> DiffOutcome:
        rendered: dict[str, str] = {}
        paths: list[str] = []
        stamp = result.timestamp.strftime("%Y%m%dT%H%M%S%fZ")

        try:
            for fmt in formats:
                target = None
                if output_dir is not None:
                    target = Path(output_dir) / f"diff-{stem}-{stamp}.{REPORT_EXTENSIONS[fmt]}"
                rendered[fmt] = await asyncio.to_thread(self.reports.render, result, fmt, target)
                if target is not None:
                    paths.append(str(target))
        except SentinelError as e:
            message = f"Failed to generate diff report: {e}"
            await self._add_error(message)
            return DiffOutcome(success=False, result=result, rendered=rendered, report_paths=paths, error=message)

        if paths:
            await self.notifier.publish("diff.report_generated", source=result.source_files.new, paths=paths)
        return DiffOutcome(success=True, result=result, rendered=rendered, report_paths=paths)

    # =========================================================================
    # Change log
    # =========================================================================

    async def get_recent_changes(self, limit: int = 10) -> list[ChangeLogEntry]:
        return await asyncio.to_thread(self.change_log.recent, limit)

    async def get_file_changes(self, path: Path | str, limit: int | None = None) -> list[ChangeLogEntry]:
        return await asyncio.to_thread(self.change_log.for_file, normalize_path(path), limit)

    async def query_changes(self, query: ChangeLogQuery) -> list[ChangeLogEntry]:
        return await asyncio.to_thread(self.change_log.query, query)

    async def get_change_log_summary(self) -> ChangeLogSummary:
        return await asyncio.to_thread(self.change_log.summary)

    async def export_change_log(self, format: Literal["json", "csv"] = "json") -> str:
        return await asyncio.to_thread(self.change_log.export, format)


# =============================================================================
# Display
# =============================================================================


def format_status(status: OrchestratorStatus) -> str:
    """Multi-line human-readable status."""
    lines = [
        f"Monitoring Status: {'Active' if status.is_monitoring else 'Inactive'}",
        f"Watched Files: {len(status.watched_files)}",
    ]
    for path in status.watched_files:
        state = status.states.get(path, PipelineState.IDLE.value)
        lines.append(f"  - {Path(path).name} [{state}]")
    lines.append(f"Total Changes: {status.total_changes}")
    lines.append(f"Last Change: {to_iso(status.last_change)}" if status.last_change else "No changes recorded")
    lines.append(f"Registered Hooks: {len(status.registered_hooks)}")
    lines += [f"  - {name}" for name in status.registered_hooks]
    lines.append(f"Validators: {', '.join(status.validators) or 'none'}")
    if status.backups is not None:
        lines.append(f"Backups: {status.backups['total_backups']} (auto-backup {'on' if status.backups['auto_backup'] else 'off'})")
    if status.errors:
        lines.append("")
        lines.append("Recent Errors:")
        lines += [f"  {error}" for error in status.errors[-5:]]
    return "\n".join(lines)
