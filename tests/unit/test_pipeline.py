"""Unit tests for the update orchestrator.

Cycles are driven through ``process_event`` with events built by the
``make_event`` fixture, so no watcher is involved.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import pytest_asyncio

from tests.conftest import VALID_CONTACTS

pytestmark = pytest.mark.unit

INVALID_EMAIL = VALID_CONTACTS.replace("hi@quietpages.example.com", "not-an-email")


@pytest_asyncio.fixture
async def orchestrator(settings):
    from csv_sentinel.pipeline import UpdateOrchestrator

    orch = UpdateOrchestrator(settings)
    await orch.initialize()
    yield orch
    await orch.close()


class TestProcessEvent:
    """Test one pipeline cycle."""

    @pytest.mark.asyncio
    async def test_Should_VisitEveryStep_When_FirstChange(self, orchestrator, contacts_csv, make_event):
        """No earlier backup exists, so the diff step runs but compares nothing."""
        from csv_sentinel.pipeline import PipelineState

        report = await orchestrator.process_event(make_event(contacts_csv))

        assert report.states == [
            PipelineState.BACKING_UP,
            PipelineState.VALIDATING,
            PipelineState.DIFFING,
            PipelineState.LOGGED,
            PipelineState.HOOKS_RUN,
        ]
        assert report.success
        assert report.backup_id is not None
        assert report.validation.is_valid
        assert report.diff is None
        assert report.entry.metadata.backup_id == report.backup_id
        assert report.entry.metadata.row_count == 3

    @pytest.mark.asyncio
    async def test_Should_SkipContentSteps_When_FileDeleted(self, orchestrator, contacts_csv, make_event):
        """Deleted files are logged and run hooks but are not backed up or validated."""
        from csv_sentinel.monitor import ChangeKind
        from csv_sentinel.pipeline import PipelineState

        contacts_csv.unlink()
        report = await orchestrator.process_event(make_event(contacts_csv, ChangeKind.DELETED))

        assert report.states == [PipelineState.LOGGED, PipelineState.HOOKS_RUN]
        assert report.backup_id is None
        assert report.validation is None
        assert report.entry.event.kind is ChangeKind.DELETED

    @pytest.mark.asyncio
    async def test_Should_WriteReports_When_SecondChangeArrives(self, orchestrator, settings, contacts_csv, make_event):
        """The second cycle diffs the first backup against the live file."""
        await orchestrator.process_event(make_event(contacts_csv))
        contacts_csv.write_text(VALID_CONTACTS.replace("30.27", "32.78"), encoding="utf-8")

        report = await orchestrator.process_event(make_event(contacts_csv))

        assert report.diff is not None and report.diff.success
        assert report.diff.result.statistics.changes.modified == 1
        assert report.diff.result.source_files.old.startswith("backup:")
        assert sorted(Path(p).suffix for p in report.diff.report_paths) == [".html", ".json"]
        assert all(Path(p).parent == settings.diff.report_dir for p in report.diff.report_paths)
        assert report.entry.metadata.diff_reports == report.diff.report_paths

    @pytest.mark.asyncio
    async def test_Should_RenderWithoutWriting_When_AutoReportsOff(self, settings, contacts_csv, make_event):
        from csv_sentinel.pipeline import UpdateOrchestrator

        settings.diff.auto_generate_reports = False
        async with UpdateOrchestrator(settings) as orchestrator:
            await orchestrator.process_event(make_event(contacts_csv))
            contacts_csv.write_text(VALID_CONTACTS + "New Leaf,x@newleaf.example.com,,,,\n", encoding="utf-8")
            report = await orchestrator.process_event(make_event(contacts_csv))

        assert report.diff.success
        assert report.diff.result.statistics.changes.added == 1
        assert report.diff.report_paths == []
        assert list(settings.diff.report_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_Should_BackUpOnFailure_When_AutoBackupOff(self, settings, write_file, make_event):
        from csv_sentinel.pipeline import PipelineState, UpdateOrchestrator

        settings.backup.auto_backup = False
        path = write_file("contacts.csv", INVALID_EMAIL)
        async with UpdateOrchestrator(settings) as orchestrator:
            report = await orchestrator.process_event(make_event(path))
            [record] = await orchestrator.list_backups()

        assert report.validation.is_valid is False
        assert report.states[:2] == [PipelineState.VALIDATING, PipelineState.BACKING_UP]
        assert report.backup_id == record.id
        assert record.context == "Backup due to validation failure"
        assert "validation-failure" in record.tags
        assert PipelineState.DIFFING not in report.states

    @pytest.mark.asyncio
    async def test_Should_TakeOneBackup_When_InvalidAndAutoBackupOn(self, orchestrator, write_file, make_event):
        path = write_file("contacts.csv", INVALID_EMAIL)

        report = await orchestrator.process_event(make_event(path))

        assert len(await orchestrator.list_backups()) == 1
        assert report.entry.metadata.validation["is_valid"] is False
        assert "INVALID_EMAIL_FORMAT" in report.entry.metadata.validation["codes"]

    @pytest.mark.asyncio
    async def test_Should_RecordError_When_HookFails(self, orchestrator, contacts_csv, make_event):
        """A failing hook is reported but later hooks still run."""
        from csv_sentinel.hooks import RebuildHook

        calls = []

        def broken(event, entry):
            raise RuntimeError("site offline")

        orchestrator.register_hook(RebuildHook("broken", "", broken))
        orchestrator.register_hook(RebuildHook("after", "", lambda event, entry: calls.append(entry.sequence)))

        report = await orchestrator.process_event(make_event(contacts_csv))

        assert calls == [1]
        assert report.errors == ["Hook 'broken' failed: site offline"]
        assert orchestrator.errors[-1].endswith("Hook 'broken' failed: site offline")

    @pytest.mark.asyncio
    async def test_Should_PublishCycleTopics_When_CycleCompletes(self, orchestrator, contacts_csv, make_event):
        seen = []
        orchestrator.notifier.subscribe("orchestrator.cycle_completed", lambda n: seen.append(n.payload))

        await orchestrator.process_event(make_event(contacts_csv))

        assert seen[0]["success"] is True
        assert "changelog.appended" in orchestrator.notifier.topic_history()

    @pytest.mark.asyncio
    async def test_Should_SkipBackupSteps_When_StoreDisabled(self, settings, contacts_csv, make_event):
        from csv_sentinel.pipeline import PipelineState, UpdateOrchestrator

        settings.backup.enabled = False
        async with UpdateOrchestrator(settings) as orchestrator:
            report = await orchestrator.process_event(make_event(contacts_csv))
            created = await orchestrator.create_backup(contacts_csv)

        assert orchestrator.backups is None
        assert report.states == [PipelineState.VALIDATING, PipelineState.LOGGED, PipelineState.HOOKS_RUN]
        assert created.success is False
        assert "disabled" in created.error


class TestErrors:
    """Test the bounded recent-error list."""

    @pytest.mark.asyncio
    async def test_Should_KeepNewest_When_BufferFull(self, settings, tmp_work_dir):
        from csv_sentinel.pipeline import UpdateOrchestrator

        settings.orchestrator.error_buffer_size = 2
        orchestrator = UpdateOrchestrator(settings)
        for name in ("a.csv", "b.csv", "c.csv"):
            await orchestrator.watch(tmp_work_dir / "missing" / name)

        assert len(orchestrator.errors) == 2
        assert "c.csv" in orchestrator.errors[-1]
        orchestrator.clear_errors()
        assert orchestrator.errors == []
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_Should_ReturnFailure_When_WatchTargetMissing(self, orchestrator, tmp_work_dir):
        result = await orchestrator.watch(tmp_work_dir / "missing" / "x.csv")

        assert result.success is False
        assert result.error.startswith("Failed to watch file")

    @pytest.mark.asyncio
    async def test_Should_ReturnFailures_When_BackupIndexCorrupt(self, settings, tmp_work_dir):
        """An unreadable index surfaces as failed results and recorded errors."""
        # Arrange
        from csv_sentinel.pipeline import UpdateOrchestrator

        backups = tmp_work_dir / "backups"
        backups.mkdir(parents=True, exist_ok=True)
        (backups / "backup-metadata.json").write_text("{not json", encoding="utf-8")
        orchestrator = UpdateOrchestrator(settings)

        # Act
        restored = await orchestrator.restore_backup("nope")
        listed = await orchestrator.list_backups()
        deleted = await orchestrator.delete_backup("nope")

        # Assert
        assert restored.success is False
        assert "unreadable" in restored.error
        assert listed == []
        assert deleted is False
        assert any("unreadable" in error for error in orchestrator.errors)
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_Should_KeepBackupAndDiff_When_RetentionFails(self, orchestrator, contacts_csv, make_event, monkeypatch):
        """A failed sweep is recorded but the cycle keeps its backup and diff."""
        from csv_sentinel.pipeline import PipelineState

        await orchestrator.process_event(make_event(contacts_csv))
        contacts_csv.write_text(VALID_CONTACTS.replace("30.27", "32.78"), encoding="utf-8")

        async def broken_sweep(original_path, protected):
            raise OSError("disk full")

        monkeypatch.setattr(orchestrator.backups, "_apply_retention_locked", broken_sweep)
        report = await orchestrator.process_event(make_event(contacts_csv))

        assert report.backup_id is not None
        assert report.entry.metadata.backup_id == report.backup_id
        assert PipelineState.DIFFING in report.states
        assert report.diff is not None and report.diff.success
        assert any("Retention after backup" in error for error in orchestrator.errors)

    @pytest.mark.asyncio
    async def test_Should_DropEvent_When_PathNoLongerWatched(self, orchestrator, contacts_csv, make_event):
        """Events emitted after unwatch do not start a worker."""
        from csv_sentinel.monitor import normalize_path

        await orchestrator.watch(contacts_csv)
        await orchestrator.unwatch(contacts_csv)

        orchestrator._enqueue(make_event(contacts_csv))
        await orchestrator.drain()

        assert normalize_path(contacts_csv) not in orchestrator._workers
        assert await orchestrator.get_recent_changes() == []

    @pytest.mark.asyncio
    async def test_Should_SkipPreviousDiff_When_StoreDisabled(self, settings, contacts_csv):
        from csv_sentinel.pipeline import UpdateOrchestrator

        settings.backup.enabled = False
        orchestrator = UpdateOrchestrator(settings)

        assert await orchestrator._diff_with_previous_backup(str(contacts_csv), "any") is None


class TestCallerOperations:
    """Test the operations offered to callers outside a cycle."""

    @pytest.mark.asyncio
    async def test_Should_UseManualDefaults_When_CreateBackupCalled(self, orchestrator, contacts_csv):
        result = await orchestrator.create_backup(contacts_csv)

        assert result.success
        assert result.record.context == "Manual backup"
        assert result.record.tags == ["manual"]
        assert await orchestrator.verify_backup(result.backup_id)

    @pytest.mark.asyncio
    async def test_Should_CompareAgainstBackup_When_BackupIdGiven(self, orchestrator, contacts_csv, tmp_work_dir):
        backup = await orchestrator.create_backup(contacts_csv)
        contacts_csv.write_text(VALID_CONTACTS.replace("Lantern Books,", "Lamp Books,"), encoding="utf-8")

        outcome = await orchestrator.compare_with_backup(
            contacts_csv, backup.backup_id, formats=["json"], output_dir=tmp_work_dir / "reports"
        )

        assert outcome.success
        counts = outcome.result.statistics.changes
        assert (counts.added, counts.removed) == (1, 1)
        document = json.loads(Path(outcome.report_paths[0]).read_text(encoding="utf-8"))
        assert document["diff_result"]["source_files"]["old"] == f"backup:{backup.backup_id}"

    @pytest.mark.asyncio
    async def test_Should_ReturnFailure_When_BackupUnknown(self, orchestrator, contacts_csv):
        outcome = await orchestrator.compare_with_backup(contacts_csv, "nope_1_00000000")

        assert outcome.success is False
        assert "nope_1_00000000" in outcome.error

    @pytest.mark.asyncio
    async def test_Should_ReturnFailure_When_CompareFileMissing(self, orchestrator, contacts_csv, tmp_work_dir):
        outcome = await orchestrator.compare_files(contacts_csv, tmp_work_dir / "absent.csv")

        assert outcome.success is False
        assert outcome.error.startswith("Diff operation failed")

    @pytest.mark.asyncio
    async def test_Should_RenderEachFormat_When_ReportRequested(self, orchestrator, contacts_csv, write_file):
        newer = write_file("newer.csv", VALID_CONTACTS.replace("30.27", "32.78"))

        outcome = await orchestrator.generate_diff_report(contacts_csv, newer, formats=["console", "markdown"])

        assert list(outcome.rendered) == ["console", "markdown"]
        assert outcome.report_paths == []

    @pytest.mark.asyncio
    async def test_Should_SummarizeState_When_StatusRequested(self, orchestrator, contacts_csv, make_event):
        from csv_sentinel.pipeline import format_status

        await orchestrator.watch(contacts_csv)
        await orchestrator.process_event(make_event(contacts_csv))

        status = await orchestrator.get_status()
        text = format_status(status)

        assert status.is_monitoring
        assert status.total_changes == 1
        assert status.backups["total_backups"] == 1
        assert "email-format" in status.validators
        assert text.startswith("Monitoring Status: Active")
        assert "contacts.csv [idle]" in text

    @pytest.mark.asyncio
    async def test_Should_FilterByFile_When_FileChangesRequested(self, orchestrator, contacts_csv, write_file, make_event):
        other = write_file("other.csv", "name\nx\n")
        await orchestrator.process_event(make_event(contacts_csv))
        await orchestrator.process_event(make_event(other))

        entries = await orchestrator.get_file_changes(other)

        assert [Path(e.event.path).name for e in entries] == ["other.csv"]
        assert len(await orchestrator.get_recent_changes()) == 2


class TestRegistries:
    """Test hook and validator management through the orchestrator."""

    @pytest.mark.asyncio
    async def test_Should_SkipHook_When_ToggledOff(self, orchestrator, contacts_csv, make_event):
        from csv_sentinel.hooks import RebuildHook

        calls = []
        orchestrator.register_hook(RebuildHook("count", "Counts calls", lambda event, entry: calls.append(1)))

        assert orchestrator.toggle_hook("count", False) is True
        report = await orchestrator.process_event(make_event(contacts_csv))

        assert calls == []
        assert report.hook_outcomes == []
        assert [h.name for h in orchestrator.get_registered_hooks()] == ["count"]
        assert orchestrator.unregister_hook("count") is True
        assert orchestrator.get_registered_hooks() == []

    def test_Should_RegisterBookstoreHooks_When_Enabled(self, settings):
        from csv_sentinel.pipeline import UpdateOrchestrator

        settings.orchestrator.bookstore_hooks = True

        orchestrator = UpdateOrchestrator(settings)

        assert orchestrator.hooks.names()[0] == "regenerate-json"
        assert orchestrator.hooks.get("notify-administrators").enabled is False

    def test_Should_ReturnFalse_When_HookNameUnknown(self, settings):
        from csv_sentinel.pipeline import UpdateOrchestrator

        orchestrator = UpdateOrchestrator(settings)

        assert orchestrator.toggle_hook("missing", True) is False
        assert orchestrator.unregister_hook("missing") is False

    @pytest.mark.asyncio
    async def test_Should_ApplyCustomValidator_When_RegisteredThroughOrchestrator(self, orchestrator, contacts_csv):
        from csv_sentinel.validation import FunctionValidator, Severity, ValidationIssue

        def no_lanterns(value, row, row_index, column):
            if value.startswith("Lantern"):
                return ValidationIssue(type="data", severity=Severity.ERROR, message="Closed store", code="CLOSED_STORE")
            return None

        orchestrator.register_custom_validator(FunctionValidator("no-lanterns", "Closed stores", no_lanterns, frozenset({"name"})))
        result = await orchestrator.validate_file(contacts_csv)

        assert [(i.row, i.code) for i in result.errors] == [(4, "CLOSED_STORE")]
        assert "no-lanterns" in [s["name"] for s in orchestrator.get_validation_stats()]
        assert orchestrator.unregister_custom_validator("no-lanterns") is True
        assert (await orchestrator.validate_file(contacts_csv)).is_valid

    @pytest.mark.asyncio
    async def test_Should_FilterByKind_When_ChangesQueried(self, orchestrator, contacts_csv, make_event):
        from csv_sentinel.changelog import ChangeLogQuery
        from csv_sentinel.monitor import ChangeKind

        await orchestrator.process_event(make_event(contacts_csv, ChangeKind.ADDED))
        await orchestrator.process_event(make_event(contacts_csv, ChangeKind.CHANGED))

        entries = await orchestrator.query_changes(ChangeLogQuery(kind=ChangeKind.ADDED))
        exported = await orchestrator.export_change_log("csv")

        assert [e.sequence for e in entries] == [1]
        assert len(exported.strip().splitlines()) == 3
