"""Unit tests for the backup package.

Covers creation, verification, restore with safety backup and rollback,
deletion, retention and the persisted index.
"""

from __future__ import annotations

import gzip
from pathlib import Path

import pytest

pytestmark = pytest.mark.unit


def _store(tmp_path: Path, **overrides):
    from csv_sentinel.backup import BackupStore
    from csv_sentinel.config import BackupConfig

    return BackupStore(BackupConfig(directory=tmp_path / "backups", **overrides))


class TestCreateBackup:
    """Test snapshot creation."""

    @pytest.mark.asyncio
    async def test_Should_RecordChecksumAndVersion_When_BackupCreated(self, tmp_path: Path, contacts_csv: Path):
        """The record carries the original checksum, size and version 1."""
        # Arrange
        from csv_sentinel.utils import file_hash

        store = _store(tmp_path)

        # Act
        result = await store.create_backup(contacts_csv, context="manual", tags=["manual"])

        # Assert
        assert result.success
        record = result.record
        assert record.version == 1
        assert record.checksum == file_hash(contacts_csv)
        assert record.file_size == contacts_csv.stat().st_size
        assert record.original_path == str(contacts_csv.resolve())
        assert record.id.startswith("contacts_")
        assert Path(record.backup_path).exists()
        assert record.tags == ["manual"]

    @pytest.mark.asyncio
    async def test_Should_StoreGzipPayload_When_CompressionEnabled(self, tmp_path: Path, contacts_csv: Path):
        """Compressed payloads decompress to the original bytes."""
        store = _store(tmp_path)

        record = (await store.create_backup(contacts_csv)).record

        assert record.compressed is True
        assert record.backup_path.endswith(".csv.gz")
        assert gzip.decompress(Path(record.backup_path).read_bytes()) == contacts_csv.read_bytes()

    @pytest.mark.asyncio
    async def test_Should_StorePlainPayload_When_CompressionDisabled(self, tmp_path: Path, contacts_csv: Path):
        from csv_sentinel.config import CompressionConfig

        store = _store(tmp_path, compression=CompressionConfig(enabled=False))

        record = (await store.create_backup(contacts_csv)).record

        assert record.compressed is False
        assert Path(record.backup_path).read_bytes() == contacts_csv.read_bytes()

    @pytest.mark.asyncio
    async def test_Should_IncrementVersion_When_SamePathBackedUpAgain(self, tmp_path: Path, contacts_csv: Path):
        store = _store(tmp_path)

        first = (await store.create_backup(contacts_csv)).record
        second = (await store.create_backup(contacts_csv)).record

        assert (first.version, second.version) == (1, 2)
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_Should_NotReissueVersion_When_LatestDeleted(self, tmp_path: Path, contacts_csv: Path):
        """Versions stay strictly increasing after the newest backup is deleted."""
        store = _store(tmp_path)
        await store.create_backup(contacts_csv)
        second = (await store.create_backup(contacts_csv)).record

        assert await store.delete_backup(second.id)
        third = (await store.create_backup(contacts_csv)).record

        assert third.version == 3

    @pytest.mark.asyncio
    async def test_Should_ReturnFailure_When_SourceMissing(self, tmp_path: Path):
        """A missing source is a failed result, never an exception."""
        store = _store(tmp_path)
        topics = []
        store.notifier.subscribe("backup.*", lambda n: topics.append(n.topic))

        result = await store.create_backup(tmp_path / "missing.csv")

        assert not result.success
        assert "Source file not found" in result.error
        assert topics == ["backup.started", "backup.failed"]


class TestVerify:
    """Test integrity verification."""

    @pytest.mark.asyncio
    async def test_Should_PassThenFail_When_PayloadCorrupted(self, tmp_path: Path, contacts_csv: Path):
        """Verification succeeds on a fresh backup and fails once a payload byte changes."""
        from csv_sentinel.config import CompressionConfig

        store = _store(tmp_path, compression=CompressionConfig(enabled=False))
        record = (await store.create_backup(contacts_csv)).record
        assert await store.verify_backup(record.id) is True

        payload = Path(record.backup_path)
        data = bytearray(payload.read_bytes())
        data[0] = data[0] ^ 0xFF
        payload.write_bytes(bytes(data))

        assert await store.verify_backup(record.id) is False

    @pytest.mark.asyncio
    async def test_Should_ReturnFalse_When_IdUnknown(self, tmp_path: Path):
        store = _store(tmp_path)

        assert await store.verify_backup("nope") is False

    @pytest.mark.asyncio
    async def test_Should_ReturnFalse_When_PayloadMissing(self, tmp_path: Path, contacts_csv: Path):
        store = _store(tmp_path)
        record = (await store.create_backup(contacts_csv)).record
        Path(record.backup_path).unlink()

        assert await store.verify_backup(record.id) is False


class TestRestore:
    """Test restore, safety backups and rollback."""

    @pytest.mark.asyncio
    async def test_Should_RestoreOriginalBytes_When_FileModified(self, tmp_path: Path, contacts_csv: Path):
        """Restore returns the exact backed-up bytes and takes a pre-restore safety backup."""
        # Arrange
        store = _store(tmp_path)
        original = contacts_csv.read_bytes()
        record = (await store.create_backup(contacts_csv)).record
        contacts_csv.write_text("name\nchanged\n", encoding="utf-8")

        # Act
        result = await store.restore_from_backup(record.id)

        # Assert
        assert result.success
        assert contacts_csv.read_bytes() == original
        assert result.restored_checksum == record.checksum
        safety = await store.get_backup(result.safety_backup_id)
        assert safety is not None
        assert safety.tags == ["pre-restore"]
        assert safety.version == 2

    @pytest.mark.asyncio
    async def test_Should_SkipSafetyBackup_When_TargetAbsent(self, tmp_path: Path, contacts_csv: Path):
        store = _store(tmp_path)
        record = (await store.create_backup(contacts_csv)).record
        target = tmp_path / "restored" / "copy.csv"

        result = await store.restore_from_backup(record.id, target)

        assert result.success
        assert result.safety_backup_id is None
        assert target.read_bytes() == contacts_csv.read_bytes()

    @pytest.mark.asyncio
    async def test_Should_RollBack_When_PayloadCorrupt(self, tmp_path: Path, contacts_csv: Path):
        """A corrupt payload fails the restore and the target keeps its prior content."""
        from csv_sentinel.config import CompressionConfig

        store = _store(tmp_path, compression=CompressionConfig(enabled=False))
        record = (await store.create_backup(contacts_csv)).record
        Path(record.backup_path).write_text("tampered\n", encoding="utf-8")
        contacts_csv.write_text("name\ncurrent\n", encoding="utf-8")

        result = await store.restore_from_backup(record.id)

        assert not result.success
        assert result.rollback_attempted is True
        assert result.rollback_error is None
        assert contacts_csv.read_text(encoding="utf-8") == "name\ncurrent\n"

    @pytest.mark.asyncio
    async def test_Should_ReturnFailure_When_IdUnknown(self, tmp_path: Path):
        store = _store(tmp_path)

        result = await store.restore_from_backup("missing")

        assert not result.success
        assert "not found" in result.error


class TestRetention:
    """Test the retention policy."""

    @pytest.mark.asyncio
    async def test_Should_KeepMaxBackups_When_LimitExceeded(self, tmp_path: Path, contacts_csv: Path):
        """Only the newest max_backups versions remain."""
        from csv_sentinel.config import RetentionConfig

        store = _store(tmp_path, retention=RetentionConfig(max_backups=3, min_backups=1))
        for _ in range(5):
            await store.create_backup(contacts_csv)

        remaining = await store.list_backups(original_path=str(contacts_csv), sort_by="version")

        assert [r.version for r in remaining] == [5, 4, 3]

    @pytest.mark.asyncio
    async def test_Should_ReportDeletedIds_When_RetentionPrunes(self, tmp_path: Path, contacts_csv: Path):
        from csv_sentinel.config import RetentionConfig

        store = _store(tmp_path, retention=RetentionConfig(max_backups=1, min_backups=0))
        first = (await store.create_backup(contacts_csv)).record

        result = await store.create_backup(contacts_csv)

        assert result.retention_deleted == [first.id]
        assert not Path(first.backup_path).exists()

    @pytest.mark.asyncio
    async def test_Should_KeepOtherPaths_When_RetentionRuns(self, tmp_path: Path, contacts_csv: Path, write_file):
        """Retention is per original path."""
        from csv_sentinel.config import RetentionConfig

        other = write_file("other.csv", "name\nx\n")
        store = _store(tmp_path, retention=RetentionConfig(max_backups=1, min_backups=0))
        await store.create_backup(other)
        await store.create_backup(contacts_csv)
        await store.create_backup(contacts_csv)

        assert len(await store.list_backups(original_path=str(other))) == 1
        assert len(await store.list_backups(original_path=str(contacts_csv))) == 1

    @pytest.mark.asyncio
    async def test_Should_KeepSuccess_When_RetentionFailsAfterBackup(self, tmp_path: Path, contacts_csv: Path, monkeypatch):
        """A failed sweep leaves the persisted backup reported as created."""
        # Arrange
        store = _store(tmp_path)

        async def broken_sweep(original_path, protected):
            raise OSError("disk full")

        monkeypatch.setattr(store, "_apply_retention_locked", broken_sweep)

        # Act
        result = await store.create_backup(contacts_csv)

        # Assert
        assert result.success
        assert result.record is not None
        assert "disk full" in result.retention_error
        assert result.retention_deleted == []
        assert [r.id for r in await store.list_backups()] == [result.backup_id]
        assert "backup.retention_failed" in store.notifier.topic_history()
        assert "backup.completed" in store.notifier.topic_history()


class TestIndex:
    """Test the persisted index and listing."""

    @pytest.mark.asyncio
    async def test_Should_ReloadRecords_When_NewStoreOpened(self, tmp_path: Path, contacts_csv: Path):
        store = _store(tmp_path)
        record = (await store.create_backup(contacts_csv, tags=["manual"])).record

        reopened = _store(tmp_path)
        await reopened.initialize()

        assert await reopened.get_backup(record.id) == record

    @pytest.mark.asyncio
    async def test_Should_FilterByTag_When_Listing(self, tmp_path: Path, contacts_csv: Path):
        store = _store(tmp_path)
        await store.create_backup(contacts_csv, tags=["auto-backup"])
        manual = (await store.create_backup(contacts_csv, tags=["manual"])).record

        records = await store.list_backups(tags=["manual"])

        assert [r.id for r in records] == [manual.id]

    @pytest.mark.asyncio
    async def test_Should_RaiseBackupError_When_IndexCorrupt(self, tmp_path: Path):
        from csv_sentinel.exceptions import BackupError

        (tmp_path / "backups").mkdir()
        (tmp_path / "backups" / "backup-metadata.json").write_text("{not json", encoding="utf-8")
        store = _store(tmp_path)

        with pytest.raises(BackupError):
            await store.initialize()

    @pytest.mark.asyncio
    async def test_Should_ReturnExplicitResults_When_IndexCorrupt(self, tmp_path: Path, contacts_csv: Path):
        """Public operations report an unreadable index instead of raising."""
        # Arrange
        (tmp_path / "backups").mkdir(exist_ok=True)
        (tmp_path / "backups" / "backup-metadata.json").write_text("{not json", encoding="utf-8")
        store = _store(tmp_path)

        # Act
        restored = await store.restore_from_backup("nope")
        created = await store.create_backup(contacts_csv)

        # Assert
        assert not restored.success
        assert "unreadable" in restored.error
        assert not created.success
        assert "unreadable" in created.error
        assert await store.list_backups() == []
        assert await store.get_backup("nope") is None
        assert await store.delete_backup("nope") is False
        assert await store.verify_backup("nope") is False
        assert await store.apply_retention_policy(contacts_csv) == []
        assert await store.cleanup_old_backups() == 0
        assert (await store.get_stats()).total_backups == 0
        assert "restore.failed" in store.notifier.topic_history()

    @pytest.mark.asyncio
    async def test_Should_ReturnFalse_When_DeletingUnknownId(self, tmp_path: Path):
        store = _store(tmp_path)

        assert await store.delete_backup("missing") is False

    @pytest.mark.asyncio
    async def test_Should_AggregateSizes_When_StatsRequested(self, tmp_path: Path, contacts_csv: Path):
        store = _store(tmp_path)
        await store.create_backup(contacts_csv)
        await store.create_backup(contacts_csv)

        stats = await store.get_stats()

        assert stats.total_backups == 2
        assert stats.total_size == 2 * contacts_csv.stat().st_size
        assert stats.by_original_path == {str(contacts_csv.resolve()): 2}


class TestRetentionSweep:
    """Test age-based pruning and the manual sweeps."""

    @pytest.mark.asyncio
    async def test_Should_KeepMinBackups_When_AllExpired(self, tmp_path: Path, contacts_csv: Path):
        """Expired backups are pruned oldest first but min_backups always remain."""
        import asyncio

        from csv_sentinel.config import RetentionConfig

        store = _store(tmp_path)
        for _ in range(4):
            await store.create_backup(contacts_csv)
        store.config.retention = RetentionConfig(max_backups=10, max_age_days=1e-6, min_backups=2)
        await asyncio.sleep(0.2)

        await store.cleanup_old_backups()

        remaining = await store.list_backups(original_path=str(contacts_csv), sort_by="version")
        assert [r.version for r in remaining] == [4, 3]

    @pytest.mark.asyncio
    async def test_Should_PruneOnePath_When_PolicyAppliedToPath(self, tmp_path: Path, contacts_csv: Path, write_file):
        import asyncio

        from csv_sentinel.config import RetentionConfig

        other = write_file("other.csv", "name\nx\n")
        store = _store(tmp_path)
        for path in (contacts_csv, contacts_csv, other, other):
            await store.create_backup(path)
        store.config.retention = RetentionConfig(max_backups=10, max_age_days=1e-6, min_backups=1)
        await asyncio.sleep(0.2)

        deleted = await store.apply_retention_policy(contacts_csv)

        assert len(deleted) == 1
        assert len(await store.list_backups(original_path=str(contacts_csv))) == 1
        assert len(await store.list_backups(original_path=str(other))) == 2
