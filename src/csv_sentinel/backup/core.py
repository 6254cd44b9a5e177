"""Backup store: versioned, checksummed, optionally compressed snapshots.

Payload layout:
    <directory>/<id>_v<version><original suffix>[.gz]
    <directory>/backup-metadata.json   (index, JSON array of records)

Every public operation is a coroutine; file reads, hashing and compression
run in worker threads. Index mutations (create, delete, retention) are
serialized by one lock, so a retention sweep for a path only ever runs as
the tail of a just-completed backup of that path or as an explicit sweep.

Checksums are always computed over the original, uncompressed content.

Example:
--------
>>> store = BackupStore(BackupConfig(directory=Path("backups")))
>>> await store.initialize()
>>> result = await store.create_backup("data/bookstores.csv", context="manual", tags=["manual"])
>>> await store.verify_backup(result.backup_id)
True
>>> await store.restore_from_backup(result.backup_id)
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
import gzip
import hashlib
import logging
import os
from pathlib import Path
from typing import Any, Iterable

from ..config import BackupConfig, RetentionConfig
from ..exceptions import BackupError, BackupNotFoundError, ChecksumMismatchError, RestoreError
from ..notifier import Notifier
from ..utils import bytes_hash, file_hash, to_iso, utc_now
from .index import BackupIndex
from .models import BackupFilter, BackupRecord, BackupResult, BackupStats, RestoreResult

__all__ = ["BackupStore", "format_backup_record", "format_backup_stats", "format_size"]

logger = logging.getLogger(__name__)


def _resolve(path: Path | str) -> str:
    return str(Path(path).expanduser().resolve())


# =============================================================================
# Payload I/O (worker-thread helpers)
# =============================================================================


def _write_bytes_atomic(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def _read_payload(record: BackupRecord) -> bytes:
    with open(record.backup_path, "rb") as f:
        data = f.read()
    return gzip.decompress(data) if record.compressed else data


class BackupStore:
    """Durable, versioned, integrity-checked snapshots with automatic pruning."""

    def __init__(self, config: BackupConfig | None = None, notifier: Notifier | None = None):
        self.config = config or BackupConfig()
        self.notifier = notifier or Notifier()
        self.directory = Path(self.config.directory).expanduser().resolve()
        self.index = BackupIndex(self.directory / self.config.metadata_file)
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def retention(self) -> RetentionConfig:
        return self.config.retention

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """Create the backup directory and load the index.

        Raises:
            BackupError: If the directory cannot be created or the index is unreadable
        """
        try:
            await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise BackupError(f"Cannot create backup directory {self.directory}: {e}") from e

        await asyncio.to_thread(self.index.load)
        self._initialized = True
        logger.info(f"Backup store ready at {self.directory} ({len(self.index)} records)")

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def _unavailable(self) -> str | None:
        """Initialize on first use; returns the error message if that fails."""
        try:
            await self._ensure_initialized()
        except BackupError as e:
            logger.error(f"Backup store unavailable: {e}")
            return str(e)
        return None

    # =========================================================================
    # Create
    # =========================================================================

    def _new_backup_id(self, original: Path, timestamp_ms: int) -> str:
        salt = hashlib.md5(f"{original}{timestamp_ms}{os.urandom(4).hex()}".encode("utf-8")).hexdigest()[:8]
        return f"{original.stem}_{timestamp_ms}_{salt}"

    async def create_backup(
        self,
        path: Path | str,
        context: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> BackupResult:
        """Snapshot a file, record it in the index, then apply retention for its path.

        Never raises; failures come back as ``BackupResult(success=False)``
        and a ``backup.failed`` notification.
        """
        return await self._create_backup(path, context, list(tags or []), protected=set())

    async def _create_backup(
        self,
        path: Path | str,
        context: str | None,
        tags: list[str],
        protected: set[str],
    ) -> BackupResult:
        original = Path(_resolve(path))
        await self.notifier.publish("backup.started", path=str(original))

        try:
            await self._ensure_initialized()
            async with self._lock:
                record = await self._write_backup(original, context, tags)
                deleted, retention_error = await self._retain_after_backup(record, protected)
        except Exception as e:
            message = f"Backup of {original} failed: {e}"
            logger.error(message)
            await self.notifier.publish("backup.failed", path=str(original), error=str(e))
            return BackupResult(success=False, error=message)

        logger.info(f"Backup {record.id} (v{record.version}) created for {record.original_path}")
        await self.notifier.publish("backup.completed", path=record.original_path, backup_id=record.id, version=record.version)
        return BackupResult(success=True, record=record, retention_deleted=deleted, retention_error=retention_error)

    async def _retain_after_backup(self, record: BackupRecord, protected: set[str]) -> tuple[list[str], str | None]:
        # The new record is already persisted; a failed sweep does not undo it.
        try:
            return await self._apply_retention_locked(record.original_path, protected | {record.id}), None
        except Exception as e:
            message = f"Retention after backup {record.id} failed: {e}"
            logger.error(message)
            await self.notifier.publish(
                "backup.retention_failed", path=record.original_path, backup_id=record.id, error=str(e)
            )
            return [], message

    async def _write_backup(self, original: Path, context: str | None, tags: list[str]) -> BackupRecord:
        if not original.is_file():
            raise BackupError(f"Source file not found: {original}")

        data = await asyncio.to_thread(original.read_bytes)
        algorithm = self.config.checksum_algorithm
        checksum = await asyncio.to_thread(bytes_hash, data, algorithm)

        timestamp = utc_now()
        version = self.index.next_version(str(original))
        backup_id = self._new_backup_id(original, int(timestamp.timestamp() * 1000))
        compressed = self.config.compression.enabled
        file_name = f"{backup_id}_v{version}{original.suffix}" + (".gz" if compressed else "")
        backup_path = self.directory / file_name

        record = BackupRecord(
            id=backup_id,
            original_path=str(original),
            backup_path=str(backup_path),
            timestamp=timestamp,
            file_size=len(data),
            checksum=checksum,
            checksum_algorithm=algorithm,
            compressed=compressed,
            version=version,
            context=context,
            tags=tags,
        )

        payload = data
        if compressed:
            payload = await asyncio.to_thread(gzip.compress, data, self.config.compression.level, mtime=0)

        await asyncio.to_thread(_write_bytes_atomic, backup_path, payload)
        try:
            stored = await asyncio.to_thread(_read_payload, record)
            stored_checksum = bytes_hash(stored, algorithm)
            if stored_checksum != checksum:
                raise ChecksumMismatchError(checksum, stored_checksum, str(backup_path))
            await asyncio.to_thread(self.index.add, record)
        except BaseException:
            # No orphan payload without a record
            backup_path.unlink(missing_ok=True)
            raise

        return record

    # =========================================================================
    # Restore
    # =========================================================================

    async def restore_from_backup(self, backup_id: str, target_path: Path | str | None = None) -> RestoreResult:
        """Restore a stored payload over its original path (or ``target_path``).

        If the target exists, a safety backup tagged ``pre-restore`` is taken
        first. After writing, the target's checksum must equal the record's.
        On a failed write or a mismatch the target is rolled back from the
        safety backup; a rollback failure is reported next to the original
        error.

        Never raises; the outcome is a RestoreResult.
        """
        unavailable = await self._unavailable()
        if unavailable is not None:
            error = f"Cannot restore {backup_id}: {unavailable}"
            await self.notifier.publish("restore.failed", backup_id=backup_id, error=error)
            return RestoreResult(success=False, backup_id=backup_id, error=error)

        record = self.index.get(backup_id)
        if record is None:
            return RestoreResult(success=False, backup_id=backup_id, error=f"Backup {backup_id} not found")

        target = Path(_resolve(target_path)) if target_path is not None else Path(record.original_path)
        await self.notifier.publish("restore.started", backup_id=backup_id, target=str(target))

        safety: BackupRecord | None = None
        existed = target.exists()
        if existed:
            safety_result = await self._create_backup(
                target,
                context=f"Pre-restore backup before restoring {backup_id}",
                tags=["pre-restore"],
                protected={backup_id},
            )
            if not safety_result.success:
                error = f"Safety backup failed, target left untouched: {safety_result.error}"
                await self.notifier.publish("restore.failed", backup_id=backup_id, error=error)
                return RestoreResult(success=False, backup_id=backup_id, target_path=str(target), error=error)
            safety = safety_result.record

        try:
            restored_checksum = await self._restore_over(record, target, safety, existed)
        except RestoreError as e:
            logger.error(str(e) + (f" (rollback failed: {e.rollback_error})" if e.rollback_error else ""))
            await self.notifier.publish("restore.failed", backup_id=backup_id, error=str(e), rollback_error=e.rollback_error)
            return RestoreResult(
                success=False,
                backup_id=backup_id,
                target_path=str(target),
                safety_backup_id=safety.id if safety else None,
                error=str(e),
                rollback_attempted=safety is not None,
                rollback_error=e.rollback_error,
            )

        logger.info(f"Restored {backup_id} (v{record.version}) to {target}")
        await self.notifier.publish("restore.completed", backup_id=backup_id, target=str(target))
        return RestoreResult(
            success=True,
            backup_id=backup_id,
            target_path=str(target),
            safety_backup_id=safety.id if safety else None,
            restored_checksum=restored_checksum,
        )

    async def _restore_over(self, record: BackupRecord, target: Path, safety: BackupRecord | None, existed: bool) -> str:
        """Write the payload over ``target``, rolling back on failure.

        Raises:
            RestoreError: If the write or the checksum check failed; carries
                the rollback error when the rollback failed too
        """
        try:
            return await self._write_restored(record, target)
        except Exception as e:
            rollback_error = await self._rollback(target, safety)
            if not existed:
                target.unlink(missing_ok=True)
            raise RestoreError(f"Restore of {record.id} to {target} failed: {e}", rollback_error) from e

    async def _write_restored(self, record: BackupRecord, target: Path) -> str:
        data = await asyncio.to_thread(_read_payload, record)
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(_write_bytes_atomic, target, data)
        actual = await asyncio.to_thread(file_hash, target, record.checksum_algorithm)
        if actual != record.checksum:
            raise ChecksumMismatchError(record.checksum, actual, str(target))
        return actual

    async def _rollback(self, target: Path, safety: BackupRecord | None) -> str | None:
        """Put the safety backup back over the target; returns an error message or None."""
        if safety is None:
            return None
        try:
            await self._write_restored(safety, target)
        except Exception as e:
            return str(e)
        logger.warning(f"Rolled {target} back to safety backup {safety.id}")
        return None

    async def export_payload(self, backup_id: str, destination: Path | str) -> Path:
        """Write a backup's verified content to ``destination`` without restore semantics.

        Raises:
            BackupNotFoundError: If the id is unknown
            ChecksumMismatchError: If the stored payload is corrupt
        """
        await self._ensure_initialized()
        record = self.index.get(backup_id)
        if record is None:
            raise BackupNotFoundError(f"Backup {backup_id} not found")
        destination = Path(destination)
        await self._write_restored(record, destination)
        return destination

    # =========================================================================
    # Query and verification
    # =========================================================================

    async def get_backup(self, backup_id: str) -> BackupRecord | None:
        """Record for an id, or None when unknown or the index is unavailable."""
        if await self._unavailable() is not None:
            return None
        return self.index.get(backup_id)

    async def list_backups(self, query: BackupFilter | None = None, **kwargs: Any) -> list[BackupRecord]:
        """List backups filtered by path, time range and tags (any match).

        Accepts a BackupFilter or its fields as keyword arguments. Returns an
        empty list when the index is unavailable.
        """
        if await self._unavailable() is not None:
            return []
        query = query or BackupFilter(**kwargs)
        records = self.index.all()

        if query.original_path is not None:
            wanted = _resolve(query.original_path)
            records = [r for r in records if r.original_path == wanted]
        if query.from_date is not None:
            records = [r for r in records if r.timestamp >= query.from_date]
        if query.to_date is not None:
            records = [r for r in records if r.timestamp <= query.to_date]
        if query.tags:
            wanted_tags = set(query.tags)
            records = [r for r in records if wanted_tags.intersection(r.tags)]

        sort_keys = {
            "timestamp": lambda r: (r.timestamp, r.version),
            "size": lambda r: (r.file_size, r.timestamp),
            "version": lambda r: (r.version, r.timestamp),
        }
        records.sort(key=sort_keys[query.sort_by], reverse=query.sort_order == "desc")

        if query.limit is not None:
            records = records[: query.limit]
        return records

    async def verify_backup(self, backup_id: str) -> bool:
        """Recompute the payload checksum and compare. Never raises."""
        try:
            await self._ensure_initialized()
            record = self.index.get(backup_id)
            if record is None:
                logger.warning(f"Cannot verify unknown backup {backup_id}")
                return False
            data = await asyncio.to_thread(_read_payload, record)
            ok = bytes_hash(data, record.checksum_algorithm) == record.checksum
        except Exception as e:
            logger.warning(f"Verification of {backup_id} failed: {e}")
            return False

        if not ok:
            logger.warning(f"Backup {backup_id} failed verification: checksum mismatch")
        return ok

    # =========================================================================
    # Deletion and retention
    # =========================================================================

    async def delete_backup(self, backup_id: str) -> bool:
        """Delete one backup record and its payload.

        Returns:
            True if a backup was deleted, False if the id was unknown or the
            index could not be loaded or persisted
        """
        if await self._unavailable() is not None:
            return False
        async with self._lock:
            try:
                removed = await self._delete_records([backup_id])
            except BackupError as e:
                logger.error(f"Delete of {backup_id} failed: {e}")
                return False
        if removed:
            await self.notifier.publish("backup.deleted", backup_id=backup_id)
        return bool(removed)

    async def _delete_records(self, backup_ids: list[str]) -> list[BackupRecord]:
        # Index first: a failed persist leaves payloads and records intact.
        removed = await asyncio.to_thread(self.index.remove, backup_ids)
        for record in removed:
            try:
                await asyncio.to_thread(Path(record.backup_path).unlink, missing_ok=True)
            except OSError as e:
                logger.error(f"Record {record.id} removed but payload {record.backup_path} could not be deleted: {e}")
        return removed

    async def apply_retention_policy(self, original_path: Path | str) -> list[str]:
        """Prune backups of one path per max_backups / max_age / min_backups.

        Returns:
            Ids of deleted backups
        """
        if await self._unavailable() is not None:
            return []
        async with self._lock:
            try:
                return await self._apply_retention_locked(_resolve(original_path), set())
            except BackupError as e:
                logger.error(f"Retention for {original_path} failed: {e}")
                return []

    def _select_for_retention(self, original_path: str, protected: set[str]) -> list[BackupRecord]:
        policy = self.retention
        records = sorted(self.index.for_path(original_path), key=lambda r: (r.version, r.timestamp), reverse=True)
        remaining = len(records)
        doomed: list[BackupRecord] = []

        # Oldest-first excess beyond max_backups
        for record in reversed(records[policy.max_backups :]):
            if remaining <= policy.min_backups:
                break
            if record.id in protected:
                continue
            doomed.append(record)
            remaining -= 1

        # Anything older than max_age, oldest first
        cutoff = utc_now() - timedelta(days=policy.max_age_days)
        for record in reversed(records[: policy.max_backups]):
            if remaining <= policy.min_backups:
                break
            if record.id in protected or record.timestamp >= cutoff:
                continue
            doomed.append(record)
            remaining -= 1

        return doomed

    async def _apply_retention_locked(self, original_path: str, protected: set[str]) -> list[str]:
        doomed = self._select_for_retention(original_path, protected)
        if not doomed:
            return []
        removed = await self._delete_records([r.id for r in doomed])
        ids = [r.id for r in removed]
        logger.info(f"Retention removed {len(ids)} backup(s) of {original_path}")
        await self.notifier.publish("backup.retention", path=original_path, deleted=ids)
        return ids

    async def cleanup_old_backups(self) -> int:
        """Manual retention sweep over every original path.

        Returns:
            Number of deleted backups
        """
        if await self._unavailable() is not None:
            return 0
        total = 0
        async with self._lock:
            for original_path in sorted({r.original_path for r in self.index.all()}):
                try:
                    total += len(await self._apply_retention_locked(original_path, set()))
                except BackupError as e:
                    logger.error(f"Retention for {original_path} failed: {e}")
        return total

    # =========================================================================
    # Statistics
    # =========================================================================

    async def get_stats(self) -> BackupStats:
        """Aggregate counts and sizes over the index.

        Empty statistics when the index is unavailable.
        """
        records = self.index.all() if await self._unavailable() is None else []
        if not records:
            return BackupStats()

        stored = 0
        for record in records:
            try:
                stored += os.path.getsize(record.backup_path)
            except OSError:
                pass

        by_path: dict[str, int] = {}
        for record in records:
            by_path[record.original_path] = by_path.get(record.original_path, 0) + 1

        return BackupStats(
            total_backups=len(records),
            total_size=sum(r.file_size for r in records),
            stored_size=stored,
            oldest=min(r.timestamp for r in records),
            newest=max(r.timestamp for r in records),
            by_original_path=dict(sorted(by_path.items())),
        )

    def summary(self) -> dict[str, Any]:
        """Cheap synchronous summary for status reports."""
        records = self.index.all()
        return {
            "directory": str(self.directory),
            "total_backups": len(records),
            "files": len({r.original_path for r in records}),
            "newest": max((r.timestamp for r in records), default=None),
        }


# =============================================================================
# Display helpers
# =============================================================================


def format_size(size: float) -> str:
    """Human readable byte count (1.5 KB, 3.2 MB)."""
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def format_backup_record(record: BackupRecord) -> str:
    """Multi-line description of one backup."""
    lines = [
        f"Backup {record.id}",
        f"  Original:  {record.original_path}",
        f"  Stored at: {record.backup_path}",
        f"  Created:   {to_iso(record.timestamp)}",
        f"  Version:   {record.version}",
        f"  Size:      {format_size(record.file_size)}{' (compressed)' if record.compressed else ''}",
        f"  Checksum:  {record.checksum_algorithm}:{record.checksum}",
    ]
    if record.context:
        lines.append(f"  Context:   {record.context}")
    if record.tags:
        lines.append(f"  Tags:      {', '.join(record.tags)}")
    return "\n".join(lines)


def format_backup_stats(stats: BackupStats) -> str:
    """Multi-line summary of backup statistics."""
    lines = [
        f"Total backups: {stats.total_backups}",
        f"Total size:    {format_size(stats.total_size)} ({format_size(stats.stored_size)} stored)",
    ]
    if stats.oldest is not None and stats.newest is not None:
        lines.append(f"Oldest:        {to_iso(stats.oldest)}")
        lines.append(f"Newest:        {to_iso(stats.newest)}")
    if stats.by_original_path:
        lines.append("By file:")
        lines.extend(f"  {path}: {count}" for path, count in stats.by_original_path.items())
    return "\n".join(lines)
