"""In-process backup index over ``backup-metadata.json``.

The index is the only state mutated by several backup operations. Every
mutation copies the in-memory mapping, applies the change to the copy,
persists the copy atomically and only then swaps it in, so a failed write
leaves both the file and the cache at the prior state.

The persisted document is a JSON array of BackupRecord-shaped entries.
Issued version numbers are tracked in a sidecar (``<index stem>.versions.json``)
so a version is never reissued after its record has been deleted.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from ..exceptions import BackupError, IndexPersistenceError
from ..utils import read_json, write_json
from .models import BackupRecord

__all__ = ["BackupIndex"]

logger = logging.getLogger(__name__)

Mutation = Callable[[dict[str, BackupRecord]], None]


class BackupIndex:
    """Load-mutate-persist index of BackupRecords keyed by id."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.versions_path = self.path.with_name(f"{self.path.stem}.versions.json")
        self._records: dict[str, BackupRecord] = {}
        self._issued: dict[str, int] = {}

    # =========================================================================
    # Loading
    # =========================================================================

    def load(self) -> None:
        """Load the index from disk; a missing file means an empty index.

        Raises:
            BackupError: If the index exists but cannot be parsed
        """
        records: dict[str, BackupRecord] = {}
        if self.path.exists():
            try:
                document = read_json(self.path)
                if not isinstance(document, list):
                    raise ValueError("index document must be a JSON array")
                for entry in document:
                    record = BackupRecord.model_validate(entry)
                    records[record.id] = record
            except (OSError, ValueError, ValidationError) as e:
                raise BackupError(f"Backup index {self.path} is unreadable: {e}") from e

        issued: dict[str, int] = {}
        if self.versions_path.exists():
            try:
                issued = {str(k): int(v) for k, v in read_json(self.versions_path).items()}
            except (ValueError, AttributeError) as e:
                logger.warning(f"Ignoring unreadable version counters {self.versions_path}: {e}")

        self._records = records
        self._issued = issued
        logger.debug(f"Loaded {len(records)} backup records from {self.path}")

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, backup_id: str) -> BackupRecord | None:
        return self._records.get(backup_id)

    def all(self) -> list[BackupRecord]:
        return list(self._records.values())

    def for_path(self, original_path: str) -> list[BackupRecord]:
        return [r for r in self._records.values() if r.original_path == original_path]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, backup_id: str) -> bool:
        return backup_id in self._records

    def next_version(self, original_path: str) -> int:
        """max(existing versions, highest issued version) + 1 for a path."""
        existing = max((r.version for r in self.for_path(original_path)), default=0)
        return max(existing, self._issued.get(original_path, 0)) + 1

    # =========================================================================
    # Mutations
    # =========================================================================

    def mutate(self, mutation: Mutation) -> None:
        """Apply a mutation to a copy, persist it, then swap it in.

        Raises:
            IndexPersistenceError: If the index cannot be written; the
                in-memory index is left unchanged
        """
        updated = dict(self._records)
        mutation(updated)

        document = [r.model_dump(mode="json") for r in sorted(updated.values(), key=lambda r: (r.original_path, r.version))]
        try:
            write_json(self.path, document)
        except OSError as e:
            raise IndexPersistenceError(f"Failed to persist backup index {self.path}: {e}") from e

        self._records = updated

    def add(self, record: BackupRecord) -> None:
        """Insert a record and advance the issued-version counter for its path."""

        def _insert(records: dict[str, BackupRecord]) -> None:
            if record.id in records:
                raise BackupError(f"Duplicate backup id {record.id}")
            records[record.id] = record

        self.mutate(_insert)
        self._issued[record.original_path] = max(self._issued.get(record.original_path, 0), record.version)
        try:
            write_json(self.versions_path, self._issued)
        except OSError as e:
            # Records still carry the maximum version, so nothing is reissued
            # unless that record is later deleted.
            logger.warning(f"Failed to persist version counters {self.versions_path}: {e}")

    def remove(self, backup_ids: list[str]) -> list[BackupRecord]:
        """Remove records by id; unknown ids are ignored.

        Returns:
            The removed records
        """
        removed = [self._records[i] for i in backup_ids if i in self._records]
        if not removed:
            return []

        def _delete(records: dict[str, BackupRecord]) -> None:
            for record in removed:
                records.pop(record.id, None)

        self.mutate(_delete)
        return removed
