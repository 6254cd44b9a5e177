"""Unit tests for the diff package.

Covers schema analysis, row matching (keys, content, position, moves),
text mode counts, statistics and filtering.
"""

from __future__ import annotations

from pathlib import Path

import pytest

pytestmark = pytest.mark.unit

OLD_STORES = "name,city\nA,Portland\nB,Austin\nC,Boston\n"
NEW_STORES = "name,city\nA,Portland\nB,Dallas\nD,Denver\n"


def _engine(**config):
    from csv_sentinel.config import DiffConfig
    from csv_sentinel.diff import DiffEngine

    return DiffEngine(DiffConfig(**config))


class TestSchemaChanges:
    """Test header comparison."""

    def test_Should_ReportMovesAndAddition_When_ColumnsReordered(self):
        """address 1->2 and phone 2->1 are moves; website is added at 3."""
        # Arrange
        from csv_sentinel.diff import ChangeType, analyze_schema_changes

        # Act
        changes = analyze_schema_changes(["name", "address", "phone"], ["name", "phone", "address", "website"])

        # Assert
        summary = [(c.change_type, c.column_name, c.old_index, c.new_index) for c in changes]
        assert summary == [
            (ChangeType.ADDED, "website", None, 3),
            (ChangeType.MOVED, "address", 1, 2),
            (ChangeType.MOVED, "phone", 2, 1),
        ]

    def test_Should_ReportRemoved_When_ColumnDropped(self):
        from csv_sentinel.diff import ChangeType, analyze_schema_changes

        changes = analyze_schema_changes(["name", "fax"], ["name"])

        assert [(c.change_type, c.column_name, c.old_index) for c in changes] == [(ChangeType.REMOVED, "fax", 1)]

    def test_Should_ReportNothing_When_HeadersEqual(self):
        from csv_sentinel.diff import analyze_schema_changes

        assert analyze_schema_changes(["a", "b"], ["a", "b"]) == []

    def test_Should_CountUnchangedRows_When_SchemaMode(self, tmp_path: Path):
        engine = _engine()

        result = engine.compare_texts("a,b\n1,2\n3,4\n", "b,a\n2,1\n", mode="schema")

        assert result.mode == "schema"
        assert result.row_changes == []
        assert result.statistics.changes.unchanged == 1
        assert sorted(result.statistics.affected_columns) == ["a", "b"]


class TestStructuredDiff:
    """Test row-level comparison."""

    def test_Should_ClassifyRows_When_KeyedOnName(self):
        """B is modified, C removed, D added; A is unchanged and not listed."""
        from csv_sentinel.diff import ChangeType

        result = _engine().compare_texts(OLD_STORES, NEW_STORES, mode="structured", key_columns=["name"])

        kinds = [(c.change_type, c.row_id) for c in result.row_changes]
        assert kinds == [
            (ChangeType.MODIFIED, "B"),
            (ChangeType.REMOVED, "C"),
            (ChangeType.ADDED, "D"),
        ]
        modified = result.rows_of(ChangeType.MODIFIED)[0]
        assert [(c.column, c.old_value, c.new_value) for c in modified.cell_changes] == [("city", "Austin", "Dallas")]
        counts = result.statistics.changes
        assert (counts.added, counts.removed, counts.modified, counts.unchanged) == (1, 1, 1, 1)
        assert result.statistics.most_changed_columns[0].column == "city"

    def test_Should_ReportOneCellChange_When_PhoneEdited(self):
        from csv_sentinel.diff import ChangeType

        old = "name,phone\nBook Haven,555-0101\n"
        new = "name,phone\nBook Haven,555-0199\n"

        result = _engine().compare_texts(old, new, mode="structured", key_columns=["name"])

        [change] = result.row_changes
        assert change.change_type is ChangeType.MODIFIED
        assert [(c.column, c.old_value, c.new_value) for c in change.cell_changes] == [("phone", "555-0101", "555-0199")]

    def test_Should_PairPositionally_When_NoKeyAndSimilar(self):
        """Without keys, rows sharing most values pair by position and show as modified."""
        from csv_sentinel.diff import ChangeType

        old = "name,city,phone\nA,Portland,1\n"
        new = "name,city,phone\nA,Portland,2\n"

        result = _engine().compare_texts(old, new, mode="structured", key_columns=[])

        assert [c.change_type for c in result.row_changes] == [ChangeType.MODIFIED]
        assert result.row_changes[0].similarity == pytest.approx(2 / 3)

    def test_Should_SplitIntoAddRemove_When_RowsDissimilar(self):
        from csv_sentinel.diff import ChangeType

        result = _engine().compare_texts("a,b\n1,2\n", "a,b\n3,4\n", mode="structured", key_columns=[])

        assert [c.change_type for c in result.row_changes] == [ChangeType.REMOVED, ChangeType.ADDED]

    def test_Should_DetectMove_When_RowReordered(self):
        """An unchanged row moved out of order is reported as moved; the others are unchanged."""
        from csv_sentinel.diff import ChangeType

        old = "name,city\nA,1\nB,2\nC,3\n"
        new = "name,city\nC,3\nA,1\nB,2\n"

        result = _engine().compare_texts(old, new, mode="structured", key_columns=[])

        assert [(c.change_type, c.old_index, c.new_index) for c in result.row_changes] == [(ChangeType.MOVED, 2, 0)]
        assert result.statistics.changes.unchanged == 2

    def test_Should_NotReportMoves_When_DetectionDisabled(self):
        old = "name,city\nA,1\nB,2\n"
        new = "name,city\nB,2\nA,1\n"

        result = _engine(enable_move_detection=False).compare_texts(old, new, mode="structured", key_columns=[])

        assert result.row_changes == []
        assert result.statistics.changes.unchanged == 2

    def test_Should_CompareCommonColumnsOnly_When_SchemaDrifts(self, tmp_path: Path):
        """Added columns do not make every row modified."""
        from synthetic.scenarios import schema_drift

        pair = schema_drift.make_pair(tmp_path)

        diff = _engine().compare_paths(pair.old_path, pair.new_path, mode="structured", key_columns=["name"])

        assert diff.row_changes == []
        assert diff.statistics.changes.unchanged == 2
        assert len(diff.schema_changes) == 3

    def test_Should_HonourDuplicateKeysInOrder_When_Pairing(self):
        """Rows sharing a key pair first-with-first."""
        from csv_sentinel.diff import ChangeType

        old = "name,city\nA,1\nA,2\n"
        new = "name,city\nA,1\nA,3\n"

        result = _engine().compare_texts(old, new, mode="structured", key_columns=["name"])

        assert [(c.change_type, c.old_index, c.new_index) for c in result.row_changes] == [(ChangeType.MODIFIED, 1, 1)]


class TestTextDiff:
    """Test line-based comparison."""

    def test_Should_CountLines_When_TextMode(self):
        result = _engine().compare_texts("a\n1\n2\n", "a\n1\n3\n4\n", mode="text", old_label="old.csv", new_label="new.csv")

        counts = result.statistics.changes
        assert (counts.added, counts.removed, counts.modified, counts.unchanged) == (1, 0, 1, 2)
        assert result.text_diff.startswith("--- old.csv\n+++ new.csv\n")

    def test_Should_AttachPatch_When_HybridMode(self):
        result = _engine().compare_texts(OLD_STORES, NEW_STORES, mode="hybrid", key_columns=["name"])

        assert result.mode == "hybrid"
        assert "-B,Austin" in result.text_diff
        assert "+B,Dallas" in result.text_diff
        assert len(result.row_changes) == 3

    def test_Should_MarkTruncated_When_RowCeilingReached(self):
        old = "a\n" + "".join(f"{i}\n" for i in range(10))

        result = _engine(max_rows=3).compare_texts(old, old, mode="structured", key_columns=[])

        assert result.truncated is True
        assert result.statistics.old_rows == 3


class TestEngineErrors:
    """Test failures."""

    def test_Should_RaiseDiffError_When_FileMissing(self, tmp_path: Path):
        from csv_sentinel.exceptions import DiffError

        with pytest.raises(DiffError, match="CSV diff failed"):
            _engine().compare_paths(tmp_path / "a.csv", tmp_path / "b.csv")

    def test_Should_RaiseDiffError_When_TablesCompareInTextMode(self):
        from csv_sentinel.exceptions import DiffError
        from csv_sentinel.tabular import parse_table

        with pytest.raises(DiffError):
            _engine().compare_tables(parse_table("a\n1\n"), parse_table("a\n1\n"), mode="text")

    @pytest.mark.asyncio
    async def test_Should_PublishFailed_When_CompareFilesFails(self, tmp_path: Path):
        from csv_sentinel.config import DiffConfig
        from csv_sentinel.diff import DiffEngine
        from csv_sentinel.exceptions import DiffError
        from csv_sentinel.notifier import Notifier

        notifier = Notifier()
        topics = []
        notifier.subscribe("diff.*", lambda n: topics.append(n.topic))

        with pytest.raises(DiffError):
            await DiffEngine(DiffConfig(), notifier=notifier).compare_files(tmp_path / "a.csv", tmp_path / "b.csv")

        assert topics == ["diff.started", "diff.failed"]


class TestFilters:
    """Test apply_filters."""

    def test_Should_DropCaseOnlyChanges_When_IgnoreCase(self):
        from csv_sentinel.diff import DiffFilter

        engine = _engine()
        result = engine.compare_texts("name,city\nA,portland\n", "name,city\nA,Portland\n", mode="structured", key_columns=["name"])

        filtered = engine.apply_filters(result, DiffFilter(ignore_case=True))

        assert len(result.row_changes) == 1
        assert filtered.row_changes == []
        assert filtered.filters["ignore_case"] is True
        assert filtered.statistics == result.statistics
        assert filtered.statistics.changes.modified == 1

    def test_Should_KeepOnlyRequestedTypes_When_ChangeTypesGiven(self):
        from csv_sentinel.diff import ChangeType, DiffFilter

        engine = _engine()
        result = engine.compare_texts(OLD_STORES, NEW_STORES, mode="structured", key_columns=["name"])

        filtered = engine.apply_filters(result, DiffFilter(change_types=[ChangeType.ADDED]))

        assert [c.row_id for c in filtered.row_changes] == ["D"]

    def test_Should_ReturnSameResult_When_FilterEmpty(self):
        from csv_sentinel.diff import DiffFilter

        engine = _engine()
        result = engine.compare_texts(OLD_STORES, NEW_STORES, mode="structured")

        assert engine.apply_filters(result, DiffFilter()) is result


class TestMatchingHelpers:
    """Test pure matching helpers."""

    def test_Should_ReturnIncreasingPositions_When_LisComputed(self):
        from csv_sentinel.diff import longest_increasing_subsequence

        positions = longest_increasing_subsequence([1, 2, 0])

        assert positions == {0, 1}

    def test_Should_ReturnNone_When_KeysEmpty(self):
        from csv_sentinel.diff import identity_of

        assert identity_of({"name": "", "city": ""}, ["name", "city"]) is None
        assert identity_of({"name": "A", "city": "B"}, ["name", "city"]) == "A|B"

    def test_Should_ScoreZero_When_NoCommonColumns(self):
        from csv_sentinel.diff import similarity

        assert similarity({"a": "1"}, {"a": "1"}, []) == 0.0


class TestEngineStats:
    def test_Should_ReflectConfig_When_StatsRequested(self):
        stats = _engine(mode="text", key_columns=["name"], min_similarity=0.75).get_engine_stats()

        assert stats["mode"] == "text"
        assert stats["key_columns"] == ["name"]
        assert stats["min_similarity"] == 0.75
