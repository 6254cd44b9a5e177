"""Row matching between two versions of a table.

Pairs old rows with new rows in three passes, each over the rows the
previous passes left unpaired:

    1. Identity: when key columns are configured, rows whose pipe-joined key
       values are equal are paired (first unpaired old with first unpaired new).
       Rows whose key values are all empty have no identity.
    2. Content: rows without an identity whose values over the common columns
       are equal are paired, in file order.
    3. Position: the k-th remaining old row is paired with the k-th remaining
       new row when their similarity is at least ``min_similarity``.

Similarity of two rows is the share of common columns holding equal values
(0.0 when the tables share no columns).

Paired rows with equal content are ``unchanged`` unless move detection is on
and the pair lies outside the longest increasing subsequence of new
positions, in which case it is ``moved``. Paired rows with differing content
are ``modified``. Unpaired old rows are ``removed``; unpaired new rows are
``added``.

Every pass is symmetric in old and new, so swapping the inputs swaps added
and removed and leaves the modified pairs unchanged.
"""

from __future__ import annotations

from bisect import bisect_left
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

__all__ = [
    "RowPair",
    "MatchResult",
    "identity_of",
    "similarity",
    "match_rows",
    "longest_increasing_subsequence",
]

Record = Mapping[str, str]


@dataclass(frozen=True)
class RowPair:
    """An old row and a new row judged to be the same logical row."""

    old_index: int
    new_index: int
    similarity: float
    row_id: Optional[str] = None


@dataclass(frozen=True)
class MatchResult:
    pairs: list[RowPair]
    removed: list[int]
    added: list[int]
    moved: frozenset[tuple[int, int]]


def identity_of(record: Record, key_columns: Sequence[str]) -> Optional[str]:
    """Pipe-joined key values, or None when every key value is empty."""
    if not key_columns:
        return None
    values = [record.get(column, "") for column in key_columns]
    if not any(values):
        return None
    return "|".join(values)


def similarity(old: Record, new: Record, columns: Sequence[str]) -> float:
    """Share of ``columns`` holding equal values in both rows."""
    if not columns:
        return 0.0
    equal = sum(1 for column in columns if old.get(column, "") == new.get(column, ""))
    return equal / len(columns)


def _content(record: Record, columns: Sequence[str]) -> tuple[str, ...]:
    return tuple(record.get(column, "") for column in columns)


def longest_increasing_subsequence(values: Sequence[int]) -> set[int]:
    """Positions (into ``values``) of one longest strictly increasing subsequence.

    Patience sorting, O(n log n). Among equal-length candidates the one
    ending with the smallest values is kept, so the choice is deterministic.
    """
    tails: list[int] = []
    tail_positions: list[int] = []
    previous: list[int] = [-1] * len(values)

    for position, value in enumerate(values):
        slot = bisect_left(tails, value)
        if slot == len(tails):
            tails.append(value)
            tail_positions.append(position)
        else:
            tails[slot] = value
            tail_positions[slot] = position
        previous[position] = tail_positions[slot - 1] if slot > 0 else -1

    result: set[int] = set()
    position = tail_positions[-1] if tail_positions else -1
    while position != -1:
        result.add(position)
        position = previous[position]
    return result


def _pair_by(
    keys_old: dict[int, object],
    keys_new: dict[int, object],
) -> list[tuple[int, int]]:
    """Pair equal keys in file order; rows are removed from both dicts."""
    waiting: dict[object, deque[int]] = defaultdict(deque)
    for index in sorted(keys_new):
        waiting[keys_new[index]].append(index)

    paired: list[tuple[int, int]] = []
    for index in sorted(keys_old):
        queue = waiting.get(keys_old[index])
        if queue:
            paired.append((index, queue.popleft()))

    for old_index, new_index in paired:
        del keys_old[old_index]
        del keys_new[new_index]
    return paired


def match_rows(
    old_records: Sequence[Record],
    new_records: Sequence[Record],
    common_columns: Sequence[str],
    key_columns: Sequence[str] = (),
    min_similarity: float = 0.5,
    detect_moves: bool = True,
) -> MatchResult:
    """Pair rows of two tables and classify the leftovers.

    Args:
        old_records: Rows of the old version
        new_records: Rows of the new version
        common_columns: Columns present in both header rows; only these are compared
        key_columns: Columns forming a row identity (may be empty)
        min_similarity: Threshold for positional pairing
        detect_moves: Classify out-of-order unchanged pairs as moves

    Returns:
        MatchResult with pairs sorted by new index
    """
    usable_keys = [column for column in key_columns if column in common_columns]
    old_ids = {i: identity_of(r, usable_keys) for i, r in enumerate(old_records)}
    new_ids = {i: identity_of(r, usable_keys) for i, r in enumerate(new_records)}

    pairs: list[RowPair] = []

    # Identity pass
    keyed_old = {i: k for i, k in old_ids.items() if k is not None}
    keyed_new = {i: k for i, k in new_ids.items() if k is not None}
    for o, n in _pair_by(keyed_old, keyed_new):
        pairs.append(RowPair(o, n, similarity(old_records[o], new_records[n], common_columns), old_ids[o]))

    # Rows with an identity that found no partner stay unpaired
    unkeyed_old = {i: _content(old_records[i], common_columns) for i, k in old_ids.items() if k is None}
    unkeyed_new = {i: _content(new_records[i], common_columns) for i, k in new_ids.items() if k is None}

    # Content pass; without common columns every row would compare equal
    if common_columns:
        for o, n in _pair_by(unkeyed_old, unkeyed_new):
            pairs.append(RowPair(o, n, 1.0))

    # Positional pass
    for o, n in zip(sorted(unkeyed_old), sorted(unkeyed_new)):
        score = similarity(old_records[o], new_records[n], common_columns)
        if common_columns and score >= min_similarity:
            pairs.append(RowPair(o, n, score))

    paired_old = {p.old_index for p in pairs}
    paired_new = {p.new_index for p in pairs}
    removed = [i for i in range(len(old_records)) if i not in paired_old]
    added = [i for i in range(len(new_records)) if i not in paired_new]

    moved: frozenset[tuple[int, int]] = frozenset()
    if detect_moves and pairs:
        by_old = sorted(pairs, key=lambda p: p.old_index)
        in_order = longest_increasing_subsequence([p.new_index for p in by_old])
        moved = frozenset(
            (p.old_index, p.new_index)
            for position, p in enumerate(by_old)
            if position not in in_order
            and _content(old_records[p.old_index], common_columns) == _content(new_records[p.new_index], common_columns)
        )

    pairs.sort(key=lambda p: p.new_index)
    return MatchResult(pairs=pairs, removed=removed, added=added, moved=moved)
