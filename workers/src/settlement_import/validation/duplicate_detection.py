"""
Duplicate Detection System

Finds duplicate rows among the processed rows of a validation run and applies
the configured action:
- Composite keys over a column subset for exact matching (near-linear)
- Pairwise fuzzy matching with union-find grouping (quadratic, flagged expensive)
- Custom rules combining exact and fuzzy column subsets
- Conflict resolution when duplicate rows are merged
"""
import threading
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from ..error_handler import ValidationIssue, validation_error, validation_warning
from .normalization import ProcessedRow
from .run_settings import ValidationSettings

logger = structlog.get_logger(__name__)

KEY_SEPARATOR = '|'


@dataclass(frozen=True)
class DuplicateGroup:
    """Rows considered the same record; positions index the examined row list"""
    positions: Tuple[int, ...]
    row_numbers: Tuple[int, ...]
    match_type: str
    key: str
    similarity: float = 100.0


@dataclass
class DuplicateReport:
    """Outcome of duplicate detection and the action applied"""
    match_type: str
    action: str
    columns: Tuple[str, ...] = ()
    groups: List[DuplicateGroup] = field(default_factory=list)
    rows_removed: int = 0
    rows_merged: int = 0
    expensive: bool = False
    merge_decisions: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def duplicate_row_count(self) -> int:
        return sum(len(group.positions) - 1 for group in self.groups)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'match_type': self.match_type,
            'action': self.action,
            'columns': list(self.columns),
            'groups': [
                {'rows': list(g.row_numbers), 'key': g.key, 'similarity': round(g.similarity, 2)}
                for g in self.groups
            ],
            'rows_removed': self.rows_removed,
            'rows_merged': self.rows_merged,
            'expensive': self.expensive,
            'merge_decisions': self.merge_decisions,
        }


class DetectionCancelled(Exception):
    """Raised inside detection when the run's cancel event is set"""


class CompositeKeyGenerator:
    """Composite keys over a fixed set of column positions"""

    def __init__(self, column_indexes: Sequence[int]):
        self.column_indexes = tuple(column_indexes)

    def values(self, row: ProcessedRow) -> Tuple[str, ...]:
        return tuple(row.text(index) for index in self.column_indexes)

    def key(self, row: ProcessedRow) -> Optional[str]:
        """Key for the row, or None when every key column is empty"""
        values = self.values(row)
        if not any(values):
            return None
        return KEY_SEPARATOR.join(values)


class FuzzyMatcher:
    """Similarity between rows over a set of columns, 0-100"""

    def __init__(self, column_indexes: Sequence[int], threshold: float):
        self.column_indexes = tuple(column_indexes)
        self.threshold = threshold

    @staticmethod
    def normalize(value: str) -> str:
        return ' '.join(value.lower().split())

    def string_similarity(self, first: str, second: str) -> float:
        first, second = self.normalize(first), self.normalize(second)
        if first == second:
            return 100.0
        if not first or not second:
            return 0.0
        return SequenceMatcher(None, first, second).ratio() * 100

    def similarity(self, first: ProcessedRow, second: ProcessedRow) -> float:
        if not self.column_indexes:
            return 100.0
        scores = [
            self.string_similarity(first.text(index), second.text(index))
            for index in self.column_indexes
        ]
        return sum(scores) / len(scores)

    def is_match(self, first: ProcessedRow, second: ProcessedRow) -> Tuple[bool, float]:
        score = self.similarity(first, second)
        return score >= self.threshold, score


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, item: int) -> int:
        while self.parent[item] != item:
            self.parent[item] = self.parent[self.parent[item]]
            item = self.parent[item]
        return item

    def union(self, first: int, second: int) -> None:
        root_first, root_second = self.find(first), self.find(second)
        if root_first != root_second:
            # Lowest position stays the root so groups keep row order
            if root_first < root_second:
                self.parent[root_second] = root_first
            else:
                self.parent[root_first] = root_second


class ConflictResolver:
    """Merges duplicate rows into their first occurrence"""

    def merge(self, rows: Sequence[ProcessedRow], column_indexes: Sequence[int],
              headers: Sequence[str]) -> Tuple[ProcessedRow, List[Dict[str, Any]]]:
        """
        First occurrence wins; each of its empty cells takes the first non-empty
        value from later rows in row order. Disagreeing non-empty values are
        returned as conflicts.
        """
        primary = rows[0]
        cells = list(primary.cells)
        conflicts = []

        for index in column_indexes:
            chosen = cells[index]
            discarded = []
            for other in rows[1:]:
                candidate = other.cells[index]
                if candidate.is_null:
                    continue
                if chosen.is_null:
                    chosen = candidate
                elif candidate.text != chosen.text:
                    discarded.append(candidate.text)
            cells[index] = chosen
            if discarded:
                conflicts.append({
                    'column': headers[index],
                    'kept': chosen.text,
                    'discarded': list(dict.fromkeys(discarded)),
                })

        return ProcessedRow(primary.row_number, tuple(cells)), conflicts


class DuplicateDetectionSystem:
    """Duplicate detection over the processed rows of one run"""

    def __init__(self, headers: Sequence[str], mapped_columns: Sequence[str],
                 validation_settings: ValidationSettings):
        self.headers = tuple(headers)
        self.mapped_columns = tuple(mapped_columns)
        self.settings = validation_settings
        self.conflict_resolver = ConflictResolver()

    def detection_columns(self) -> Tuple[str, ...]:
        if self.settings.duplicate_match_type == 'custom':
            rules = self.settings.custom_duplicate_rules
            ignored = set(rules.ignore_columns)
            columns = [c for c in rules.exact_match_columns + rules.fuzzy_match_columns if c not in ignored]
        else:
            columns = list(self.settings.duplicate_columns or self.mapped_columns)
        return tuple(c for c in dict.fromkeys(columns) if c in self.headers)

    def detect(
        self,
        rows: Sequence[ProcessedRow],
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[Callable[[float], None]] = None,
    ) -> DuplicateReport:
        """Group duplicate rows without applying any action"""
        match_type = self.settings.duplicate_match_type
        columns = self.detection_columns()
        report = DuplicateReport(match_type=match_type, action=self.settings.duplicate_action,
                                 columns=columns)
        if not columns:
            return report

        if match_type == 'exact':
            report.groups = self._exact_groups(rows, self._indexes(columns))
        elif match_type == 'fuzzy':
            report.expensive = True
            logger.warning("Fuzzy duplicate detection requested; cost grows quadratically with distinct rows",
                           rows=len(rows), columns=list(columns))
            report.groups = self._fuzzy_groups(rows, (), self._indexes(columns), 'fuzzy',
                                               cancel_event, progress)
        else:
            rules = self.settings.custom_duplicate_rules
            ignored = set(rules.ignore_columns)
            exact = self._indexes(c for c in rules.exact_match_columns if c not in ignored and c in self.headers)
            fuzzy = self._indexes(c for c in rules.fuzzy_match_columns if c not in ignored and c in self.headers)
            if fuzzy:
                report.expensive = True
            report.groups = self._fuzzy_groups(rows, exact, fuzzy, 'custom', cancel_event, progress)

        if progress is not None:
            progress(1.0)

        logger.info("Duplicate detection complete", match_type=match_type,
                    groups=len(report.groups), duplicate_rows=report.duplicate_row_count)
        return report

    def apply_action(self, rows: Sequence[ProcessedRow],
                     report: DuplicateReport) -> Tuple[List[ProcessedRow], List[ValidationIssue]]:
        """Apply the configured action; returns the surviving rows and the issues raised"""
        action = self.settings.duplicate_action
        issues: List[ValidationIssue] = []
        drop_positions = set()
        replacements: Dict[int, ProcessedRow] = {}

        for group in report.groups:
            rows_text = ', '.join(str(n) for n in group.row_numbers)
            message = f'Duplicate found in rows {rows_text}: "{group.key}"'
            first_row = group.row_numbers[0]

            if action == 'error':
                issues.append(validation_error(message, row=first_row, value=group.key))
            elif action == 'flag':
                issues.append(validation_warning(message, row=first_row, value=group.key))
            elif action == 'skip':
                drop_positions.update(group.positions[1:])
                issues.append(validation_warning(f"{message}; kept row {first_row}", row=first_row,
                                                 value=group.key))
            else:
                group_rows = [rows[p] for p in group.positions]
                merged, conflicts = self.conflict_resolver.merge(
                    group_rows, range(len(self.headers)), self.headers
                )
                replacements[group.positions[0]] = merged
                drop_positions.update(group.positions[1:])
                report.merge_decisions.append({
                    'rows': list(group.row_numbers),
                    'kept_row': first_row,
                    'conflicts': conflicts,
                })
                for conflict in conflicts:
                    issues.append(validation_warning(
                        f"Merged rows {rows_text}: kept \"{conflict['kept']}\" for {conflict['column']}, "
                        f"discarded {', '.join(conflict['discarded'])}",
                        row=first_row,
                        column=conflict['column'],
                        value=conflict['kept'],
                    ))

        if action == 'skip':
            report.rows_removed = len(drop_positions)
        elif action == 'merge':
            report.rows_merged = len(drop_positions)

        survivors = [
            replacements.get(position, row)
            for position, row in enumerate(rows)
            if position not in drop_positions
        ]
        return survivors, issues

    def _indexes(self, columns) -> Tuple[int, ...]:
        return tuple(self.headers.index(c) for c in columns)

    def _exact_groups(self, rows: Sequence[ProcessedRow], indexes: Sequence[int]) -> List[DuplicateGroup]:
        key_generator = CompositeKeyGenerator(indexes)
        buckets: Dict[str, List[int]] = {}
        for position, row in enumerate(rows):
            key = key_generator.key(row)
            if key is not None:
                buckets.setdefault(key, []).append(position)

        return [
            DuplicateGroup(
                positions=tuple(positions),
                row_numbers=tuple(rows[p].row_number for p in positions),
                match_type='exact',
                key=key,
            )
            for key, positions in buckets.items()
            if len(positions) > 1
        ]

    def _fuzzy_groups(
        self,
        rows: Sequence[ProcessedRow],
        exact_indexes: Sequence[int],
        fuzzy_indexes: Sequence[int],
        match_type: str,
        cancel_event: Optional[threading.Event],
        progress: Optional[Callable[[float], None]],
    ) -> List[DuplicateGroup]:
        """Union-find over similar pairs; identical rows share a bucket and skip the pairwise pass"""
        all_indexes = tuple(exact_indexes) + tuple(fuzzy_indexes)
        key_generator = CompositeKeyGenerator(all_indexes)
        exact_generator = CompositeKeyGenerator(exact_indexes)
        matcher = FuzzyMatcher(fuzzy_indexes, self.settings.fuzzy_threshold)

        # Identical rows first
        buckets: Dict[str, List[int]] = {}
        for position, row in enumerate(rows):
            key = key_generator.key(row)
            if key is not None:
                buckets.setdefault(key, []).append(position)
        representatives = [positions[0] for positions in buckets.values()]

        # Only representatives with the same exact-column values are compared
        partitions: Dict[Tuple[str, ...], List[int]] = {}
        for position in representatives:
            partitions.setdefault(exact_generator.values(rows[position]), []).append(position)

        union_find = _UnionFind(len(rows))
        pair_scores: Dict[int, float] = {}
        for positions in buckets.values():
            for position in positions[1:]:
                union_find.union(positions[0], position)

        total_pairs = sum(len(p) * (len(p) - 1) // 2 for p in partitions.values()) or 1
        compared = 0
        for partition in partitions.values():
            if exact_indexes and not any(exact_generator.values(rows[partition[0]])):
                continue
            for i, first in enumerate(partition):
                if cancel_event is not None and cancel_event.is_set():
                    raise DetectionCancelled()
                for second in partition[i + 1:]:
                    matched, score = matcher.is_match(rows[first], rows[second])
                    if matched:
                        union_find.union(first, second)
                        for position in (first, second):
                            pair_scores[position] = min(pair_scores.get(position, 100.0), score)
                compared += len(partition) - i - 1
                if progress is not None:
                    progress(min(compared / total_pairs, 1.0))

        members: Dict[int, List[int]] = {}
        for position in range(len(rows)):
            if key_generator.key(rows[position]) is None:
                continue
            members.setdefault(union_find.find(position), []).append(position)

        groups = []
        for root, positions in sorted(members.items()):
            if len(positions) < 2:
                continue
            groups.append(DuplicateGroup(
                positions=tuple(positions),
                row_numbers=tuple(rows[p].row_number for p in positions),
                match_type=match_type,
                key=key_generator.key(rows[positions[0]]),
                similarity=min(pair_scores.get(p, 100.0) for p in positions),
            ))
        return groups
