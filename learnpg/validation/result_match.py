"""
Result-match strategy: judge the rows a submission returned.

Checks, each with a fixed penalty from 100:

- row count: exact (30), min or max (20)
- columns: each missing required (20), each forbidden present (10),
  exact set mismatch (20)
- values: exact rows, order-independent (40); expected subset present (30)
- ordering: rows in the expected order (20); sorted by a column (20)
"""

from __future__ import annotations

import datetime as dt
import uuid
from collections import Counter
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from learnpg.domain.models import ResultMatchRules
from learnpg.validation.abstract import (
    AbstractValidationStrategy,
    Scorecard,
    ValidationContext,
    ValidationResult,
)

PENALTY_ROW_COUNT_EXACT = 30
PENALTY_ROW_COUNT_BOUND = 20
PENALTY_MISSING_COLUMN = 20
PENALTY_FORBIDDEN_COLUMN = 10
PENALTY_COLUMN_SET = 20
PENALTY_VALUES = 40
PENALTY_SUBSET = 30
PENALTY_ORDERING = 20

Row = Tuple[Tuple[str, Any], ...]


def normalize_cell(value: Any) -> Any:
    """
    Bring engine values and JSON-authored expectations onto common ground.

    NUMERIC 5.00 equals 5, a timestamp equals its ISO string.
    """
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            return float(value)
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [normalize_cell(v) for v in value]
    return value


def canonical_row(row: Dict[str, Any], keys: Iterable[str] | None = None) -> Row:
    selected = row.keys() if keys is None else keys
    return tuple(sorted((k, normalize_cell(row.get(k))) for k in selected))


def _sort_key(row: Row) -> str:
    return repr(row)


def rows_equal_unordered(actual: Sequence[Dict[str, Any]], expected: Sequence[Dict[str, Any]]) -> bool:
    """Same rows, same keys, same cells, in any order."""
    if len(actual) != len(expected):
        return False
    left = sorted((canonical_row(r) for r in actual), key=_sort_key)
    right = sorted((canonical_row(r) for r in expected), key=_sort_key)
    for a_row, e_row in zip(left, right):
        if [k for k, _ in a_row] != [k for k, _ in e_row]:
            return False
        if any(a != e for (_, a), (_, e) in zip(a_row, e_row)):
            return False
    return True


def rows_equal_ordered(actual: Sequence[Dict[str, Any]], expected: Sequence[Dict[str, Any]]) -> bool:
    if len(actual) != len(expected):
        return False
    return all(canonical_row(a) == canonical_row(e) for a, e in zip(actual, expected))


def missing_subset_rows(
    actual: Sequence[Dict[str, Any]], expected: Sequence[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Expected rows (compared on their own keys) that the result does not contain."""
    missing: List[Dict[str, Any]] = []
    pools: Dict[Tuple[str, ...], Counter] = {}
    for row in expected:
        keys = tuple(sorted(row.keys()))
        if keys not in pools:
            pools[keys] = Counter(_sort_key(canonical_row(a, keys)) for a in actual)
        key = _sort_key(canonical_row(row, keys))
        if pools[keys][key] > 0:
            pools[keys][key] -= 1
        else:
            missing.append(row)
    return missing


def is_sorted_by(rows: Sequence[Dict[str, Any]], column: str) -> bool:
    """Non-decreasing by `column`, NULLs last (the PostgreSQL ASC default)."""
    values = [normalize_cell(r.get(column)) for r in rows]
    seen_null = False
    previous = None
    for value in values:
        if value is None:
            seen_null = True
            continue
        if seen_null:
            return False
        if previous is not None and value < previous:
            return False
        previous = value
    return True


class ResultMatchStrategy(AbstractValidationStrategy[ResultMatchRules]):
    name = "result-match"
    description = "Compare row count, columns and values of the returned rows."

    def validate(self, rules: ResultMatchRules, context: ValidationContext) -> ValidationResult:
        card = Scorecard()
        result = context.execution_result
        rows = list(result.rows) if result is not None else []
        row_count = result.row_count if result is not None else 0
        columns = result.column_names if result is not None else []

        self._check_row_count(rules, row_count, card)
        self._check_columns(rules, columns, card)
        self._check_values(rules, rows, card)
        self._check_ordering(rules, rows, columns, card)

        if not card.errors:
            card.ok("Exercise completed successfully!")
        return card.result()

    @staticmethod
    def _check_row_count(rules: ResultMatchRules, actual: int, card: Scorecard) -> None:
        bounds = rules.row_count
        if bounds is None:
            return
        if bounds.exact is not None and actual != bounds.exact:
            card.fail(f"Expected exactly {bounds.exact} rows, got {actual}", PENALTY_ROW_COUNT_EXACT)
        elif bounds.min is not None and actual < bounds.min:
            card.fail(f"Expected at least {bounds.min} rows, got {actual}", PENALTY_ROW_COUNT_BOUND)
        elif bounds.max is not None and actual > bounds.max:
            card.fail(f"Expected at most {bounds.max} rows, got {actual}", PENALTY_ROW_COUNT_BOUND)
        else:
            card.ok(f"Correct row count: {actual}")

    @staticmethod
    def _check_columns(rules: ResultMatchRules, actual: List[str], card: Scorecard) -> None:
        spec = rules.columns
        if spec is None:
            return
        errors_before = len(card.errors)
        for col in spec.required:
            if col not in actual:
                card.fail(f"Missing required column: {col}", PENALTY_MISSING_COLUMN)
        for col in spec.forbidden:
            if col in actual:
                card.fail(f"Should not include column: {col}", PENALTY_FORBIDDEN_COLUMN)
        if spec.exact_match and sorted(actual) != sorted(spec.required):
            card.fail(
                f"Expected exact columns: {', '.join(spec.required)}",
                PENALTY_COLUMN_SET,
            )
        if len(card.errors) == errors_before:
            card.ok("Correct columns returned")

    @staticmethod
    def _check_values(rules: ResultMatchRules, rows: List[Dict[str, Any]], card: Scorecard) -> None:
        spec = rules.values
        if spec is None:
            return
        if spec.exact_match is not None:
            if rows_equal_unordered(rows, spec.exact_match):
                card.ok("Result values match exactly")
            else:
                card.fail(
                    "Result values do not match expected output",
                    PENALTY_VALUES,
                    "Double-check your query logic and filtering conditions",
                )
        if spec.subset is not None:
            missing = missing_subset_rows(rows, spec.subset)
            if missing:
                card.fail(
                    f"Result is missing {len(missing)} expected row(s)",
                    PENALTY_SUBSET,
                    "Check that your filters do not exclude rows that should be returned",
                )
            else:
                card.ok("All expected rows are present")

    @staticmethod
    def _check_ordering(
        rules: ResultMatchRules,
        rows: List[Dict[str, Any]],
        columns: List[str],
        card: Scorecard,
    ) -> None:
        spec = rules.ordering
        if spec is None:
            return
        expected = rules.values.exact_match if rules.values else None
        if spec.must_match and expected is not None:
            if rows_equal_ordered(rows, expected):
                card.ok("Rows are in the expected order")
            else:
                card.fail("Rows are not in the expected order", PENALTY_ORDERING, "Add or fix ORDER BY")
        if spec.column_name:
            if spec.column_name not in columns:
                card.fail(
                    f"Cannot check ordering: column {spec.column_name} not returned",
                    PENALTY_ORDERING,
                )
            elif is_sorted_by(rows, spec.column_name):
                card.ok(f"Rows are ordered by {spec.column_name}")
            else:
                card.fail(
                    f"Rows are not ordered by {spec.column_name}",
                    PENALTY_ORDERING,
                    f"Add ORDER BY {spec.column_name}",
                )


__all__ = [
    "ResultMatchStrategy",
    "canonical_row",
    "is_sorted_by",
    "missing_subset_rows",
    "normalize_cell",
    "rows_equal_ordered",
    "rows_equal_unordered",
]
