"""
Schema strategy: judge the tables, indexes and constraints left in the namespace.
"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol

from learnpg.domain.models import RequiredConstraint, RequiredIndex, SchemaRules
from learnpg.validation.abstract import (
    AbstractValidationStrategy,
    Scorecard,
    ValidationContext,
    ValidationResult,
)

PENALTY_MISSING_TABLE = 30
PENALTY_FORBIDDEN_TABLE = 20
PENALTY_MISSING_INDEX = 25
PENALTY_FORBIDDEN_INDEX = 20
PENALTY_MISSING_CONSTRAINT = 25


class CatalogSource(Protocol):
    def describe_tables(self, namespace: str) -> List[Dict[str, Any]]:
        ...

    def describe_indexes(self, namespace: str) -> List[Dict[str, Any]]:
        ...

    def describe_constraints(self, namespace: str) -> List[Dict[str, Any]]:
        ...


def index_matches(index: Dict[str, Any], required: RequiredIndex) -> bool:
    """Same table, same leading column list, and the same access method when one is asked for."""
    if index.get("tablename") != required.table:
        return False
    definition = index.get("indexdef", "")
    if f"({', '.join(required.columns)})" not in definition:
        return False
    if required.type and f" USING {required.type} (" not in definition:
        return False
    return True


def constraint_matches(constraint: Dict[str, Any], required: RequiredConstraint) -> bool:
    return (
        constraint.get("table_name") == required.table
        and constraint.get("constraint_type") == required.type
        and sorted(constraint.get("columns") or []) == sorted(required.columns)
    )


class SchemaStrategy(AbstractValidationStrategy[SchemaRules]):
    name = "schema"
    description = "Check required/forbidden tables, indexes and constraints in the namespace."

    def __init__(self, catalog: CatalogSource) -> None:
        self._catalog = catalog

    def validate(self, rules: SchemaRules, context: ValidationContext) -> ValidationResult:
        card = Scorecard()
        namespace = context.namespace
        table_names = {t["tablename"] for t in self._catalog.describe_tables(namespace)}

        if rules.tables is not None:
            for table in rules.tables.required:
                if table not in table_names:
                    card.fail(f"Missing required table: {table}", PENALTY_MISSING_TABLE)
            for table in rules.tables.forbidden:
                if table in table_names:
                    card.fail(f"Should not create table: {table}", PENALTY_FORBIDDEN_TABLE)

        if rules.indexes is not None:
            indexes = self._catalog.describe_indexes(namespace)
            for required in rules.indexes.required:
                if not any(index_matches(i, required) for i in indexes):
                    kind = f" using {required.type}" if required.type else ""
                    card.fail(
                        f"Missing index on {required.table}({', '.join(required.columns)}){kind}",
                        PENALTY_MISSING_INDEX,
                        f"Create an index on {required.table} for better performance",
                    )
            index_names = {i.get("indexname") for i in indexes}
            for name in rules.indexes.forbidden:
                if name in index_names:
                    card.fail(f"Should not create index: {name}", PENALTY_FORBIDDEN_INDEX)

        if rules.constraints is not None and rules.constraints.required:
            constraints = self._catalog.describe_constraints(namespace)
            for required in rules.constraints.required:
                if not any(constraint_matches(c, required) for c in constraints):
                    card.fail(
                        f"Missing {required.type} constraint on "
                        f"{required.table}({', '.join(required.columns)})",
                        PENALTY_MISSING_CONSTRAINT,
                    )

        if not card.errors:
            card.ok("Schema design is correct")
        return card.result()


__all__ = ["CatalogSource", "SchemaStrategy", "constraint_matches", "index_matches"]
