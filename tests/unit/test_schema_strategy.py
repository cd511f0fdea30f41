from __future__ import annotations

from typing import Any, Dict

from learnpg.domain.models import RequiredIndex, SchemaRules
from learnpg.validation.abstract import ValidationContext
from learnpg.validation.schema import SchemaStrategy, index_matches

TABLES = [{"schemaname": "design", "tablename": "orders"}, {"schemaname": "design", "tablename": "customers"}]
INDEXES = [
    {
        "tablename": "orders",
        "indexname": "orders_pkey",
        "indexdef": "CREATE UNIQUE INDEX orders_pkey ON design.orders USING btree (id)",
    },
    {
        "tablename": "orders",
        "indexname": "orders_customer_created_idx",
        "indexdef": "CREATE INDEX orders_customer_created_idx ON design.orders USING btree (customer_id, created_at)",
    },
    {
        "tablename": "customers",
        "indexname": "customers_tags_idx",
        "indexdef": "CREATE INDEX customers_tags_idx ON design.customers USING gin (tags)",
    },
]
CONSTRAINTS = [
    {"table_name": "orders", "constraint_type": "primary-key", "columns": ["id"]},
    {"table_name": "orders", "constraint_type": "foreign-key", "columns": ["customer_id"]},
    {"table_name": "orders", "constraint_type": "not-null", "columns": ["customer_id"]},
]


class _Catalog:
    def __init__(self) -> None:
        self.namespaces = []

    def describe_tables(self, namespace):
        self.namespaces.append(namespace)
        return TABLES

    def describe_indexes(self, namespace):
        return INDEXES

    def describe_constraints(self, namespace):
        return CONSTRAINTS


def _judge(rules: Dict[str, Any]):
    catalog = _Catalog()
    context = ValidationContext(
        submitted_sql="CREATE INDEX ...",
        execution_result=None,
        execution_time_ms=1.0,
        namespace="design",
    )
    return SchemaStrategy(catalog).validate(SchemaRules.model_validate(rules), context), catalog


def test_correct_schema() -> None:
    result, catalog = _judge(
        {
            "tables": {"required": ["orders", "customers"], "forbidden": ["orders_backup"]},
            "indexes": {
                "required": [
                    {"table": "orders", "columns": ["customer_id", "created_at"]},
                    {"table": "customers", "columns": ["tags"], "type": "gin"},
                ]
            },
            "constraints": {
                "required": [
                    {"table": "orders", "type": "foreign-key", "columns": ["customer_id"]},
                    {"table": "orders", "type": "not-null", "columns": ["customer_id"]},
                ]
            },
        }
    )
    assert catalog.namespaces == ["design"]
    assert result.is_valid
    assert result.feedback == ("Schema design is correct",)


def test_missing_and_forbidden_tables() -> None:
    result, _ = _judge({"tables": {"required": ["invoices"], "forbidden": ["customers"]}})
    assert result.errors == ("Missing required table: invoices", "Should not create table: customers")
    assert result.score == 50


def test_missing_index_costs_25() -> None:
    result, _ = _judge({"indexes": {"required": [{"table": "orders", "columns": ["created_at"]}]}})
    assert result.errors == ("Missing index on orders(created_at)",)
    assert result.score == 75
    assert result.suggestions == ("Create an index on orders for better performance",)


def test_index_type_must_match_when_given() -> None:
    result, _ = _judge({"indexes": {"required": [{"table": "customers", "columns": ["tags"], "type": "btree"}]}})
    assert result.errors == ("Missing index on customers(tags) using btree",)


def test_forbidden_index_name() -> None:
    result, _ = _judge({"indexes": {"forbidden": ["customers_tags_idx"]}})
    assert result.errors == ("Should not create index: customers_tags_idx",)
    assert result.score == 80


def test_missing_constraint_costs_25() -> None:
    result, _ = _judge(
        {"constraints": {"required": [{"table": "orders", "type": "unique", "columns": ["id"]}]}}
    )
    assert result.errors == ("Missing unique constraint on orders(id)",)
    assert result.score == 75


def test_index_matches_needs_same_table() -> None:
    required = RequiredIndex(table="customers", columns=["id"])
    assert not index_matches(INDEXES[0], required)
