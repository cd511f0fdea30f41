"""
Single-shot execution of learner SQL.

Each call opens its own connection (via `open_connection`), binds the
namespace, applies the statement timeout, runs the SQL exactly once and
closes the connection. Failed statements are never retried; whatever a
half-finished multi-statement script left behind stays until the next reset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import psycopg
from psycopg import Cursor
from psycopg.rows import dict_row

from learnpg.config import get_settings
from learnpg.errors import QueryError
from learnpg.infrastructure.db_factory import CredentialProfile, PoolManager, open_connection
from learnpg.utils.logging import get_logger

log = get_logger(__name__)

EXPLAIN_PREFIX = "EXPLAIN (ANALYZE, BUFFERS, VERBOSE, FORMAT JSON) "


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type_oid: Optional[int] = None


@dataclass(frozen=True)
class QueryResult:
    """Rows of the last row-returning statement plus its row count and columns."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    columns: List[ColumnInfo] = field(default_factory=list)
    status: Optional[str] = None

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "rowCount": self.row_count,
            "columns": [{"name": c.name, "typeOid": c.type_oid} for c in self.columns],
        }


def _capture(cur: Cursor) -> QueryResult:
    if cur.description is None:
        return QueryResult(row_count=max(cur.rowcount, 0), status=cur.statusmessage)
    rows = cur.fetchall()
    columns = [ColumnInfo(name=d.name, type_oid=d.type_code) for d in cur.description]
    row_count = cur.rowcount if cur.rowcount >= 0 else len(rows)
    return QueryResult(rows=rows, row_count=row_count, columns=columns, status=cur.statusmessage)


def run_statements(cur: Cursor, statement: str) -> QueryResult:
    """
    Execute `statement` (possibly several `;`-separated statements) on `cur`.

    Returns the last result set that produced rows, or the last result when
    none did. Engine errors surface as QueryError with the message unchanged.
    """
    try:
        # No parameters: psycopg sends the text as is, so several statements
        # and literal '%' characters are both allowed.
        cur.execute(statement)  # type: ignore[arg-type]
        results = [_capture(cur)]
        while cur.nextset():
            results.append(_capture(cur))
    except psycopg.Error as exc:
        sqlstate = getattr(exc, "sqlstate", None)
        diag = getattr(exc, "diag", None)
        message = (diag.message_primary if diag is not None else None) or str(exc)
        raise QueryError(message.strip(), sqlstate=sqlstate) from exc

    with_rows = [r for r in results if r.columns]
    return with_rows[-1] if with_rows else results[-1]


class QueryExecutor:
    """
    Runs learner SQL and the catalog queries the schema validator needs.

    Parameters
    ----------
    timeout_ms : int | None
        Default statement timeout; falls back to settings.db_statement_timeout_ms.
    """

    def __init__(self, timeout_ms: Optional[int] = None) -> None:
        self.timeout_ms = timeout_ms or get_settings().db_statement_timeout_ms

    def execute(
        self,
        statement: str,
        namespace: str,
        profile: CredentialProfile = CredentialProfile.LEARNER,
        timeout_ms: Optional[int] = None,
    ) -> QueryResult:
        """
        Run `statement` once inside `namespace`.

        Raises
        ------
        QueryError
            Invalid SQL, missing relation, constraint violation or timeout.
        InfrastructureError
            The database could not be reached.
        """
        with open_connection(profile, namespace, timeout_ms or self.timeout_ms) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                result = run_statements(cur, statement)
        log.debug(
            "Statement executed",
            extra={"namespace": namespace, "profile": profile.value, "rows": result.row_count},
        )
        return result

    def explain(
        self,
        statement: str,
        namespace: str,
        profile: CredentialProfile = CredentialProfile.LEARNER,
        timeout_ms: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Return the engine's JSON plan for `statement`.

        EXPLAIN ANALYZE really executes the statement, so data-modifying SQL
        takes effect just as it would under `execute`.
        """
        body = statement.strip().rstrip(";").strip()
        result = self.execute(EXPLAIN_PREFIX + body, namespace, profile, timeout_ms)
        if not result.rows:
            raise QueryError("EXPLAIN returned no plan")
        plan = result.rows[0].get("QUERY PLAN")
        if isinstance(plan, dict):
            plan = [plan]
        return plan

    def _catalog_query(self, query: str, namespace: str) -> List[Dict[str, Any]]:
        with PoolManager().sync_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (namespace,))  # type: ignore[arg-type]
                return cur.fetchall()

    def describe_tables(self, namespace: str) -> List[Dict[str, Any]]:
        return self._catalog_query(
            """
            SELECT schemaname, tablename,
                   pg_size_pretty(pg_total_relation_size(
                       format('%%I.%%I', schemaname, tablename)::regclass)) AS size
            FROM pg_tables
            WHERE schemaname = %s
            ORDER BY tablename
            """,
            namespace,
        )

    def describe_indexes(self, namespace: str) -> List[Dict[str, Any]]:
        return self._catalog_query(
            """
            SELECT schemaname, tablename, indexname, indexdef
            FROM pg_indexes
            WHERE schemaname = %s
            ORDER BY tablename, indexname
            """,
            namespace,
        )

    def describe_constraints(self, namespace: str) -> List[Dict[str, Any]]:
        """
        Constraints as (table_name, constraint_type, columns) rows.

        constraint_type is one of primary-key, foreign-key, unique, check,
        not-null; NOT NULL columns are reported one row per column.
        """
        keyed = self._catalog_query(
            """
            SELECT rel.relname AS table_name,
                   CASE con.contype
                       WHEN 'p' THEN 'primary-key'
                       WHEN 'f' THEN 'foreign-key'
                       WHEN 'u' THEN 'unique'
                       WHEN 'c' THEN 'check'
                   END AS constraint_type,
                   array_agg(att.attname::text ORDER BY k.ord) AS columns
            FROM pg_constraint con
            JOIN pg_class rel ON rel.oid = con.conrelid
            JOIN pg_namespace nsp ON nsp.oid = rel.relnamespace
            CROSS JOIN LATERAL unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute att ON att.attrelid = con.conrelid AND att.attnum = k.attnum
            WHERE nsp.nspname = %s AND con.contype IN ('p', 'f', 'u', 'c')
            GROUP BY rel.relname, con.conname, con.contype
            ORDER BY rel.relname, con.conname
            """,
            namespace,
        )
        not_null = self._catalog_query(
            """
            SELECT table_name::text AS table_name,
                   'not-null' AS constraint_type,
                   ARRAY[column_name::text] AS columns
            FROM information_schema.columns
            WHERE table_schema = %s AND is_nullable = 'NO'
            ORDER BY table_name, ordinal_position
            """,
            namespace,
        )
        return keyed + not_null


__all__ = ["ColumnInfo", "EXPLAIN_PREFIX", "QueryExecutor", "QueryResult", "run_statements"]
