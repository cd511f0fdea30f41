"""
Query-plan strategy: judge how the engine chose to run the submission.

The submission is re-run under EXPLAIN (ANALYZE, BUFFERS, VERBOSE, FORMAT
JSON) and the plan is searched as JSON text for operator and index names.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Protocol

from learnpg.domain.models import QueryPlanRules
from learnpg.infrastructure.db_factory import CredentialProfile
from learnpg.validation.abstract import (
    AbstractValidationStrategy,
    Scorecard,
    ValidationContext,
    ValidationResult,
)

PENALTY_FORBIDDEN_NODE = 30
PENALTY_REQUIRED_NODE = 30
PENALTY_NO_INDEX = 40
PENALTY_SPECIFIC_INDEX = 30
PENALTY_MAX_COST = 20
PENALTY_MAX_ROWS = 20

INDEX_NODES = ("Index Scan", "Index Only Scan")


class PlanSource(Protocol):
    def explain(
        self,
        statement: str,
        namespace: str,
        profile: CredentialProfile = ...,
        timeout_ms: Optional[int] = ...,
    ) -> List[Dict[str, Any]]:
        ...


def serialize_plan(plan: Any) -> str:
    return json.dumps(plan, default=str)


def top_plan_node(plan: Any) -> Dict[str, Any]:
    """The root `Plan` node of an EXPLAIN (FORMAT JSON) result, or {}."""
    entry = plan[0] if isinstance(plan, list) and plan else plan
    if isinstance(entry, dict):
        node = entry.get("Plan", {})
        return node if isinstance(node, dict) else {}
    return {}


class QueryPlanStrategy(AbstractValidationStrategy[QueryPlanRules]):
    name = "query-plan"
    description = "Inspect the execution plan for required/forbidden operators and index use."

    def __init__(self, plans: PlanSource) -> None:
        self._plans = plans

    def validate(self, rules: QueryPlanRules, context: ValidationContext) -> ValidationResult:
        plan = self._plans.explain(context.submitted_sql, context.namespace, context.profile)
        plan_text = serialize_plan(plan)
        card = Scorecard()

        for node in rules.forbidden_nodes:
            if node in plan_text:
                card.fail(
                    f"Query plan contains forbidden node: {node}",
                    PENALTY_FORBIDDEN_NODE,
                    f"Try to avoid {node} by using indexes or rewriting the query",
                )

        for node in rules.required_nodes:
            if node not in plan_text:
                card.fail(
                    f"Query plan missing required node: {node}",
                    PENALTY_REQUIRED_NODE,
                    f"Your query should use {node}",
                )

        if rules.must_use_index and not any(n in plan_text for n in INDEX_NODES):
            card.fail(
                "Query does not use an index",
                PENALTY_NO_INDEX,
                "Consider adding an index or restructuring the query",
            )

        if rules.specific_index and rules.specific_index not in plan_text:
            card.fail(f"Query should use index: {rules.specific_index}", PENALTY_SPECIFIC_INDEX)

        root = top_plan_node(plan)
        if rules.max_cost is not None:
            cost = root.get("Total Cost")
            if cost is None or cost > rules.max_cost:
                card.fail(
                    f"Estimated cost {cost} exceeds {rules.max_cost}",
                    PENALTY_MAX_COST,
                    "Reduce the work the planner expects, e.g. with a more selective index",
                )
        if rules.max_rows is not None:
            estimated = root.get("Plan Rows")
            if estimated is None or estimated > rules.max_rows:
                card.fail(f"Estimated rows {estimated} exceed {rules.max_rows}", PENALTY_MAX_ROWS)

        if not card.errors:
            card.ok("Query plan is optimal")
        return card.result(query_plan=plan)


__all__ = ["PlanSource", "QueryPlanStrategy", "serialize_plan", "top_plan_node"]
