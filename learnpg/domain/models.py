"""
Domain models for the learnpg sandbox.

Exercise definitions and validation specs are supplied by the curriculum
(outside this package) as JSON; these pydantic models validate that input
and give the rest of the sandbox typed access to it. ValidationSpec is a
closed discriminated union: a rule payload is only ever parsed under the
strategy named next to it.
"""
from __future__ import annotations

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from learnpg.errors import InvalidRequestError

SessionName = Literal["A", "B"]

_FROZEN = ConfigDict(
    frozen=True,
    populate_by_name=True,
    alias_generator=to_camel,
    extra="ignore",
)


# --- result-match -----------------------------------------------------------


class RowCountRule(BaseModel):
    model_config = _FROZEN

    exact: Optional[int] = None
    min: Optional[int] = None
    max: Optional[int] = None


class ColumnRule(BaseModel):
    model_config = _FROZEN

    required: List[str] = Field(default_factory=list)
    forbidden: List[str] = Field(default_factory=list)
    exact_match: bool = False


class ValuesRule(BaseModel):
    model_config = _FROZEN

    exact_match: Optional[List[Dict[str, Any]]] = None
    subset: Optional[List[Dict[str, Any]]] = None


class OrderingRule(BaseModel):
    model_config = _FROZEN

    must_match: bool = False
    column_name: Optional[str] = None


class ResultMatchRules(BaseModel):
    model_config = _FROZEN

    row_count: Optional[RowCountRule] = None
    columns: Optional[ColumnRule] = None
    values: Optional[ValuesRule] = None
    ordering: Optional[OrderingRule] = None


# --- query-plan -------------------------------------------------------------


class QueryPlanRules(BaseModel):
    model_config = _FROZEN

    must_use_index: bool = False
    specific_index: Optional[str] = None
    forbidden_nodes: List[str] = Field(default_factory=list)
    required_nodes: List[str] = Field(default_factory=list)
    max_cost: Optional[float] = None
    max_rows: Optional[int] = None


# --- performance ------------------------------------------------------------


class PerformanceRules(BaseModel):
    model_config = _FROZEN

    max_execution_time_ms: float


# --- schema -----------------------------------------------------------------


class TableRule(BaseModel):
    model_config = _FROZEN

    required: List[str] = Field(default_factory=list)
    forbidden: List[str] = Field(default_factory=list)


class RequiredIndex(BaseModel):
    model_config = _FROZEN

    table: str
    columns: List[str]
    type: Optional[Literal["btree", "hash", "gin", "gist", "brin", "spgist"]] = None


class IndexRule(BaseModel):
    model_config = _FROZEN

    required: List[RequiredIndex] = Field(default_factory=list)
    forbidden: List[str] = Field(default_factory=list)


class RequiredConstraint(BaseModel):
    model_config = _FROZEN

    table: str
    type: Literal["primary-key", "foreign-key", "unique", "check", "not-null"]
    columns: List[str]


class ConstraintRule(BaseModel):
    model_config = _FROZEN

    required: List[RequiredConstraint] = Field(default_factory=list)


class SchemaRules(BaseModel):
    model_config = _FROZEN

    tables: Optional[TableRule] = None
    indexes: Optional[IndexRule] = None
    constraints: Optional[ConstraintRule] = None


# --- tagged union -----------------------------------------------------------


class ResultMatchSpec(BaseModel):
    model_config = _FROZEN

    strategy: Literal["result-match"] = "result-match"
    rules: ResultMatchRules = Field(default_factory=ResultMatchRules)


class QueryPlanSpec(BaseModel):
    model_config = _FROZEN

    strategy: Literal["query-plan"] = "query-plan"
    rules: QueryPlanRules = Field(default_factory=QueryPlanRules)


class PerformanceSpec(BaseModel):
    model_config = _FROZEN

    strategy: Literal["performance"] = "performance"
    rules: PerformanceRules


class SchemaSpec(BaseModel):
    model_config = _FROZEN

    strategy: Literal["schema"] = "schema"
    rules: SchemaRules = Field(default_factory=SchemaRules)


ValidationSpec = Annotated[
    Union[ResultMatchSpec, QueryPlanSpec, PerformanceSpec, SchemaSpec],
    Field(discriminator="strategy"),
]

VALIDATION_SPEC_TYPES = (ResultMatchSpec, QueryPlanSpec, PerformanceSpec, SchemaSpec)


# --- exercises --------------------------------------------------------------


class SessionPrompts(BaseModel):
    model_config = _FROZEN

    session_a_prompt: str = ""
    session_b_prompt: str = ""
    session_a_initial_query: Optional[str] = None
    session_b_initial_query: Optional[str] = None


class ExerciseStep(BaseModel):
    model_config = _FROZEN

    session: SessionName
    instruction: str
    validation: Optional[ValidationSpec] = None


class ExerciseDefinition(BaseModel):
    """
    One exercise as handed over by the curriculum.

    `requires_superuser` selects the elevated credential; `uses_pooler` routes
    the exercise through the pooled gateway. Multi-session exercises carry
    `sessions` and an ordered list of `steps`.
    """

    model_config = _FROZEN

    id: str = Field(..., min_length=1)
    title: str = ""
    prompt: str = ""
    type: str = "sql-query"
    topic_id: Optional[str] = None
    setup_sql: Optional[str] = None
    requires_superuser: bool = False
    uses_pooler: bool = False
    validation: ValidationSpec
    hints: List[str] = Field(default_factory=list)
    explanation: str = ""
    sessions: Optional[SessionPrompts] = None
    steps: List[ExerciseStep] = Field(default_factory=list)

    @property
    def is_multi_session(self) -> bool:
        return self.type == "multi-session" or bool(self.steps)

    @property
    def namespace(self) -> str:
        return namespace_for(self.id, self.topic_id)


_NON_IDENT = re.compile(r"[^a-z0-9_]+")
# Resetting drops the namespace with CASCADE.
_RESERVED_NAMESPACES = frozenset({"public", "information_schema"})


def namespace_for(exercise_id: str, topic_id: Optional[str] = None) -> str:
    """
    Derive the schema an exercise runs in from its topic.

    Exercise ids follow `topic-lesson-exercise`; without an explicit topic the
    first segment is the key. Exercises sharing a topic share a namespace.

    Raises InvalidRequestError when the key is empty or names a system schema.
    """
    raw = topic_id if topic_id else exercise_id.split("-")[0]
    name = _NON_IDENT.sub("_", raw.strip().lower().replace("-", "_")).strip("_")
    if name and name[0].isdigit():
        name = f"t_{name}"
    name = name[:63]
    if not name or name in _RESERVED_NAMESPACES or name.startswith("pg_"):
        raise InvalidRequestError(
            f"Exercise '{exercise_id}' has no usable namespace (got '{name}')",
            extra={"exercise_id": exercise_id, "topic_id": topic_id},
        )
    return name


__all__ = [
    "ColumnRule",
    "ConstraintRule",
    "ExerciseDefinition",
    "ExerciseStep",
    "IndexRule",
    "OrderingRule",
    "PerformanceRules",
    "PerformanceSpec",
    "QueryPlanRules",
    "QueryPlanSpec",
    "RequiredConstraint",
    "RequiredIndex",
    "ResultMatchRules",
    "ResultMatchSpec",
    "RowCountRule",
    "SchemaRules",
    "SchemaSpec",
    "SessionName",
    "SessionPrompts",
    "TableRule",
    "ValidationSpec",
    "VALIDATION_SPEC_TYPES",
    "ValuesRule",
    "namespace_for",
]
