"""
Validation dispatcher: route a spec to its strategy and always return a result.

Usage:
    from learnpg.validation import ValidationDispatcher

    dispatcher = ValidationDispatcher(QueryExecutor())
    result = dispatcher.validate(spec, sql, query_result, elapsed_ms, "basics")

The strategy table is keyed by spec variant type and checked for
completeness when the dispatcher is built, so a new variant without a
strategy fails loudly at startup instead of at submission time.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, Type

from pydantic import BaseModel

from learnpg.domain.models import (
    VALIDATION_SPEC_TYPES,
    PerformanceSpec,
    QueryPlanSpec,
    ResultMatchSpec,
    SchemaSpec,
    ValidationSpec,
)
from learnpg.infrastructure.db_factory import CredentialProfile
from learnpg.infrastructure.executor import QueryResult
from learnpg.utils.logging import get_logger
from learnpg.validation.abstract import (
    AbstractValidationStrategy,
    ValidationContext,
    ValidationResult,
)
from learnpg.validation.performance import PerformanceStrategy
from learnpg.validation.query_plan import QueryPlanStrategy
from learnpg.validation.result_match import ResultMatchStrategy
from learnpg.validation.schema import SchemaStrategy

log = get_logger(__name__)


class EngineIntrospection(Protocol):
    """What the plan and schema strategies need from the executor."""

    def explain(
        self,
        statement: str,
        namespace: str,
        profile: CredentialProfile = ...,
        timeout_ms: Optional[int] = ...,
    ) -> List[Dict[str, Any]]:
        ...

    def describe_tables(self, namespace: str) -> List[Dict[str, Any]]:
        ...

    def describe_indexes(self, namespace: str) -> List[Dict[str, Any]]:
        ...

    def describe_constraints(self, namespace: str) -> List[Dict[str, Any]]:
        ...


def _strategy_factories(
    engine: EngineIntrospection,
) -> Dict[Type[BaseModel], Callable[[], AbstractValidationStrategy]]:
    """Registry of strategies by spec variant."""
    return {
        ResultMatchSpec: lambda: ResultMatchStrategy(),
        QueryPlanSpec: lambda: QueryPlanStrategy(engine),
        PerformanceSpec: lambda: PerformanceStrategy(),
        SchemaSpec: lambda: SchemaStrategy(engine),
    }


def available_strategies() -> List[str]:
    """List the strategy tags a ValidationSpec may carry."""
    return sorted(t.model_fields["strategy"].default for t in VALIDATION_SPEC_TYPES)


class ValidationDispatcher:
    def __init__(self, engine: EngineIntrospection) -> None:
        factories = _strategy_factories(engine)
        missing = [t.__name__ for t in VALIDATION_SPEC_TYPES if t not in factories]
        if missing:
            raise TypeError(f"No validation strategy registered for: {', '.join(missing)}")
        self._strategies: Dict[Type[BaseModel], AbstractValidationStrategy] = {
            spec_type: factory() for spec_type, factory in factories.items()
        }

    def validate(
        self,
        spec: ValidationSpec,
        submitted_sql: str,
        execution_result: Optional[QueryResult],
        execution_time_ms: float,
        namespace: str,
        profile: CredentialProfile = CredentialProfile.LEARNER,
    ) -> ValidationResult:
        """
        Judge a submission. Never raises: a failing strategy yields a
        zero-score result carrying the error message.
        """
        strategy = self._strategies.get(type(spec))
        if strategy is None:
            return ValidationResult.failure(
                f"Unsupported validation strategy: {getattr(spec, 'strategy', type(spec).__name__)}",
                execution_time_ms=execution_time_ms,
            )

        context = ValidationContext(
            submitted_sql=submitted_sql,
            execution_result=execution_result,
            execution_time_ms=execution_time_ms,
            namespace=namespace,
            profile=profile,
        )
        try:
            result = strategy.validate(spec.rules, context)
        except Exception as exc:  # noqa: BLE001 - intentional broad catch to report failures
            log.warning(
                f"[VALIDATION FAILED] {strategy.name}",
                extra={"strategy": strategy.name, "namespace": namespace, "error": str(exc)},
            )
            return ValidationResult.failure(
                self._failure_message(strategy.name, exc),
                suggestions=self._failure_suggestions(strategy.name),
                execution_time_ms=execution_time_ms,
            )

        log.debug(
            f"[VALIDATION] {strategy.name}",
            extra={"strategy": strategy.name, "score": result.score, "is_valid": result.is_valid},
        )
        return result.model_copy(update={"execution_time_ms": execution_time_ms})

    @staticmethod
    def _failure_message(strategy_name: str, exc: Exception) -> str:
        message = getattr(exc, "message", None) or str(exc)
        if strategy_name == QueryPlanStrategy.name:
            return f"Failed to analyze query plan: {message}"
        if strategy_name == SchemaStrategy.name:
            return f"Failed to validate schema: {message}"
        return f"Validation failed: {message}"

    @staticmethod
    def _failure_suggestions(strategy_name: str) -> List[str]:
        if strategy_name == QueryPlanStrategy.name:
            return ["Check your SQL syntax"]
        return []


__all__ = ["EngineIntrospection", "ValidationDispatcher", "available_strategies"]
