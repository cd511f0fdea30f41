"""
Validation contracts for the learnpg sandbox.

Concrete strategies (result-match, query-plan, performance, schema) subclass
AbstractValidationStrategy and return a ValidationResult so the dispatcher,
the service and the CLI reporter all speak one shape.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Generic, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from learnpg.infrastructure.db_factory import CredentialProfile
from learnpg.infrastructure.executor import QueryResult

MAX_SCORE = 100


class ValidationResult(BaseModel):
    """
    Judgement of one submission. Immutable once built.

    Serialises with camelCase keys (`isValid`, `executionTimeMs`, ...) via
    `model_dump(by_alias=True)`.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    is_valid: bool
    score: int
    feedback: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()
    execution_time_ms: Optional[float] = None
    query_plan: Optional[Any] = None
    query_results: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(
        cls,
        error: str,
        suggestions: Tuple[str, ...] | List[str] = (),
        execution_time_ms: Optional[float] = None,
    ) -> "ValidationResult":
        """Zero-score result for a submission that could not be judged."""
        return cls(
            is_valid=False,
            score=0,
            errors=(error,),
            suggestions=tuple(suggestions),
            execution_time_ms=execution_time_ms,
        )


@dataclass
class Scorecard:
    """
    Accumulates feedback while a strategy checks its rules.

    Starts at 100; each failed check deducts its penalty. The final score is
    clamped to [0, 100] and the submission passes only with zero errors.
    """

    feedback: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    score: int = MAX_SCORE

    def fail(self, message: str, penalty: int, suggestion: Optional[str] = None) -> None:
        self.errors.append(message)
        self.score -= penalty
        if suggestion and suggestion not in self.suggestions:
            self.suggestions.append(suggestion)

    def ok(self, message: str) -> None:
        self.feedback.append(message)

    def result(self, **extra: Any) -> ValidationResult:
        return ValidationResult(
            is_valid=not self.errors,
            score=max(0, min(MAX_SCORE, self.score)),
            feedback=tuple(self.feedback),
            errors=tuple(self.errors),
            suggestions=tuple(self.suggestions),
            **extra,
        )


@dataclass(frozen=True)
class ValidationContext:
    """Everything a strategy may look at for one submission."""

    submitted_sql: str
    execution_result: Optional[QueryResult]
    execution_time_ms: float
    namespace: str
    profile: CredentialProfile = CredentialProfile.LEARNER


RulesT = TypeVar("RulesT", bound=BaseModel)


class AbstractValidationStrategy(abc.ABC, Generic[RulesT]):
    """
    Base for class-based strategies.

    Subclasses set `name` (the spec's strategy tag) and `description` and
    implement `validate`.
    """

    name: ClassVar[str]
    description: ClassVar[str]

    @abc.abstractmethod
    def validate(self, rules: RulesT, context: ValidationContext) -> ValidationResult:  # pragma: no cover - interface only
        """Judge one submission against `rules`."""
        raise NotImplementedError


__all__ = [
    "AbstractValidationStrategy",
    "MAX_SCORE",
    "Scorecard",
    "ValidationContext",
    "ValidationResult",
]
