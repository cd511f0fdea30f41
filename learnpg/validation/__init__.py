"""
Validation package for the learnpg sandbox.

Re-exports the result contract, the dispatcher and the concrete strategies
so downstream code can import from `learnpg.validation` directly.
"""

from learnpg.validation.abstract import (
    AbstractValidationStrategy,
    Scorecard,
    ValidationContext,
    ValidationResult,
)
from learnpg.validation.dispatcher import ValidationDispatcher, available_strategies
from learnpg.validation.performance import PerformanceStrategy
from learnpg.validation.query_plan import QueryPlanStrategy
from learnpg.validation.result_match import ResultMatchStrategy
from learnpg.validation.schema import SchemaStrategy

__all__ = [
    # Contracts
    "AbstractValidationStrategy",
    "Scorecard",
    "ValidationContext",
    "ValidationResult",
    # Dispatch
    "ValidationDispatcher",
    "available_strategies",
    # Concrete strategies
    "PerformanceStrategy",
    "QueryPlanStrategy",
    "ResultMatchStrategy",
    "SchemaStrategy",
]
