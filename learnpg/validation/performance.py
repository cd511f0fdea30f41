"""
Performance strategy: compare the already-measured execution time with a ceiling.
"""

from __future__ import annotations

from learnpg.domain.models import PerformanceRules
from learnpg.validation.abstract import (
    AbstractValidationStrategy,
    Scorecard,
    ValidationContext,
    ValidationResult,
)

PENALTY_TOO_SLOW = 50


class PerformanceStrategy(AbstractValidationStrategy[PerformanceRules]):
    name = "performance"
    description = "Execution time must stay under a maximum; nothing is re-run."

    def validate(self, rules: PerformanceRules, context: ValidationContext) -> ValidationResult:
        card = Scorecard()
        elapsed = context.execution_time_ms
        if elapsed > rules.max_execution_time_ms:
            card.fail(
                f"Query too slow: {elapsed:g}ms (max: {rules.max_execution_time_ms:g}ms)",
                PENALTY_TOO_SLOW,
                "Optimize your query with indexes or better logic",
            )
        else:
            card.ok(f"Good performance: {elapsed:g}ms")
        return card.result()


__all__ = ["PerformanceStrategy"]
