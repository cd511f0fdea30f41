"""
learnpg - Exercise sandbox and validation engine for a PostgreSQL course.

This package runs learner SQL against a real PostgreSQL server and judges it:

- Per-exercise namespaces that are dropped, recreated and seeded on demand
- Single-shot execution under a statement timeout and an exercise search_path
- Paired sessions (A and B) on dedicated connections for concurrency lessons
- Pluggable validation by result match, query plan, performance or schema
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from learnpg.config import Settings, get_settings
from learnpg.domain.models import ExerciseDefinition, namespace_for
from learnpg.errors import SandboxError, suggest_for_error
from learnpg.service import ExerciseService, SessionStepOutcome
from learnpg.utils.logging import configure_logging, get_logger
from learnpg.validation import ValidationDispatcher, ValidationResult, available_strategies

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "ExerciseDefinition",
    "namespace_for",
    # Errors
    "SandboxError",
    "suggest_for_error",
    # Service
    "ExerciseService",
    "SessionStepOutcome",
    # Validation
    "ValidationDispatcher",
    "ValidationResult",
    "available_strategies",
    # Logging
    "configure_logging",
    "get_logger",
]
