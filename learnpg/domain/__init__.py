"""
Domain package for the learnpg sandbox.

Exercise definitions, validation specs and the exercise lookup contract.
Keep this package focused on data definitions and validation of input shape.
"""

from learnpg.domain.catalog import ExerciseCatalog, InMemoryExerciseCatalog, load_catalog
from learnpg.domain.models import (
    ExerciseDefinition,
    ExerciseStep,
    PerformanceSpec,
    QueryPlanSpec,
    ResultMatchSpec,
    SchemaSpec,
    ValidationSpec,
    namespace_for,
)

__all__ = [
    "ExerciseCatalog",
    "ExerciseDefinition",
    "ExerciseStep",
    "InMemoryExerciseCatalog",
    "PerformanceSpec",
    "QueryPlanSpec",
    "ResultMatchSpec",
    "SchemaSpec",
    "ValidationSpec",
    "load_catalog",
    "namespace_for",
]
