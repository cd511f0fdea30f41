"""
Utilities package for the learnpg sandbox.

Exports shared helpers for logging and other cross-cutting concerns.
Keep this package lightweight and free of exercise-specific logic.
"""

from learnpg.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
