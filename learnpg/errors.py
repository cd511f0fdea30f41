"""
Exception hierarchy for the learnpg sandbox.

Definition errors are the caller's fault and are reported immediately.
Query errors carry the engine's message verbatim plus canned suggestions.
Infrastructure errors mean the backing database is unusable for this attempt.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SandboxError(Exception):
    """Base class for every error raised by the sandbox."""

    error_code: str = "SANDBOX_ERROR"

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra or {}


class DefinitionError(SandboxError):
    """Client-facing error: unknown ids or a malformed request."""

    error_code = "DEFINITION_ERROR"


class ExerciseNotFoundError(DefinitionError):
    error_code = "EXERCISE_NOT_FOUND"

    def __init__(self, exercise_id: str) -> None:
        super().__init__(
            f"Exercise '{exercise_id}' not found", extra={"exercise_id": exercise_id}
        )


class SessionNotFoundError(DefinitionError):
    error_code = "SESSION_NOT_FOUND"

    def __init__(self, pair_id: str) -> None:
        super().__init__(f"Session '{pair_id}' not found", extra={"pair_id": pair_id})


class InvalidRequestError(DefinitionError):
    error_code = "INVALID_REQUEST"


class QueryError(SandboxError):
    """
    The engine rejected a statement (syntax, missing relation, constraint,
    statement timeout, ...). `message` is the engine's text, unchanged.
    """

    error_code = "QUERY_ERROR"

    def __init__(self, message: str, sqlstate: Optional[str] = None) -> None:
        super().__init__(message, extra={"sqlstate": sqlstate} if sqlstate else None)
        self.sqlstate = sqlstate

    @property
    def suggestions(self) -> List[str]:
        return suggest_for_error(self.message)


class SetupScriptError(QueryError):
    error_code = "SETUP_SCRIPT_ERROR"


class InfrastructureError(SandboxError):
    error_code = "INFRASTRUCTURE_ERROR"


# (pattern groups, suggestions); every pattern in a group must appear in the message
_SUGGESTION_RULES: List[tuple[tuple[str, ...], tuple[str, ...]]] = [
    (
        ("syntax error",),
        (
            "Check your SQL syntax",
            "Make sure all keywords are spelled correctly",
        ),
    ),
    (
        ("relation", "does not exist"),
        (
            "Check table and column names",
            "Make sure the table exists in the current schema",
        ),
    ),
    (
        ("column", "does not exist"),
        ("Check table and column names",),
    ),
    (
        ("permission denied",),
        ("You may not have permission to perform this operation",),
    ),
    (
        ("timeout",),
        (
            "Query took too long to execute",
            "Try optimizing with indexes or simpler logic",
        ),
    ),
    (
        ("canceling statement",),
        ("The statement was cancelled before it finished",),
    ),
    (
        ("duplicate key",),
        ("A row with the same unique key already exists",),
    ),
    (
        ("violates foreign key constraint",),
        ("Make sure referenced rows exist before inserting or deleting",),
    ),
    (
        ("violates not-null constraint",),
        ("Provide a value for every NOT NULL column",),
    ),
    (
        ("deadlock detected",),
        (
            "Two transactions waited on each other's locks",
            "Acquire locks in the same order in every session",
        ),
    ),
]


def suggest_for_error(message: str) -> List[str]:
    """Map an engine error message to canned hints for the learner."""
    lowered = (message or "").lower()
    suggestions: List[str] = []
    for patterns, hints in _SUGGESTION_RULES:
        if all(p in lowered for p in patterns):
            suggestions.extend(h for h in hints if h not in suggestions)
    return suggestions


__all__ = [
    "SandboxError",
    "DefinitionError",
    "ExerciseNotFoundError",
    "SessionNotFoundError",
    "InvalidRequestError",
    "QueryError",
    "SetupScriptError",
    "InfrastructureError",
    "suggest_for_error",
]
