from __future__ import annotations

import pytest

from learnpg.errors import (
    DefinitionError,
    ExerciseNotFoundError,
    QueryError,
    SessionNotFoundError,
    SetupScriptError,
    suggest_for_error,
)


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ('syntax error at or near "SELEC"', "Check your SQL syntax"),
        ('relation "userz" does not exist', "Make sure the table exists in the current schema"),
        ('column "nme" does not exist', "Check table and column names"),
        ("permission denied for schema pg_catalog", "You may not have permission to perform this operation"),
        ("canceling statement due to statement timeout", "Query took too long to execute"),
        ("deadlock detected", "Acquire locks in the same order in every session"),
    ],
)
def test_suggestions_follow_message_patterns(message: str, expected: str) -> None:
    assert expected in suggest_for_error(message)


def test_suggestions_are_case_insensitive_and_unique() -> None:
    hints = suggest_for_error('RELATION "x" DOES NOT EXIST; column "y" does not exist')
    assert hints.count("Check table and column names") == 1


def test_unknown_message_has_no_suggestions() -> None:
    assert suggest_for_error("something unexpected") == []
    assert suggest_for_error("") == []


def test_query_error_keeps_engine_message_verbatim() -> None:
    exc = QueryError('syntax error at or near "FORM"', sqlstate="42601")
    assert exc.message == 'syntax error at or near "FORM"'
    assert exc.extra == {"sqlstate": "42601"}
    assert "Check your SQL syntax" in exc.suggestions


def test_definition_errors_name_the_missing_id() -> None:
    assert isinstance(ExerciseNotFoundError("x-1"), DefinitionError)
    assert SessionNotFoundError("abc").message == "Session 'abc' not found"
    assert ExerciseNotFoundError("x-1").error_code == "EXERCISE_NOT_FOUND"


def test_setup_script_error_is_a_query_error() -> None:
    exc = SetupScriptError('relation "t" already exists')
    assert isinstance(exc, QueryError)
    assert exc.error_code == "SETUP_SCRIPT_ERROR"
