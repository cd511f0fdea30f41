from __future__ import annotations

import json
import sys
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import typer

from learnpg.config import get_settings
from learnpg.domain.catalog import InMemoryExerciseCatalog
from learnpg.errors import DefinitionError, SandboxError
from learnpg.infrastructure.db_factory import CredentialProfile, build_dsn
from learnpg.infrastructure.db_factory import ping as ping_profile
from learnpg.reporter import print_exercises, print_session_step, print_validation
from learnpg.service import ExerciseService, SessionStepOutcome
from learnpg.sessions import SESSION_NAMES
from learnpg.utils.logging import configure_logging
from learnpg.validation import available_strategies

app = typer.Typer(help="learnpg exercise sandbox CLI.")


def _service() -> ExerciseService:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    return ExerciseService.from_settings(start_sweeper=False)


def _fail(exc: SandboxError) -> None:
    typer.echo(f"{exc.error_code}: {exc.message}", err=True)
    raise typer.Exit(code=2 if isinstance(exc, DefinitionError) else 1)


def _parse_step(raw: str) -> Tuple[str, str]:
    session, sep, statement = raw.partition(":")
    session = session.strip().upper()
    if not sep or session not in ("A", "B") or not statement.strip():
        raise typer.BadParameter(f"Expected A:<sql> or B:<sql>, got {raw!r}")
    return session, statement


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"admin={settings.db_admin_user} pooler={settings.db_pooler_host}:{settings.db_pooler_port} | "
        f"statement_timeout={settings.db_statement_timeout_ms}ms "
        f"session_max_age={settings.session_max_age_seconds:g}s "
        f"sweep_interval={settings.session_sweep_interval_seconds:g}s"
    )
    typer.echo(f"catalog={settings.catalog_path or '-'} attempts={settings.attempts_path}")


@app.command()
def ping() -> None:
    """
    Check that each credential profile can reach the database.
    """
    failed = False
    for profile in CredentialProfile:
        reachable = ping_profile(profile)
        failed = failed or not reachable
        dsn = build_dsn(profile).split("@", 1)[-1]
        typer.echo(f"{profile.value:<8} {dsn:<40} {'ok' if reachable else 'UNREACHABLE'}")
    if failed:
        raise typer.Exit(code=1)


@app.command()
def exercises() -> None:
    """
    List exercises in the configured catalog.
    """
    with _service() as service:
        catalog = service.catalog
        items = catalog.all() if isinstance(catalog, InMemoryExerciseCatalog) else []
    print_exercises(items)


@app.command()
def setup(exercise_id: str = typer.Argument(..., help="Exercise to prepare.")) -> None:
    """
    Reset the exercise namespace and run its setup script.
    """
    with _service() as service:
        try:
            service.setup_exercise(exercise_id)
        except SandboxError as exc:
            _fail(exc)
    typer.echo(f"Exercise '{exercise_id}' is ready.")


@app.command()
def submit(
    exercise_id: str = typer.Argument(..., help="Exercise to submit against."),
    sql: Optional[str] = typer.Option(None, "--sql", "-q", help="SQL to submit."),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read SQL from a file."),
    as_json: bool = typer.Option(False, "--json", help="Print the judgement as JSON."),
) -> None:
    """
    Submit SQL for an exercise and print the judgement.
    """
    if file is not None:
        sql = file.read_text(encoding="utf-8")
    if not sql:
        raise typer.BadParameter("Provide --sql or --file")

    with _service() as service:
        try:
            result = service.submit_exercise(exercise_id, sql)
        except SandboxError as exc:
            _fail(exc)
            return
    if as_json:
        typer.echo(result.model_dump_json(by_alias=True, indent=2))
    else:
        print_validation(result)
    if not result.is_valid:
        raise typer.Exit(code=1)


def _wait_for(future: Future, timeout: float) -> Optional[SessionStepOutcome]:
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout:
        return None


def _settle(
    service: ExerciseService, pair_id: str, session_name: str, future: Future, timeout: float
) -> bool:
    """Wait for a blocked step; cancel it after `timeout`. Returns False on timeout."""
    outcome = _wait_for(future, timeout)
    if outcome is not None:
        print_session_step(outcome)
        return True
    typer.echo(f"Session {session_name}: timed out after {timeout:g}s, cancelling the statement")
    service.cancel_session_statement(pair_id, session_name)
    outcome = _wait_for(future, timeout)
    if outcome is not None:
        print_session_step(outcome)
    return False


@app.command()
def session(
    exercise_id: str = typer.Argument(..., help="Multi-session exercise to run."),
    step: List[str] = typer.Option(
        ...,
        "--step",
        "-s",
        help="A step as SESSION:SQL, e.g. -s 'A:BEGIN' -s 'B:SELECT * FROM accounts'. Repeatable.",
    ),
    validate_steps: bool = typer.Option(
        True, "--validate/--no-validate", help="Apply per-step validation by position."
    ),
    blocked_after: float = typer.Option(
        1.0, "--blocked-after", help="Seconds before a step is reported as waiting and the script moves on."
    ),
    step_timeout: Optional[float] = typer.Option(
        None,
        "--step-timeout",
        help="Seconds a waiting step may stay blocked before it is cancelled "
        "(default: SESSION_STEP_TIMEOUT_SECONDS).",
    ),
) -> None:
    """
    Run a scripted sequence of statements on a fresh session pair.

    A step that waits on the other session's lock is reported as waiting and
    the script continues, so the other session can release the lock. A session
    runs its steps in order; a waiting step that is still blocked after
    --step-timeout is cancelled and the command exits with code 1.
    """
    steps = [_parse_step(raw) for raw in step]
    timeout = step_timeout if step_timeout is not None else get_settings().session_step_timeout_seconds
    timed_out = False
    with _service() as service:
        try:
            pair_id = service.start_session_pair(exercise_id)
        except SandboxError as exc:
            _fail(exc)
            return
        exercise = service.catalog.get(exercise_id)
        step_count = len(exercise.steps) if exercise else 0
        workers = ThreadPoolExecutor(max_workers=len(SESSION_NAMES), thread_name_prefix="session-step")
        pending: Dict[str, Future] = {}
        try:
            for index, (name, statement) in enumerate(steps):
                if name in pending:
                    timed_out |= not _settle(service, pair_id, name, pending.pop(name), timeout)
                step_index = index if validate_steps and index < step_count else None
                future = workers.submit(
                    service.execute_on_session_pair, pair_id, name, statement, step_index
                )
                outcome = _wait_for(future, blocked_after)
                if outcome is None:
                    typer.echo(f"Session {name}: waiting (step {index + 1} is blocked)")
                    pending[name] = future
                else:
                    print_session_step(outcome)
                for other, other_future in list(pending.items()):
                    if other_future.done():
                        del pending[other]
                        print_session_step(other_future.result())
            for name in list(pending):
                timed_out |= not _settle(service, pair_id, name, pending.pop(name), timeout)
        except SandboxError as exc:
            _fail(exc)
        finally:
            workers.shutdown(wait=False, cancel_futures=True)
            service.close_session_pair(pair_id)
    if timed_out:
        raise typer.Exit(code=1)


@app.command()
def strategies() -> None:
    """
    List the validation strategies a spec may use.
    """
    typer.echo(json.dumps(available_strategies()))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
