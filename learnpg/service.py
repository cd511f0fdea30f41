"""
Exercise flow: the operations the sandbox exposes to its callers.

Usage (e.g. from an API route or the CLI):
    from learnpg.service import ExerciseService

    with ExerciseService.from_settings() as service:
        service.setup_exercise("basics-select-1")
        result = service.submit_exercise("basics-select-1", "SELECT * FROM users")
        print(result.model_dump(by_alias=True))

Namespaces are keyed by topic, so two learners working concurrently on
exercises of the same topic share (and can reset) one schema. The sandbox
targets one learner per topic at a time and does not guard against that race.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from learnpg.config import get_settings
from learnpg.domain.catalog import ExerciseCatalog, InMemoryExerciseCatalog, load_catalog
from learnpg.domain.models import ExerciseDefinition, ExerciseStep
from learnpg.errors import ExerciseNotFoundError, InvalidRequestError, QueryError
from learnpg.infrastructure.attempt_log import (
    AttemptRecord,
    AttemptRecorder,
    JsonlAttemptRecorder,
    NullAttemptRecorder,
)
from learnpg.infrastructure.db_factory import profile_for, session_profile_for
from learnpg.infrastructure.environment import EnvironmentResetter
from learnpg.infrastructure.executor import QueryExecutor, QueryResult
from learnpg.sessions import SESSION_NAMES, SessionPairRegistry, SessionSweeper
from learnpg.utils.logging import get_logger
from learnpg.validation.abstract import ValidationResult
from learnpg.validation.dispatcher import ValidationDispatcher

log = get_logger(__name__)


class SessionStepOutcome(BaseModel):
    """What one statement on a session pair produced."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    pair_id: str
    session: str
    rows: List[Dict[str, Any]] = []
    row_count: int = 0
    columns: List[str] = []
    status: Optional[str] = None
    execution_time_ms: float = 0.0
    validation: Optional[ValidationResult] = None
    error: Optional[str] = None
    suggestions: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None


def _require_sql(statement: Any) -> str:
    if not isinstance(statement, str) or not statement.strip():
        raise InvalidRequestError("Query is required")
    return statement


class ExerciseService:
    """
    Ties the resetter, executor, session registry and dispatcher together.

    Parameters
    ----------
    catalog : ExerciseCatalog
        Exercise lookup by id.
    registry : SessionPairRegistry | None
        Live session pairs; owned by this service unless injected.
    reset_before_submit : bool
        Reset the namespace and rerun the setup script before every
        single-shot submission, so each attempt starts clean.
    start_sweeper : bool
        Reclaim stale session pairs in a background thread.
    """

    def __init__(
        self,
        catalog: ExerciseCatalog,
        executor: Optional[QueryExecutor] = None,
        resetter: Optional[EnvironmentResetter] = None,
        registry: Optional[SessionPairRegistry] = None,
        dispatcher: Optional[ValidationDispatcher] = None,
        recorder: Optional[AttemptRecorder] = None,
        reset_before_submit: bool = True,
        start_sweeper: bool = False,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.catalog = catalog
        self.executor = executor if executor is not None else QueryExecutor()
        self.resetter = resetter if resetter is not None else EnvironmentResetter()
        self.registry = registry if registry is not None else SessionPairRegistry()
        self.dispatcher = (
            dispatcher if dispatcher is not None else ValidationDispatcher(self.executor)
        )
        self.recorder = recorder if recorder is not None else NullAttemptRecorder()
        self.reset_before_submit = reset_before_submit
        self._timer = timer
        self.sweeper = SessionSweeper(self.registry)
        if start_sweeper:
            self.sweeper.start()

    @classmethod
    def from_settings(cls, start_sweeper: bool = True) -> "ExerciseService":
        """Build a service from environment settings (catalog path, attempt log)."""
        settings = get_settings()
        catalog = (
            load_catalog(settings.catalog_path)
            if settings.catalog_path
            else InMemoryExerciseCatalog()
        )
        return cls(
            catalog=catalog,
            recorder=JsonlAttemptRecorder(settings.attempts_path),
            start_sweeper=start_sweeper,
        )

    def __enter__(self) -> "ExerciseService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb
        self.shutdown()

    def _elapsed(self, start: float) -> float:
        return round((self._timer() - start) * 1000, 3)

    def _exercise(self, exercise_id: str) -> ExerciseDefinition:
        exercise = self.catalog.get(exercise_id)
        if exercise is None:
            raise ExerciseNotFoundError(exercise_id)
        return exercise

    def _prepare(self, exercise: ExerciseDefinition) -> None:
        self.resetter.prepare(
            exercise.namespace, exercise.setup_sql, elevated=exercise.requires_superuser
        )

    def _record(self, attempt: AttemptRecord) -> None:
        try:
            self.recorder.record(attempt)
        except Exception:  # noqa: BLE001 - recording must never change the judgement
            log.exception("Attempt recorder failed", extra={"exercise_id": attempt.exercise_id})

    # -- single shot ---------------------------------------------------------

    def setup_exercise(self, exercise_id: str) -> None:
        """Reset the exercise's namespace and run its setup script."""
        exercise = self._exercise(exercise_id)
        self._prepare(exercise)
        log.info(
            "Exercise ready", extra={"exercise_id": exercise_id, "namespace": exercise.namespace}
        )

    def submit_exercise(self, exercise_id: str, sql: str) -> ValidationResult:
        """
        Execute a learner's statement once and judge it.

        Execution errors come back as a zero-score result with suggestions;
        unknown exercises, empty SQL, setup script and infrastructure failures
        raise.
        """
        sql = _require_sql(sql)
        exercise = self._exercise(exercise_id)
        namespace = exercise.namespace
        profile = profile_for(exercise)
        if self.reset_before_submit:
            self._prepare(exercise)

        start = self._timer()
        try:
            query_result = self.executor.execute(sql, namespace, profile)
        except QueryError as exc:
            elapsed = self._elapsed(start)
            result = ValidationResult.failure(
                exc.message, suggestions=exc.suggestions, execution_time_ms=elapsed
            )
            log.info(
                "[SUBMISSION FAILED] execution error",
                extra={"exercise_id": exercise_id, "namespace": namespace, "error": exc.message},
            )
            self._record(
                AttemptRecord(
                    exercise_id=exercise_id,
                    submitted_sql=sql,
                    is_correct=False,
                    score=0,
                    execution_time_ms=elapsed,
                    error=exc.message,
                )
            )
            return result

        elapsed = self._elapsed(start)
        result = self.dispatcher.validate(
            exercise.validation, sql, query_result, elapsed, namespace, profile
        ).model_copy(update={"query_results": query_result.as_dict()})

        log.info(
            "[SUBMISSION] judged",
            extra={
                "exercise_id": exercise_id,
                "namespace": namespace,
                "strategy": exercise.validation.strategy,
                "is_valid": result.is_valid,
                "score": result.score,
                "execution_time_ms": elapsed,
            },
        )
        self._record(
            AttemptRecord(
                exercise_id=exercise_id,
                submitted_sql=sql,
                is_correct=result.is_valid,
                score=result.score,
                execution_time_ms=elapsed,
            )
        )
        return result

    # -- session pairs -------------------------------------------------------

    def start_session_pair(self, exercise_id: str) -> str:
        """Reset and seed the namespace, then open sessions A and B on it."""
        exercise = self._exercise(exercise_id)
        if not exercise.is_multi_session:
            raise InvalidRequestError(
                f"Exercise '{exercise_id}' is not a multi-session exercise",
                extra={"exercise_id": exercise_id},
            )
        self._prepare(exercise)
        pair = self.registry.create(
            exercise.id, exercise.namespace, session_profile_for(exercise)
        )
        return pair.pair_id

    def _step(self, exercise: ExerciseDefinition, step_index: Optional[int]) -> Optional[ExerciseStep]:
        if step_index is None:
            return None
        if not 0 <= step_index < len(exercise.steps):
            raise InvalidRequestError(
                f"Step {step_index} out of range for exercise '{exercise.id}'",
                extra={"step_index": step_index, "steps": len(exercise.steps)},
            )
        return exercise.steps[step_index]

    def execute_on_session_pair(
        self,
        pair_id: str,
        session: str,
        sql: str,
        step_index: Optional[int] = None,
    ) -> SessionStepOutcome:
        """
        Run one statement on session A or B of a pair.

        Blocks while the statement waits on a lock held by the other session.
        When `step_index` names a step with its own validation spec, the
        outcome carries that judgement too.
        """
        if session not in SESSION_NAMES:
            raise InvalidRequestError(
                f"Session must be one of {', '.join(SESSION_NAMES)}", extra={"session": session}
            )
        sql = _require_sql(sql)
        pair = self.registry.get(pair_id)
        exercise = self._exercise(pair.exercise_id)
        step = self._step(exercise, step_index)

        start = self._timer()
        try:
            query_result = self.registry.execute(pair_id, session, sql)
        except QueryError as exc:
            elapsed = self._elapsed(start)
            log.info(
                "[SESSION STEP FAILED]",
                extra={"pair_id": pair_id, "session": session, "error": exc.message},
            )
            return SessionStepOutcome(
                pair_id=pair_id,
                session=session,
                execution_time_ms=elapsed,
                error=exc.message,
                suggestions=tuple(exc.suggestions),
            )
        elapsed = self._elapsed(start)

        validation = None
        if step is not None and step.validation is not None:
            validation = self.dispatcher.validate(
                step.validation,
                sql,
                query_result,
                elapsed,
                pair.namespace,
                session_profile_for(exercise),
            )
            self._record(
                AttemptRecord(
                    exercise_id=exercise.id,
                    submitted_sql=sql,
                    is_correct=validation.is_valid,
                    score=validation.score,
                    execution_time_ms=elapsed,
                    session=session,
                    step_index=step_index,
                )
            )

        return self._outcome(pair_id, session, query_result, elapsed, validation)

    @staticmethod
    def _outcome(
        pair_id: str,
        session: str,
        result: QueryResult,
        elapsed: float,
        validation: Optional[ValidationResult],
    ) -> SessionStepOutcome:
        return SessionStepOutcome(
            pair_id=pair_id,
            session=session,
            rows=result.rows,
            row_count=result.row_count,
            columns=result.column_names,
            status=result.status,
            execution_time_ms=elapsed,
            validation=validation,
        )

    def cancel_session_statement(self, pair_id: str, session: str) -> None:
        """Cancel the statement session A or B is waiting on."""
        if session not in SESSION_NAMES:
            raise InvalidRequestError(
                f"Session must be one of {', '.join(SESSION_NAMES)}", extra={"session": session}
            )
        self.registry.cancel(pair_id, session)

    def close_session_pair(self, pair_id: str) -> None:
        """Close both sessions. Unknown or already closed pairs are ignored."""
        self.registry.close_and_remove(pair_id)

    def shutdown(self) -> None:
        self.sweeper.stop()
        self.registry.close_all()


__all__ = ["ExerciseService", "SessionStepOutcome"]
