"""
Attempt recording.

Progress tracking lives outside the sandbox; from here recording an attempt
is fire-and-forget. `JsonlAttemptRecorder` appends one JSON object per
attempt to a local file; write failures are logged and swallowed so they
never change the judgement the learner sees.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from learnpg.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class AttemptRecord:
    exercise_id: str
    submitted_sql: str
    is_correct: bool
    score: int
    execution_time_ms: float
    session: Optional[str] = None
    step_index: Optional[int] = None
    error: Optional[str] = None
    recorded_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@runtime_checkable
class AttemptRecorder(Protocol):
    def record(self, attempt: AttemptRecord) -> None:
        ...


class NullAttemptRecorder:
    """Discards attempts."""

    def record(self, attempt: AttemptRecord) -> None:
        del attempt


class JsonlAttemptRecorder:
    """Append attempts to a JSON-lines file, one line per attempt."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, attempt: AttemptRecord) -> None:
        line = json.dumps(asdict(attempt), sort_keys=True)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as exc:
            log.warning(
                "Failed to record attempt",
                extra={"exercise_id": attempt.exercise_id, "path": str(self.path), "error": str(exc)},
            )


__all__ = ["AttemptRecord", "AttemptRecorder", "JsonlAttemptRecorder", "NullAttemptRecorder"]
