"""
Exercise lookup.

The curriculum lives outside the sandbox; the service only needs
`get(exercise_id)`. `load_catalog` reads exercise definitions from a JSON
file (a list, or an object with an "exercises" list) or from a directory of
such files, so the CLI and tests can run without the curriculum service.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from pydantic import TypeAdapter

from learnpg.domain.models import ExerciseDefinition
from learnpg.utils.logging import get_logger

log = get_logger(__name__)

_EXERCISE_LIST = TypeAdapter(List[ExerciseDefinition])


@runtime_checkable
class ExerciseCatalog(Protocol):
    def get(self, exercise_id: str) -> Optional[ExerciseDefinition]:
        """Return the exercise, or None when the id is unknown."""
        ...


class InMemoryExerciseCatalog:
    """Dict-backed catalog; later definitions replace earlier ones with the same id."""

    def __init__(self, exercises: Iterable[ExerciseDefinition] = ()) -> None:
        self._exercises: Dict[str, ExerciseDefinition] = {}
        for exercise in exercises:
            self.add(exercise)

    def add(self, exercise: ExerciseDefinition) -> None:
        self._exercises[exercise.id] = exercise

    def get(self, exercise_id: str) -> Optional[ExerciseDefinition]:
        return self._exercises.get(exercise_id)

    def all(self) -> List[ExerciseDefinition]:
        return sorted(self._exercises.values(), key=lambda e: e.id)

    def __len__(self) -> int:
        return len(self._exercises)


def _read_definitions(path: Path) -> List[ExerciseDefinition]:
    with path.open("r", encoding="utf-8") as f:
        payload = json.load(f)
    topic_id = None
    if isinstance(payload, dict):
        topic_id = payload.get("topicId") or payload.get("topic_id")
        payload = payload.get("exercises", [])
    if topic_id:
        for item in payload:
            if isinstance(item, dict):
                item.setdefault("topicId", topic_id)
    return _EXERCISE_LIST.validate_python(payload)


def load_catalog(path: Path | str) -> InMemoryExerciseCatalog:
    """
    Load exercise definitions from a JSON file or a directory of JSON files.

    Raises
    ------
    FileNotFoundError
        If the path does not exist.
    pydantic.ValidationError
        If a definition is malformed (e.g. an unknown validation strategy).
    """
    root = Path(path)
    if not root.exists():
        raise FileNotFoundError(f"Exercise catalog not found: {root}")

    files = sorted(root.rglob("*.json")) if root.is_dir() else [root]
    catalog = InMemoryExerciseCatalog()
    for file in files:
        for exercise in _read_definitions(file):
            catalog.add(exercise)
    log.info("Exercise catalog loaded", extra={"path": str(root), "exercises": len(catalog)})
    return catalog


__all__ = ["ExerciseCatalog", "InMemoryExerciseCatalog", "load_catalog"]
