"""
Pytest configuration for the learnpg sandbox.

Provides fixtures for:
- Settings override and DSNs for integration tests
- Database availability checks
- A scripted fake server (`fake_db`) for unit tests that drive psycopg-shaped
  connections and cursors without PostgreSQL
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, Generator, List, Optional

import psycopg
import pytest

from learnpg.config import Settings, get_settings
from learnpg.errors import InfrastructureError
from learnpg.infrastructure.db_factory import CredentialProfile, build_dsn


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5433")),
        db_user=os.getenv("DB_USER", "learnpg"),
        db_password=os.getenv("DB_PASSWORD", "learnpg_dev"),
        db_admin_user=os.getenv("DB_ADMIN_USER", "learnpg_admin"),
        db_admin_password=os.getenv("DB_ADMIN_PASSWORD", "learnpg_admin_dev"),
        db_name=os.getenv("DB_NAME", "exercises"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Learner connection string for tests.
    """
    return build_dsn(CredentialProfile.LEARNER, test_settings)


@pytest.fixture(scope="session")
def test_admin_dsn(test_settings: Settings) -> str:
    return build_dsn(CredentialProfile.ADMIN, test_settings)


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped autocommit connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(autouse=True)
def _fresh_settings_cache() -> Generator[None, None, None]:
    """Each test sees settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# --- scripted fake server ---------------------------------------------------


@dataclass
class FakeColumn:
    name: str
    type_code: int = 25


class FakeCursor:
    """
    Cursor over scripted result sets.

    A result set is {"columns": [...], "rows": [...]} or None for a
    statement that returns no rows. A callable response is invoked first and
    its return value used, so a test can make a statement block or fail late.
    """

    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self._sets: List[Optional[Dict[str, Any]]] = [None]
        self._index = 0

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def execute(self, statement: Any, params: Any = None) -> "FakeCursor":
        del params
        self._conn.executed.append(statement)
        response = self._conn.db.responses.get(statement) if isinstance(statement, str) else None
        if callable(response):
            response = response()
        if isinstance(response, BaseException):
            raise response
        self._sets = list(response) if response else [None]
        self._index = 0
        return self

    @property
    def _current(self) -> Optional[Dict[str, Any]]:
        return self._sets[self._index]

    @property
    def description(self) -> Optional[List[FakeColumn]]:
        if self._current is None:
            return None
        return [FakeColumn(name) for name in self._current["columns"]]

    @property
    def rowcount(self) -> int:
        return len(self._current["rows"]) if self._current is not None else 0

    @property
    def statusmessage(self) -> str:
        return f"SELECT {self.rowcount}" if self._current is not None else "OK"

    def fetchall(self) -> List[Dict[str, Any]]:
        return list(self._current["rows"]) if self._current is not None else []

    def nextset(self) -> Optional[bool]:
        if self._index + 1 < len(self._sets):
            self._index += 1
            return True
        return None


class FakeConnection:
    def __init__(self, db: "FakeDatabase", profile: CredentialProfile) -> None:
        self.db = db
        self.profile = profile
        self.executed: List[Any] = []
        self.closed = False

    def cursor(self, row_factory: Any = None) -> FakeCursor:
        del row_factory
        return FakeCursor(self)

    def cancel_safe(self) -> None:
        self.db.cancelled.append(self)
        self.db.cancel_requested.set()

    def close(self) -> None:
        self.closed = True


class FakeDatabase:
    """Statement text -> scripted result sets (or an exception to raise)."""

    def __init__(self) -> None:
        self.responses: Dict[str, Any] = {}
        self.connections: List[FakeConnection] = []
        self.max_connections: Optional[int] = None
        self.cancelled: List[FakeConnection] = []
        self.cancel_requested = threading.Event()

    @staticmethod
    def result(columns: List[str], rows: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        return {"columns": list(columns), "rows": list(rows or [])}

    def script(self, statement: str, *result_sets: Optional[Dict[str, Any]]) -> None:
        self.responses[statement] = list(result_sets)

    def fail(self, statement: str, exc: BaseException) -> None:
        self.responses[statement] = exc

    def connect(self, profile: CredentialProfile = CredentialProfile.LEARNER) -> FakeConnection:
        if self.max_connections is not None and len(self.connections) >= self.max_connections:
            raise InfrastructureError("Database unreachable")
        conn = FakeConnection(self, profile)
        self.connections.append(conn)
        return conn


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()
