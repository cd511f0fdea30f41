"""
Connection provisioning for the learnpg sandbox.

Opens PostgreSQL connections under one of three credential profiles:

- LEARNER: the ordinary exercise user every submission runs as
- ADMIN:   the elevated user for exercises that need internals access
- POOLED:  the learner user routed through the pooling gateway

Learner SQL always runs on a dedicated connection that is closed on every
exit path. The PoolManager singleton only serves the sandbox's own read-only
catalog queries and health checks, and is cleaned up on exit.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import atexit
import enum
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Generator, Optional

import psycopg
from psycopg import Connection, Cursor, sql
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from learnpg.config import Settings, get_settings
from learnpg.errors import InfrastructureError
from learnpg.utils.logging import get_logger

if TYPE_CHECKING:
    from learnpg.domain.models import ExerciseDefinition

log = get_logger(__name__)


class CredentialProfile(str, enum.Enum):
    LEARNER = "learner"
    ADMIN = "admin"
    POOLED = "pooled"


def profile_for(exercise: "ExerciseDefinition") -> CredentialProfile:
    """Pick the credential profile from the exercise's flags, never from its SQL."""
    if exercise.uses_pooler:
        return CredentialProfile.POOLED
    if exercise.requires_superuser:
        return CredentialProfile.ADMIN
    return CredentialProfile.LEARNER


def session_profile_for(exercise: "ExerciseDefinition") -> CredentialProfile:
    """
    Profile for a session pair's dedicated connections.

    Pairs never go through the pooled gateway: a transaction-mode pooler
    drops `search_path` and open transactions between statements.
    """
    if exercise.requires_superuser:
        return CredentialProfile.ADMIN
    return CredentialProfile.LEARNER


def build_dsn(
    profile: CredentialProfile = CredentialProfile.LEARNER,
    settings: Optional[Settings] = None,
) -> str:
    """Compose a DSN string for a credential profile from settings."""
    settings = settings or get_settings()
    host, port = settings.db_host, settings.db_port
    user, password = settings.db_user, settings.db_password
    if profile is CredentialProfile.ADMIN:
        user, password = settings.db_admin_user, settings.db_admin_password
    elif profile is CredentialProfile.POOLED:
        host, port = settings.db_pooler_host, settings.db_pooler_port
    return f"postgresql://{user}:{password}@{host}:{port}/{settings.db_name}"


def apply_statement_timeout(cur: Cursor, timeout_ms: Optional[int]) -> None:
    """Bound every later statement on this connection. None or 0 leaves it unbounded."""
    if timeout_ms:
        cur.execute(sql.SQL("SET statement_timeout = {}").format(sql.Literal(int(timeout_ms))))


def apply_search_path(cur: Cursor, namespace: str) -> None:
    cur.execute(sql.SQL("SET search_path TO {}").format(sql.Identifier(namespace)))


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def _connect(dsn: str, connect_timeout: int) -> Connection:
    return psycopg.connect(dsn, autocommit=True, connect_timeout=connect_timeout)


def get_sync_connection(
    profile: CredentialProfile = CredentialProfile.LEARNER,
) -> Connection:
    """
    Open a dedicated autocommit connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection
    errors. Autocommit lets learners drive transactions with their own
    BEGIN/COMMIT.

    Raises
    ------
    InfrastructureError
        If the connection fails after all retry attempts.
    """
    settings = get_settings()
    try:
        return _connect(build_dsn(profile, settings), settings.db_connect_timeout)
    except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
        log.error(
            "Database unreachable",
            extra={"profile": profile.value, "host": settings.db_host, "error": str(exc)},
        )
        raise InfrastructureError(
            f"Database unreachable for profile '{profile.value}': {exc}",
            extra={"profile": profile.value},
        ) from exc


def _close_quietly(conn: Connection) -> None:
    try:
        conn.close()
    except psycopg.Error as exc:
        log.warning("Failed to close connection", extra={"error": str(exc)})


@contextmanager
def open_connection(
    profile: CredentialProfile = CredentialProfile.LEARNER,
    namespace: Optional[str] = None,
    timeout_ms: Optional[int] = None,
) -> Generator[Connection, None, None]:
    """
    Context manager for a short-lived, fully configured connection.

    The connection is closed on every exit path: normal return, a failing
    statement, or any other exception raised inside the block.

    Example
    -------
        with open_connection(CredentialProfile.LEARNER, "basics", 5000) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
    """
    conn = get_sync_connection(profile)
    try:
        with conn.cursor() as cur:
            apply_statement_timeout(cur, timeout_ms)
            if namespace:
                apply_search_path(cur, namespace)
        yield conn
    finally:
        _close_quietly(conn)


class PoolManager:
    """
    Thread-safe singleton for the sandbox's own introspection pool.

    Handles lifecycle management with automatic cleanup via atexit hook.
    Learner statements never run on pooled connections.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._pools = {}
                atexit.register(cls._instance.close_all)
            return cls._instance

    def get_sync_pool(
        self,
        profile: CredentialProfile = CredentialProfile.LEARNER,
        min_size: int = 1,
        max_size: int = 4,
    ) -> ConnectionPool:
        """
        Get or create the pool for a credential profile.

        Parameters
        ----------
        profile : CredentialProfile
            Credentials the pooled connections authenticate with.
        min_size : int
            Minimum number of idle connections to keep.
        max_size : int
            Maximum total connections in the pool.
        """
        with self._lock:
            pool = self._pools.get(profile)
            if pool is None:
                settings = get_settings()
                pool = ConnectionPool(
                    conninfo=build_dsn(profile, settings),
                    min_size=min_size,
                    max_size=max_size,
                    kwargs={"autocommit": True},
                    timeout=float(settings.db_connect_timeout * 2),
                    open=True,
                )
                self._pools[profile] = pool
            return pool

    @contextmanager
    def sync_connection(
        self, profile: CredentialProfile = CredentialProfile.LEARNER
    ) -> Generator[Connection, None, None]:
        """Borrow a connection from the profile's pool."""
        pool = self.get_sync_pool(profile)
        with pool.connection() as conn:
            yield conn

    def close_all(self) -> None:
        """
        Close all managed pools and release resources.

        This is called automatically on exit via atexit hook.
        """
        with self._lock:
            pools, self._pools = self._pools, {}
        for profile, pool in pools.items():
            try:
                pool.close()
            except psycopg.Error as exc:
                log.warning(
                    "Failed to close pool", extra={"profile": profile.value, "error": str(exc)}
                )


def ping(profile: CredentialProfile = CredentialProfile.LEARNER) -> bool:
    """Return True when a connection under `profile` can run `SELECT 1`."""
    try:
        with open_connection(profile) as conn:
            conn.execute("SELECT 1").fetchone()
        return True
    except (InfrastructureError, psycopg.Error):
        return False


__all__ = [
    "CredentialProfile",
    "PoolManager",
    "apply_search_path",
    "apply_statement_timeout",
    "build_dsn",
    "get_sync_connection",
    "open_connection",
    "ping",
    "profile_for",
    "session_profile_for",
]
