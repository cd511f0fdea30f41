"""
Session pairs for multi-session exercises.

A pair is two independent, persistent connections ("A" and "B") bound to
one exercise namespace, so a learner can open a transaction in one session
and watch its effect (or its locks) from the other.

The registry is the only owner of live pairs. Its map is touched exclusively
through `create`, `get`, `close_and_remove` and `sweep`, all under one lock.
Statements never run under that lock: when B waits on a row lock held by A,
A must still be reachable to COMMIT.

Blocking is intentional. `execute` on one session returns only when the
engine lets the statement finish, which may be never if the sibling keeps
its lock. Callers must put their own timeout around the call; a caller that
gives up should `cancel` the pending statement before closing the pair.
"""

from __future__ import annotations

import enum
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import psycopg
from psycopg import Connection
from psycopg.rows import dict_row

from learnpg.config import get_settings
from learnpg.errors import InvalidRequestError, SessionNotFoundError
from learnpg.infrastructure.db_factory import (
    CredentialProfile,
    apply_search_path,
    get_sync_connection,
)
from learnpg.infrastructure.executor import QueryResult, run_statements
from learnpg.utils.logging import get_logger

log = get_logger(__name__)

SESSION_NAMES = ("A", "B")

ConnectionFactory = Callable[[CredentialProfile], Connection]


class PairState(str, enum.Enum):
    CREATED = "created"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class SessionPair:
    pair_id: str
    exercise_id: str
    namespace: str
    session_a: Connection
    session_b: Connection
    created_at: float
    state: PairState = PairState.CREATED
    _close_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def connection(self, session: str) -> Connection:
        if session == "A":
            return self.session_a
        if session == "B":
            return self.session_b
        raise InvalidRequestError(
            f"Unknown session '{session}', expected one of {', '.join(SESSION_NAMES)}",
            extra={"session": session},
        )

    def age(self, now: float) -> float:
        return now - self.created_at

    def cancel(self, session: str) -> None:
        """Ask the server to cancel whatever statement `session` is running."""
        self.connection(session).cancel_safe()

    def close(self) -> None:
        """End both connections. Closing a closed pair does nothing."""
        with self._close_lock:
            if self.state is PairState.CLOSED:
                return
            self.state = PairState.CLOSED
        for name, conn in (("A", self.session_a), ("B", self.session_b)):
            try:
                conn.close()
            except psycopg.Error as exc:
                log.warning(
                    "Failed to close session connection",
                    extra={"pair_id": self.pair_id, "session": name, "error": str(exc)},
                )


class SessionPairRegistry:
    """
    In-memory registry of live session pairs (pair id -> pair).

    Not durable: a process restart starts with an empty registry.

    Parameters
    ----------
    connect : callable
        Opens a new autocommit connection for a credential profile.
    clock : callable
        Monotonic seconds; injectable so age-based reclamation can be tested.
    """

    def __init__(
        self,
        connect: ConnectionFactory = get_sync_connection,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._connect = connect
        self._clock = clock
        self._pairs: Dict[str, SessionPair] = {}
        self._lock = threading.Lock()

    def _open(self, profile: CredentialProfile, namespace: str) -> Connection:
        conn = self._connect(profile)
        try:
            with conn.cursor() as cur:
                apply_search_path(cur, namespace)
        except BaseException:
            conn.close()
            raise
        return conn

    def create(
        self,
        exercise_id: str,
        namespace: str,
        profile: CredentialProfile = CredentialProfile.LEARNER,
    ) -> SessionPair:
        """Open both sessions on `namespace` and register the pair as active."""
        session_a = self._open(profile, namespace)
        try:
            session_b = self._open(profile, namespace)
        except BaseException:
            session_a.close()
            raise

        pair = SessionPair(
            pair_id=uuid.uuid4().hex,
            exercise_id=exercise_id,
            namespace=namespace,
            session_a=session_a,
            session_b=session_b,
            created_at=self._clock(),
        )
        pair.state = PairState.ACTIVE
        with self._lock:
            self._pairs[pair.pair_id] = pair

        log.info(
            "Session pair opened",
            extra={"pair_id": pair.pair_id, "exercise_id": exercise_id, "namespace": namespace},
        )
        return pair

    def get(self, pair_id: str) -> SessionPair:
        with self._lock:
            pair = self._pairs.get(pair_id)
        if pair is None or pair.state is PairState.CLOSED:
            raise SessionNotFoundError(pair_id)
        return pair

    def execute(self, pair_id: str, session: str, statement: str) -> QueryResult:
        """
        Run `statement` on one session of the pair.

        Each session keeps its own transaction state between calls. May block
        until the sibling session releases a lock.
        """
        pair = self.get(pair_id)
        conn = pair.connection(session)
        log.debug("Session execute", extra={"pair_id": pair_id, "session": session})
        with conn.cursor(row_factory=dict_row) as cur:
            return run_statements(cur, statement)

    def cancel(self, pair_id: str, session: str) -> None:
        """
        Cancel the statement pending on one session, e.g. one stuck on a lock.

        The blocked `execute` call then returns with the engine's
        "canceling statement due to user request" error.
        """
        pair = self.get(pair_id)
        log.info("Session statement cancelled", extra={"pair_id": pair_id, "session": session})
        pair.cancel(session)

    def close_and_remove(self, pair_id: str) -> bool:
        """Close and forget a pair. Returns False when it was not registered."""
        with self._lock:
            pair = self._pairs.pop(pair_id, None)
        if pair is None:
            return False
        pair.close()
        log.info("Session pair closed", extra={"pair_id": pair_id})
        return True

    def sweep(self, max_age_seconds: float) -> List[str]:
        """Close every pair older than `max_age_seconds`, in use or not."""
        now = self._clock()
        with self._lock:
            stale = [pid for pid, p in self._pairs.items() if p.age(now) > max_age_seconds]
            reclaimed = [self._pairs.pop(pid) for pid in stale]
        for pair in reclaimed:
            pair.close()
        if reclaimed:
            log.info(
                "Stale session pairs reclaimed",
                extra={"pair_ids": stale, "max_age_seconds": max_age_seconds},
            )
        return stale

    def close_all(self) -> None:
        with self._lock:
            pairs = list(self._pairs.values())
            self._pairs.clear()
        for pair in pairs:
            pair.close()

    def __contains__(self, pair_id: object) -> bool:
        with self._lock:
            return pair_id in self._pairs

    def __len__(self) -> int:
        with self._lock:
            return len(self._pairs)


class SessionSweeper:
    """
    Background thread that reclaims stale pairs on a fixed interval.
    """

    def __init__(
        self,
        registry: SessionPairRegistry,
        interval_seconds: Optional[float] = None,
        max_age_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.registry = registry
        self.interval_seconds = interval_seconds or settings.session_sweep_interval_seconds
        self.max_age_seconds = max_age_seconds or settings.session_max_age_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self) -> None:
        while not self._stop.wait(timeout=self.interval_seconds):
            try:
                self.registry.sweep(self.max_age_seconds)
            except Exception:  # noqa: BLE001 - the sweeper must outlive one bad cycle
                log.exception("Session sweep failed")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="session-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


__all__ = [
    "PairState",
    "SESSION_NAMES",
    "SessionPair",
    "SessionPairRegistry",
    "SessionSweeper",
]
