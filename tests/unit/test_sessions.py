from __future__ import annotations

import threading

import pytest

from learnpg.errors import InfrastructureError, InvalidRequestError, QueryError, SessionNotFoundError
from learnpg.sessions import PairState, SessionPairRegistry, SessionSweeper

MAX_AGE_SECONDS = 60.0
SWEEP_INTERVAL_SECONDS = 0.01
SWEEP_WAIT_SECONDS = 2.0


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def registry(fake_db, clock: _Clock) -> SessionPairRegistry:
    return SessionPairRegistry(connect=fake_db.connect, clock=clock)


def test_create_opens_two_sessions_on_the_namespace(registry, fake_db) -> None:
    pair = registry.create("locks-rows-1", "locks")

    assert pair.state is PairState.ACTIVE
    assert pair.pair_id in registry
    assert len(fake_db.connections) == 2
    assert pair.session_a is not pair.session_b
    # each session got its search_path before use
    assert all(len(conn.executed) == 1 for conn in fake_db.connections)


def test_pair_ids_are_unique(registry) -> None:
    first = registry.create("locks-rows-1", "locks")
    second = registry.create("locks-rows-1", "locks")
    assert first.pair_id != second.pair_id
    assert len(registry) == 2


def test_unknown_pair_is_rejected(registry) -> None:
    with pytest.raises(SessionNotFoundError):
        registry.get("nope")
    with pytest.raises(SessionNotFoundError):
        registry.execute("nope", "A", "SELECT 1")


def test_sessions_run_on_their_own_connection(registry, fake_db) -> None:
    fake_db.script("SELECT v FROM t", fake_db.result(["v"], [{"v": 1}]))
    pair = registry.create("locks-rows-1", "locks")

    result = registry.execute(pair.pair_id, "B", "SELECT v FROM t")

    assert result.rows == [{"v": 1}]
    assert pair.session_b.executed[-1] == "SELECT v FROM t"
    assert "SELECT v FROM t" not in pair.session_a.executed


def test_unknown_session_label_is_rejected(registry) -> None:
    pair = registry.create("locks-rows-1", "locks")
    with pytest.raises(InvalidRequestError):
        registry.execute(pair.pair_id, "C", "SELECT 1")


def test_close_is_idempotent_and_closes_both_sessions(registry) -> None:
    pair = registry.create("locks-rows-1", "locks")

    assert registry.close_and_remove(pair.pair_id) is True
    assert registry.close_and_remove(pair.pair_id) is False
    pair.close()

    assert pair.state is PairState.CLOSED
    assert pair.session_a.closed and pair.session_b.closed
    with pytest.raises(SessionNotFoundError):
        registry.get(pair.pair_id)


def test_failure_opening_b_closes_a(registry, fake_db) -> None:
    fake_db.max_connections = 1

    with pytest.raises(InfrastructureError):
        registry.create("locks-rows-1", "locks")

    assert len(fake_db.connections) == 1
    assert fake_db.connections[0].closed
    assert len(registry) == 0


def test_sweep_reclaims_only_stale_pairs(registry, clock: _Clock) -> None:
    old = registry.create("locks-rows-1", "locks")
    clock.now = MAX_AGE_SECONDS / 2
    young = registry.create("locks-rows-1", "locks")
    clock.now = MAX_AGE_SECONDS + 1

    reclaimed = registry.sweep(MAX_AGE_SECONDS)

    assert reclaimed == [old.pair_id]
    assert old.session_a.closed and old.session_b.closed
    assert old.pair_id not in registry
    assert young.pair_id in registry
    assert not young.session_a.closed


def test_close_all_empties_registry(registry) -> None:
    pairs = [registry.create("locks-rows-1", "locks") for _ in range(3)]
    registry.close_all()
    assert len(registry) == 0
    assert all(p.state is PairState.CLOSED for p in pairs)


class _RecordingRegistry:
    def __init__(self, fail_first: bool = False) -> None:
        self.calls = []
        self.swept = threading.Event()
        self._fail_first = fail_first

    def sweep(self, max_age_seconds: float):
        self.calls.append(max_age_seconds)
        if self._fail_first and len(self.calls) == 1:
            raise RuntimeError("boom")
        self.swept.set()
        return []


def test_sweeper_runs_periodically_and_stops() -> None:
    target = _RecordingRegistry()
    sweeper = SessionSweeper(target, interval_seconds=SWEEP_INTERVAL_SECONDS, max_age_seconds=MAX_AGE_SECONDS)

    sweeper.start()
    try:
        assert target.swept.wait(SWEEP_WAIT_SECONDS)
        assert sweeper.running
    finally:
        sweeper.stop()

    assert not sweeper.running
    assert target.calls[0] == MAX_AGE_SECONDS


def test_sweeper_survives_a_failing_cycle() -> None:
    target = _RecordingRegistry(fail_first=True)
    sweeper = SessionSweeper(target, interval_seconds=SWEEP_INTERVAL_SECONDS, max_age_seconds=MAX_AGE_SECONDS)

    sweeper.start()
    try:
        assert target.swept.wait(SWEEP_WAIT_SECONDS)
    finally:
        sweeper.stop()

    assert len(target.calls) >= 2


def test_cancel_interrupts_a_blocked_statement(registry, fake_db) -> None:
    def wait_for_cancel():
        assert fake_db.cancel_requested.wait(SWEEP_WAIT_SECONDS)
        return QueryError("canceling statement due to user request", "57014")

    fake_db.responses["UPDATE t SET v = 2"] = wait_for_cancel
    pair = registry.create("locks-rows-1", "locks")
    errors = []

    def run() -> None:
        try:
            registry.execute(pair.pair_id, "B", "UPDATE t SET v = 2")
        except QueryError as exc:
            errors.append(exc.message)

    worker = threading.Thread(target=run)
    worker.start()
    registry.cancel(pair.pair_id, "B")
    worker.join(SWEEP_WAIT_SECONDS)

    assert not worker.is_alive()
    assert errors == ["canceling statement due to user request"]
    assert fake_db.cancelled == [pair.session_b]


def test_cancel_unknown_pair_is_rejected(registry) -> None:
    with pytest.raises(SessionNotFoundError):
        registry.cancel("nope", "A")
