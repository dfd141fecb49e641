import threading
import time

import pytest

from storage.availability import (
    AvailabilityState,
    DatabaseAvailabilityManager,
    OperationTimeout,
    is_database_available,
    run_with_timeout,
    wait_for_database_check,
    with_database_check,
)
from storage.database import RemoteStore, RemoteStoreError, TABLE_NOT_FOUND


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class CountingProbe:
    def __init__(self, error=None):
        self.calls = 0
        self.error = error

    def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error


def test_cached_verdict_reused_within_ttl():
    clock = FakeClock()
    probe = CountingProbe()
    manager = DatabaseAvailabilityManager(probe, clock=clock)

    assert manager.is_available() is True
    clock.advance(59)
    assert manager.is_available() is True
    assert probe.calls == 1

    clock.advance(2)
    assert manager.is_available() is True
    assert probe.calls == 2


def test_unavailable_verdict_is_cached_too():
    clock = FakeClock()
    probe = CountingProbe(error=RuntimeError("connection refused"))
    manager = DatabaseAvailabilityManager(probe, clock=clock)

    assert manager.is_available() is False
    assert manager.is_available() is False
    assert probe.calls == 1
    assert manager.get_availability() == AvailabilityState.UNAVAILABLE


def test_missing_tables_mark_unavailable():
    probe = CountingProbe(error=RemoteStoreError('relation "users" does not exist', TABLE_NOT_FOUND, "42P01"))
    manager = DatabaseAvailabilityManager(probe)

    assert manager.is_available() is False
    assert manager.get_availability() == AvailabilityState.UNAVAILABLE


def test_no_probe_configured_is_unavailable():
    manager = DatabaseAvailabilityManager(None)
    assert manager.is_available() is False
    assert manager.get_availability() == AvailabilityState.UNAVAILABLE


def test_probe_timeout_is_unavailable_without_cancelling():
    release = threading.Event()
    finished = threading.Event()

    def slow_probe():
        release.wait(2)
        finished.set()

    manager = DatabaseAvailabilityManager(slow_probe, probe_timeout=0.05)
    assert manager.is_available() is False
    assert manager.get_availability() == AvailabilityState.UNAVAILABLE
    assert not manager.check_in_progress

    release.set()
    assert finished.wait(2)


def test_concurrent_callers_share_one_probe():
    release = threading.Event()
    started = threading.Event()
    probe = CountingProbe()

    def blocking_probe():
        started.set()
        release.wait(2)
        probe()

    manager = DatabaseAvailabilityManager(blocking_probe, poll_interval=0.01)
    results = []
    lock = threading.Lock()

    def worker():
        verdict = manager.is_available()
        with lock:
            results.append(verdict)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    assert started.wait(2)
    assert manager.get_availability() == AvailabilityState.CHECKING
    release.set()
    for t in threads:
        t.join(2)

    assert results == [True] * 5
    assert probe.calls == 1


def test_force_check_always_reprobes():
    clock = FakeClock()
    probe = CountingProbe()
    manager = DatabaseAvailabilityManager(probe, clock=clock)

    manager.is_available()
    assert manager.force_check() is True
    assert manager.force_check() is True
    assert probe.calls == 3


def test_force_check_waits_for_inflight_probe_then_reprobes():
    release = threading.Event()
    started = threading.Event()
    active = []
    overlaps = []

    def slow_probe():
        active.append(1)
        if len(active) > 1:
            overlaps.append(len(active))
        started.set()
        release.wait(2)
        active.pop()

    manager = DatabaseAvailabilityManager(slow_probe, poll_interval=0.01)
    seen = []
    manager.add_listener(seen.append)

    first = threading.Thread(target=manager.is_available)
    first.start()
    assert started.wait(2)

    forced = []
    second = threading.Thread(target=lambda: forced.append(manager.force_check()))
    second.start()
    time.sleep(0.05)
    release.set()
    first.join(2)
    second.join(2)

    assert forced == [True]
    assert overlaps == []
    assert AvailabilityState.UNKNOWN not in seen
    assert seen == [
        AvailabilityState.CHECKING,
        AvailabilityState.AVAILABLE,
        AvailabilityState.CHECKING,
        AvailabilityState.AVAILABLE,
    ]


def test_force_check_picks_up_recovery():
    probe = CountingProbe(error=RuntimeError("down"))
    manager = DatabaseAvailabilityManager(probe)
    assert manager.is_available() is False

    probe.error = None
    assert manager.is_available() is False
    assert manager.force_check() is True
    assert manager.get_availability() == AvailabilityState.AVAILABLE


def test_manual_marks_short_circuit_the_cache():
    probe = CountingProbe()
    manager = DatabaseAvailabilityManager(probe)

    manager.mark_unavailable()
    assert manager.is_available() is False
    manager.mark_available()
    assert manager.is_available() is True
    assert probe.calls == 0


def test_listeners_see_transitions_until_removed():
    probe = CountingProbe()
    manager = DatabaseAvailabilityManager(probe)
    seen = []
    manager.add_listener(seen.append)

    manager.is_available()
    assert seen == [AvailabilityState.CHECKING, AvailabilityState.AVAILABLE]

    manager.mark_available()
    assert len(seen) == 2

    manager.remove_listener(seen.append)
    manager.mark_unavailable()
    assert len(seen) == 2


def test_failing_listener_does_not_block_others():
    manager = DatabaseAvailabilityManager(CountingProbe())
    seen = []

    def broken(_state):
        raise RuntimeError("listener bug")

    manager.add_listener(broken)
    manager.add_listener(seen.append)
    manager.mark_unavailable()

    assert seen == [AvailabilityState.UNAVAILABLE]


def test_reset_forgets_state_and_listeners():
    probe = CountingProbe()
    manager = DatabaseAvailabilityManager(probe)
    seen = []
    manager.add_listener(seen.append)
    manager.is_available()

    manager.reset()
    assert manager.get_availability() == AvailabilityState.UNKNOWN

    manager.is_available()
    assert probe.calls == 2
    assert len(seen) == 2


def test_real_store_probe(store):
    assert DatabaseAvailabilityManager(store.probe).is_available() is True

    bare = RemoteStore("sqlite://")
    try:
        manager = DatabaseAvailabilityManager(bare.probe)
        assert manager.is_available() is False
    finally:
        bare.dispose()


def test_with_database_check_returns_fallback_when_unavailable():
    manager = DatabaseAvailabilityManager(None)
    called = []

    result = with_database_check(manager, lambda: called.append(1) or "live", "fallback")

    assert result == "fallback"
    assert called == []


def test_with_database_check_runs_operation_when_available():
    manager = DatabaseAvailabilityManager(CountingProbe())
    assert with_database_check(manager, lambda: "live", "fallback") == "live"


def test_with_database_check_marks_unavailable_on_missing_table():
    manager = DatabaseAvailabilityManager(CountingProbe())

    def broken():
        raise RemoteStoreError('relation "projects" does not exist', TABLE_NOT_FOUND)

    assert with_database_check(manager, broken, []) == []
    assert manager.get_availability() == AvailabilityState.UNAVAILABLE


def test_with_database_check_keeps_state_on_other_errors():
    manager = DatabaseAvailabilityManager(CountingProbe())

    def broken():
        raise RuntimeError("duplicate key value")

    assert with_database_check(manager, broken, None) is None
    assert manager.get_availability() == AvailabilityState.AVAILABLE


def test_with_database_check_times_out():
    manager = DatabaseAvailabilityManager(CountingProbe())
    release = threading.Event()

    assert with_database_check(manager, lambda: release.wait(2), "fallback", timeout=0.05) == "fallback"
    assert manager.get_availability() == AvailabilityState.UNAVAILABLE
    release.set()


def test_run_with_timeout_propagates_errors():
    with pytest.raises(KeyError):
        run_with_timeout(lambda: {}["missing"], 1)
    with pytest.raises(OperationTimeout):
        run_with_timeout(lambda: time.sleep(0.5), 0.01)


def test_is_database_available_never_probes():
    probe = CountingProbe()
    manager = DatabaseAvailabilityManager(probe)

    assert is_database_available(manager) is False
    assert probe.calls == 0
    manager.mark_available()
    assert is_database_available(manager) is True


def test_wait_for_database_check_probes_when_unknown():
    probe = CountingProbe()
    manager = DatabaseAvailabilityManager(probe)
    assert wait_for_database_check(manager) is True
    assert probe.calls == 1


def test_wait_for_database_check_waits_for_inflight_probe():
    release = threading.Event()
    started = threading.Event()

    def blocking_probe():
        started.set()
        release.wait(2)

    manager = DatabaseAvailabilityManager(blocking_probe)
    checker = threading.Thread(target=manager.is_available)
    checker.start()
    assert started.wait(2)

    timer = threading.Timer(0.05, release.set)
    timer.start()
    assert wait_for_database_check(manager, timeout=2) is True
    checker.join(2)
