"""Cached liveness gate for the backing database.

The manager answers "should we talk to the database right now?" cheaply. A
verdict is cached for ``cache_seconds``; after that the next caller runs the
probe while concurrent callers wait for the same verdict instead of probing
again.
"""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, List, Optional, TypeVar

from .database import is_table_missing

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CACHE_SECONDS = 60.0
DEFAULT_PROBE_TIMEOUT = 3.0
DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_OPERATION_TIMEOUT = 5.0


class AvailabilityState(str, Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


SETTLED_STATES = (AvailabilityState.AVAILABLE, AvailabilityState.UNAVAILABLE)


class OperationTimeout(Exception):
    """Raised when a guarded call outlives its timeout."""


def run_with_timeout(func: Callable[[], T], seconds: float, label: str = "operation") -> T:
    """Run ``func`` on a daemon thread and wait at most ``seconds`` for it.

    The timeout is advisory: a call that overruns keeps running in the
    background, its result is discarded.
    """
    result: List[Any] = []
    error: List[BaseException] = []

    def target() -> None:
        try:
            result.append(func())
        except BaseException as exc:
            error.append(exc)

    worker = threading.Thread(target=target, name=f"devtrack-{label}", daemon=True)
    worker.start()
    worker.join(timeout=seconds)
    if worker.is_alive():
        raise OperationTimeout(f"{label} timeout after {seconds}s")
    if error:
        raise error[0]
    return result[0]


Listener = Callable[[AvailabilityState], None]


class DatabaseAvailabilityManager:
    """Caches the outcome of a database probe and notifies listeners on change.

    ``probe`` is a zero-argument callable that returns on success and raises
    on failure. ``None`` means no database is configured, so every check
    reports unavailable.
    """

    def __init__(
        self,
        probe: Optional[Callable[[], Any]],
        *,
        cache_seconds: float = DEFAULT_CACHE_SECONDS,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.probe = probe
        self.cache_seconds = cache_seconds
        self.probe_timeout = probe_timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._guard = threading.Lock()
        self._availability = AvailabilityState.UNKNOWN
        self._last_check = 0.0
        self._check_in_progress = False
        self._listeners: List[Listener] = []

    # ------------------------------- Queries -------------------------------
    def get_availability(self) -> AvailabilityState:
        return self._availability

    @property
    def check_in_progress(self) -> bool:
        return self._check_in_progress

    def is_available(self) -> bool:
        if self._availability in SETTLED_STATES and self._cache_fresh():
            return self._availability == AvailabilityState.AVAILABLE

        if self._check_in_progress:
            return self._wait_for_check()

        return self._perform_check()

    def force_check(self) -> bool:
        """Discard the cached verdict and probe again."""
        while True:
            with self._guard:
                if not self._check_in_progress:
                    self._check_in_progress = True
                    self._last_check = 0.0
                    break
            time.sleep(self.poll_interval)
        return self._run_probe()

    # ------------------------------- Manual overrides -------------------------------
    def mark_available(self) -> None:
        self._set_availability(AvailabilityState.AVAILABLE)
        self._last_check = self._clock()

    def mark_unavailable(self) -> None:
        self._set_availability(AvailabilityState.UNAVAILABLE)
        self._last_check = self._clock()

    def reset(self) -> None:
        with self._guard:
            self._availability = AvailabilityState.UNKNOWN
            self._last_check = 0.0
            self._check_in_progress = False
            self._listeners = []

    # ------------------------------- Listeners -------------------------------
    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners = [existing for existing in self._listeners if existing != listener]

    def _notify_listeners(self, state: AvailabilityState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                LOGGER.exception("Error in database availability listener")

    def _set_availability(self, state: AvailabilityState) -> None:
        if self._availability == state:
            return
        self._availability = state
        self._notify_listeners(state)

    # ------------------------------- Probe -------------------------------
    def _cache_fresh(self) -> bool:
        return (self._clock() - self._last_check) < self.cache_seconds

    def _wait_for_check(self) -> bool:
        while self._check_in_progress:
            time.sleep(self.poll_interval)
        return self._availability == AvailabilityState.AVAILABLE

    def _perform_check(self) -> bool:
        with self._guard:
            claimed = not self._check_in_progress
            if claimed:
                self._check_in_progress = True
        if not claimed:
            return self._wait_for_check()
        return self._run_probe()

    def _run_probe(self) -> bool:
        """Probe while holding the in-flight flag; always releases it."""
        self._set_availability(AvailabilityState.CHECKING)
        try:
            LOGGER.info("Checking database availability")
            if self.probe is None:
                LOGGER.info("No database configured")
                self._set_availability(AvailabilityState.UNAVAILABLE)
                return False

            run_with_timeout(self.probe, self.probe_timeout, label="availability-probe")
            LOGGER.info("Database is available")
            self._set_availability(AvailabilityState.AVAILABLE)
            return True
        except OperationTimeout:
            LOGGER.warning("Database probe timed out after %.1fs", self.probe_timeout)
            self._set_availability(AvailabilityState.UNAVAILABLE)
            return False
        except Exception as exc:
            if is_table_missing(exc):
                LOGGER.warning("Database tables not found: %s", exc)
            else:
                LOGGER.warning("Database check failed: %s", exc)
            self._set_availability(AvailabilityState.UNAVAILABLE)
            return False
        finally:
            self._last_check = self._clock()
            self._check_in_progress = False


# ------------------------------- Helpers -------------------------------
def _is_gate_failure(exc: BaseException) -> bool:
    if isinstance(exc, OperationTimeout):
        return True
    message = str(exc).lower()
    return is_table_missing(exc) or "timeout" in message


def with_database_check(
    manager: DatabaseAvailabilityManager,
    operation: Callable[[], T],
    fallback: T,
    timeout: float = DEFAULT_OPERATION_TIMEOUT,
) -> T:
    """Run ``operation`` only when the database is up; otherwise return ``fallback``."""
    try:
        if not manager.is_available():
            LOGGER.info("Database unavailable, using fallback")
            return fallback
        return run_with_timeout(operation, timeout, label="database-operation")
    except Exception as exc:
        LOGGER.warning("Database operation failed, using fallback: %s", exc)
        if _is_gate_failure(exc):
            manager.mark_unavailable()
        return fallback


def is_database_available(manager: DatabaseAvailabilityManager) -> bool:
    return manager.get_availability() == AvailabilityState.AVAILABLE


def wait_for_database_check(manager: DatabaseAvailabilityManager, timeout: Optional[float] = None) -> bool:
    """Block until an in-flight check settles, probing first if nothing is known."""
    state = manager.get_availability()
    if state == AvailabilityState.CHECKING:
        settled = threading.Event()

        def listener(new_state: AvailabilityState) -> None:
            if new_state != AvailabilityState.CHECKING:
                settled.set()

        manager.add_listener(listener)
        try:
            if manager.get_availability() == AvailabilityState.CHECKING:
                settled.wait(timeout)
        finally:
            manager.remove_listener(listener)
        return manager.get_availability() == AvailabilityState.AVAILABLE

    if state == AvailabilityState.UNKNOWN:
        return manager.is_available()

    return state == AvailabilityState.AVAILABLE


__all__ = [
    "AvailabilityState",
    "DatabaseAvailabilityManager",
    "OperationTimeout",
    "is_database_available",
    "run_with_timeout",
    "wait_for_database_check",
    "with_database_check",
]
