"""Background refresh of the cached Apple key set."""

import threading
from collections.abc import Callable
from enum import StrEnum

import structlog

from siwa.core.errors import ClientClosedError, FetchError, SchedulerStateError
from siwa.core.settings import REFRESH_ATTEMPTS_DEFAULT, REFRESH_PERIOD_DEFAULT
from siwa.jwks.cache import KeySetCache

log = structlog.get_logger(__name__)


class SchedulerState(StrEnum):
    """Lifecycle of a RefreshScheduler. STOPPED is terminal."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


def _noop() -> None:
    return None


class RefreshScheduler:
    """Periodically refreshes a KeySetCache on a daemon thread.

    Every ``period`` seconds the cache is refreshed, retrying up to
    ``attempts`` times in a row. When the cache is still empty afterwards
    ``on_failure`` is called. With ``notify_on_stale`` it is also called when
    every attempt failed and the cache only holds keys from an earlier tick.
    """

    def __init__(
        self,
        cache: KeySetCache,
        *,
        period: float = REFRESH_PERIOD_DEFAULT,
        attempts: int = REFRESH_ATTEMPTS_DEFAULT,
        on_failure: Callable[[], None] | None = None,
        notify_on_stale: bool = False,
    ) -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self._cache = cache
        self._period = period
        self._attempts = attempts
        self._on_failure = on_failure or _noop
        self._notify_on_stale = notify_on_stale

        self._state = SchedulerState.IDLE
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    def start(self) -> None:
        """Start the refresh thread. Only valid once, from IDLE."""
        with self._lock:
            if self._state is not SchedulerState.IDLE:
                raise SchedulerStateError(
                    f"cannot start refresh scheduler in state {self._state}"
                )
            self._thread = threading.Thread(
                target=self._run, name="siwa-key-refresh", daemon=True
            )
            self._state = SchedulerState.RUNNING
            self._thread.start()
        log.info("key_refresh_started", period=self._period)

    def stop(self) -> None:
        """Signal the refresh thread and wait for it to exit.

        Safe to call more than once. A refresh already in flight is allowed
        to finish; no refresh starts once the stop signal is set.
        """
        self._stop_event.set()
        with self._lock:
            was_running = self._state is SchedulerState.RUNNING
            self._state = SchedulerState.STOPPED
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        if was_running:
            log.info("key_refresh_stopped")

    def _run(self) -> None:
        try:
            while not self._stop_event.wait(self._period):
                self._tick()
        finally:
            log.debug("key_refresh_thread_exited")

    def _tick(self) -> None:
        refreshed = False
        for attempt in range(1, self._attempts + 1):
            try:
                with self._lock:
                    if self._stop_event.is_set():
                        return
                    self._cache.refresh()
            except ClientClosedError:
                return
            except FetchError as exc:
                log.warning(
                    "key_refresh_attempt_failed", attempt=attempt, error=str(exc)
                )
            except Exception:
                log.exception("key_refresh_attempt_crashed", attempt=attempt)
            else:
                refreshed = True
                break

        if self._stop_event.is_set():
            return
        if self._cache.current().is_empty or (
            self._notify_on_stale and not refreshed
        ):
            log.error(
                "key_refresh_failed",
                attempts=self._attempts,
                stale=not self._cache.current().is_empty,
            )
            self._notify_failure()

    def _notify_failure(self) -> None:
        try:
            self._on_failure()
        except Exception:
            log.exception("key_refresh_failure_handler_raised")
