from __future__ import annotations

"""The termination signal shared by the supervisor and all crawlers."""

import logging
import threading
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ExitStatus(str, Enum):
    """Why a crawl ended."""

    COMPLETED = "completed"  # nothing left to crawl
    STOPPED = "stopped"  # stop() was called
    TIMED_OUT = "timed_out"
    MAX_STATES = "max_states"
    BROWSER_FAILURE = "browser_failure"
    CONFIG_ERROR = "config_error"


class Phase(str, Enum):
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ExitNotifier:
    """Owns the termination flag, the state budget and the running-crawler count.

    The first reason to stop wins; later signals are ignored.
    """

    def __init__(self, max_states: int = 0) -> None:
        self._max_states = max_states
        self._lock = threading.Lock()
        self._exit = threading.Event()
        self._states = 0
        self._running = 0
        self._status: Optional[ExitStatus] = None
        self._phase = Phase.RUNNING

    # --- counters -------------------------------------------------------------
    def increment_states(self) -> int:
        """Count a newly discovered state; reaching the maximum stops the crawl."""
        with self._lock:
            self._states += 1
            count = self._states
        if self._max_states and count >= self._max_states:
            logger.info("Reached the maximum of %d states", self._max_states)
            self._signal(ExitStatus.MAX_STATES)
        return count

    @property
    def states(self) -> int:
        with self._lock:
            return self._states

    def increment_running(self) -> int:
        with self._lock:
            self._running += 1
            return self._running

    def decrement_running(self) -> int:
        with self._lock:
            self._running -= 1
            return self._running

    @property
    def running(self) -> int:
        with self._lock:
            return self._running

    # --- signals ----------------------------------------------------------------
    def signal_time_is_up(self) -> None:
        self._signal(ExitStatus.TIMED_OUT)

    def signal_crawl_exhausted(self) -> None:
        self._signal(ExitStatus.COMPLETED)

    def signal_browser_failure(self) -> None:
        self._signal(ExitStatus.BROWSER_FAILURE)

    def signal_config_error(self) -> None:
        self._signal(ExitStatus.CONFIG_ERROR)

    def stop(self) -> None:
        self._signal(ExitStatus.STOPPED)

    def _signal(self, status: ExitStatus) -> None:
        with self._lock:
            if self._status is not None:
                return
            self._status = status
            self._phase = Phase.STOPPING
        logger.info("Stopping the crawl: %s", status.value)
        self._exit.set()

    def mark_stopped(self) -> None:
        with self._lock:
            if self._status is None:
                self._status = ExitStatus.STOPPED
            self._phase = Phase.STOPPED
        self._exit.set()

    # --- queries ----------------------------------------------------------------
    def is_exit_called(self) -> bool:
        return self._exit.is_set()

    def await_termination(self, timeout: Optional[float] = None) -> bool:
        """Block until a stop reason is signalled; False on timeout."""
        return self._exit.wait(timeout)

    @property
    def status(self) -> Optional[ExitStatus]:
        with self._lock:
            return self._status

    @property
    def phase(self) -> Phase:
        with self._lock:
            return self._phase
