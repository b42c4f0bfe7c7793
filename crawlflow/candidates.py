from __future__ import annotations

"""Per-state queues of candidate actions that have not been fired yet.

The store is shared by all crawlers of a run. It is also the work pool:
crawler threads block in `UnfiredCandidateStore.await_new_task` until some
state has candidates left, and the store notices when every crawler is idle
while no work is queued.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from .elements import CandidateElement
from .graph import StateFlowGraph
from .state import StateVertex

logger = logging.getLogger(__name__)


class UnfiredCandidateStore:
    def __init__(
        self,
        graph: Optional[StateFlowGraph] = None,
        click_once: bool = False,
        on_exhausted: Optional[Callable[[], None]] = None,
    ) -> None:
        self._graph = graph
        self._click_once = click_once
        self._on_exhausted = on_exhausted
        self._queues: Dict[int, Deque[CandidateElement]] = {}
        self._seen: Dict[int, Set[tuple]] = {}
        self._exhausted: Set[int] = set()
        self._states: Dict[int, StateVertex] = {}
        self._checked: Set[Tuple] = set()
        self._cond = threading.Condition()
        # work-pool bookkeeping
        self._consumers = 0
        self._waiting = 0
        self._drained = False

    # --- queue operations -----------------------------------------------------
    def add(self, state: StateVertex, candidates: Iterable[CandidateElement]) -> int:
        """Queue ``candidates`` for ``state``; returns how many were new."""
        with self._cond:
            if state.id in self._exhausted:
                logger.debug("Ignoring candidates for exhausted %s", state)
                return 0
            queue = self._queues.setdefault(state.id, deque())
            seen = self._seen.setdefault(state.id, set())
            self._states[state.id] = state
            added = 0
            for candidate in candidates:
                if candidate.key in seen:
                    continue
                if self._click_once:
                    if candidate.element_key in self._checked:
                        continue
                    self._checked.add(candidate.element_key)
                seen.add(candidate.key)
                queue.append(candidate)
                added += 1
            if not queue:
                self._mark_exhausted(state.id)
            else:
                self._cond.notify_all()
            logger.debug("Queued %d candidates for %s", added, state)
            return added

    def poll(self, state: StateVertex) -> Optional[CandidateElement]:
        """Atomically remove and return the next candidate, None when exhausted."""
        with self._cond:
            queue = self._queues.get(state.id)
            if not queue:
                if queue is not None:
                    self._mark_exhausted(state.id)
                return None
            candidate = queue.popleft()
            if not queue:
                self._mark_exhausted(state.id)
            return candidate

    poll_action_or_null = poll

    def is_exhausted(self, state: StateVertex) -> bool:
        with self._cond:
            return state.id in self._exhausted

    def purge(self, state: StateVertex) -> None:
        with self._cond:
            self._queues.pop(state.id, None)
            self._mark_exhausted(state.id)

    def _mark_exhausted(self, state_id: int) -> None:
        self._queues.pop(state_id, None)
        self._exhausted.add(state_id)
        self._cond.notify_all()

    def size(self) -> int:
        with self._cond:
            return sum(len(q) for q in self._queues.values())

    def is_empty(self) -> bool:
        return self.size() == 0

    def has_work(self) -> bool:
        with self._cond:
            return any(self._queues.values())

    def states_with_work(self) -> List[StateVertex]:
        with self._cond:
            return [self._states[sid] for sid, q in self._queues.items() if q]

    # --- work distribution ----------------------------------------------------
    def next_target(self) -> Optional[StateVertex]:
        """The non-exhausted state closest to the initial state (ties: smaller id)."""
        with self._cond:
            return self._next_target()

    def _next_target(self) -> Optional[StateVertex]:
        ids = [sid for sid, q in self._queues.items() if q]
        if not ids:
            return None
        if self._graph is None:
            return self._states[min(ids)]
        best = None
        for sid in ids:
            distance = self._graph.distance_from_initial(self._states[sid])
            key = (distance if distance is not None else float("inf"), sid)
            if best is None or key < best[0]:
                best = (key, sid)
        return self._states[best[1]]

    def register_consumer(self) -> None:
        with self._cond:
            self._consumers += 1

    def unregister_consumer(self) -> None:
        with self._cond:
            self._consumers -= 1
            self._check_drained()
            self._cond.notify_all()

    def await_new_task(self, timeout: Optional[float] = None) -> Optional[StateVertex]:
        """Block until a state with candidates is available.

        Returns None on timeout, or when every registered consumer is waiting
        and no candidate is queued (the crawl is exhausted).
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            self._waiting += 1
            try:
                while True:
                    target = self._next_target()
                    if target is not None:
                        return target
                    if self._check_drained():
                        return None
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        return None
                    self._cond.wait(remaining)
            finally:
                self._waiting -= 1

    def _check_drained(self) -> bool:
        if self._drained:
            return True
        # nothing can be drained before the index state is loaded
        if self._graph is not None and self._graph.initial_state() is None:
            return False
        if self._consumers > 0 and self._waiting >= self._consumers and not any(self._queues.values()):
            self._drained = True
            logger.info("All crawlers are idle and no candidates are left")
            self._cond.notify_all()
            if self._on_exhausted is not None:
                self._on_exhausted()
        return self._drained

    @property
    def drained(self) -> bool:
        with self._cond:
            return self._drained

    def wake_all(self) -> None:
        with self._cond:
            self._cond.notify_all()
