from __future__ import annotations

"""The crawler engine: one browser, one crawl path, one state machine.

A `Crawler` is driven by a `crawlflow.runner.CrawlTaskConsumer` thread. For
every task (a state with unfired candidates) it resets the browser to the
landing URL, replays the shortest known path to the state, fires the next
candidate and classifies the resulting DOM as a new or a known state. From
a new state it keeps going deeper until the state's candidates are used up,
the depth limit is reached, or it lands in a state that was seen before.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .browser import EmbeddedBrowser
from .candidates import UnfiredCandidateStore
from .config import CrawlConfiguration
from .elements import CandidateElement, Eventable
from .errors import (
    BrowserError,
    BrowserUnrecoverableError,
    ConditionEvaluationError,
    CrawlPathAbortedError,
)
from .exit_notifier import ExitNotifier
from .extractor import CandidateElementExtractor
from .graph import NOT_REACHABLE, CrawlPath, StateFlowGraph
from .metrics import (
    EDGES_ADDED,
    EXTRACT_TIMER,
    FIRE_TIMER,
    FIRES_ATTEMPTED,
    FIRES_FAILED,
    FIRES_SUCCEEDED,
    INVARIANTS_VIOLATED,
    STATES_DISCOVERED,
    URL_LOAD_RETRIES,
    WAIT_TIMER,
    MetricRegistry,
)
from .plugins import Plugins
from .session import CrawlSession
from .state import StateVertex, StateVertexFactory, dom_hash
from .strippers import DomStrippers
from .waiter import WaitConditionChecker

logger = logging.getLogger(__name__)


class CrawlerState(str, Enum):
    INIT = "init"
    RESET = "reset"
    AT_INITIAL = "at_initial"
    EXPLORING = "exploring"
    FIRING = "firing"
    CLASSIFYING = "classifying"
    AT_NEW_OR_EXISTING = "at_new_or_existing"
    BACKTRACKING = "backtracking"
    DONE = "done"
    ERROR_RECOVERY = "error_recovery"


@dataclass
class CrawlerContext:
    """What plugins get to see of a crawler. Never shared between crawlers."""

    browser: EmbeddedBrowser
    config: CrawlConfiguration
    session_provider: Callable[[], CrawlSession]
    exit_notifier: ExitNotifier
    metrics: MetricRegistry = field(default_factory=MetricRegistry)
    crawl_path: CrawlPath = field(default_factory=CrawlPath)
    current_state: Optional[StateVertex] = None

    def get_session(self) -> CrawlSession:
        return self.session_provider()

    def stop(self) -> None:
        """Ask the whole run to stop; plugins may call this."""
        self.exit_notifier.stop()


class Crawler:
    def __init__(
        self,
        context: CrawlerContext,
        candidates: UnfiredCandidateStore,
        waiter: WaitConditionChecker,
        extractor: CandidateElementExtractor,
        graph: StateFlowGraph,
        plugins: Plugins,
        state_factory: StateVertexFactory,
        strippers: Optional[DomStrippers] = None,
    ) -> None:
        self._context = context
        self._config = context.config
        self._browser = context.browser
        self._candidates = candidates
        self._waiter = waiter
        self._extractor = extractor
        self._graph = graph
        self._plugins = plugins
        self._factory = state_factory
        self._strippers = strippers if strippers is not None else context.config.strippers
        self._metrics = context.metrics
        self._exit = context.exit_notifier
        self._errors_in_a_row = 0
        self.state = CrawlerState.INIT
        self.depth = 0

    @property
    def context(self) -> CrawlerContext:
        return self._context

    @property
    def current_state(self) -> Optional[StateVertex]:
        return self._context.current_state

    def _transition(self, state: CrawlerState) -> bool:
        """Enter ``state``; False when the run is stopping."""
        self.state = state
        if self._exit.is_exit_called():
            logger.debug("Exit called while entering %s", state.value)
            return False
        return True

    # ------------------------------------------------------------------
    # reset / initial state
    # ------------------------------------------------------------------
    def reset(self) -> None:
        """Load the landing URL, then run the on-URL-load plugins."""
        self._transition(CrawlerState.RESET)
        path = self._context.crawl_path
        if path:
            self._context.get_session().add_crawl_path(path)
        self._context.crawl_path = CrawlPath()
        self._go_to_landing_url()
        self._plugins.run_on_url_load_plugins(self._context)
        self._context.current_state = self._graph.initial_state()
        self.depth = 0
        self._transition(CrawlerState.AT_INITIAL)

    def _go_to_landing_url(self) -> None:
        url = self._config.url
        retries = self._config.browser.url_load_retries
        backoff = self._config.browser.retry_backoff_s
        for attempt in range(retries + 1):
            try:
                self._browser.go_to_url(url)
                return
            except BrowserError as ex:
                if attempt == retries:
                    raise BrowserUnrecoverableError(
                        f"Could not load {url} after {retries + 1} attempts"
                    ) from ex
                delay = backoff * (2 ** attempt)
                logger.warning("Loading %s failed (%s); retrying in %.1fs", url, ex, delay)
                self._metrics.increment(URL_LOAD_RETRIES)
                time.sleep(delay)

    def execute_initial_state(self) -> StateVertex:
        """Load the landing page and register it as the index state.

        Transient browser errors are retried like those of `execute`; after
        ``url_load_retries`` failures in a row the browser is given up.
        """
        while True:
            try:
                index = self._load_initial_state()
            except BrowserError as ex:
                self._transition(CrawlerState.ERROR_RECOVERY)
                self._errors_in_a_row += 1
                logger.warning("Browser error while loading the index state: %s", ex)
                if self._errors_in_a_row > self._config.browser.url_load_retries:
                    raise BrowserUnrecoverableError(
                        f"{self._errors_in_a_row} browser errors in a row loading the index state"
                    ) from ex
                continue
            self._errors_in_a_row = 0
            return index

    def _load_initial_state(self) -> StateVertex:
        self.reset()
        self._wait()
        index = self._state_for_current_page()
        existing = self._graph.put_if_absent(index)
        index = existing if existing is not None else index
        self._context.current_state = index
        self._transition(CrawlerState.AT_NEW_OR_EXISTING)
        if existing is None:
            logger.info("Index state %s loaded from %s", index, self._config.url)
            self._on_new_state(index)
        return index

    # ------------------------------------------------------------------
    # task execution
    # ------------------------------------------------------------------
    def execute(self, target: StateVertex) -> Optional[StateVertex]:
        """Reach ``target`` from the landing page and crawl its next action.

        Returns the state to continue with (the non-exhausted state closest
        to the initial one) or None when there is nothing left.
        """
        if self._candidates.is_exhausted(target):
            logger.debug("%s has no candidates left", target)
            self._transition(CrawlerState.BACKTRACKING)
            return self.next_backtrack_target()
        try:
            self._execute(target)
            self._errors_in_a_row = 0
        except BrowserError as ex:
            self._transition(CrawlerState.ERROR_RECOVERY)
            self._errors_in_a_row += 1
            logger.warning("Browser error while crawling %s: %s", target, ex)
            if self._errors_in_a_row > self._config.browser.url_load_retries:
                raise BrowserUnrecoverableError(
                    f"{self._errors_in_a_row} browser errors in a row"
                ) from ex
        if not self._transition(CrawlerState.BACKTRACKING):
            self.state = CrawlerState.DONE
            return None
        return self.next_backtrack_target()

    def _execute(self, target: StateVertex) -> None:
        self.reset()
        if self._exit.is_exit_called():
            return
        if not self._extractor.check_crawl_condition():
            logger.info("Landing page may not be crawled; dropping the candidates of %s", target)
            self._candidates.purge(target)
            return
        self._wait()
        self._browser.close_other_windows()
        try:
            self._follow_path_to(target)
        except CrawlPathAbortedError as ex:
            logger.warning("Could not reach %s: %s", target, ex)
            self._candidates.purge(target)
            return
        if not self._transition(CrawlerState.EXPLORING):
            return
        self._plugins.run_on_revisit_state_plugins(self._context, target)
        if not self._extractor.check_crawl_condition():
            logger.info("Crawl condition forbids crawling %s", target)
            self._candidates.purge(target)
            return
        action = self._candidates.poll_action_or_null(target)
        self._crawl_through_actions(action)

    def _follow_path_to(self, target: StateVertex) -> None:
        initial = self._graph.initial_state()
        if initial is None:
            raise CrawlPathAbortedError("the graph has no initial state")
        path = self._graph.shortest_path(initial, target)
        if path is NOT_REACHABLE:
            raise CrawlPathAbortedError(f"{target} is not reachable from {initial}")
        for edge in path:
            if self._exit.is_exit_called():
                raise CrawlPathAbortedError("exit called")
            if not self._fire_and_report(edge):
                raise CrawlPathAbortedError(f"firing {edge} failed")
            self._context.crawl_path.append(edge)
            self.depth += 1
            self._wait()
            if not self._extractor.check_crawl_condition():
                raise CrawlPathAbortedError(f"crawl condition failed after {edge}")
            expected = self._graph.get_state(edge.target_id)
            if expected is None or not self._browser_is_in(expected):
                raise CrawlPathAbortedError(f"{edge} did not lead to {expected}")
            self._context.current_state = expected
        self._context.current_state = target

    def _crawl_through_actions(self, action: Optional[CandidateElement]) -> None:
        while action is not None:
            if not self._transition(CrawlerState.FIRING):
                return
            moved_on = self.crawl_action(action)
            if self._exit.is_exit_called():
                return
            if moved_on is False:
                # arrived in a known state
                return
            current = self._context.current_state
            if self._candidates.is_exhausted(current):
                logger.debug("%s is exhausted", current)
                return
            if not self._transition(CrawlerState.EXPLORING):
                return
            action = self._candidates.poll_action_or_null(current)

    def crawl_action(self, action: CandidateElement) -> Optional[bool]:
        """Fire ``action`` in the current state and classify the outcome.

        Returns True when a new state was reached, False when a known state
        was reached and None when the page did not change (or the fire failed).
        """
        source = self._context.current_state
        eventable = action.to_eventable()
        if not self._fire_and_report(eventable):
            return None
        if not self._transition(CrawlerState.CLASSIFYING):
            return None
        self._wait()
        candidate_state = self._state_for_current_page()
        if candidate_state == source:
            logger.debug("DOM unchanged after %s", eventable)
            return None
        transition = self._graph.add_transition(source, candidate_state, eventable)
        if transition.edge_added:
            self._metrics.increment(EDGES_ADDED)
        self._context.crawl_path.append(transition.edge)
        self.depth += 1
        vertex = transition.vertex
        self._context.current_state = vertex
        self._transition(CrawlerState.AT_NEW_OR_EXISTING)
        if transition.is_new_state:
            logger.info("New state %s found via %s", vertex, eventable.identification)
            self._on_new_state(vertex)
            return True
        logger.debug("Revisited %s via %s", vertex, eventable.identification)
        self._plugins.run_on_revisit_state_plugins(self._context, vertex)
        self._check_invariants()
        return False

    def _fire_and_report(self, eventable: Eventable) -> bool:
        self._metrics.increment(FIRES_ATTEMPTED)
        try:
            if eventable.form_inputs:
                self._browser.fill_inputs(eventable.form_inputs, eventable.related_frame)
            with self._metrics.time(FIRE_TIMER):
                fired = self._browser.fire_event_and_wait(eventable)
        except BrowserError as ex:
            logger.debug("Firing %s raised %s", eventable, ex)
            fired = False
        if fired:
            self._metrics.increment(FIRES_SUCCEEDED)
            return True
        self._metrics.increment(FIRES_FAILED)
        logger.info("Could not fire %s", eventable)
        self._plugins.run_on_fire_event_failed_plugins(
            self._context, eventable, list(self._context.crawl_path)
        )
        return False

    # ------------------------------------------------------------------
    # states
    # ------------------------------------------------------------------
    def _on_new_state(self, vertex: StateVertex) -> None:
        self._metrics.increment(STATES_DISCOVERED)
        self._exit.increment_states()
        self._plugins.run_on_new_state_plugins(self._context, vertex)
        self._check_invariants()
        if self._exit.is_exit_called():
            return
        max_depth = self._config.max_depth
        if max_depth and self.depth >= max_depth:
            logger.debug("Depth %d reached in %s; not exploring it", self.depth, vertex)
            self._candidates.add(vertex, [])
            return
        try:
            if not self._extractor.check_crawl_condition():
                self._candidates.add(vertex, [])
                return
            with self._metrics.time(EXTRACT_TIMER):
                extracted = self._extractor.extract(vertex)
        except BrowserError as ex:
            # the vertex is in the graph already; it must not stay without a queue
            logger.warning("Could not extract candidates of %s: %s", vertex, ex)
            self._candidates.add(vertex, [])
            return
        self._plugins.run_pre_state_crawling_plugins(self._context, extracted, vertex)
        self._candidates.add(vertex, extracted)

    def _state_for_current_page(self) -> StateVertex:
        dom = self._browser.get_dom()
        return self._factory.new_state_for(
            self._browser.get_current_url(), dom, self._strippers.strip(dom)
        )

    def _browser_is_in(self, expected: StateVertex) -> bool:
        return dom_hash(self._strippers.strip(self._browser.get_dom())) == expected.dom_hash

    def _check_invariants(self) -> List[str]:
        violated: List[str] = []
        for invariant in self._config.rules.invariants:
            try:
                if not invariant.is_violated(self._browser):
                    continue
            except ConditionEvaluationError as ex:
                logger.warning("Invariant %r could not be checked: %s", invariant.description, ex)
                continue
            logger.warning(
                "Invariant %r violated in %s", invariant.description, self._context.current_state
            )
            self._metrics.increment(INVARIANTS_VIOLATED)
            violated.append(invariant.description)
            self._plugins.run_on_invariant_violation_plugins(invariant, self._context)
        return violated

    def _wait(self) -> None:
        with self._metrics.time(WAIT_TIMER):
            self._waiter.wait(self._browser)

    # ------------------------------------------------------------------
    def next_backtrack_target(self) -> Optional[StateVertex]:
        """The non-exhausted state closest to the initial state, smallest id first."""
        return self._candidates.next_target()

    def close(self) -> None:
        self.state = CrawlerState.DONE
        path = self._context.crawl_path
        if path:
            self._context.get_session().add_crawl_path(path)
            self._context.crawl_path = CrawlPath()
        try:
            self._browser.close()
        except (BrowserError, BrowserUnrecoverableError) as ex:
            logger.warning("Closing the browser failed: %s", ex)
