from __future__ import annotations

"""Runs a whole crawl: shared structures, crawler threads, termination.

    session = CrawlRunner(config, PlaywrightBrowserProvider(config)).call()
    print(session.status, session.get_state_flow_graph())
"""

import logging
import threading
from typing import Callable, List, Optional, Union

from .browser import BrowserProvider, describe
from .candidates import UnfiredCandidateStore
from .config import CrawlConfiguration, CrawlConfigurationBuilder
from .crawler import Crawler, CrawlerContext
from .errors import BrowserUnrecoverableError, ConfigurationError
from .exit_notifier import ExitNotifier, ExitStatus
from .extractor import CandidateElementExtractor
from .forms import FormHandler, InputValueGenerator
from .graph import StateFlowGraph
from .metrics import MetricRegistry
from .plugins import Plugins
from .session import CrawlSession
from .state import StateVertexFactory
from .waiter import WaitConditionChecker

logger = logging.getLogger(__name__)

# how long an idle consumer blocks before it re-checks the exit flag
_TASK_POLL_S = 0.5
_JOIN_TIMEOUT_S = 60.0


class CrawlTaskConsumer(threading.Thread):
    """One crawler thread: takes states with work from the store and crawls them.

    The consumer counts as registered (for idle detection) from construction
    on, so that a crawl cannot be considered drained before it starts.
    """

    def __init__(
        self,
        name: str,
        crawler_factory: Callable[[], Crawler],
        candidates: UnfiredCandidateStore,
        exit_notifier: ExitNotifier,
        load_index: bool = False,
        on_failure: Optional[Callable[["CrawlTaskConsumer"], None]] = None,
    ) -> None:
        super().__init__(name=name, daemon=True)
        self._crawler_factory = crawler_factory
        self._candidates = candidates
        self._exit = exit_notifier
        self._load_index = load_index
        self._on_failure = on_failure
        self.crawler: Optional[Crawler] = None
        self.failure: Optional[BaseException] = None
        candidates.register_consumer()
        exit_notifier.increment_running()

    def run(self) -> None:
        logger.info("%s started", self.name)
        try:
            self.crawler = self._crawler_factory()
            if self._load_index:
                self.crawler.execute_initial_state()
            self._consume()
        except ConfigurationError as ex:
            logger.error("%s could not start: %s", self.name, ex)
            self._exit.signal_config_error()
        except BrowserUnrecoverableError as ex:
            logger.error("%s lost its browser (%s): %s", self.name, describe(self._browser()), ex)
            self._fail(ex)
        except Exception as ex:
            logger.exception("%s failed unexpectedly", self.name)
            self._fail(ex)
        finally:
            if self.crawler is not None:
                self.crawler.close()
            self._candidates.unregister_consumer()
            remaining = self._exit.decrement_running()
            if remaining == 0 and not self._exit.is_exit_called():
                logger.error("No crawler left")
                self._exit.signal_browser_failure()
            logger.info("%s stopped", self.name)

    def _fail(self, ex: BaseException) -> None:
        self.failure = ex
        if self._on_failure is not None:
            self._on_failure(self)

    def _consume(self) -> None:
        while not self._exit.is_exit_called():
            target = self._candidates.await_new_task(timeout=_TASK_POLL_S)
            if target is None:
                if self._candidates.drained:
                    return
                continue
            while target is not None and not self._exit.is_exit_called():
                target = self.crawler.execute(target)

    def _browser(self):
        return self.crawler.context.browser if self.crawler is not None else None


class CrawlRunner:
    """Supervises one crawl and returns its `CrawlSession`."""

    def __init__(
        self,
        config: Union[CrawlConfiguration, CrawlConfigurationBuilder],
        browser_provider: BrowserProvider,
    ) -> None:
        self._config_source = config
        self._browser_provider = browser_provider
        self._consumers: List[CrawlTaskConsumer] = []
        self._consumers_lock = threading.Lock()
        self._next_consumer = 0
        self._failures_in_a_row = 0
        self._states_at_last_failure = 0
        self._config: Optional[CrawlConfiguration] = None
        self._exit: Optional[ExitNotifier] = None
        self.session: Optional[CrawlSession] = None

    def call(self) -> CrawlSession:
        try:
            config = self._resolve_config()
        except ConfigurationError as ex:
            logger.error("Invalid configuration: %s", ex)
            session = CrawlSession(CrawlConfiguration(url=self._config_source.url))
            session.finish(ExitStatus.CONFIG_ERROR)
            self.session = session
            return session
        return self._run(config)

    def _resolve_config(self) -> CrawlConfiguration:
        if isinstance(self._config_source, CrawlConfigurationBuilder):
            return self._config_source.build()
        return self._config_source

    # ------------------------------------------------------------------
    def _run(self, config: CrawlConfiguration) -> CrawlSession:
        self._config = config
        self._metrics = MetricRegistry()
        self._graph = StateFlowGraph()
        self._exit = ExitNotifier(config.max_states)
        self._candidates = UnfiredCandidateStore(
            self._graph,
            click_once=config.rules.click_once,
            on_exhausted=self._exit.signal_crawl_exhausted,
        )
        self._factory = StateVertexFactory()
        self._waiter = WaitConditionChecker(config.rules.wait_conditions)
        self._plugins = Plugins(config.plugins, self._metrics)
        self.session = CrawlSession(config, self._graph, self._metrics)

        logger.info("Crawling %s with %d crawler(s)", config.url, config.max_crawlers)
        self._plugins.run_pre_crawling_plugins(config)

        for i in range(config.max_crawlers):
            self._start_consumer(load_index=(i == 0))

        timeout = config.max_runtime_s or None
        if not self._exit.await_termination(timeout):
            logger.info("Maximum runtime of %.0fs reached", config.max_runtime_s)
            self._exit.signal_time_is_up()

        self._quiesce()
        self._exit.mark_stopped()
        status = self._exit.status
        self.session.finish(status)
        logger.info(
            "Crawl finished (%s): %d states, %d edges in %.1fs",
            status.value,
            self._graph.number_of_states(),
            self._graph.number_of_edges(),
            self.session.duration,
        )
        self._plugins.run_post_crawling_plugins(self.session, status)
        return self.session

    def stop(self) -> None:
        """Ask a running crawl to stop; `call` returns once the crawlers are idle."""
        if self._exit is not None:
            self._exit.stop()

    def _start_consumer(self, load_index: bool = False) -> CrawlTaskConsumer:
        with self._consumers_lock:
            self._next_consumer += 1
            consumer = CrawlTaskConsumer(
                f"crawler-{self._next_consumer}",
                self._new_crawler,
                self._candidates,
                self._exit,
                load_index=load_index,
                on_failure=self._on_consumer_failed,
            )
            self._consumers.append(consumer)
        consumer.start()
        return consumer

    def _on_consumer_failed(self, consumer: CrawlTaskConsumer) -> None:
        if self._exit.is_exit_called():
            return
        if self._config.replace_failed_crawlers and self._may_replace():
            logger.info("Replacing %s", consumer.name)
            self._start_consumer(load_index=self._graph.initial_state() is None)
            return
        if self._graph.initial_state() is None:
            logger.error("The index state could not be loaded")
            self._exit.signal_browser_failure()

    def _may_replace(self) -> bool:
        """Back off before a replacement; False once too many crawlers failed in a row.

        A failure counts as "in a row" when no state was discovered since the
        previous one. At most ``url_load_retries`` such failures are replaced.
        """
        with self._consumers_lock:
            states = self._graph.number_of_states()
            if states > self._states_at_last_failure:
                self._failures_in_a_row = 0
            self._states_at_last_failure = states
            self._failures_in_a_row += 1
            failures = self._failures_in_a_row
        if failures > self._config.browser.url_load_retries:
            logger.error("%d crawlers failed without finding a new state; not replacing them", failures)
            return False
        delay = self._config.browser.retry_backoff_s * (2 ** (failures - 1))
        if delay and self._exit.await_termination(delay):
            return False
        return True

    def _new_crawler(self) -> Crawler:
        config = self._config
        browser = self._browser_provider()
        self._plugins.run_on_browser_created_plugins(browser)
        context = CrawlerContext(
            browser=browser,
            config=config,
            session_provider=lambda: self.session,
            exit_notifier=self._exit,
            metrics=self._metrics,
        )
        form_handler = FormHandler(config.rules, InputValueGenerator(config.rules.form_fill_mode))
        extractor = CandidateElementExtractor(browser, config.rules, config.url, form_handler)
        return Crawler(
            context,
            self._candidates,
            self._waiter,
            extractor,
            self._graph,
            self._plugins,
            self._factory,
            config.strippers,
        )

    def _quiesce(self) -> None:
        self._candidates.wake_all()
        joined = 0
        while True:
            with self._consumers_lock:
                pending = self._consumers[joined:]
            if not pending:
                return
            for consumer in pending:
                consumer.join(_JOIN_TIMEOUT_S)
                if consumer.is_alive():
                    logger.warning("%s did not stop within %.0fs", consumer.name, _JOIN_TIMEOUT_S)
            joined += len(pending)
