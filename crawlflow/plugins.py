from __future__ import annotations

"""Plugin infrastructure.

A plugin is an object that inherits one or more of the capability classes
below and overrides their hook method::

    class StateCounter(OnNewStatePlugin, PostCrawlingPlugin):
        def on_new_state(self, context, vertex):
            ...

        def post_crawling(self, session, exit_status):
            ...

`Plugins` sorts the registered plugins per hook once, at construction, and
dispatches synchronously, in registration order, on the calling crawler's
thread. An exception escaping a plugin is logged and counted; it never
aborts the crawler.
"""

import logging
import threading
from typing import TYPE_CHECKING, Dict, Iterable, Sequence, Tuple, Type

from .metrics import PLUGIN_ERRORS, MetricRegistry

if TYPE_CHECKING:
    from .browser import EmbeddedBrowser
    from .conditions import Invariant
    from .config import CrawlConfiguration
    from .crawler import CrawlerContext
    from .elements import CandidateElement, Eventable
    from .exit_notifier import ExitStatus
    from .session import CrawlSession
    from .state import StateVertex

logger = logging.getLogger(__name__)


class Plugin:
    """Marker base class of all plugin capabilities."""


class PreCrawlingPlugin(Plugin):
    def pre_crawling(self, config: "CrawlConfiguration") -> None:
        """Called once, before the first browser is started."""


class OnBrowserCreatedPlugin(Plugin):
    def on_browser_created(self, browser: "EmbeddedBrowser") -> None:
        """Called for every browser a crawler starts with."""


class OnUrlLoadPlugin(Plugin):
    def on_url_load(self, context: "CrawlerContext") -> None:
        """Called after the browser (re)loaded the landing URL."""


class OnNewStatePlugin(Plugin):
    def on_new_state(self, context: "CrawlerContext", vertex: "StateVertex") -> None:
        """Called when a state is discovered for the first time."""


class OnRevisitStatePlugin(Plugin):
    def on_revisit_state(self, context: "CrawlerContext", vertex: "StateVertex") -> None:
        """Called when a crawler arrives in a state that was seen before."""


class OnInvariantViolationPlugin(Plugin):
    def on_invariant_violation(self, invariant: "Invariant", context: "CrawlerContext") -> None:
        """Called for every invariant violated by the current state."""


class PreStateCrawlingPlugin(Plugin):
    def pre_state_crawling(
        self,
        context: "CrawlerContext",
        candidates: Sequence["CandidateElement"],
        vertex: "StateVertex",
    ) -> None:
        """Called with the candidates extracted from a new state, before they are queued."""


class OnFireEventFailedPlugin(Plugin):
    def on_fire_event_failed(
        self,
        context: "CrawlerContext",
        eventable: "Eventable",
        path_to_failure: Sequence["Eventable"],
    ) -> None:
        """Called when firing ``eventable`` failed."""


class PostCrawlingPlugin(Plugin):
    def post_crawling(self, session: "CrawlSession", exit_status: "ExitStatus") -> None:
        """Called exactly once when the crawl has finished."""


_HOOKS: Dict[str, Type[Plugin]] = {
    "pre_crawling": PreCrawlingPlugin,
    "on_browser_created": OnBrowserCreatedPlugin,
    "on_url_load": OnUrlLoadPlugin,
    "on_new_state": OnNewStatePlugin,
    "on_revisit_state": OnRevisitStatePlugin,
    "on_invariant_violation": OnInvariantViolationPlugin,
    "pre_state_crawling": PreStateCrawlingPlugin,
    "on_fire_event_failed": OnFireEventFailedPlugin,
    "post_crawling": PostCrawlingPlugin,
}


class Plugins:
    """Keeps the registered plugins and dispatches hook calls to them."""

    def __init__(self, plugins: Iterable[Plugin] = (), metrics: MetricRegistry | None = None) -> None:
        self._plugins: Tuple[Plugin, ...] = tuple(plugins)
        for plugin in self._plugins:
            if not isinstance(plugin, Plugin):
                raise TypeError(f"{plugin!r} does not implement any plugin hook")
        self._by_hook: Dict[str, Tuple[Plugin, ...]] = {
            hook: tuple(p for p in self._plugins if isinstance(p, capability))
            for hook, capability in _HOOKS.items()
        }
        self._metrics = metrics or MetricRegistry()
        self._post_crawl_lock = threading.Lock()
        self._post_crawl_done = False

    @classmethod
    def none(cls) -> "Plugins":
        return cls()

    @property
    def plugins(self) -> Tuple[Plugin, ...]:
        return self._plugins

    def for_hook(self, hook: str) -> Tuple[Plugin, ...]:
        return self._by_hook[hook]

    def _dispatch(self, hook: str, *args: object) -> None:
        for plugin in self._by_hook[hook]:
            try:
                getattr(plugin, hook)(*args)
            except Exception:  # plugins must never take a crawler down
                logger.exception("Plugin %s failed in %s", type(plugin).__name__, hook)
                self._metrics.increment(PLUGIN_ERRORS)

    # --- hooks ---------------------------------------------------------------
    def run_pre_crawling_plugins(self, config: "CrawlConfiguration") -> None:
        self._dispatch("pre_crawling", config)

    def run_on_browser_created_plugins(self, browser: "EmbeddedBrowser") -> None:
        self._dispatch("on_browser_created", browser)

    def run_on_url_load_plugins(self, context: "CrawlerContext") -> None:
        self._dispatch("on_url_load", context)

    def run_on_new_state_plugins(self, context: "CrawlerContext", vertex: "StateVertex") -> None:
        self._dispatch("on_new_state", context, vertex)

    def run_on_revisit_state_plugins(self, context: "CrawlerContext", vertex: "StateVertex") -> None:
        self._dispatch("on_revisit_state", context, vertex)

    def run_on_invariant_violation_plugins(
        self, invariant: "Invariant", context: "CrawlerContext"
    ) -> None:
        self._dispatch("on_invariant_violation", invariant, context)

    def run_pre_state_crawling_plugins(
        self,
        context: "CrawlerContext",
        candidates: Sequence["CandidateElement"],
        vertex: "StateVertex",
    ) -> None:
        self._dispatch("pre_state_crawling", context, tuple(candidates), vertex)

    def run_on_fire_event_failed_plugins(
        self,
        context: "CrawlerContext",
        eventable: "Eventable",
        path_to_failure: Sequence["Eventable"],
    ) -> None:
        self._dispatch("on_fire_event_failed", context, eventable, tuple(path_to_failure))

    def run_post_crawling_plugins(self, session: "CrawlSession", exit_status: "ExitStatus") -> bool:
        """Run the post-crawl hooks; only the first call has an effect."""
        with self._post_crawl_lock:
            if self._post_crawl_done:
                return False
            self._post_crawl_done = True
        self._dispatch("post_crawling", session, exit_status)
        return True

    def __len__(self) -> int:
        return len(self._plugins)
