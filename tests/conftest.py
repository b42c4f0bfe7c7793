"""
tests/conftest.py — shared test doubles.

`FakeBrowser` is a scripted `EmbeddedBrowser` over an in-memory site: a
mapping of URL -> HTML. Firing an event on an element navigates to the
element's ``href`` (or ``data-goto``) when that URL is part of the site;
anything else leaves the page as it is. `RecordingPlugin` implements every
hook and records the calls, optionally into a trace shared with the browser.
"""
import threading
import time
from types import SimpleNamespace
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urljoin

import pytest
from lxml import html as lxml_html

from crawlflow.browser import EmbeddedBrowser
from crawlflow.candidates import UnfiredCandidateStore
from crawlflow.config import BrowserConfiguration, CrawlConfiguration
from crawlflow.crawler import Crawler, CrawlerContext
from crawlflow.elements import How, Identification
from crawlflow.errors import BrowserError
from crawlflow.exit_notifier import ExitNotifier
from crawlflow.extractor import CandidateElementExtractor
from crawlflow.graph import StateFlowGraph
from crawlflow.plugins import (
    OnBrowserCreatedPlugin,
    OnFireEventFailedPlugin,
    OnInvariantViolationPlugin,
    OnNewStatePlugin,
    OnRevisitStatePlugin,
    OnUrlLoadPlugin,
    PostCrawlingPlugin,
    PreCrawlingPlugin,
    PreStateCrawlingPlugin,
    Plugins,
)
from crawlflow.session import CrawlSession
from crawlflow.state import StateVertexFactory
from crawlflow.waiter import WaitConditionChecker

BASE = "http://example.com/"


# ---------------------------------------------------------------------------
# Site helpers
# ---------------------------------------------------------------------------


def page(title: str, body: str = "") -> str:
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><h1>{title}</h1>{body}</body></html>"
    )


def link(href: str, text: str, **attrs: str) -> str:
    extra = "".join(f' {k.replace("_", "-")}="{v}"' for k, v in attrs.items())
    return f'<a href="{href}"{extra}>{text}</a>'


def _xpath_for(identification: Identification) -> str:
    if identification.how == How.XPATH:
        return identification.value
    if identification.how == How.ID:
        return f"//*[@id='{identification.value}']"
    if identification.how == How.NAME:
        return f"//*[@name='{identification.value}']"
    if identification.how == How.TAG:
        return f"//{identification.value}"
    return f"//*[normalize-space(text())='{identification.value}']"


# ---------------------------------------------------------------------------
# FakeBrowser
# ---------------------------------------------------------------------------


class FakeBrowser(EmbeddedBrowser):
    def __init__(
        self,
        pages: Dict[str, str],
        frames: Optional[Dict[Tuple[str, str], str]] = None,
        failing: Iterable[str] = (),
        trace: Optional[list] = None,
        load_failures: int = 0,
        fire_delay: float = 0.0,
        dom_failures: int = 0,
    ) -> None:
        self.pages = dict(pages)
        self.frames = dict(frames or {})
        self.failing = set(failing)
        self.trace = trace if trace is not None else []
        self.load_failures = load_failures
        self.fire_delay = fire_delay
        self.dom_failures = dom_failures
        self.url: Optional[str] = None
        self.filled: List = []
        self.filled_frames: List[str] = []
        self.closed = False

    def go_to_url(self, url: str) -> None:
        self.trace.append(("go_to_url", url))
        if self.load_failures:
            self.load_failures -= 1
            raise BrowserError("connection refused")
        if url not in self.pages:
            raise BrowserError(f"404 {url}")
        self.url = url

    def get_current_url(self) -> str:
        return self.url or ""

    def get_dom(self) -> str:
        if self.dom_failures:
            self.dom_failures -= 1
            raise BrowserError("timeout reading the DOM")
        return self.pages.get(self.url, "")

    def get_frame_dom(self, frame_path: str) -> str:
        key = (self.url, frame_path)
        if key not in self.frames:
            raise BrowserError(f"no frame {frame_path}")
        return self.frames[key]

    def close_other_windows(self) -> None:
        self.trace.append(("close_other_windows",))

    def _nodes(self, identification: Identification, frame: str = ""):
        dom = self.get_frame_dom(frame) if frame else self.get_dom()
        if not dom:
            return []
        return lxml_html.document_fromstring(dom).xpath(_xpath_for(identification))

    def fire_event_and_wait(self, eventable) -> bool:
        self.trace.append(("fire", eventable.identification.value))
        if self.fire_delay:
            time.sleep(self.fire_delay)
        if eventable.identification.value in self.failing:
            return False
        nodes = self._nodes(eventable.identification, eventable.related_frame)
        if not nodes:
            return False
        target = nodes[0].get("data-goto") or nodes[0].get("href")
        if target:
            url = urljoin(self.url, target)
            if url in self.pages:
                self.url = url
        return True

    def is_visible(self, identification: Identification) -> bool:
        nodes = self._nodes(identification)
        return bool(nodes) and "display:none" not in (nodes[0].get("style") or "").replace(" ", "")

    def element_exists(self, identification: Identification) -> bool:
        return bool(self._nodes(identification))

    def fill_inputs(self, form_inputs, frame_path: str = "") -> None:
        form_inputs = list(form_inputs)
        self.filled.extend(form_inputs)
        self.filled_frames.extend(frame_path for _ in form_inputs)

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# RecordingPlugin
# ---------------------------------------------------------------------------


class RecordingPlugin(
    PreCrawlingPlugin,
    OnBrowserCreatedPlugin,
    OnUrlLoadPlugin,
    OnNewStatePlugin,
    OnRevisitStatePlugin,
    OnInvariantViolationPlugin,
    PreStateCrawlingPlugin,
    OnFireEventFailedPlugin,
    PostCrawlingPlugin,
):
    def __init__(self, trace: Optional[list] = None) -> None:
        self.calls: List[tuple] = []
        self.trace = trace
        self._lock = threading.Lock()

    def _record(self, *entry) -> None:
        with self._lock:
            self.calls.append(entry)
            if self.trace is not None:
                self.trace.append(entry)

    def named(self, hook: str) -> List[tuple]:
        with self._lock:
            return [c for c in self.calls if c[0] == hook]

    def pre_crawling(self, config):
        self._record("pre_crawling", config)

    def on_browser_created(self, browser):
        self._record("on_browser_created", browser)

    def on_url_load(self, context):
        self._record("on_url_load", context)

    def on_new_state(self, context, vertex):
        self._record("on_new_state", context, vertex)

    def on_revisit_state(self, context, vertex):
        self._record("on_revisit_state", context, vertex)

    def on_invariant_violation(self, invariant, context):
        self._record("on_invariant_violation", invariant, context, context.current_state)

    def pre_state_crawling(self, context, candidates, vertex):
        self._record("pre_state_crawling", context, candidates, vertex)

    def on_fire_event_failed(self, context, eventable, path_to_failure):
        self._record("on_fire_event_failed", context, eventable, path_to_failure)

    def post_crawling(self, session, exit_status):
        self._record("post_crawling", session, exit_status)


PLUGIN_HOOKS = {
    "pre_crawling",
    "on_browser_created",
    "on_url_load",
    "on_new_state",
    "on_revisit_state",
    "on_invariant_violation",
    "pre_state_crawling",
    "on_fire_event_failed",
    "post_crawling",
}


# ---------------------------------------------------------------------------
# Crawler harness
# ---------------------------------------------------------------------------


def builder(url: str = BASE):
    """A configuration builder with fast retries, for tests."""
    return CrawlConfiguration.builder_for(url).set_browser_config(
        BrowserConfiguration(url_load_retries=1, retry_backoff_s=0.0)
    )


def make_crawler(config: CrawlConfiguration, browser: EmbeddedBrowser, plugins=(), first_id: int = 0):
    """Wire one crawler with real collaborators around ``browser``."""
    graph = StateFlowGraph()
    exit_notifier = ExitNotifier(config.max_states)
    store = UnfiredCandidateStore(graph, click_once=config.rules.click_once)
    session = CrawlSession(config, graph)
    context = CrawlerContext(browser, config, lambda: session, exit_notifier, session.metrics)
    bus = Plugins(plugins, session.metrics)
    crawler = Crawler(
        context,
        store,
        WaitConditionChecker(config.rules.wait_conditions, poll_interval=0.01),
        CandidateElementExtractor(browser, config.rules, config.url),
        graph,
        bus,
        StateVertexFactory(first_id),
    )
    return SimpleNamespace(
        crawler=crawler,
        graph=graph,
        store=store,
        session=session,
        context=context,
        exit=exit_notifier,
        plugins=bus,
        browser=browser,
    )


def crawl_to_exhaustion(harness) -> None:
    harness.crawler.execute_initial_state()
    target = harness.store.next_target()
    while target is not None:
        target = harness.crawler.execute(target)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def recorder():
    return RecordingPlugin()


def clicking(*tags: str, config_builder=None):
    """The rules builder of a test configuration, clicking ``tags``."""
    rules = (config_builder or builder()).crawl_rules()
    for tag in tags:
        rules.click(tag)
    return rules
