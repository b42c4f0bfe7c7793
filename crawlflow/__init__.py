"""crawlflow: a model-based crawler for dynamic web applications.

The crawler drives real browsers through a site, treats every distinct
(canonical) DOM as a state and every fired UI event as a transition, and
records both in a state-flow graph.

Key sub-modules:

strippers.py       DOM stripper pipeline producing the canonical DOM.
state.py           State vertices and the vertex factory (dedup by DOM hash).
graph.py           The state-flow graph (networkx backed) and crawl paths.
candidates.py      Unfired candidate store, also the crawlers' work pool.
rules.py           Crawl rules: what to click, what not to, when.
extractor.py       Candidate-element extraction from the live DOM.
conditions.py      Conditions, invariants, crawl and wait conditions.
waiter.py          Wait-condition checker.
forms.py           Form input values (manual, heuristic, random, LLM).
plugins.py         Plugin capabilities and dispatch.
crawler.py         The crawler engine.
runner.py          The run supervisor and crawler threads.

Browser operations go through `crawlflow.browser.EmbeddedBrowser`; the
Playwright implementation lives in `playwright_custom.browser`.
"""

from .config import BrowserConfiguration, BrowserType, CrawlConfiguration
from .exit_notifier import ExitStatus
from .runner import CrawlRunner
from .session import CrawlSession

__all__ = [
    "BrowserConfiguration",
    "BrowserType",
    "CrawlConfiguration",
    "CrawlRunner",
    "CrawlSession",
    "ExitStatus",
]
