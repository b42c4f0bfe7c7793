from __future__ import annotations

"""Immutable crawl configuration and the builder that produces it.

    config = (
        CrawlConfiguration.builder_for("http://localhost:8080/")
        .set_maximum_depth(3)
        .add_dom_stripper(whitespace_stripper)
        .crawl_rules()
        .click_once(True)
        .end_rules()
        .build()
    )

Values may also come from the environment (or a ``.env`` file), see
`CrawlConfigurationBuilder.apply_env`.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from dotenv import load_dotenv

from .errors import ConfigurationError
from .plugins import Plugin
from .rules import CrawlRules, CrawlRulesBuilder
from .strippers import DomStripper, DomStrippers

logger = logging.getLogger(__name__)


class BrowserType(str, Enum):
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


@dataclass(frozen=True)
class BrowserConfiguration:
    browser_type: BrowserType = BrowserType.CHROMIUM
    headless: bool = True
    page_load_timeout_ms: int = 30_000
    url_load_retries: int = 3
    retry_backoff_s: float = 0.5


@dataclass(frozen=True)
class CrawlConfiguration:
    url: str
    strippers: DomStrippers = field(default_factory=DomStrippers.none)
    max_depth: int = 2  # 0 = unlimited
    max_states: int = 0  # 0 = unlimited
    max_runtime_s: float = 3600.0  # 0 = unlimited
    max_crawlers: int = 1
    replace_failed_crawlers: bool = False
    browser: BrowserConfiguration = field(default_factory=BrowserConfiguration)
    rules: CrawlRules = field(default_factory=CrawlRules)
    plugins: Tuple[Plugin, ...] = ()

    @classmethod
    def builder_for(cls, url: str) -> "CrawlConfigurationBuilder":
        return CrawlConfigurationBuilder(url)

    @classmethod
    def from_env(cls, url: str, environ: Optional[Mapping[str, str]] = None) -> "CrawlConfiguration":
        return cls.builder_for(url).apply_env(environ).build()


class CrawlConfigurationBuilder:
    def __init__(self, url: str) -> None:
        self._url = url
        self._strippers: List[DomStripper] = []
        self._plugins: List[Plugin] = []
        self._rules = CrawlRulesBuilder(self)
        self._browser = BrowserConfiguration()
        self._max_depth = 2
        self._max_states = 0
        self._max_runtime_s = 3600.0
        self._max_crawlers = 1
        self._replace_failed = False

    @property
    def url(self) -> str:
        return self._url

    def add_dom_stripper(self, *strippers: DomStripper) -> "CrawlConfigurationBuilder":
        self._strippers.extend(strippers)
        return self

    def set_maximum_depth(self, depth: int) -> "CrawlConfigurationBuilder":
        self._max_depth = depth
        return self

    def set_unlimited_crawl_depth(self) -> "CrawlConfigurationBuilder":
        self._max_depth = 0
        return self

    def set_maximum_states(self, states: int) -> "CrawlConfigurationBuilder":
        self._max_states = states
        return self

    def set_unlimited_states(self) -> "CrawlConfigurationBuilder":
        self._max_states = 0
        return self

    def set_maximum_run_time(self, seconds: float) -> "CrawlConfigurationBuilder":
        self._max_runtime_s = seconds
        return self

    def set_unlimited_runtime(self) -> "CrawlConfigurationBuilder":
        self._max_runtime_s = 0
        return self

    def set_max_crawlers(self, crawlers: int) -> "CrawlConfigurationBuilder":
        self._max_crawlers = crawlers
        return self

    def replace_failed_crawlers(self, value: bool = True) -> "CrawlConfigurationBuilder":
        self._replace_failed = value
        return self

    def set_browser_config(self, browser: BrowserConfiguration) -> "CrawlConfigurationBuilder":
        self._browser = browser
        return self

    def add_plugin(self, *plugins: Plugin) -> "CrawlConfigurationBuilder":
        self._plugins.extend(plugins)
        return self

    def crawl_rules(self) -> CrawlRulesBuilder:
        return self._rules

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> "CrawlConfigurationBuilder":
        """Override limits and browser settings from ``CRAWLFLOW_*`` variables.

        Without an explicit mapping, a ``.env`` file is loaded first and
        ``os.environ`` is used.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ
        try:
            if "CRAWLFLOW_MAX_DEPTH" in environ:
                self._max_depth = int(environ["CRAWLFLOW_MAX_DEPTH"])
            if "CRAWLFLOW_MAX_STATES" in environ:
                self._max_states = int(environ["CRAWLFLOW_MAX_STATES"])
            if "CRAWLFLOW_MAX_RUNTIME" in environ:
                self._max_runtime_s = float(environ["CRAWLFLOW_MAX_RUNTIME"])
            if "CRAWLFLOW_MAX_CRAWLERS" in environ:
                self._max_crawlers = int(environ["CRAWLFLOW_MAX_CRAWLERS"])
        except ValueError as ex:
            raise ConfigurationError(f"Invalid CRAWLFLOW_* setting: {ex}") from ex
        browser = self._browser
        if "CRAWLFLOW_HEADLESS" in environ:
            headless = environ["CRAWLFLOW_HEADLESS"].strip().lower() not in ("0", "false", "no")
            browser = dataclasses.replace(browser, headless=headless)
        if "CRAWLFLOW_BROWSER" in environ:
            try:
                browser_type = BrowserType(environ["CRAWLFLOW_BROWSER"].strip().lower())
            except ValueError as ex:
                raise ConfigurationError(str(ex)) from ex
            browser = dataclasses.replace(browser, browser_type=browser_type)
        self._browser = browser
        return self

    def build(self) -> CrawlConfiguration:
        parsed = urlparse(self._url)
        if parsed.scheme not in ("http", "https", "file") or not (parsed.netloc or parsed.path):
            raise ConfigurationError(f"Not a crawlable URL: {self._url!r}")
        for name, value in (
            ("maximum depth", self._max_depth),
            ("maximum states", self._max_states),
            ("maximum runtime", self._max_runtime_s),
            ("URL load retries", self._browser.url_load_retries),
        ):
            if value < 0:
                raise ConfigurationError(f"The {name} must not be negative")
        if self._max_crawlers < 1:
            raise ConfigurationError("At least one crawler is needed")
        rules = self._rules.build()
        if not rules.include:
            logger.warning("No elements configured to click; only the landing page will be crawled")
        return CrawlConfiguration(
            url=self._url,
            strippers=DomStrippers(self._strippers),
            max_depth=self._max_depth,
            max_states=self._max_states,
            max_runtime_s=self._max_runtime_s,
            max_crawlers=self._max_crawlers,
            replace_failed_crawlers=self._replace_failed,
            browser=self._browser,
            rules=rules,
            plugins=tuple(self._plugins),
        )
