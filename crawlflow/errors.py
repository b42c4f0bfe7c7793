from __future__ import annotations

"""Exception hierarchy shared by the crawler core and the browser drivers."""


class CrawlError(Exception):
    """Base class of every error raised by crawlflow."""


class ConfigurationError(CrawlError):
    """Raised synchronously by the configuration builder; always fatal."""


class BrowserError(CrawlError):
    """A transient browser fault. The operation may be retried."""


class StaleElementError(BrowserError):
    """The element an eventable points at is no longer attached to the DOM."""


class BrowserUnrecoverableError(CrawlError):
    """The browser cannot be used any more (crashed, or URL loads keep failing)."""


class CrawlPathAbortedError(CrawlError):
    """Replaying a path towards a target state could not be completed."""


class ConditionEvaluationError(CrawlError):
    """A crawl rule, condition or selector could not be evaluated."""
