from __future__ import annotations

"""Predicates over the browser's current page.

Conditions are used in three places: as preconditions of crawl rules
(`CrawlElement.when`), as global crawl conditions and as invariants. Wait
conditions use the related *expected* conditions that are polled until
they hold.
"""

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Tuple

from lxml import etree

from .dom import normalize_xpath, parse_dom
from .elements import Identification
from .errors import BrowserError, ConditionEvaluationError

if TYPE_CHECKING:
    from .browser import EmbeddedBrowser

logger = logging.getLogger(__name__)


def xpath_matches(dom: str, expression: str) -> bool:
    try:
        result = parse_dom(dom).xpath(normalize_xpath(expression))
    except etree.XPathError as ex:
        raise ConditionEvaluationError(f"Invalid XPath {expression!r}: {ex}") from ex
    return bool(result)


class Condition:
    """A predicate over the browser's current page."""

    def check(self, browser: "EmbeddedBrowser") -> bool:
        raise NotImplementedError

    def __invert__(self) -> "Condition":
        return NotCondition(self)


@dataclass(frozen=True)
class RegexCondition(Condition):
    """Holds when the DOM contains a match for ``expression``."""

    expression: str

    def check(self, browser: "EmbeddedBrowser") -> bool:
        try:
            return re.search(self.expression, browser.get_dom()) is not None
        except re.error as ex:
            raise ConditionEvaluationError(f"Invalid regex {self.expression!r}: {ex}") from ex


@dataclass(frozen=True)
class NotRegexCondition(Condition):
    expression: str

    def check(self, browser: "EmbeddedBrowser") -> bool:
        return not RegexCondition(self.expression).check(browser)


@dataclass(frozen=True)
class XPathCondition(Condition):
    """Holds when ``expression`` selects at least one node."""

    expression: str

    def check(self, browser: "EmbeddedBrowser") -> bool:
        return xpath_matches(browser.get_dom(), self.expression)


@dataclass(frozen=True)
class NotXPathCondition(Condition):
    expression: str

    def check(self, browser: "EmbeddedBrowser") -> bool:
        return not xpath_matches(browser.get_dom(), self.expression)


@dataclass(frozen=True)
class UrlCondition(Condition):
    """Holds when the current URL contains ``url``."""

    url: str

    def check(self, browser: "EmbeddedBrowser") -> bool:
        return self.url in browser.get_current_url()


@dataclass(frozen=True)
class NotUrlCondition(Condition):
    url: str

    def check(self, browser: "EmbeddedBrowser") -> bool:
        return self.url not in browser.get_current_url()


@dataclass(frozen=True)
class JavaScriptCondition(Condition):
    """Holds when the JavaScript ``expression`` evaluates to a truthy value."""

    expression: str

    def check(self, browser: "EmbeddedBrowser") -> bool:
        try:
            return bool(browser.execute_javascript(self.expression))
        except BrowserError as ex:
            raise ConditionEvaluationError(f"Could not evaluate {self.expression!r}: {ex}") from ex


@dataclass(frozen=True)
class VisibleCondition(Condition):
    identification: Identification

    def check(self, browser: "EmbeddedBrowser") -> bool:
        return browser.is_visible(self.identification)


@dataclass(frozen=True)
class NotVisibleCondition(Condition):
    identification: Identification

    def check(self, browser: "EmbeddedBrowser") -> bool:
        return not browser.is_visible(self.identification)


@dataclass(frozen=True)
class NotCondition(Condition):
    condition: Condition

    def check(self, browser: "EmbeddedBrowser") -> bool:
        return not self.condition.check(browser)


@dataclass(frozen=True)
class AndCondition(Condition):
    conditions: Tuple[Condition, ...]

    def check(self, browser: "EmbeddedBrowser") -> bool:
        return all(c.check(browser) for c in self.conditions)


@dataclass(frozen=True)
class OrCondition(Condition):
    conditions: Tuple[Condition, ...]

    def check(self, browser: "EmbeddedBrowser") -> bool:
        return any(c.check(browser) for c in self.conditions)


def all_hold(conditions: Iterable[Condition], browser: "EmbeddedBrowser") -> bool:
    """True when every condition holds. An empty collection holds trivially."""
    return all(c.check(browser) for c in conditions)


# --- named conditions -------------------------------------------------------


@dataclass(frozen=True)
class Invariant:
    """A condition that must hold in every state where its preconditions hold."""

    description: str
    condition: Condition
    preconditions: Tuple[Condition, ...] = ()

    def applies_to(self, browser: "EmbeddedBrowser") -> bool:
        return all_hold(self.preconditions, browser)

    def is_violated(self, browser: "EmbeddedBrowser") -> bool:
        return self.applies_to(browser) and not self.condition.check(browser)


@dataclass(frozen=True)
class CrawlCondition:
    """When the condition fails (and its preconditions hold) the page is not crawled."""

    description: str
    condition: Condition
    preconditions: Tuple[Condition, ...] = ()

    def allows_crawling(self, browser: "EmbeddedBrowser") -> bool:
        if not all_hold(self.preconditions, browser):
            return True
        return self.condition.check(browser)


# --- wait conditions --------------------------------------------------------


class ExpectedCondition:
    """Something a wait condition waits for."""

    def is_satisfied(self, browser: "EmbeddedBrowser") -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class ExpectedVisibleCondition(ExpectedCondition):
    identification: Identification

    def is_satisfied(self, browser: "EmbeddedBrowser") -> bool:
        return browser.is_visible(self.identification)


@dataclass(frozen=True)
class ExpectedElementCondition(ExpectedCondition):
    identification: Identification

    def is_satisfied(self, browser: "EmbeddedBrowser") -> bool:
        return browser.element_exists(self.identification)


@dataclass(frozen=True)
class ExpectedConditionFromCondition(ExpectedCondition):
    """Wait until an ordinary `Condition` holds."""

    condition: Condition

    def is_satisfied(self, browser: "EmbeddedBrowser") -> bool:
        return self.condition.check(browser)


@dataclass(frozen=True, init=False)
class WaitCondition:
    """Wait (at most ``timeout_ms``) on pages whose URL matches ``url``.

    ``url`` is a regular expression searched in the current URL; a plain
    substring such as ``"testWaitCondition.html"`` works as expected.
    """

    url: str
    timeout_ms: int
    expected_conditions: Tuple[ExpectedCondition, ...]

    def __init__(self, url: str, timeout_ms: int, *expected_conditions: ExpectedCondition) -> None:
        object.__setattr__(self, "url", url)
        object.__setattr__(self, "timeout_ms", timeout_ms)
        object.__setattr__(self, "expected_conditions", tuple(expected_conditions))

    def applies_to(self, url: str) -> bool:
        try:
            return re.search(self.url, url) is not None
        except re.error:
            return self.url in url
