"""
tests/test_conditions.py — page predicates, invariants and wait conditions.
"""
import time
from unittest.mock import MagicMock

import pytest

from crawlflow.browser import EmbeddedBrowser
from crawlflow.conditions import (
    AndCondition,
    CrawlCondition,
    ExpectedConditionFromCondition,
    ExpectedElementCondition,
    ExpectedVisibleCondition,
    Invariant,
    JavaScriptCondition,
    NotRegexCondition,
    NotUrlCondition,
    NotVisibleCondition,
    NotXPathCondition,
    OrCondition,
    RegexCondition,
    UrlCondition,
    VisibleCondition,
    WaitCondition,
    XPathCondition,
)
from crawlflow.elements import How, Identification
from crawlflow.errors import BrowserError, ConditionEvaluationError
from crawlflow.waiter import WaitConditionChecker

DOM = '<html><body><div id="main"><p class="msg">Welcome back</p></div></body></html>'
LOADER = Identification(How.ID, "loader")


@pytest.fixture
def browser():
    mock = MagicMock(spec=EmbeddedBrowser)
    mock.get_dom.return_value = DOM
    mock.get_current_url.return_value = "http://example.com/account/home"
    return mock


class TestConditions:
    @pytest.mark.parametrize(
        "condition, expected",
        [
            (RegexCondition("Welcome\\s+back"), True),
            (RegexCondition("Goodbye"), False),
            (NotRegexCondition("Goodbye"), True),
            (XPathCondition("//DIV[@id='main']/P"), True),
            (XPathCondition("//table"), False),
            (NotXPathCondition("//table"), True),
            (UrlCondition("/account/"), True),
            (NotUrlCondition("/account/"), False),
            (~UrlCondition("/admin"), True),
            (AndCondition((RegexCondition("Welcome"), UrlCondition("home"))), True),
            (AndCondition((RegexCondition("Welcome"), UrlCondition("admin"))), False),
            (OrCondition((RegexCondition("Nope"), UrlCondition("home"))), True),
        ],
    )
    def test_against_the_page(self, browser, condition, expected):
        assert condition.check(browser) is expected

    def test_visibility(self, browser):
        browser.is_visible.return_value = True
        assert VisibleCondition(LOADER).check(browser)
        assert not NotVisibleCondition(LOADER).check(browser)
        browser.is_visible.assert_called_with(LOADER)

    def test_javascript(self, browser):
        browser.execute_javascript.return_value = 1
        assert JavaScriptCondition("return window.ready").check(browser)
        browser.execute_javascript.return_value = None
        assert not JavaScriptCondition("return window.ready").check(browser)

    def test_javascript_failure_is_an_evaluation_error(self, browser):
        browser.execute_javascript.side_effect = BrowserError("no js")
        with pytest.raises(ConditionEvaluationError):
            JavaScriptCondition("return 1").check(browser)

    @pytest.mark.parametrize("condition", [XPathCondition("//div["), RegexCondition("(unclosed")])
    def test_invalid_expressions_raise(self, browser, condition):
        with pytest.raises(ConditionEvaluationError):
            condition.check(browser)


class TestInvariantsAndCrawlConditions:
    def test_invariant_violated_when_condition_fails(self, browser):
        assert Invariant("no errors", NotRegexCondition("Welcome")).is_violated(browser)
        assert not Invariant("greets", RegexCondition("Welcome")).is_violated(browser)

    def test_invariant_with_failing_precondition_does_not_apply(self, browser):
        invariant = Invariant("admin only", RegexCondition("Admin"), (UrlCondition("/admin"),))
        assert not invariant.applies_to(browser)
        assert not invariant.is_violated(browser)

    def test_crawl_condition(self, browser):
        assert CrawlCondition("greeted", RegexCondition("Welcome")).allows_crawling(browser)
        assert not CrawlCondition("bye", RegexCondition("Bye")).allows_crawling(browser)
        unmet = CrawlCondition("bye", RegexCondition("Bye"), (UrlCondition("/admin"),))
        assert unmet.allows_crawling(browser)


class TestWaitCondition:
    def test_url_is_a_pattern_or_substring(self):
        assert WaitCondition(r"wait\w+\.html", 100).applies_to("http://x/waitCondition.html")
        assert WaitCondition("testWaitCondition.html", 100).applies_to(
            "http://x/testWaitCondition.html?x=1"
        )
        assert not WaitCondition("other.html", 100).applies_to("http://x/index.html")
        assert WaitCondition("a[b", 100).applies_to("http://x/a[b")

    def test_expected_conditions(self, browser):
        browser.element_exists.return_value = True
        browser.is_visible.return_value = False
        assert ExpectedElementCondition(LOADER).is_satisfied(browser)
        assert not ExpectedVisibleCondition(LOADER).is_satisfied(browser)
        assert ExpectedConditionFromCondition(RegexCondition("Welcome")).is_satisfied(browser)


class TestWaitConditionChecker:
    def test_nothing_to_wait_for(self, browser):
        assert WaitConditionChecker().wait(browser) == 0
        browser.get_current_url.assert_not_called()

    def test_only_matching_conditions_apply(self, browser):
        browser.element_exists.return_value = True
        checker = WaitConditionChecker(
            [
                WaitCondition("account", 1000, ExpectedElementCondition(LOADER)),
                WaitCondition("admin", 1000, ExpectedElementCondition(LOADER)),
            ]
        )
        assert checker.wait(browser) == 1
        browser.element_exists.assert_called_once_with(LOADER)

    def test_polls_until_satisfied(self, browser):
        browser.is_visible.side_effect = [False, False, True]
        checker = WaitConditionChecker(
            [WaitCondition("home", 5000, ExpectedVisibleCondition(LOADER))], poll_interval=0.001
        )
        assert checker.wait(browser) == 1
        assert browser.is_visible.call_count == 3

    def test_gives_up_after_the_timeout(self, browser, caplog):
        browser.is_visible.return_value = False
        checker = WaitConditionChecker(
            [WaitCondition("home", 50, ExpectedVisibleCondition(LOADER))], poll_interval=0.005
        )
        start = time.monotonic()
        assert checker.wait(browser) == 1
        assert time.monotonic() - start >= 0.05
        assert "not satisfied" in caplog.text

    def test_browser_errors_count_as_not_yet_satisfied(self, browser):
        browser.element_exists.side_effect = [BrowserError("loading"), True]
        checker = WaitConditionChecker(
            [WaitCondition("home", 5000, ExpectedElementCondition(LOADER))], poll_interval=0.001
        )
        assert checker.wait(browser) == 1
        assert browser.element_exists.call_count == 2
