from __future__ import annotations

"""Blocks until page-specific readiness conditions hold (or time runs out)."""

import logging
import time
from typing import Sequence

from .browser import EmbeddedBrowser
from .conditions import WaitCondition
from .errors import BrowserError, ConditionEvaluationError

logger = logging.getLogger(__name__)


class WaitConditionChecker:
    def __init__(self, wait_conditions: Sequence[WaitCondition] = (), poll_interval: float = 0.1) -> None:
        self._wait_conditions = tuple(wait_conditions)
        self._poll_interval = poll_interval

    def wait(self, browser: EmbeddedBrowser) -> int:
        """Wait for every condition that applies to the current URL.

        Returns the number of wait conditions that applied. A timeout is
        logged; the crawl carries on regardless.
        """
        if not self._wait_conditions:
            return 0
        url = browser.get_current_url()
        applied = 0
        for wait_condition in self._wait_conditions:
            if not wait_condition.applies_to(url):
                continue
            applied += 1
            if not self._wait_for(browser, wait_condition):
                logger.warning(
                    "Wait condition for %s not satisfied within %d ms",
                    wait_condition.url,
                    wait_condition.timeout_ms,
                )
        return applied

    def _wait_for(self, browser: EmbeddedBrowser, wait_condition: WaitCondition) -> bool:
        deadline = time.monotonic() + wait_condition.timeout_ms / 1000.0
        pending = list(wait_condition.expected_conditions)
        while True:
            pending = [c for c in pending if not self._satisfied(browser, c)]
            if not pending:
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self._poll_interval)

    @staticmethod
    def _satisfied(browser: EmbeddedBrowser, expected) -> bool:
        try:
            return expected.is_satisfied(browser)
        except (BrowserError, ConditionEvaluationError) as ex:
            logger.debug("Expected condition %s could not be checked: %s", expected, ex)
            return False
