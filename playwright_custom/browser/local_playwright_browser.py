from __future__ import annotations

"""`EmbeddedBrowser` on top of the synchronous Playwright API.

Every instance owns its own Playwright driver, browser, context and page, so
it must be created and used on a single thread. `PlaywrightBrowserProvider`
is what `crawlflow.runner.CrawlRunner` calls from each crawler thread.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Frame, Locator, Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from crawlflow.browser import EmbeddedBrowser
from crawlflow.config import BrowserType, CrawlConfiguration
from crawlflow.elements import EventType, Eventable, FormInput, How, Identification, InputType
from crawlflow.errors import (
    BrowserError,
    BrowserUnrecoverableError,
    ConfigurationError,
    StaleElementError,
)

logger = logging.getLogger(__name__)

_FATAL_MESSAGES = ("has been closed", "Target closed", "crashed", "Browser closed", "Connection closed")
_STALE_MESSAGES = ("not attached", "detached", "Execution context was destroyed")
_TRUE_VALUES = ("true", "1", "on", "yes", "checked")

# submits the enclosing form the way a user pressing a submit button would
_SUBMIT_JS = """
(el) => {
    const form = el.form || el.closest('form');
    if (form && form.requestSubmit) { form.requestSubmit(); }
    else if (form) { form.submit(); }
    else { el.click(); }
}
"""


def selector_for(identification: Identification) -> str:
    """Translate an identification into a Playwright selector string."""
    how, value = identification.how, identification.value
    if how == How.ID:
        return f"[id={json.dumps(value)}]"
    if how == How.NAME:
        return f"[name={json.dumps(value)}]"
    if how == How.TAG:
        return f"css={value}"
    if how == How.XPATH:
        return f"xpath={value}"
    if how == How.TEXT:
        return f"text={json.dumps(value)}"
    if how == How.PARTIAL_TEXT:
        return f"text={value}"
    if how == How.LINK_TEXT:
        return f"a:text-is({json.dumps(value)})"
    return f"css={value}"


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except PlaywrightTimeoutError as ex:
        raise BrowserError(f"Timeout while trying to {action}: {ex}") from ex
    except PlaywrightError as ex:
        message = str(ex)
        if any(m in message for m in _FATAL_MESSAGES):
            raise BrowserUnrecoverableError(f"Browser gone while trying to {action}: {message}") from ex
        if any(m in message for m in _STALE_MESSAGES):
            raise StaleElementError(f"Element went stale while trying to {action}: {message}") from ex
        raise BrowserError(f"Could not {action}: {message}") from ex


class LocalPlaywrightBrowser(EmbeddedBrowser):
    def __init__(self, config: CrawlConfiguration) -> None:
        self._browser_config = config.browser
        self._wait_after_event_ms = config.rules.wait_after_event_ms
        self._wait_after_reload_ms = config.rules.wait_after_reload_ms
        self._timeout_ms = config.browser.page_load_timeout_ms
        self._playwright = sync_playwright().start()
        try:
            launcher = getattr(self._playwright, BrowserType(self._browser_config.browser_type).value)
            self._browser = launcher.launch(headless=self._browser_config.headless)
        except PlaywrightError as ex:
            self._playwright.stop()
            raise BrowserUnrecoverableError(f"Could not launch {self._browser_config.browser_type}: {ex}") from ex
        except ValueError as ex:
            self._playwright.stop()
            raise ConfigurationError(str(ex)) from ex
        self._context = self._browser.new_context()
        self._context.set_default_timeout(self._timeout_ms)
        self._page: Page = self._context.new_page()
        logger.debug("Started %s (headless=%s)", self._browser_config.browser_type, self._browser_config.headless)

    @property
    def page(self) -> Page:
        return self._page

    # --- navigation ------------------------------------------------------------
    def go_to_url(self, url: str) -> None:
        with _translate_errors(f"load {url}"):
            self._page.goto(url, timeout=self._timeout_ms, wait_until="domcontentloaded")
            self._page.wait_for_timeout(self._wait_after_reload_ms)

    def get_current_url(self) -> str:
        return self._page.url

    def get_dom(self) -> str:
        with _translate_errors("read the DOM"):
            return self._page.content()

    def get_frame_dom(self, frame_path: str) -> str:
        frame = self._frame(frame_path)
        with _translate_errors(f"read frame {frame_path}"):
            return frame.content()

    def close_other_windows(self) -> None:
        """Close every tab but the crawler's own one."""
        for page in list(self._context.pages):
            if page is self._page:
                continue
            try:
                page.close()
            except PlaywrightError as ex:
                logger.debug("Could not close %s: %s", page.url, ex)
        with _translate_errors("focus the crawl tab"):
            self._page.bring_to_front()

    # --- elements ----------------------------------------------------------------
    def _frame(self, frame_path: str) -> Frame:
        frame = self._page.main_frame
        if not frame_path:
            return frame
        for part in frame_path.split("."):
            children = frame.child_frames
            match = next((f for f in children if f.name == part), None)
            if match is None:
                for child in children:
                    element = child.frame_element()
                    if element.get_attribute("id") == part:
                        match = child
                        break
            if match is None and part.isdigit() and int(part) < len(children):
                match = children[int(part)]
            if match is None:
                raise BrowserError(f"No frame {part!r} in {frame_path!r}")
            frame = match
        return frame

    def _locator(self, identification: Identification, frame_path: str = "") -> Locator:
        return self._frame(frame_path).locator(selector_for(identification)).first

    def fire_event_and_wait(self, eventable: Eventable) -> bool:
        try:
            locator = self._locator(eventable.identification, eventable.related_frame)
        except BrowserError as ex:
            logger.debug("Cannot fire %s: %s", eventable, ex)
            return False
        with _translate_errors(f"fire {eventable.event_type.value} on {eventable.identification}"):
            if locator.count() == 0:
                logger.debug("Element %s not found", eventable.identification)
                return False
            try:
                if eventable.event_type == EventType.HOVER:
                    locator.hover(timeout=self._timeout_ms)
                elif eventable.event_type == EventType.SUBMIT:
                    locator.evaluate(_SUBMIT_JS)
                else:
                    locator.click(timeout=self._timeout_ms)
            except PlaywrightTimeoutError as ex:
                logger.debug("Element %s not interactable: %s", eventable.identification, ex)
                return False
            self._page.wait_for_timeout(self._wait_after_event_ms)
        return True

    def fill_inputs(self, form_inputs: Iterable[FormInput], frame_path: str = "") -> None:
        for form_input in form_inputs:
            try:
                locator = self._locator(form_input.identification, frame_path)
                if locator.count() == 0:
                    logger.debug("Form field %s not found", form_input.identification)
                    continue
                value = form_input.first_value
                if form_input.input_type in (InputType.CHECKBOX, InputType.RADIO):
                    locator.set_checked(value.lower() in _TRUE_VALUES)
                elif form_input.input_type == InputType.SELECT:
                    locator.select_option(value)
                else:
                    locator.fill(value)
            except (PlaywrightError, BrowserError) as ex:
                logger.debug("Could not fill %s: %s", form_input.identification, ex)

    def is_visible(self, identification: Identification) -> bool:
        with _translate_errors(f"check visibility of {identification}"):
            return self._locator(identification).is_visible()

    def element_exists(self, identification: Identification) -> bool:
        with _translate_errors(f"look up {identification}"):
            return self._locator(identification).count() > 0

    def execute_javascript(self, code: str) -> Any:
        # bare statements ("return ...") are wrapped into a function body
        script = code.strip()
        if script.startswith("return ") or ";" in script:
            script = f"() => {{ {script} }}"
        with _translate_errors("execute JavaScript"):
            return self._page.evaluate(script)

    # --- lifecycle ---------------------------------------------------------------
    def close(self) -> None:
        try:
            self._context.close()
            self._browser.close()
        except PlaywrightError as ex:
            logger.debug("Error while closing the browser: %s", ex)
        finally:
            self._playwright.stop()


class PlaywrightBrowserProvider:
    """Starts a new `LocalPlaywrightBrowser` per call (one per crawler thread)."""

    def __init__(self, config: CrawlConfiguration) -> None:
        self._config = config

    def __call__(self) -> LocalPlaywrightBrowser:
        return LocalPlaywrightBrowser(self._config)
