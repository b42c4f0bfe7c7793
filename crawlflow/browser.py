from __future__ import annotations

"""The browser contract the crawler core drives.

An `EmbeddedBrowser` is used by exactly one crawler thread for its whole
lifetime. Implementations raise `BrowserError` (or `StaleElementError`) for
transient faults and `BrowserUnrecoverableError` when the browser is gone.
The Playwright implementation is ``playwright_custom.browser.LocalPlaywrightBrowser``.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Optional

from .elements import Eventable, FormInput, Identification
from .errors import BrowserError, BrowserUnrecoverableError, StaleElementError

__all__ = [
    "BrowserError",
    "BrowserProvider",
    "BrowserUnrecoverableError",
    "EmbeddedBrowser",
    "StaleElementError",
]


class EmbeddedBrowser(ABC):
    @abstractmethod
    def go_to_url(self, url: str) -> None:
        """Load ``url`` and wait the configured time after the reload."""

    @abstractmethod
    def get_current_url(self) -> str:
        ...

    @abstractmethod
    def get_dom(self) -> str:
        """Serialized DOM of the top document."""

    @abstractmethod
    def close_other_windows(self) -> None:
        ...

    @abstractmethod
    def fire_event_and_wait(self, eventable: Eventable) -> bool:
        """Fire ``eventable``; False when the element could not be interacted with."""

    @abstractmethod
    def close(self) -> None:
        ...

    # --- optional capabilities ------------------------------------------------
    def get_frame_dom(self, frame_path: str) -> str:
        """DOM of the (possibly nested, dot separated) frame ``frame_path``."""
        raise BrowserError(f"{type(self).__name__} cannot read frame {frame_path!r}")

    def is_visible(self, identification: Identification) -> bool:
        return False

    def element_exists(self, identification: Identification) -> bool:
        return False

    def execute_javascript(self, code: str) -> Any:
        raise BrowserError(f"{type(self).__name__} cannot execute JavaScript")

    def fill_inputs(self, form_inputs: Iterable[FormInput], frame_path: str = "") -> None:
        """Enter the values of ``form_inputs`` in the frame at ``frame_path``.

        Fields that cannot be found are skipped.
        """


BrowserProvider = Callable[[], EmbeddedBrowser]
"""Creates a fresh browser; called once per crawler."""


def describe(browser: Optional[EmbeddedBrowser]) -> str:
    if browser is None:
        return "<no browser>"
    try:
        return f"{type(browser).__name__} at {browser.get_current_url()}"
    except (BrowserError, BrowserUnrecoverableError):
        return type(browser).__name__
