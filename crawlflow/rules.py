from __future__ import annotations

"""Crawl rules: which elements to fire, which to leave alone, and the
conditions, invariants and form values that go with them.

Rules are assembled with `CrawlRulesBuilder` (usually reached through
``CrawlConfiguration.builder_for(url).crawl_rules()``) and frozen into an
immutable `CrawlRules` by ``build()``::

    rules.click("a")
    rules.click("div").with_text("CLICK_ME")
    rules.dont_click("a").under_xpath("//DIV[@id='DONT_CLICK_IN_HERE']")
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

from .conditions import Condition, CrawlCondition, Invariant, WaitCondition
from .elements import EventType, FormInput, Identification, InputType
from .errors import ConfigurationError

if TYPE_CHECKING:
    from .config import CrawlConfigurationBuilder


class FormFillMode(str, Enum):
    """How values are chosen for form fields without a configured value."""

    NORMAL = "normal"  # heuristics based on field type and name
    RANDOM = "random"
    LLM = "llm"


@dataclass
class CrawlElement:
    """One include or exclude rule, refined with the fluent ``with_*`` methods."""

    tag: str
    include: bool = True
    text: Optional[str] = None
    attributes: Tuple[Tuple[str, str], ...] = ()
    ancestor_xpath: Optional[str] = None
    conditions: Tuple[Condition, ...] = ()
    event_type: EventType = EventType.CLICK

    def __post_init__(self) -> None:
        if not self.tag:
            raise ConfigurationError("A crawl element needs a tag name")
        self.tag = self.tag.lower()

    def with_text(self, text: str) -> "CrawlElement":
        self.text = text
        return self

    def with_attribute(self, name: str, value: str) -> "CrawlElement":
        self.attributes = self.attributes + ((name.lower(), value),)
        return self

    def under_xpath(self, xpath: str) -> "CrawlElement":
        self.ancestor_xpath = xpath
        return self

    def when(self, *conditions: Condition) -> "CrawlElement":
        self.conditions = self.conditions + tuple(conditions)
        return self

    def with_event(self, event_type: EventType) -> "CrawlElement":
        self.event_type = event_type
        return self

    def matches(self, element: Any) -> bool:
        """Compare tag, text and attributes with an lxml element.

        The ancestor XPath and the ``when`` conditions need the document and
        the browser; the extractor checks those.
        """
        tag = element.tag.lower() if isinstance(element.tag, str) else ""
        if self.tag not in ("*", tag):
            return False
        if self.text is not None:
            if " ".join(element.text_content().split()) != self.text.strip():
                return False
        for name, value in self.attributes:
            if element.get(name) != value:
                return False
        return True

    def __str__(self) -> str:
        parts = [("click" if self.include else "dont_click") + f"({self.tag})"]
        if self.text is not None:
            parts.append(f"with_text({self.text!r})")
        parts.extend(f"with_attribute({n!r}, {v!r})" for n, v in self.attributes)
        if self.ancestor_xpath:
            parts.append(f"under_xpath({self.ancestor_xpath!r})")
        return ".".join(parts)


@dataclass(frozen=True)
class CrawlRules:
    include: Tuple[CrawlElement, ...] = ()
    exclude: Tuple[CrawlElement, ...] = ()
    crawl_conditions: Tuple[CrawlCondition, ...] = ()
    invariants: Tuple[Invariant, ...] = ()
    wait_conditions: Tuple[WaitCondition, ...] = ()
    input_values: Tuple[FormInput, ...] = ()
    click_once: bool = True
    crawl_frames: bool = True
    crawl_hidden_anchors: bool = False
    follow_external_links: bool = False
    ignored_frames: Tuple[str, ...] = ()
    wait_after_event_ms: int = 500
    wait_after_reload_ms: int = 500
    form_fill_mode: FormFillMode = FormFillMode.NORMAL

    def input_values_for(self, identification: Identification) -> Optional[FormInput]:
        for form_input in self.input_values:
            if form_input.identification == identification:
                return form_input
        return None

    def is_frame_ignored(self, name: str) -> bool:
        return any(
            name == ignored or (ignored.endswith("%") and name.startswith(ignored[:-1]))
            for ignored in self.ignored_frames
        )


class CrawlRulesBuilder:
    def __init__(self, parent: Optional["CrawlConfigurationBuilder"] = None) -> None:
        self._parent = parent
        self._include: List[CrawlElement] = []
        self._exclude: List[CrawlElement] = []
        self._crawl_conditions: List[CrawlCondition] = []
        self._invariants: List[Invariant] = []
        self._wait_conditions: List[WaitCondition] = []
        self._input_values: Dict[Identification, FormInput] = {}
        self._ignored_frames: List[str] = []
        self._options: Dict[str, Any] = {}

    # --- elements -------------------------------------------------------------
    def click(self, tag: str) -> CrawlElement:
        element = CrawlElement(tag)
        self._include.append(element)
        return element

    def dont_click(self, tag: str) -> CrawlElement:
        element = CrawlElement(tag, include=False)
        self._exclude.append(element)
        return element

    def click_default_elements(self) -> "CrawlRulesBuilder":
        self.click("a")
        self.click("button")
        self.click("input").with_attribute("type", "submit")
        self.click("input").with_attribute("type", "button")
        return self

    # --- conditions -----------------------------------------------------------
    def add_crawl_condition(
        self, description: str, condition: Condition, *preconditions: Condition
    ) -> "CrawlRulesBuilder":
        self._crawl_conditions.append(CrawlCondition(description, condition, tuple(preconditions)))
        return self

    def add_invariant(
        self,
        invariant: Union[Invariant, str],
        condition: Optional[Condition] = None,
        *preconditions: Condition,
    ) -> "CrawlRulesBuilder":
        if isinstance(invariant, str):
            if condition is None:
                raise ConfigurationError(f"Invariant {invariant!r} needs a condition")
            invariant = Invariant(invariant, condition, tuple(preconditions))
        self._invariants.append(invariant)
        return self

    def add_wait_condition(self, *conditions: WaitCondition) -> "CrawlRulesBuilder":
        self._wait_conditions.extend(conditions)
        return self

    # --- forms and frames -----------------------------------------------------
    def input_value(
        self,
        identification: Identification,
        *values: Union[str, bool],
        input_type: InputType = InputType.TEXT,
    ) -> "CrawlRulesBuilder":
        """Use ``values`` for the given field instead of generated ones."""
        normalized = tuple(str(v).lower() if isinstance(v, bool) else v for v in values)
        self._input_values[identification] = FormInput(identification, input_type, normalized)
        return self

    def dont_crawl_frame(self, name: str) -> "CrawlRulesBuilder":
        """Skip frames named ``name``; a trailing ``%`` matches a prefix."""
        self._ignored_frames.append(name)
        return self

    # --- flags ----------------------------------------------------------------
    def click_once(self, value: bool) -> "CrawlRulesBuilder":
        self._options["click_once"] = value
        return self

    def crawl_frames(self, value: bool) -> "CrawlRulesBuilder":
        self._options["crawl_frames"] = value
        return self

    def crawl_hidden_anchors(self, value: bool) -> "CrawlRulesBuilder":
        self._options["crawl_hidden_anchors"] = value
        return self

    def follow_external_links(self, value: bool) -> "CrawlRulesBuilder":
        self._options["follow_external_links"] = value
        return self

    def wait_after_event(self, milliseconds: int) -> "CrawlRulesBuilder":
        self._options["wait_after_event_ms"] = milliseconds
        return self

    def wait_after_reload_url(self, milliseconds: int) -> "CrawlRulesBuilder":
        self._options["wait_after_reload_ms"] = milliseconds
        return self

    def form_fill_mode(self, mode: FormFillMode) -> "CrawlRulesBuilder":
        self._options["form_fill_mode"] = FormFillMode(mode)
        return self

    def end_rules(self) -> "CrawlConfigurationBuilder":
        if self._parent is None:
            raise ConfigurationError("These rules are not part of a configuration builder")
        return self._parent

    def build(self) -> CrawlRules:
        for key in ("wait_after_event_ms", "wait_after_reload_ms"):
            if self._options.get(key, 0) < 0:
                raise ConfigurationError(f"{key} must not be negative")
        return CrawlRules(
            include=tuple(dataclasses.replace(e) for e in self._include),
            exclude=tuple(dataclasses.replace(e) for e in self._exclude),
            crawl_conditions=tuple(self._crawl_conditions),
            invariants=tuple(self._invariants),
            wait_conditions=tuple(self._wait_conditions),
            input_values=tuple(self._input_values.values()),
            ignored_frames=tuple(self._ignored_frames),
            **self._options,
        )
