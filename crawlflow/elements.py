from __future__ import annotations

"""Value records naming a DOM element and the events fired on it.

`Identification` says *how* to find an element, `CandidateElement` is an
element the crawl rules consider firable in a given state and `Eventable`
is the recorded transition (an edge of the state-flow graph).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class How(str, Enum):
    """Strategies for locating an element in the browser."""

    ID = "id"
    NAME = "name"
    TAG = "tag"
    XPATH = "xpath"
    TEXT = "text"
    PARTIAL_TEXT = "partial_text"
    LINK_TEXT = "link_text"
    CSS = "css"


class EventType(str, Enum):
    """Interaction primitives the crawler can fire."""

    CLICK = "click"
    HOVER = "hover"
    SUBMIT = "submit"
    CUSTOM = "custom"


class InputType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SELECT = "select"
    PASSWORD = "password"
    EMAIL = "email"
    NUMBER = "number"
    HIDDEN = "hidden"

    @classmethod
    def from_element(cls, tag: str, type_attr: Optional[str]) -> "InputType":
        tag = tag.lower()
        if tag == "textarea":
            return cls.TEXTAREA
        if tag == "select":
            return cls.SELECT
        try:
            return cls((type_attr or "text").lower())
        except ValueError:
            return cls.TEXT


@dataclass(frozen=True)
class Identification:
    how: How
    value: str

    def __post_init__(self) -> None:
        if not self.value:
            raise ValueError("Identification value must not be empty")
        # accept plain strings for convenience
        if not isinstance(self.how, How):
            object.__setattr__(self, "how", How(self.how))

    def __str__(self) -> str:
        return f"{self.how.value} {self.value}"


@dataclass(frozen=True)
class FormInput:
    """A form field together with the values to enter into it."""

    identification: Identification
    input_type: InputType = InputType.TEXT
    values: Tuple[str, ...] = ()

    @property
    def first_value(self) -> str:
        return self.values[0] if self.values else ""


@dataclass(frozen=True)
class CandidateElement:
    """An element the crawl rules deem firable at a particular state."""

    identification: Identification
    form_inputs: Tuple[FormInput, ...] = ()
    related_frame: str = ""
    event_type: EventType = EventType.CLICK
    tag: str = ""
    text: str = ""
    attributes: Tuple[Tuple[str, str], ...] = ()

    @property
    def key(self) -> Tuple[Any, ...]:
        """Identity used to detect duplicate candidates."""
        return (self.identification, self.related_frame, self.form_inputs)

    @property
    def element_key(self) -> Tuple[Any, ...]:
        """The element itself (location and content); used by click-once."""
        return (self.identification, self.related_frame, self.tag, self.text, self.attributes)

    @property
    def attribute_map(self) -> Dict[str, str]:
        return dict(self.attributes)

    def to_eventable(self) -> "Eventable":
        return Eventable(
            identification=self.identification,
            event_type=self.event_type,
            related_frame=self.related_frame,
            form_inputs=self.form_inputs,
            element_tag=self.tag,
            element_text=self.text,
            element_attributes=self.attributes,
        )

    def __str__(self) -> str:
        frame = f" in frame {self.related_frame}" if self.related_frame else ""
        return f"{self.tag or 'element'} [{self.identification}]{frame}"


@dataclass(eq=False)
class Eventable:
    """An event on an element; once inserted in a graph it is an edge.

    The endpoint ids are assigned exactly once, when the eventable is added
    to a graph. Trying to move an eventable to other endpoints afterwards
    raises ``ValueError``.
    """

    identification: Identification
    event_type: EventType = EventType.CLICK
    related_frame: str = ""
    form_inputs: Tuple[FormInput, ...] = ()
    element_tag: str = ""
    element_text: str = ""
    element_attributes: Tuple[Tuple[str, str], ...] = ()

    # assigned by the graph on insertion
    edge_id: Optional[int] = field(default=None, compare=False)
    source_id: Optional[int] = field(default=None, compare=False)
    target_id: Optional[int] = field(default=None, compare=False)

    @property
    def key(self) -> Tuple[Any, ...]:
        """Identity of the event regardless of its endpoints."""
        return (self.identification, self.event_type, self.related_frame, self.form_inputs)

    @property
    def edge_key(self) -> Tuple[Any, ...]:
        return (self.source_id, self.target_id) + self.key

    def set_endpoints(self, source_id: int, target_id: int) -> None:
        if self.source_id is not None or self.target_id is not None:
            if (self.source_id, self.target_id) == (source_id, target_id):
                return
            raise ValueError(
                f"Eventable {self} already connects {self.source_id} -> {self.target_id}"
            )
        self.source_id = source_id
        self.target_id = target_id

    def copy(self) -> "Eventable":
        """Return an unattached eventable describing the same event."""
        return Eventable(
            identification=self.identification,
            event_type=self.event_type,
            related_frame=self.related_frame,
            form_inputs=self.form_inputs,
            element_tag=self.element_tag,
            element_text=self.element_text,
            element_attributes=self.element_attributes,
        )

    def __str__(self) -> str:
        return (
            f"Eventable({self.event_type.value} {self.identification}"
            f" {self.source_id}->{self.target_id})"
        )
