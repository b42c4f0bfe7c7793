from __future__ import annotations

"""DOM strippers: the ordered transform producing the canonical DOM.

A stripper is any callable ``str -> str``. Strippers must be deterministic
and idempotent; the canonical DOM, the sole input to state equivalence, is
``fold(strippers, raw_dom)``.
"""

import logging
import re
from dataclasses import dataclass
from functools import reduce
from typing import Callable, Iterable, Tuple

from lxml import etree, html

from .dom import normalize_xpath

logger = logging.getLogger(__name__)

DomStripper = Callable[[str], str]

_BETWEEN_TAGS = re.compile(r">\s+<")
_WHITESPACE = re.compile(r"\s+")
_COMMENTS = re.compile(r"<!--.*?-->", re.S)
_SCRIPTS = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.S | re.I)
_STYLES = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.S | re.I)


def whitespace_stripper(dom: str) -> str:
    """Collapse whitespace runs and drop whitespace between tags."""
    return _WHITESPACE.sub(" ", _BETWEEN_TAGS.sub("><", dom)).strip()


def comment_stripper(dom: str) -> str:
    return _COMMENTS.sub("", dom)


def script_stripper(dom: str) -> str:
    return _SCRIPTS.sub("", dom)


def style_stripper(dom: str) -> str:
    return _STYLES.sub("", dom)


@dataclass(frozen=True)
class RegexStripper:
    """Replace every match of ``pattern`` (e.g. timestamps, session ids)."""

    pattern: str
    replacement: str = ""

    def __call__(self, dom: str) -> str:
        return re.sub(self.pattern, self.replacement, dom)


@dataclass(frozen=True)
class AttributeStripper:
    """Remove the named attributes from every tag."""

    names: Tuple[str, ...]

    def __call__(self, dom: str) -> str:
        for name in self.names:
            dom = re.sub(
                r"\s%s\s*=\s*(\"[^\"]*\"|'[^']*'|[^\s>]+)" % re.escape(name),
                "",
                dom,
                flags=re.I,
            )
        return dom


@dataclass(frozen=True)
class XPathStripper:
    """Remove every node matched by ``xpath`` (ads, clocks, counters...)."""

    xpath: str

    def __call__(self, dom: str) -> str:
        if not dom.strip():
            return dom
        try:
            root = html.document_fromstring(dom)
            nodes = root.xpath(normalize_xpath(self.xpath))
        except (etree.ParserError, etree.XPathError) as ex:
            logger.warning("XPath stripper %r could not be applied: %s", self.xpath, ex)
            return dom
        if not nodes:
            return dom
        for node in nodes:
            if isinstance(node, etree._Element) and node.getparent() is not None:
                node.drop_tree()
        return html.tostring(root, encoding="unicode")


class DomStrippers:
    """An immutable, ordered stripper pipeline."""

    def __init__(self, strippers: Iterable[DomStripper] = ()) -> None:
        self._strippers: Tuple[DomStripper, ...] = tuple(strippers)

    @classmethod
    def none(cls) -> "DomStrippers":
        return cls()

    @property
    def strippers(self) -> Tuple[DomStripper, ...]:
        return self._strippers

    def strip(self, dom: str) -> str:
        return reduce(lambda acc, stripper: stripper(acc), self._strippers, dom)

    def __call__(self, dom: str) -> str:
        return self.strip(dom)

    def __len__(self) -> int:
        return len(self._strippers)
