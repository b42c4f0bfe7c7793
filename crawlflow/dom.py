from __future__ import annotations

"""lxml helpers shared by conditions, strippers, the extractor and form handling."""

import re
from typing import Any

from lxml import etree, html

_XPATH_STEP = re.compile(r"(?<=[/:])([A-Za-z][\w-]*)(?=\[|/|\)|\s|$)")


def normalize_xpath(expression: str) -> str:
    """Lower-case element names so upper-case XPaths match the HTML parser's tree."""
    return _XPATH_STEP.sub(lambda m: m.group(1).lower(), expression)


def parse_dom(dom: str) -> Any:
    if not dom.strip():
        return html.fromstring("<html/>")
    return html.document_fromstring(dom)


def element_xpath(element: Any) -> str:
    """Absolute XPath of ``element``, e.g. ``/html/body/div[2]/a``."""
    return element.getroottree().getpath(element)


def element_text(element: Any) -> str:
    return " ".join(element.text_content().split())


def is_element(node: Any) -> bool:
    # comments and processing instructions have a callable tag
    return isinstance(node, etree._Element) and isinstance(node.tag, str)
