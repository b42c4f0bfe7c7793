from __future__ import annotations

"""Candidate-element extraction: applies the crawl rules to the live DOM."""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Set
from urllib.parse import urljoin, urlparse

from lxml import etree

from .browser import EmbeddedBrowser
from .conditions import all_hold
from .dom import element_text, element_xpath, is_element, normalize_xpath, parse_dom
from .elements import CandidateElement, How, Identification
from .errors import BrowserError, ConditionEvaluationError
from .forms import FormHandler
from .rules import CrawlElement, CrawlRules
from .state import StateVertex

logger = logging.getLogger(__name__)

_FRAME_TAGS = ("iframe", "frame")


@dataclass
class _ActiveRule:
    """A rule whose preconditions held for the page being extracted."""

    element: CrawlElement
    ancestors: Optional[Set[Any]] = None

    def matches(self, node: Any) -> bool:
        if not self.element.matches(node):
            return False
        if self.ancestors is None:
            return True
        return node in self.ancestors or any(a in self.ancestors for a in node.iterancestors())


class CandidateElementExtractor:
    """Enumerates the firable elements of the browser's current page.

    One extractor belongs to one crawler (and therefore one browser).
    """

    def __init__(
        self,
        browser: EmbeddedBrowser,
        rules: CrawlRules,
        site_url: str = "",
        form_handler: Optional[FormHandler] = None,
    ) -> None:
        self._browser = browser
        self._rules = rules
        self._site = urlparse(site_url).netloc
        self._forms = form_handler or FormHandler(rules)

    # ------------------------------------------------------------------
    def extract(self, state: StateVertex) -> List[CandidateElement]:
        """Candidates of the current page in document order."""
        found: List[CandidateElement] = []
        self._extract_from(self._browser.get_dom(), "", found)
        logger.debug("Found %d candidate elements in %s", len(found), state)
        return found

    def check_crawl_condition(self) -> bool:
        """False when one of the crawl conditions forbids crawling this page."""
        for crawl_condition in self._rules.crawl_conditions:
            try:
                if not crawl_condition.allows_crawling(self._browser):
                    logger.info("Crawl condition %r not satisfied", crawl_condition.description)
                    return False
            except ConditionEvaluationError as ex:
                logger.warning("Ignoring crawl condition %r: %s", crawl_condition.description, ex)
        return True

    # ------------------------------------------------------------------
    def _extract_from(self, dom: str, frame: str, found: List[CandidateElement]) -> None:
        try:
            root = parse_dom(dom)
        except (etree.ParserError, ValueError) as ex:
            logger.warning("Could not parse DOM of frame %r: %s", frame or "<top>", ex)
            return
        includes = self._activate(self._rules.include, root)
        excludes = self._activate(self._rules.exclude, root)

        for node in root.iter():
            if not is_element(node):
                continue
            candidate = self._candidate_for(node, dom, frame, includes, excludes)
            if candidate is not None:
                found.append(candidate)
            if node.tag in _FRAME_TAGS and self._rules.crawl_frames:
                self._extract_frame(node, frame, found)

    def _candidate_for(
        self,
        node: Any,
        dom: str,
        frame: str,
        includes: List[_ActiveRule],
        excludes: List[_ActiveRule],
    ) -> Optional[CandidateElement]:
        rule = next((r for r in includes if r.matches(node)), None)
        if rule is None:
            return None
        excluded = next((r for r in excludes if r.matches(node)), None)
        if excluded is not None:
            logger.debug("Excluded %s by %s", element_xpath(node), excluded.element)
            return None
        if node.tag == "a" and not self._anchor_allowed(node):
            return None
        return CandidateElement(
            identification=Identification(How.XPATH, element_xpath(node)),
            form_inputs=self._forms.form_inputs_for(node, dom),
            related_frame=frame,
            event_type=rule.element.event_type,
            tag=node.tag,
            text=element_text(node),
            attributes=tuple(sorted((str(k), str(v)) for k, v in node.attrib.items())),
        )

    def _activate(self, elements: tuple, root: Any) -> List[_ActiveRule]:
        active: List[_ActiveRule] = []
        for element in elements:
            try:
                if element.conditions and not all_hold(element.conditions, self._browser):
                    continue
                ancestors = None
                if element.ancestor_xpath:
                    nodes = root.xpath(normalize_xpath(element.ancestor_xpath))
                    ancestors = {n for n in nodes if is_element(n)}
                active.append(_ActiveRule(element, ancestors))
            except (ConditionEvaluationError, etree.XPathError) as ex:
                logger.warning("Dropping rule %s: %s", element, ex)
        return active

    def _extract_frame(self, node: Any, frame: str, found: List[CandidateElement]) -> None:
        name = node.get("name") or node.get("id")
        if not name:
            siblings = [n for n in node.getroottree().iter(*_FRAME_TAGS)]
            name = str(siblings.index(node))
        path = f"{frame}.{name}" if frame else name
        if self._rules.is_frame_ignored(name):
            logger.debug("Skipping ignored frame %s", path)
            return
        try:
            frame_dom = self._browser.get_frame_dom(path)
        except BrowserError as ex:
            logger.warning("Could not read frame %s: %s", path, ex)
            return
        self._extract_from(frame_dom, path, found)

    def _anchor_allowed(self, node: Any) -> bool:
        href = (node.get("href") or "").strip()
        if href.startswith(("mailto:", "tel:")):
            return False
        if not self._rules.crawl_hidden_anchors and _is_hidden(node):
            return False
        if href and not self._rules.follow_external_links and self._site:
            try:
                base = self._browser.get_current_url()
            except BrowserError:
                base = ""
            netloc = urlparse(urljoin(base, href)).netloc
            if netloc and netloc != self._site:
                logger.debug("Skipping external link %s", href)
                return False
        return True


def _is_hidden(node: Any) -> bool:
    for element in [node, *node.iterancestors()]:
        if element.get("hidden") is not None:
            return True
        style = (element.get("style") or "").replace(" ", "").lower()
        if "display:none" in style or "visibility:hidden" in style:
            return True
    return False
