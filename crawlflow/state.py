from __future__ import annotations

"""State vertices: canonical, hash-stable representations of DOM states."""

import hashlib
import threading
from dataclasses import dataclass, field
from typing import Any, Dict


def dom_hash(stripped_dom: str) -> str:
    return hashlib.sha256(stripped_dom.encode("utf-8")).hexdigest()


@dataclass(eq=False)
class StateVertex:
    """A cluster of DOMs that share one canonical (stripped) DOM."""

    id: int
    name: str
    url: str = ""
    dom: str = field(default="", repr=False)
    stripped_dom: str = field(default="", repr=False)
    dom_hash: str = ""
    # derived data attached by the crawler or plugins
    data: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if self.id < 0:
            raise ValueError("State ids are non-negative")
        if not self.dom_hash:
            self.dom_hash = dom_hash(self.stripped_dom)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StateVertex):
            return NotImplemented
        return self.dom_hash == other.dom_hash

    def __hash__(self) -> int:
        return hash(self.dom_hash)

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


class StateVertexFactory:
    """Hands out one vertex per distinct canonical DOM.

    Ids are allocated monotonically from ``first_id``; asking again for a
    canonical DOM that was seen before returns the vertex created the first
    time. Safe to call from several crawler threads.
    """

    INDEX_NAME = "index"

    def __init__(self, first_id: int = 0) -> None:
        self._first_id = first_id
        self._next_id = first_id
        self._by_hash: Dict[str, StateVertex] = {}
        self._lock = threading.Lock()

    def new_state_for(self, url: str, dom: str, stripped_dom: str) -> StateVertex:
        digest = dom_hash(stripped_dom)
        with self._lock:
            known = self._by_hash.get(digest)
            if known is not None:
                return known
            state_id = self._next_id
            self._next_id += 1
            name = self.INDEX_NAME if state_id == self._first_id else f"state{state_id}"
            vertex = StateVertex(
                id=state_id,
                name=name,
                url=url,
                dom=dom,
                stripped_dom=stripped_dom,
                dom_hash=digest,
            )
            self._by_hash[digest] = vertex
            return vertex

    def known(self, stripped_dom: str) -> bool:
        with self._lock:
            return dom_hash(stripped_dom) in self._by_hash

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_hash)
