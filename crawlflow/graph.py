from __future__ import annotations

"""The state-flow graph: DOM states connected by the events between them."""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set, Tuple

import networkx as nx

from .elements import Eventable
from .state import StateVertex

logger = logging.getLogger(__name__)

# Returned by `StateFlowGraph.shortest_path` when there is no path.
NOT_REACHABLE = None


class AddResult(str, Enum):
    ADDED = "added"
    ALREADY_PRESENT = "already_present"


@dataclass(frozen=True)
class Transition:
    """Outcome of recording one fired event in the graph."""

    vertex: StateVertex  # the vertex held by the graph (may differ from the one offered)
    state_result: AddResult
    edge: Eventable  # the edge held by the graph
    edge_added: bool

    @property
    def is_new_state(self) -> bool:
        return self.state_result == AddResult.ADDED


class StateFlowGraph:
    """Directed multigraph of state vertices and eventables.

    Vertices are keyed by their id in a ``networkx.MultiDiGraph``, edges by a
    graph-assigned edge id. One lock guards every mutation; read methods
    return snapshots.
    """

    def __init__(self) -> None:
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()
        self._lock = threading.RLock()
        self._by_hash: Dict[str, StateVertex] = {}
        self._edge_keys: Set[tuple] = set()
        self._next_edge_id = 0
        self._initial: Optional[StateVertex] = None

    # --- state helpers ----------------------------------------------------
    def add_state(self, state: StateVertex) -> AddResult:
        return AddResult.ALREADY_PRESENT if self.put_if_absent(state) is not None else AddResult.ADDED

    def put_if_absent(self, state: StateVertex) -> Optional[StateVertex]:
        """Insert ``state`` unless an equal one exists; return the existing one or None."""
        with self._lock:
            existing = self._by_hash.get(state.dom_hash)
            if existing is not None:
                return existing
            if state.id in self._g:
                raise ValueError(f"Another state already uses id {state.id}")
            self._g.add_node(state.id, obj=state)
            self._by_hash[state.dom_hash] = state
            if self._initial is None:
                self._initial = state
            logger.debug("Added %s to the state-flow graph", state)
            return None

    def get_state(self, state_id: int) -> Optional[StateVertex]:
        with self._lock:
            if state_id in self._g:
                return self._g.nodes[state_id]["obj"]
            return None

    def initial_state(self) -> Optional[StateVertex]:
        return self._initial

    def all_states(self) -> List[StateVertex]:
        with self._lock:
            return sorted((data["obj"] for _, data in self._g.nodes(data=True)), key=lambda s: s.id)

    def number_of_states(self) -> int:
        with self._lock:
            return self._g.number_of_nodes()

    def __contains__(self, state: StateVertex) -> bool:
        with self._lock:
            return state.id in self._g and self._g.nodes[state.id]["obj"] is state

    # --- edge helpers -----------------------------------------------------
    def add_edge(self, source: StateVertex, target: StateVertex, eventable: Eventable) -> bool:
        """Add ``eventable`` as an edge; False when an identical edge exists."""
        with self._lock:
            return self._add_edge(source, target, eventable)[1]

    def _add_edge(
        self, source: StateVertex, target: StateVertex, eventable: Eventable
    ) -> Tuple[Eventable, bool]:
        for vertex in (source, target):
            if vertex.id not in self._g:
                raise KeyError(f"{vertex} is not part of the graph")
        key = (source.id, target.id) + eventable.key
        if key in self._edge_keys:
            return self._find_edge(key), False
        eventable.set_endpoints(source.id, target.id)
        eventable.edge_id = self._next_edge_id
        self._next_edge_id += 1
        self._g.add_edge(source.id, target.id, key=eventable.edge_id, obj=eventable)
        self._edge_keys.add(key)
        return eventable, True

    def _find_edge(self, key: tuple) -> Eventable:
        source_id, target_id = key[0], key[1]
        for data in self._g.get_edge_data(source_id, target_id, default={}).values():
            if data["obj"].edge_key == key:
                return data["obj"]
        raise KeyError(key)

    def add_transition(
        self, source: StateVertex, candidate_state: StateVertex, eventable: Eventable
    ) -> Transition:
        """Classify ``candidate_state`` and record the edge in one atomic step."""
        with self._lock:
            existing = self.put_if_absent(candidate_state)
            vertex = existing if existing is not None else candidate_state
            edge, added = self._add_edge(source, vertex, eventable)
            return Transition(
                vertex=vertex,
                state_result=AddResult.ADDED if existing is None else AddResult.ALREADY_PRESENT,
                edge=edge,
                edge_added=added,
            )

    def all_edges(self) -> List[Eventable]:
        with self._lock:
            return sorted(
                (data["obj"] for _, _, data in self._g.edges(data=True)), key=lambda e: e.edge_id
            )

    def outgoing_edges(self, state: StateVertex) -> List[Eventable]:
        with self._lock:
            return self._sorted_out_edges(state.id)

    def incoming_edges(self, state: StateVertex) -> List[Eventable]:
        with self._lock:
            return sorted(
                (data["obj"] for _, _, data in self._g.in_edges(state.id, data=True)),
                key=lambda e: e.edge_id,
            )

    def number_of_edges(self) -> int:
        with self._lock:
            return self._g.number_of_edges()

    def _sorted_out_edges(self, state_id: int) -> List[Eventable]:
        edges = [data["obj"] for _, _, data in self._g.out_edges(state_id, data=True)]
        edges.sort(key=lambda e: (e.target_id, e.edge_id))
        return edges

    # --- paths --------------------------------------------------------------
    def shortest_path(self, src: StateVertex, dst: StateVertex) -> Optional[List[Eventable]]:
        """Return the eventables along the shortest path, or NOT_REACHABLE.

        Breadth-first; the out-edges of a vertex are explored by target id,
        then by insertion order, which makes the result deterministic.
        """
        with self._lock:
            if src.id not in self._g or dst.id not in self._g:
                return NOT_REACHABLE
            if src.id == dst.id:
                return []
            via: Dict[int, Eventable] = {}
            queue = deque([src.id])
            seen = {src.id}
            while queue:
                node = queue.popleft()
                for edge in self._sorted_out_edges(node):
                    nxt = edge.target_id
                    if nxt in seen:
                        continue
                    seen.add(nxt)
                    via[nxt] = edge
                    if nxt == dst.id:
                        return self._unwind(via, src.id, dst.id)
                    queue.append(nxt)
            return NOT_REACHABLE

    @staticmethod
    def _unwind(via: Dict[int, Eventable], src_id: int, dst_id: int) -> List[Eventable]:
        path: List[Eventable] = []
        node = dst_id
        while node != src_id:
            edge = via[node]
            path.append(edge)
            node = edge.source_id
        path.reverse()
        return path

    def can_go_to(self, src: StateVertex, dst: StateVertex) -> bool:
        with self._lock:
            if src.id not in self._g or dst.id not in self._g:
                return False
            return nx.has_path(self._g, src.id, dst.id)

    def distance_from_initial(self, state: StateVertex) -> Optional[int]:
        with self._lock:
            if self._initial is None or state.id not in self._g:
                return None
            try:
                return nx.shortest_path_length(self._g, self._initial.id, state.id)
            except nx.NetworkXNoPath:
                return None

    def states_by_distance(self) -> List[Tuple[int, StateVertex]]:
        """Reachable states ordered by (distance from the initial state, id)."""
        with self._lock:
            if self._initial is None:
                return []
            lengths = nx.single_source_shortest_path_length(self._g, self._initial.id)
            ordered = sorted((dist, node) for node, dist in lengths.items())
            return [(dist, self._g.nodes[node]["obj"]) for dist, node in ordered]

    # convenience ----------------------------------------------------------
    def to_networkx(self) -> nx.MultiDiGraph:
        """Copy of the graph with plain attributes only (GraphML friendly)."""
        with self._lock:
            out = nx.MultiDiGraph()
            for node, data in self._g.nodes(data=True):
                st: StateVertex = data["obj"]
                out.add_node(node, name=st.name, url=st.url, dom_hash=st.dom_hash)
            for u, v, k, data in self._g.edges(keys=True, data=True):
                ev: Eventable = data["obj"]
                out.add_edge(
                    u,
                    v,
                    key=k,
                    event_type=ev.event_type.value,
                    how=ev.identification.how.value,
                    identification=ev.identification.value,
                    related_frame=ev.related_frame,
                    text=ev.element_text,
                )
            return out

    def __str__(self) -> str:
        return f"StateFlowGraph({self.number_of_states()} states, {self.number_of_edges()} edges)"


class CrawlPath:
    """Ordered eventables followed by one crawler since its last reset."""

    def __init__(self, edges: Optional[List[Eventable]] = None) -> None:
        self._edges: List[Eventable] = []
        for edge in edges or []:
            self.append(edge)

    def append(self, edge: Eventable) -> None:
        if self._edges and self._edges[-1].target_id != edge.source_id:
            raise ValueError(f"{edge} does not continue the path at {self._edges[-1].target_id}")
        self._edges.append(edge)

    def clear(self) -> None:
        self._edges.clear()

    @property
    def last_target_id(self) -> Optional[int]:
        return self._edges[-1].target_id if self._edges else None

    def copy(self) -> "CrawlPath":
        return CrawlPath(list(self._edges))

    def __iter__(self) -> Iterator[Eventable]:
        return iter(list(self._edges))

    def __len__(self) -> int:
        return len(self._edges)

    def __bool__(self) -> bool:
        return bool(self._edges)

    def __str__(self) -> str:
        return " -> ".join(str(e.identification) for e in self._edges) or "<empty path>"
