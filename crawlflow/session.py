from __future__ import annotations

"""The output of a crawl: graph, configuration, metrics and terminal status."""

import threading
import time
from typing import Any, Dict, List, Optional

from .config import CrawlConfiguration
from .exit_notifier import ExitStatus
from .graph import CrawlPath, StateFlowGraph
from .metrics import MetricRegistry
from .state import StateVertex


class CrawlSession:
    def __init__(
        self,
        config: CrawlConfiguration,
        graph: Optional[StateFlowGraph] = None,
        metrics: Optional[MetricRegistry] = None,
    ) -> None:
        self._config = config
        self._graph = graph if graph is not None else StateFlowGraph()
        self.metrics = metrics if metrics is not None else MetricRegistry()
        self.start_time = time.time()
        self.end_time: Optional[float] = None
        self.status: Optional[ExitStatus] = None
        self._paths: List[CrawlPath] = []
        self._lock = threading.Lock()

    def get_state_flow_graph(self) -> StateFlowGraph:
        return self._graph

    def get_initial_state(self) -> Optional[StateVertex]:
        return self._graph.initial_state()

    def get_config(self) -> CrawlConfiguration:
        return self._config

    def add_crawl_path(self, path: CrawlPath) -> None:
        if path:
            with self._lock:
                self._paths.append(path.copy())

    @property
    def crawl_paths(self) -> List[CrawlPath]:
        with self._lock:
            return list(self._paths)

    def finish(self, status: ExitStatus) -> None:
        self.status = status
        self.end_time = time.time()

    @property
    def duration(self) -> float:
        return (self.end_time or time.time()) - self.start_time

    # ------------------------------------------------------------------
    def to_json(self) -> Dict[str, Any]:
        """Summary of the session as a JSON-serialisable structure."""
        return {
            "url": self._config.url,
            "status": self.status.value if self.status else None,
            "duration": self.duration,
            "states": {
                st.id: {"name": st.name, "url": st.url, "dom_hash": st.dom_hash}
                for st in self._graph.all_states()
            },
            "edges": [
                {
                    "id": e.edge_id,
                    "src": e.source_id,
                    "dst": e.target_id,
                    "event": e.event_type.value,
                    "how": e.identification.how.value,
                    "value": e.identification.value,
                    "frame": e.related_frame,
                    "text": e.element_text,
                }
                for e in self._graph.all_edges()
            ],
            "metrics": self.metrics.snapshot(),
        }
