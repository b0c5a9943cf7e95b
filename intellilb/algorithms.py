"""Load balancing algorithms that pick one server among healthy candidates."""

from __future__ import annotations

import random
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence

__all__ = [
    "ServerStats",
    "Algorithm",
    "WeightedScore",
    "RoundRobin",
    "LeastConnections",
    "Canary",
]


@dataclass(frozen=True)
class ServerStats:
    """Point-in-time metrics for one backend server."""

    weight: int = 0
    is_healthy: bool = False
    avg_latency_ms: float = 0.0
    active_connections: int = 0


StatsMap = Mapping[str, ServerStats]


class Algorithm(ABC):
    """Chooses one server URL from the candidates."""

    @abstractmethod
    def select(
        self, candidates: Sequence[str], stats: Optional[StatsMap], priority: str
    ) -> str:
        """Return the chosen URL, or an empty string when there are no candidates."""


class WeightedScore(Algorithm):
    """Scores servers by latency and load, scaled by their configured weight.

    HIGH priority favours latency (0.8/0.2); other priorities balance more
    evenly (0.6/0.4). A tiny random jitter breaks exact ties.
    """

    def select(
        self, candidates: Sequence[str], stats: Optional[StatsMap], priority: str
    ) -> str:
        if not candidates:
            return ""
        stats = stats or {}
        if priority == "HIGH":
            latency_weight, load_weight = 0.8, 0.2
        else:
            latency_weight, load_weight = 0.6, 0.4

        best_score = -1.0
        best_server = candidates[0]
        for url in candidates:
            server = stats.get(url)
            if server is None:
                continue
            base = latency_weight / (1.0 + server.avg_latency_ms) + load_weight / (
                1.0 + float(server.active_connections)
            )
            multiplier = float(server.weight) if server.weight > 0 else 1.0
            score = base * multiplier + random.random() * 0.001
            if score > best_score:
                best_score = score
                best_server = url
        return best_server


class RoundRobin(Algorithm):
    """Hands out candidates in turn, one after another."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = 0

    def select(
        self, candidates: Sequence[str], stats: Optional[StatsMap], priority: str
    ) -> str:
        if not candidates:
            return ""
        with self._lock:
            index = self._counter
            self._counter += 1
        return candidates[index % len(candidates)]


class LeastConnections(Algorithm):
    """Picks the candidate with the fewest active connections."""

    def select(
        self, candidates: Sequence[str], stats: Optional[StatsMap], priority: str
    ) -> str:
        if not candidates:
            return ""
        stats = stats or {}
        known = [url for url in candidates if url in stats]
        if not known:
            return candidates[0]
        return min(known, key=lambda url: stats[url].active_connections)


class Canary(Algorithm):
    """Fixed-percentage traffic split by smooth weighted round robin.

    Weights are read from the stats on the first selection and then kept;
    a candidate seen later without a known weight counts as weight 1.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._initialized = False
        self._weights: Dict[str, int] = {}
        self._current: Dict[str, int] = {}

    def _init_weights(self, stats: StatsMap) -> None:
        for url, server in stats.items():
            self._weights[url] = server.weight if server.weight > 0 else 1
            self._current[url] = 0
        self._initialized = True

    def select(
        self, candidates: Sequence[str], stats: Optional[StatsMap], priority: str
    ) -> str:
        if not candidates:
            return ""
        with self._lock:
            if not self._initialized:
                self._init_weights(stats or {})

            total = 0
            for url in candidates:
                if url not in self._weights:
                    self._weights[url] = 1
                    self._current[url] = 0
                total += self._weights[url]

            for url in candidates:
                self._current[url] += self._weights[url]
            best = max(candidates, key=self._current.__getitem__)
            self._current[best] -= total
            return best