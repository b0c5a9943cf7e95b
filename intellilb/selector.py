"""Picks a healthy backend for each request, honouring circuit breakers."""

from __future__ import annotations

from typing import Callable, Iterable, Mapping, MutableMapping, Optional, Sequence

from intellilb.algorithms import Algorithm, ServerStats
from intellilb.breaker import Breaker

__all__ = ["NoServerError", "Router"]

StatsSource = Callable[[], Mapping[str, ServerStats]]


class NoServerError(RuntimeError):
    """Raised when no backend can take the request."""


class Router:
    """Filters servers by health and breaker state, then asks the algorithm to choose.

    Candidates are filtered with ``is_open`` (no side effects); only the single
    chosen server's breaker is asked ``can_send``, which may move it to HALF_OPEN.
    """

    def __init__(
        self,
        servers: Sequence[str],
        stats: StatsSource,
        breakers: MutableMapping[str, Breaker],
        algorithm: Algorithm,
    ) -> None:
        self.servers = list(servers)
        self.stats = stats
        self.breakers = breakers
        self.algorithm = algorithm

    def select(self, priority: str, excluded: Optional[Iterable[str]] = None) -> str:
        """Return the chosen server URL, skipping any in ``excluded``."""
        snapshot = self.stats()
        skip = set(excluded or ())

        candidates = [
            url
            for url in self.servers
            if url not in skip
            and url in snapshot
            and snapshot[url].is_healthy
            and not self.breakers[url].is_open()
        ]
        if not candidates:
            raise NoServerError("no healthy servers available")

        chosen = self.algorithm.select(candidates, snapshot, priority)
        if not chosen:
            raise NoServerError("routing algorithm returned no server")
        if not self.breakers[chosen].can_send():
            raise NoServerError("chosen server circuit is open")
        return chosen