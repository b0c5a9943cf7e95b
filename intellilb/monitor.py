"""Periodic per-server health checks feeding metrics and circuit breakers."""

from __future__ import annotations

import logging
import threading
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Tuple

import requests

from intellilb.breaker import Breaker
from intellilb.config import ServerConfig

__all__ = ["Monitor"]

_log = logging.getLogger(__name__)


class _MetricsSink(Protocol):
    def set_health(self, url: str, healthy: bool) -> None: ...

    def set_circuit_state(self, url: str, state: str) -> None: ...

    def clear_latencies(self, url: str) -> None: ...


class Monitor:
    """Runs one health-check thread per server, each with its own settings.

    ``session`` is anything with a requests-style ``get(url, timeout=...)``;
    it defaults to the ``requests`` module.
    """

    def __init__(
        self,
        servers: Sequence[ServerConfig],
        metrics: _MetricsSink,
        breakers: Mapping[str, Breaker],
        *,
        session: Optional[Any] = None,
    ) -> None:
        self._servers = list(servers)
        self._metrics = metrics
        self._breakers = breakers
        self._http = session if session is not None else requests
        self._lock = threading.Lock()
        self._workers: List[Tuple[threading.Event, threading.Thread]] = []

    def start(self) -> None:
        """Start a checking thread for every server."""
        for server in self._servers:
            if server.health_check.interval_sec <= 0:
                raise ValueError(
                    f"non-positive health check interval for {server.name or server.url}"
                )
        with self._lock:
            for server in self._servers:
                stop = threading.Event()
                thread = threading.Thread(
                    target=self._run,
                    args=(server, stop),
                    name=f"health-{server.name or server.url}",
                    daemon=True,
                )
                self._workers.append((stop, thread))
                thread.start()

    def stop(self) -> None:
        """Stop all checking threads and wait for them to finish."""
        with self._lock:
            workers, self._workers = self._workers, []
        for stop, _ in workers:
            stop.set()
        for _, thread in workers:
            thread.join()
        _log.info("[MONITOR] All health check goroutines stopped")

    def _run(self, server: ServerConfig, stop: threading.Event) -> None:
        hc = server.health_check
        _log.info(
            "[MONITOR] Health checks started for %s (path=%s, interval=%ds, timeout=%ds, status=%d)",
            server.name, hc.path, hc.interval_sec, hc.timeout_sec, hc.expected_status,
        )
        while not stop.wait(hc.interval_sec):
            self.check(server)

    def _mark_down(self, server: ServerConfig) -> None:
        breaker = self._breakers[server.url]
        self._metrics.set_health(server.url, False)
        breaker.record_failure()
        self._metrics.set_circuit_state(server.url, breaker.state().value)

    def check(self, server: ServerConfig) -> None:
        """Probe one server once and record the outcome."""
        hc = server.health_check
        url = f"{server.url}{hc.path}"
        try:
            response = self._http.get(url, timeout=hc.timeout_sec)
        except requests.RequestException:
            self._mark_down(server)
            _log.info("[MONITOR] %-20s %-10s DOWN ✗ (unreachable)", server.name, server.url)
            return

        try:
            status = response.status_code
        finally:
            response.close()

        if status != hc.expected_status:
            self._mark_down(server)
            _log.info(
                "[MONITOR] %-20s %-10s DOWN ✗ (status %d, expected %d)",
                server.name, server.url, status, hc.expected_status,
            )
            return

        breaker = self._breakers[server.url]
        self._metrics.set_health(server.url, True)
        if breaker.record_success():
            self._metrics.clear_latencies(server.url)
        self._metrics.set_circuit_state(server.url, breaker.state().value)
        _log.info("[MONITOR] %-20s %-10s UP   ✓", server.name, server.url)