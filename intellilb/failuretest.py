"""Measures how long the balancer takes to notice a failure and to recover."""

from __future__ import annotations

import argparse
import itertools
import logging
import threading
import time
from datetime import datetime
from typing import Optional, Sequence

import requests

__all__ = ["RecoveryTracker", "run_failure_test", "main"]

_log = logging.getLogger(__name__)

LB_URL = "http://localhost:8080/api/test"
_INTERVAL_SEC = 0.5
_TIMEOUT_SEC = 3.0


class RecoveryTracker:
    """Follows response statuses to find failure onset and the first recovery."""

    def __init__(self) -> None:
        self.failure_started = False
        self.failure_detected_at = 0.0
        self.last_status = 0

    def observe(self, status: int, now: float) -> Optional[float]:
        """Record one status seen at ``now``; return the recovery time when this one ends a failure.

        A status of 0 stands for a request that got no response.
        """
        if status != 200 and not self.failure_started:
            self.failure_started = True
            self.failure_detected_at = now
        recovery = None
        if status == 200 and self.failure_started and self.last_status != 200:
            recovery = now - self.failure_detected_at
            self.failure_started = False
        self.last_status = status
        return recovery


def _format_duration(seconds: float) -> str:
    ms = round(seconds * 1000)
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:.3f}".rstrip("0").rstrip(".") + "s"


def run_failure_test(
    url: str = LB_URL,
    stop: Optional[threading.Event] = None,
) -> RecoveryTracker:
    """Send a LOW priority request every 500 ms until ``stop`` is set, logging failures and recoveries."""
    stop = stop or threading.Event()
    tracker = RecoveryTracker()
    for number in itertools.count():
        started = time.perf_counter()
        status, server = 0, ""
        try:
            response = requests.get(url, headers={"X-Priority": "LOW"}, timeout=_TIMEOUT_SEC)
        except requests.RequestException:
            pass
        else:
            status = response.status_code
            server = response.headers.get("X-Handled-By", "")
            response.close()
        latency_ms = float(int((time.perf_counter() - started) * 1000))

        was_failing = tracker.failure_started
        now = time.time()
        recovery = tracker.observe(status, now)
        if tracker.failure_started and not was_failing:
            _log.info(
                "[FAILURE DETECTED] Request #%d failed (status %d) at %s",
                number, status, datetime.fromtimestamp(now).strftime("%H:%M:%S.%f")[:-3],
            )
        if recovery is not None:
            _log.info("[RECOVERY COMPLETE] First successful response after failure!")
            _log.info(
                "[RECOVERY COMPLETE] Server: %s | Recovery time: %s",
                server, _format_duration(recovery),
            )
        _log.info(
            "[REQUEST #%4d] status=%d  server=%-10s  latency=%.0fms",
            number, status, server, latency_ms,
        )
        if stop.wait(_INTERVAL_SEC):
            break
    return tracker


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Probe the balancer until interrupted."""
    parser = argparse.ArgumentParser(prog="failuretest", description="Failure and recovery timing.")
    parser.add_argument("--url", default=LB_URL, help="Load balancer URL")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    print("[FAILURE TEST] Sending requests every 500ms...")
    print("[FAILURE TEST] Kill a backend server now to see detection + recovery time.")
    print("[FAILURE TEST] Restart the server to see self-healing measurement.")
    print("")
    try:
        run_failure_test(args.url)
    except KeyboardInterrupt:
        pass
    return 0