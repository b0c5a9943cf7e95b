"""Stress traffic plus a chaos monkey that toggles backends into failure mode."""

from __future__ import annotations

import argparse
import random
import threading
from typing import Any, List, Optional, Sequence, Tuple

import requests

__all__ = ["StressCounters", "ChaosMonkey", "send_one", "stress_test", "main"]

LB_URL = "http://localhost:8080/api/chaos"
TOGGLE_URLS = (
    "http://localhost:8001/toggle",
    "http://localhost:8002/toggle",
    "http://localhost:8003/toggle",
    "http://localhost:8004/toggle",
)
SERVER_NAMES = ("Alpha", "Beta", "Gamma", "Delta")

_STRESS_TIMEOUT = 5.0
REPORT_INTERVAL = 5.0


class StressCounters:
    """Thread-safe tallies of requests sent and requests that failed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._failed = 0

    def record(self, ok: bool) -> None:
        """Count one request, and one failure unless ``ok``."""
        with self._lock:
            self._total += 1
            if not ok:
                self._failed += 1

    @property
    def total(self) -> int:
        """Requests sent so far."""
        with self._lock:
            return self._total

    @property
    def failed(self) -> int:
        """Requests that errored or answered with a 5xx status."""
        with self._lock:
            return self._failed


def send_one(session: Any, url: str, high: bool) -> bool:
    """Send one GET, HIGH priority if ``high``; return False on error or a 5xx status."""
    headers = {"X-Priority": "HIGH"} if high else {}
    try:
        response = session.get(url, headers=headers, timeout=_STRESS_TIMEOUT)
    except requests.RequestException:
        return False
    try:
        return response.status_code < 500
    finally:
        response.close()


def stress_test(
    url: str,
    concurrency: int,
    counters: StressCounters,
    stop: threading.Event,
) -> None:
    """Run ``concurrency`` workers hitting ``url`` until ``stop`` is set, reporting progress."""
    if concurrency <= 0:
        raise ValueError("concurrency must be positive")
    print(f"🔥 Launching {concurrency} concurrent stress workers...")

    def worker() -> None:
        rng = random.Random()
        with requests.Session() as http:
            while not stop.is_set():
                counters.record(send_one(http, url, rng.randrange(4) == 0))
                # 10-49 ms pause keeps the client from saturating its own CPU.
                if stop.wait((10 + rng.randrange(40)) / 1000):
                    break

    threads = [
        threading.Thread(target=worker, name=f"stress-{n}", daemon=True)
        for n in range(concurrency)
    ]
    for thread in threads:
        thread.start()
    while not stop.wait(REPORT_INTERVAL):
        print(f"[STRESS] Sent {counters.total} requests so far ({counters.failed} failures)")
    for thread in threads:
        thread.join()


class ChaosMonkey:
    """Toggles a random backend between healthy and failing on each strike."""

    def __init__(
        self,
        toggle_urls: Sequence[str] = TOGGLE_URLS,
        names: Sequence[str] = SERVER_NAMES,
        *,
        session: Optional[Any] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        if not toggle_urls or len(toggle_urls) != len(names):
            raise ValueError("need one name for each toggle URL, and at least one")
        self.targets: List[Tuple[str, str]] = list(zip(names, toggle_urls))
        self.healthy: List[bool] = [True] * len(self.targets)
        self._http = session if session is not None else requests
        self._rng = rng or random.Random()

    def strike(self) -> Optional[Tuple[str, bool]]:
        """Toggle one random server; return its name and new health, or None if unreachable."""
        index = self._rng.randrange(len(self.targets))
        name, url = self.targets[index]
        try:
            response = self._http.get(url)
        except requests.RequestException as exc:
            print(f"🐒 [CHAOS] Failed to toggle {name}: {exc}")
            return None
        response.close()
        self.healthy[index] = not self.healthy[index]
        state = "HEALTHY" if self.healthy[index] else "FAILING (HTTP 500)"
        print(f"\n🐒 [CHAOS] Toggled {name} -> currently {state}\n")
        return name, self.healthy[index]

    def run(self, interval: float = 12.0, stop: Optional[threading.Event] = None) -> None:
        """Strike every ``interval`` seconds until ``stop`` is set."""
        stop = stop or threading.Event()
        while not stop.wait(interval):
            self.strike()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run stress traffic and the chaos monkey until interrupted."""
    parser = argparse.ArgumentParser(prog="chaos", description="Chaos and stress test.")
    parser.add_argument("--url", default=LB_URL, help="Load balancer URL")
    parser.add_argument("--concurrency", type=int, default=50, help="Stress workers")
    parser.add_argument("--interval", type=float, default=12.0, help="Seconds between toggles")
    args = parser.parse_args(argv)

    print("🌪️ Starting Chaos & Stress Test...")
    stop = threading.Event()
    counters = StressCounters()
    stress = threading.Thread(
        target=stress_test, args=(args.url, args.concurrency, counters, stop), daemon=True
    )
    stress.start()
    try:
        ChaosMonkey().run(args.interval, stop)
    except KeyboardInterrupt:
        pass
    finally:
        stop.set()
        stress.join()
    return 0