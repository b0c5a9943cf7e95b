"""Load generator whose request rate follows a sine wave."""

from __future__ import annotations

import argparse
import math
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Optional, Sequence

import requests

__all__ = ["target_rps", "run_dynamic_load", "main"]

LB_URL = "http://localhost:8080/api/dynamic"
_PERIOD_SEC = 30.0
_TICK_SEC = 1.0
_MAX_WORKERS = 64


def target_rps(elapsed: float) -> int:
    """Requests per second at ``elapsed`` seconds: 15 plus up to 10 on a 30 s sine wave."""
    return 15 + int(math.sin(elapsed * (2 * math.pi / _PERIOD_SEC)) * 10)


def _fire(http: Any, url: str, high: bool) -> None:
    headers = {"X-Priority": "HIGH"} if high else {}
    try:
        response = http.get(url, headers=headers)
    except requests.RequestException:
        return
    response.close()


def run_dynamic_load(url: str = LB_URL, stop: Optional[threading.Event] = None) -> int:
    """Each second, send a burst sized by ``target_rps``; return the number of requests sent.

    Runs until ``stop`` is set. About a quarter of the requests carry HIGH priority.
    """
    stop = stop or threading.Event()
    rng = random.Random()
    start = time.monotonic()
    dispatched = 0
    with ThreadPoolExecutor(max_workers=_MAX_WORKERS) as pool:
        while not stop.is_set():
            rps = target_rps(time.monotonic() - start)
            for _ in range(rps):
                pool.submit(_fire, requests, url, rng.random() < 0.25)
            dispatched += rps
            print(f"[{datetime.now():%H:%M:%S}] Target RPS: {rps}")
            if stop.wait(_TICK_SEC):
                break
    return dispatched


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Generate oscillating load until interrupted."""
    parser = argparse.ArgumentParser(prog="dynamic-load", description="Oscillating load.")
    parser.add_argument("--url", default=LB_URL, help="Load balancer URL")
    args = parser.parse_args(argv)

    print("🚀 Starting dynamic load generator...")
    print("Config: Oscillating traffic between 5 and 30 requests per second.")
    stop = threading.Event()
    try:
        run_dynamic_load(args.url, stop)
    except KeyboardInterrupt:
        stop.set()
    return 0