"""Load generator that fires prioritised requests and reports latency and spread."""

from __future__ import annotations

import argparse
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import requests

__all__ = ["Result", "Summary", "run_load_test", "summarize", "format_report", "main"]

_log = logging.getLogger(__name__)

_BAR = "═" * 42


@dataclass(frozen=True)
class Result:
    """Outcome of one request; status 0 means it never got a response."""

    latency_ms: float
    status: int
    server: str
    priority: str


@dataclass
class Summary:
    """Aggregate figures for a load test run."""

    total: int
    elapsed: float
    ok: int
    avg_latency_ms: float
    p95_latency_ms: float
    high_ok: int
    low_ok: int
    distribution: Dict[str, int] = field(default_factory=dict)

    @property
    def throughput(self) -> float:
        """Requests per second over the whole run."""
        return self.total / self.elapsed if self.elapsed > 0 else 0.0

    @property
    def success_rate(self) -> float:
        """Percentage of requests answered with 200."""
        return self.ok / self.total * 100 if self.total else 0.0


def _send(url: str, priority: str) -> Result:
    started = time.perf_counter()
    try:
        response = requests.get(url, headers={"X-Priority": priority})
    except requests.RequestException:
        return Result(float(int((time.perf_counter() - started) * 1000)), 0, "error", priority)
    latency = float(int((time.perf_counter() - started) * 1000))
    try:
        return Result(
            latency, response.status_code, response.headers.get("X-Handled-By", ""), priority
        )
    finally:
        response.close()


def run_load_test(
    url: str,
    total: int = 300,
    concurrency: int = 20,
    high_fraction: float = 0.2,
) -> Tuple[List[Result], float]:
    """Send ``total`` requests, the first ``high_fraction`` of them HIGH priority.

    Returns the results and the elapsed wall time in seconds.
    """
    if concurrency <= 0:
        raise ValueError("concurrency must be positive")
    priorities = ["HIGH" if i / total < high_fraction else "LOW" for i in range(total)]
    started = time.perf_counter()
    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        results = list(pool.map(lambda p: _send(url, p), priorities))
    return results, time.perf_counter() - started


def summarize(results: Sequence[Result], total: int, elapsed: float) -> Summary:
    """Aggregate the successful (200) results."""
    succeeded = [r for r in results if r.status == 200]
    latencies = sorted(r.latency_ms for r in succeeded)
    distribution: Dict[str, int] = {}
    for r in succeeded:
        distribution[r.server] = distribution.get(r.server, 0) + 1
    high_ok = sum(1 for r in succeeded if r.priority == "HIGH")

    avg = p95 = 0.0
    if latencies:
        avg = sum(latencies) / len(latencies)
        p95 = latencies[min(int(len(latencies) * 0.95), len(latencies) - 1)]

    return Summary(
        total=total,
        elapsed=elapsed,
        ok=len(succeeded),
        avg_latency_ms=avg,
        p95_latency_ms=p95,
        high_ok=high_ok,
        low_ok=len(succeeded) - high_ok,
        distribution=distribution,
    )


def _duration(seconds: float) -> str:
    ms = round(seconds * 1000)
    if ms == 0:
        return "0s"
    if ms < 1000:
        return f"{ms}ms"
    hours, rest = divmod(ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs = f"{rest / 1000:.3f}".rstrip("0").rstrip(".")
    out = ""
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    return f"{out}{secs}s"


def format_report(summary: Summary) -> str:
    """Render the summary as a text box."""
    lines = [
        f"╔{_BAR}╗",
        "║         LOAD TEST RESULTS                ║",
        f"╠{_BAR}╣",
        f"║ Total Requests  : {summary.total:22d} ║",
        f"║ Elapsed Time    : {_duration(summary.elapsed):>19s} ║",
        f"║ Throughput      : {summary.throughput:18.1f} rps ║",
        f"║ Success Rate    : {summary.success_rate:20.1f}% ║",
        f"║ Avg Latency     : {summary.avg_latency_ms:19.1f} ms ║",
        f"║ P95 Latency     : {summary.p95_latency_ms:19.1f} ms ║",
        f"║ HIGH Pri OK     : {summary.high_ok:22d} ║",
        f"║ LOW  Pri OK     : {summary.low_ok:22d} ║",
        f"╠{_BAR}╣",
    ]
    for server, count in sorted(summary.distribution.items()):
        share = count / summary.ok * 100
        lines.append(f"║  {server:<14s}  {count:5d} reqs  {share:5.1f}%    ║")
    lines.append(f"╚{_BAR}╝")
    return "\n".join(lines)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run a load test from the command line and print the report."""
    parser = argparse.ArgumentParser(prog="loadtest", description="Load test the balancer.")
    parser.add_argument("-requests", "--requests", type=int, default=300, help="Total requests")
    parser.add_argument(
        "-concurrency", "--concurrency", type=int, default=20, help="Concurrent workers"
    )
    parser.add_argument(
        "-high", "--high", type=float, default=0.2, help="Fraction of HIGH priority requests"
    )
    parser.add_argument(
        "-url", "--url", default="http://localhost:8080/api/test", help="Load balancer URL"
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    results, elapsed = run_load_test(args.url, args.requests, args.concurrency, args.high)
    print()
    print(format_report(summarize(results, args.requests, elapsed)))
    _log.info("[LOAD TEST] Complete")
    return 0