import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from intellilb.breaker import Breaker
from intellilb.config import HealthCheckConfig, ServerConfig
from intellilb.monitor import Monitor


class FakeMetrics:
    def __init__(self):
        self.health = {}
        self.circuit = {}
        self.cleared = []

    def set_health(self, url, healthy):
        self.health[url] = healthy

    def set_circuit_state(self, url, state):
        self.circuit[url] = state

    def clear_latencies(self, url):
        self.cleared.append(url)


class FakeResponse:
    def __init__(self, status):
        self.status_code = status
        self.closed = False

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, status=200, fail=False):
        self.status = status
        self.fail = fail
        self.calls = []
        self.responses = []
        self.lock = threading.Lock()

    def get(self, url, timeout):
        with self.lock:
            self.calls.append((url, timeout))
        if self.fail:
            raise requests.ConnectionError("refused")
        response = FakeResponse(self.status)
        self.responses.append(response)
        return response


URL = "http://backend.example.com:8001"


def _server(interval=1, expected=200):
    return ServerConfig(
        url=URL,
        name="Alpha",
        weight=1,
        health_check=HealthCheckConfig(
            path="/health", interval_sec=interval, timeout_sec=2, expected_status=expected
        ),
    )


def _monitor(session, threshold=1):
    metrics = FakeMetrics()
    breakers = {URL: Breaker(threshold, 60.0)}
    return Monitor([_server()], metrics, breakers, session=session), metrics, breakers


def test_check_healthy_server():
    session = FakeSession(200)
    mon, metrics, _ = _monitor(session)
    mon.check(_server())
    assert session.calls == [(URL + "/health", 2)]
    assert metrics.health[URL] is True
    assert metrics.circuit[URL] == "CLOSED"
    assert metrics.cleared == []
    assert session.responses[0].closed


def test_check_unreachable_trips_breaker():
    mon, metrics, breakers = _monitor(FakeSession(fail=True))
    mon.check(_server())
    assert metrics.health[URL] is False
    assert metrics.circuit[URL] == "OPEN"
    assert breakers[URL].is_open()


def test_check_unexpected_status_counts_as_failure():
    session = FakeSession(503)
    mon, metrics, breakers = _monitor(session, threshold=2)
    mon.check(_server())
    assert metrics.health[URL] is False
    assert metrics.circuit[URL] == "CLOSED"
    mon.check(_server())
    assert metrics.circuit[URL] == "OPEN"
    assert session.responses[-1].closed


def test_check_custom_expected_status():
    mon, metrics, _ = _monitor(FakeSession(204))
    mon.check(_server(expected=204))
    assert metrics.health[URL] is True


def test_recovery_clears_latencies():
    session = FakeSession(fail=True)
    mon, metrics, _ = _monitor(session)
    mon.check(_server())
    session.fail = False
    mon.check(_server())
    assert metrics.cleared == [URL]
    assert metrics.circuit[URL] == "CLOSED"
    mon.check(_server())
    assert metrics.cleared == [URL]


def test_start_rejects_non_positive_interval():
    metrics = FakeMetrics()
    mon = Monitor([_server(interval=0)], metrics, {URL: Breaker(1, 1.0)}, session=FakeSession())
    with pytest.raises(ValueError):
        mon.start()


def test_start_checks_periodically_and_stop_halts():
    session = FakeSession(200)
    mon, metrics, _ = _monitor(session)
    mon.start()
    deadline = time.monotonic() + 3.0
    while not session.calls and time.monotonic() < deadline:
        time.sleep(0.05)
    mon.stop()
    seen = len(session.calls)
    assert seen >= 1
    assert metrics.health[URL] is True
    time.sleep(1.2)
    assert len(session.calls) == seen


class _HealthHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.send_response(200 if self.path == "/health" else 404)
        self.end_headers()

    def log_message(self, *args):
        pass


def test_check_against_real_http_server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _HealthHandler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        base = f"http://127.0.0.1:{httpd.server_address[1]}"
        metrics = FakeMetrics()
        good = ServerConfig(url=base, name="Local", health_check=HealthCheckConfig(
            path="/health", interval_sec=1, timeout_sec=2, expected_status=200))
        mon = Monitor([good], metrics, {base: Breaker(1, 60.0)})
        mon.check(good)
        assert metrics.health[base] is True

        bad = ServerConfig(url=base, name="Local", health_check=HealthCheckConfig(
            path="/missing", interval_sec=1, timeout_sec=2, expected_status=200))
        mon.check(bad)
        assert metrics.health[base] is False
        assert metrics.circuit[base] == "OPEN"
    finally:
        httpd.shutdown()
        httpd.server_close()