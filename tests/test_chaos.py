import threading
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from intellilb.chaos import ChaosMonkey, StressCounters, send_one, stress_test


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code
        self.headers = {}
        self.closed = False

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, statuses=(200,), error=None, on_call=None):
        self.statuses = list(statuses)
        self.error = error
        self.on_call = on_call
        self.calls = []
        self.responses = []
        self._lock = threading.Lock()

    def get(self, url, headers=None, timeout=None):
        with self._lock:
            self.calls.append((url, dict(headers or {}), timeout))
            count = len(self.calls)
        if self.on_call is not None:
            self.on_call(count)
        if self.error is not None:
            raise self.error
        status = self.statuses[min(count - 1, len(self.statuses) - 1)]
        response = FakeResponse(status)
        self.responses.append(response)
        return response


class _Recorder:
    def __init__(self, status, on_request=None):
        self.status = status
        self.on_request = on_request
        self.priorities = []
        self.lock = threading.Lock()


@contextmanager
def _serve(recorder):
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            with recorder.lock:
                recorder.priorities.append(self.headers.get("X-Priority"))
                count = len(recorder.priorities)
            self.send_response(recorder.status)
            self.send_header("Content-Length", "0")
            self.end_headers()
            if recorder.on_request is not None:
                recorder.on_request(count)

        def log_message(self, format, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}/api/chaos"
    finally:
        server.shutdown()
        server.server_close()


def test_counters_record_totals_and_failures():
    counters = StressCounters()
    outcomes = [True, False, True, False, False]
    for ok in outcomes:
        counters.record(ok)
    assert counters.total == len(outcomes)
    assert counters.failed == outcomes.count(False)


def test_send_one_high_sets_priority_header():
    session = FakeSession([200])
    assert send_one(session, "http://lb.test/api", True) is True
    url, headers, _ = session.calls[0]
    assert url == "http://lb.test/api"
    assert headers == {"X-Priority": "HIGH"}
    assert session.responses[0].closed


def test_send_one_low_sends_no_priority_header():
    session = FakeSession([200])
    send_one(session, "http://lb.test/api", False)
    assert session.calls[0][1] == {}


@pytest.mark.parametrize("status, expected", [(200, True), (499, True), (500, False), (503, False)])
def test_send_one_counts_server_errors_as_failures(status, expected):
    assert send_one(FakeSession([status]), "http://lb.test/api", False) is expected


def test_send_one_connection_error_is_failure():
    session = FakeSession(error=requests.ConnectionError("refused"))
    assert send_one(session, "http://lb.test/api", True) is False


def test_strike_toggles_state_back_and_forth(capsys):
    session = FakeSession([200])
    monkey = ChaosMonkey(["http://a.test/toggle"], ["Alpha"], session=session)
    assert monkey.strike() == ("Alpha", False)
    assert "FAILING (HTTP 500)" in capsys.readouterr().out
    assert monkey.strike() == ("Alpha", True)
    assert "HEALTHY" in capsys.readouterr().out
    assert [call[0] for call in session.calls] == ["http://a.test/toggle"] * 2


def test_strike_failure_leaves_state_unchanged(capsys):
    session = FakeSession(error=requests.ConnectionError("down"))
    monkey = ChaosMonkey(["http://a.test/toggle"], ["Alpha"], session=session)
    assert monkey.strike() is None
    assert monkey.healthy == [True]
    assert "Failed to toggle Alpha" in capsys.readouterr().out


def test_strike_only_touches_chosen_server():
    session = FakeSession([200])
    urls = ["http://a.test/toggle", "http://b.test/toggle"]
    monkey = ChaosMonkey(urls, ["Alpha", "Beta"], session=session)
    name, healthy = monkey.strike()
    index = ["Alpha", "Beta"].index(name)
    assert session.calls[0][0] == urls[index]
    assert monkey.healthy[index] is healthy is False
    assert monkey.healthy[1 - index] is True


def test_run_strikes_until_stopped():
    stop = threading.Event()

    def on_call(count):
        if count >= 2:
            stop.set()

    session = FakeSession([200], on_call=on_call)
    monkey = ChaosMonkey(["http://a.test/toggle"], ["Alpha"], session=session)
    monkey.run(0.001, stop)
    assert len(session.calls) == 2
    assert monkey.healthy == [True]


def test_run_with_stop_already_set_does_nothing():
    stop = threading.Event()
    stop.set()
    session = FakeSession([200])
    ChaosMonkey(["http://a.test/toggle"], ["Alpha"], session=session).run(0.001, stop)
    assert session.calls == []


def test_mismatched_names_rejected():
    with pytest.raises(ValueError):
        ChaosMonkey(["http://a.test/toggle"], ["Alpha", "Beta"])


def test_stress_test_counts_every_request():
    stop = threading.Event()

    def on_request(count):
        if count >= 5:
            stop.set()

    recorder = _Recorder(200, on_request)
    counters = StressCounters()
    with _serve(recorder) as url:
        stress_test(url, 2, counters, stop)
    assert counters.total >= 5
    assert counters.failed == 0
    assert all(priority in (None, "HIGH") for priority in recorder.priorities)


def test_stress_test_counts_failures():
    stop = threading.Event()

    def on_request(count):
        if count >= 3:
            stop.set()

    recorder = _Recorder(500, on_request)
    counters = StressCounters()
    with _serve(recorder) as url:
        stress_test(url, 1, counters, stop)
    assert counters.total >= 3
    assert counters.failed == counters.total


def test_stress_test_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        stress_test("http://lb.test/api", 0, StressCounters(), threading.Event())