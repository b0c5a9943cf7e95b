import threading
import time
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from intellilb.dynamic import run_dynamic_load, target_rps


class _Recorder:
    def __init__(self):
        self.requests = []
        self.lock = threading.Lock()

    def count(self):
        with self.lock:
            return len(self.requests)


@contextmanager
def _serve(recorder):
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            with recorder.lock:
                recorder.requests.append((self.path, self.headers.get("X-Priority")))
            self.send_response(200)
            self.send_header("Content-Length", "0")
            self.end_headers()

        def log_message(self, format, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_target_rps_starts_at_midpoint():
    assert target_rps(0.0) == 15


def test_target_rps_stays_within_bounds():
    values = [target_rps(step * 0.1) for step in range(600)]
    assert min(values) >= 5
    assert max(values) <= 25


def test_target_rps_rises_then_falls():
    assert target_rps(3.0) > target_rps(0.0) > target_rps(18.0)


def test_stop_ends_after_first_burst(capsys):
    stop = threading.Event()
    stop.set()
    recorder = _Recorder()
    with _serve(recorder) as base:
        sent = run_dynamic_load(base + "/api/dynamic", stop)
        assert sent == target_rps(0.0)
        assert _wait_for(lambda: recorder.count() >= sent)
    assert "Target RPS: 15" in capsys.readouterr().out
    assert {path for path, _ in recorder.requests} == {"/api/dynamic"}
    assert all(priority in (None, "HIGH") for _, priority in recorder.requests)


def test_request_errors_are_ignored():
    stop = threading.Event()
    stop.set()
    sent = run_dynamic_load("http://127.0.0.1:9/api/dynamic", stop)
    assert sent == target_rps(0.0)