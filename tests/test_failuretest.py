import logging
import threading
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from intellilb.failuretest import RecoveryTracker, run_failure_test


class _Recorder:
    def __init__(self, statuses, on_request=None):
        self.statuses = list(statuses)
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
            status = recorder.statuses[min(count - 1, len(recorder.statuses) - 1)]
            self.send_response(status)
            self.send_header("X-Handled-By", "Alpha")
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
        yield f"http://127.0.0.1:{server.server_address[1]}/api/test"
    finally:
        server.shutdown()
        server.server_close()


def test_tracker_detects_failure_and_measures_recovery():
    tracker = RecoveryTracker()
    assert tracker.observe(200, 0.0) is None
    assert not tracker.failure_started

    assert tracker.observe(0, 1.0) is None
    assert tracker.failure_started
    assert tracker.failure_detected_at == 1.0

    assert tracker.observe(500, 2.0) is None
    assert tracker.failure_detected_at == 1.0

    assert tracker.observe(200, 3.5) == 2.5
    assert not tracker.failure_started
    assert tracker.observe(200, 4.0) is None


def test_tracker_healthy_stream_never_fails():
    tracker = RecoveryTracker()
    assert [tracker.observe(200, float(t)) for t in range(5)] == [None] * 5
    assert not tracker.failure_started
    assert tracker.last_status == 200


def test_tracker_second_outage_measured_from_its_own_start():
    tracker = RecoveryTracker()
    tracker.observe(503, 10.0)
    tracker.observe(200, 11.0)
    tracker.observe(503, 20.0)
    assert tracker.observe(200, 20.25) == 0.25


def test_run_logs_detection_and_recovery(caplog):
    caplog.set_level(logging.INFO, logger="intellilb.failuretest")
    stop = threading.Event()

    def on_request(count):
        if count >= 4:
            stop.set()

    recorder = _Recorder([200, 500, 503, 200], on_request)
    with _serve(recorder) as url:
        tracker = run_failure_test(url, stop)
    assert len(recorder.priorities) >= 4
    assert all(priority == "LOW" for priority in recorder.priorities)
    assert not tracker.failure_started
    assert tracker.last_status == 200
    text = caplog.text
    assert "[FAILURE DETECTED] Request #1 failed (status 500)" in text
    assert "[RECOVERY COMPLETE] Server: Alpha" in text


def test_run_stops_when_event_set():
    stop = threading.Event()
    stop.set()
    recorder = _Recorder([200])
    with _serve(recorder) as url:
        tracker = run_failure_test(url, stop)
    assert len(recorder.priorities) == 1
    assert tracker.last_status == 200


def test_run_unreachable_server_is_status_zero():
    stop = threading.Event()
    stop.set()
    tracker = run_failure_test("http://127.0.0.1:9/api/test", stop)
    assert tracker.last_status == 0
    assert tracker.failure_started