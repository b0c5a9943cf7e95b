"""A demo backend server with adjustable delay and a chaos failure toggle."""

from __future__ import annotations

import json
import logging
import random
import socketserver
import sys
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

__all__ = ["Backend", "serve", "main"]

_log = logging.getLogger(__name__)

_FAILURE_TEXT = "Simulated Chaos Failure"

Headers = List[Tuple[str, str]]


class Backend:
    """WSGI application answering /health, /toggle and every other path."""

    def __init__(
        self,
        port: int = 8001,
        delay_ms: int = 10,
        name: str = "Server",
        *,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.port = port
        self.delay_ms = delay_ms
        self.name = name
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._count = 0
        self._failing = False

    @property
    def failing(self) -> bool:
        """Whether chaos mode is on."""
        with self._lock:
            return self._failing

    @property
    def requests_served(self) -> int:
        """Number of API requests answered successfully."""
        with self._lock:
            return self._count

    def toggle(self) -> bool:
        """Flip chaos mode and return the new failing state."""
        with self._lock:
            self._failing = not self._failing
            failing = self._failing
        _log.info(
            "[%s] Chaos toggle: Server is now %s", self.name, "FAILING" if failing else "HEALTHY"
        )
        return failing

    def __call__(self, environ: Dict[str, Any], start_response: Callable) -> Iterable[bytes]:
        path = environ.get("PATH_INFO") or "/"
        if path == "/health":
            return self._health(start_response)
        if path == "/toggle":
            return self._toggle(start_response)
        return self._api(path, start_response)

    @staticmethod
    def _send(start_response: Callable, status: str, headers: Headers, body: bytes) -> List[bytes]:
        start_response(status, headers + [("Content-Length", str(len(body)))])
        return [body]

    def _json(self, start_response: Callable, payload: Dict[str, Any], extra: Headers) -> List[bytes]:
        body = (json.dumps(payload, sort_keys=True, separators=(",", ":")) + "\n").encode()
        return self._send(
            start_response, "200 OK", [("Content-Type", "application/json")] + extra, body
        )

    def _failure(self, start_response: Callable) -> List[bytes]:
        headers = [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
        ]
        return self._send(
            start_response, "500 Internal Server Error", headers, f"{_FAILURE_TEXT}\n".encode()
        )

    def _toggle(self, start_response: Callable) -> List[bytes]:
        state = "FAILING" if self.toggle() else "HEALTHY"
        return self._send(
            start_response,
            "200 OK",
            [("Content-Type", "text/plain; charset=utf-8")],
            f"Server toggled to {state}\n".encode(),
        )

    def _health(self, start_response: Callable) -> List[bytes]:
        with self._lock:
            failing, count = self._failing, self._count
        if failing:
            return self._failure(start_response)
        payload = {"status": "UP", "port": self.port, "name": self.name, "requests_served": count}
        return self._json(start_response, payload, [])

    def _api(self, path: str, start_response: Callable) -> List[bytes]:
        jitter = self._rng.randrange(self.delay_ms // 2 + 1) if self.delay_ms > 0 else 0
        delay = self.delay_ms + jitter
        self._sleep(delay / 1000)
        with self._lock:
            if self._failing:
                failing = True
            else:
                failing = False
                self._count += 1
                count = self._count
        if failing:
            return self._failure(start_response)
        payload = {
            "handled_by": self.name,
            "port": self.port,
            "request_count": count,
            "delay_ms": delay,
            "path": path,
        }
        return self._json(start_response, payload, [("X-Server-Name", self.name)])


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        _log.debug("%s - %s", self.address_string(), format % args)


class _Server(socketserver.ThreadingMixIn, WSGIServer):
    daemon_threads = True

    def server_bind(self) -> None:
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = host or "localhost"
        self.server_port = port
        self.setup_environ()


def serve(backend: Backend) -> None:
    """Serve ``backend`` on all interfaces at its port until interrupted."""
    with make_server(
        "", backend.port, backend, server_class=_Server, handler_class=_QuietHandler
    ) as httpd:
        _log.info(
            "[%s] Starting on :%d (base delay: %dms)", backend.name, backend.port, backend.delay_ms
        )
        httpd.serve_forever()


def _atoi(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run a backend: ``[port [delay_ms [name]]]``."""
    args = list(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    backend = Backend()
    if len(args) > 0:
        backend.port = _atoi(args[0])
    if len(args) > 1:
        backend.delay_ms = _atoi(args[1])
    if len(args) > 2:
        backend.name = args[2]
    try:
        serve(backend)
    except OSError as exc:
        _log.error("[%s] %s", backend.name, exc)
        return 1
    except KeyboardInterrupt:
        pass
    return 0