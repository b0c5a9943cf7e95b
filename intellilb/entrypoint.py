"""Named HTTP entrypoints, each served on its own thread with its own middleware chain."""

from __future__ import annotations

import logging
import socketserver
import ssl
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer

from intellilb.config import EntryPointConfig

__all__ = [
    "MiddlewareError",
    "EntryPoint",
    "Manager",
    "chain",
    "resolve_middlewares",
]

_log = logging.getLogger(__name__)

WSGIApp = Callable[..., Iterable[bytes]]
Middleware = Callable[[WSGIApp], WSGIApp]


class MiddlewareError(ValueError):
    """Raised when a named middleware cannot be built."""


class _MiddlewareBuilder(Protocol):
    def build(self, name: str) -> Middleware: ...


def chain(*middlewares: Middleware) -> Middleware:
    """Compose middlewares so that the first one listed sees the request first."""

    def apply(app: WSGIApp) -> WSGIApp:
        for middleware in reversed(middlewares):
            app = middleware(app)
        return app

    return apply


def resolve_middlewares(
    names: Optional[Iterable[str]], builder: _MiddlewareBuilder
) -> List[Middleware]:
    """Build each named middleware with ``builder``, in order."""
    resolved: List[Middleware] = []
    for name in names or ():
        try:
            middleware = builder.build(name)
        except Exception as exc:
            raise MiddlewareError(f"failed to build middleware {name!r}: {exc}") from exc
        resolved.append(middleware)
    return resolved


class _RequestHandler(WSGIRequestHandler):
    timeout = 60

    def log_message(self, format: str, *args: Any) -> None:
        _log.debug("[ENTRYPOINT] %s - %s", self.address_string(), format % args)


class _ThreadingServer(socketserver.ThreadingMixIn, WSGIServer):
    daemon_threads = False
    block_on_close = True

    def server_bind(self) -> None:
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = host or "localhost"
        self.server_port = port
        self.setup_environ()


def _split_address(address: str) -> Tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"invalid listen address {address!r}")
    try:
        number = int(port)
    except ValueError:
        raise ValueError(f"invalid port in listen address {address!r}") from None
    return host.strip("[]"), number


class EntryPoint:
    """One listening address serving a WSGI handler wrapped in its middlewares."""

    def __init__(
        self,
        name: str,
        config: EntryPointConfig,
        handler: WSGIApp,
        middlewares: Optional[Iterable[Middleware]] = None,
    ) -> None:
        middlewares = list(middlewares or ())
        if middlewares:
            handler = chain(*middlewares)(handler)
        self.name = name
        self.config = config
        self.handler = handler
        self._lock = threading.Lock()
        self._started = False
        self._server: Optional[_ThreadingServer] = None
        self._done = threading.Event()
        self._error: Optional[BaseException] = None

    @property
    def port(self) -> Optional[int]:
        """The port actually bound, once serving."""
        return self._server.server_address[1] if self._server is not None else None

    def _tls_context(self) -> ssl.SSLContext:
        tls = self.config.tls
        cert_file = (tls.cert_file if tls else "") or "server.crt"
        key_file = (tls.key_file if tls else "") or "server.key"
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(cert_file, key_file)
        return context

    def start(self) -> None:
        """Begin serving on a background thread; a bind failure is reported by ``wait``."""
        with self._lock:
            if self._started:
                raise RuntimeError(f"entrypoint {self.name} already started")
            self._started = True
        _log.info(
            "[ENTRYPOINT] %s starting on %s (protocol: %s)",
            self.name, self.config.address, self.config.protocol,
        )
        try:
            server = _ThreadingServer(_split_address(self.config.address), _RequestHandler)
        except (OSError, ValueError) as exc:
            self._fail(exc)
            return
        server.set_app(self.handler)
        if self.config.protocol == "https" and self.config.tls is not None:
            try:
                server.socket = self._tls_context().wrap_socket(server.socket, server_side=True)
            except OSError as exc:
                server.server_close()
                self._fail(exc)
                return
        self._server = server
        thread = threading.Thread(target=self._serve, name=f"entrypoint-{self.name}", daemon=True)
        thread.start()

    def _fail(self, exc: BaseException) -> None:
        _log.error("[ENTRYPOINT] %s failed: %s", self.name, exc)
        self._error = exc
        self._done.set()

    def _serve(self) -> None:
        assert self._server is not None
        try:
            self._server.serve_forever()
        except Exception as exc:
            _log.error("[ENTRYPOINT] %s failed: %s", self.name, exc)
            self._error = exc
        finally:
            self._done.set()

    @staticmethod
    def _close(server: _ThreadingServer) -> None:
        server.shutdown()
        server.server_close()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop accepting connections and wait for in-flight requests to finish."""
        _log.info("[ENTRYPOINT] %s shutting down...", self.name)
        server = self._server
        if server is not None:
            closer = threading.Thread(target=self._close, args=(server,), daemon=True)
            closer.start()
            closer.join(timeout)
            if closer.is_alive():
                _log.warning("[ENTRYPOINT] %s forced shutdown: timed out", self.name)
                raise TimeoutError(f"entrypoint {self.name}: shutdown timed out")
        _log.info("[ENTRYPOINT] %s shutdown complete", self.name)

    def wait(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        """Block until serving ends; return the error that ended it, or None after a clean shutdown."""
        if not self._done.wait(timeout):
            raise TimeoutError(f"entrypoint {self.name} is still serving")
        return self._error


class Manager:
    """Keeps a set of named entrypoints and starts or stops them together."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entrypoints: Dict[str, EntryPoint] = {}

    def register(self, entrypoint: EntryPoint) -> None:
        """Add an entrypoint, replacing any with the same name."""
        with self._lock:
            self._entrypoints[entrypoint.name] = entrypoint

    def get(self, name: str) -> Optional[EntryPoint]:
        """Return the named entrypoint, or None."""
        with self._lock:
            return self._entrypoints.get(name)

    def names(self) -> List[str]:
        """Return the registered names, sorted."""
        with self._lock:
            return sorted(self._entrypoints)

    def start_all(self) -> None:
        """Start every entrypoint; one failing does not affect the others."""
        with self._lock:
            entrypoints = list(self._entrypoints.values())
        for entrypoint in entrypoints:
            entrypoint.start()
        _log.info("[ENTRYPOINT] Started %d entrypoints", len(entrypoints))

    def shutdown_all(self, timeout: Optional[float] = None) -> None:
        """Shut every entrypoint down concurrently; raise RuntimeError listing any failures."""
        with self._lock:
            entrypoints = list(self._entrypoints.items())
        with ThreadPoolExecutor(max_workers=max(1, len(entrypoints))) as pool:
            futures = {name: pool.submit(ep.shutdown, timeout) for name, ep in entrypoints}
        errors = [
            f"entrypoint {name}: {future.exception()}"
            for name, future in futures.items()
            if future.exception() is not None
        ]
        if errors:
            raise RuntimeError("shutdown errors: " + "; ".join(errors))
        _log.info("[ENTRYPOINT] All entrypoints shut down successfully")