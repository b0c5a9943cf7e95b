"""Watches a configuration file and calls back, debounced, when it changes."""

from __future__ import annotations

import errno
import logging
import os
import threading
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

__all__ = ["Watcher"]

_log = logging.getLogger(__name__)

ReloadFunc = Callable[[str], Any]

_RELEVANT = {"modified", "created", "moved", "deleted"}


def _canonical(path: Any) -> str:
    return os.path.normcase(os.path.realpath(os.fsdecode(path)))


class _EventHandler(FileSystemEventHandler):
    def __init__(self, target: str, trigger: Callable[[], None]) -> None:
        super().__init__()
        self._target = target
        self._trigger = trigger

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _RELEVANT:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(path and _canonical(path) == self._target for path in paths):
            self._trigger()


class Watcher:
    """Calls ``on_reload(path)`` once the file has been quiet for ``debounce`` seconds.

    Editors that save by writing, renaming or deleting and recreating the file
    are handled, since the containing directory is watched.
    """

    def __init__(self, path: str, on_reload: ReloadFunc, *, debounce: float = 0.3) -> None:
        self.path = os.fspath(path)
        if not os.path.isfile(self.path):
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), self.path)
        self._on_reload = on_reload
        self._debounce = debounce
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()
        self._reload_lock = threading.Lock()
        self._stopped = False

        target = _canonical(self.path)
        self._observer = Observer()
        self._observer.schedule(
            _EventHandler(target, self._schedule), os.path.dirname(target), recursive=False
        )
        self._observer.start()
        _log.info("[HOTRELOAD] Watching config file: %s", self.path)

    def _schedule(self) -> None:
        with self._timer_lock:
            if self._stopped:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._reload_lock:
            _log.info("[HOTRELOAD] Config file changed, reloading: %s", self.path)
            try:
                self._on_reload(self.path)
            except Exception as exc:
                _log.error("[HOTRELOAD] Reload failed: %s", exc)
            else:
                _log.info("[HOTRELOAD] Config reloaded successfully")

    def stop(self) -> None:
        """Stop watching; a pending reload is cancelled."""
        with self._timer_lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._observer.stop()
        self._observer.join()

    def __enter__(self) -> "Watcher":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()