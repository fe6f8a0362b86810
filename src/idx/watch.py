"""Manifest watcher: debounced re-reconciliation on manifest changes."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from idx.manifests.discover import MANIFEST_FILES, SKIP_DIRS

logger = logging.getLogger(__name__)

ReconcileCallback = Callable[[], object]


def _in_skipped_dir(path: Path, root: Path) -> bool:
    try:
        parts = path.relative_to(root).parts[:-1]
    except ValueError:
        return False
    return any(part in SKIP_DIRS for part in parts)


class ManifestEventHandler(PatternMatchingEventHandler):
    """Forward changes to manifest and lock files to the watcher."""

    def __init__(self, on_change: Callable[[Path], None]) -> None:
        super().__init__(
            patterns=[f"*/{name}" for name in MANIFEST_FILES],
            ignore_directories=True,
            case_sensitive=True,
        )
        self._on_change = on_change

    def on_created(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self._on_change(Path(str(event.src_path)))

    def on_modified(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self._on_change(Path(str(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self._on_change(Path(str(event.dest_path)))

    def on_deleted(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        self._on_change(Path(str(event.src_path)))


class ManifestWatcher:
    """Runs *reconcile* once manifests have been quiet for *debounce* seconds.

    Bursts of events collapse into one run. An event that arrives while a
    run is in progress schedules exactly one follow-up run after it drains;
    runs never overlap.

    Args:
        root: Project root, watched recursively.
        reconcile: Called on the timer thread; exceptions are logged and the
            watcher keeps going.
        debounce: Quiet period in seconds.
    """

    def __init__(self, root: Path, reconcile: ReconcileCallback, debounce: float = 2.0) -> None:
        self.root = Path(root).resolve()
        self.debounce = debounce
        self._reconcile = reconcile
        self._observer: BaseObserver = Observer()
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._running = False
        self._follow_up = False
        self._started = False
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._started

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._observer.schedule(
                ManifestEventHandler(self.notify), str(self.root), recursive=True
            )
            self._observer.start()
            self._started = True
        logger.info("watching manifests under %s (debounce %.1fs)", self.root, self.debounce)

    def stop(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not self._started:
                return
            self._started = False
        self._observer.stop()
        self._observer.join(timeout=5)
        logger.info("stopped watching %s", self.root)

    def notify(self, path: Path | None = None) -> None:
        """Record a manifest change and (re)start the debounce timer."""
        if path is not None:
            if _in_skipped_dir(path, self.root):
                return
            logger.debug("manifest changed: %s", path)
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
            if self._running:
                self._follow_up = True
                return
            self._running = True
        while True:
            try:
                self._reconcile()
            except Exception:
                logger.exception("reconciliation after manifest change failed")
            with self._lock:
                self.runs += 1
                if not self._follow_up:
                    self._running = False
                    return
                self._follow_up = False
