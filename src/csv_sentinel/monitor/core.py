"""Change monitor: raw filesystem notifications in, ChangeEvents out.

A watchdog Observer watches the parent directory of every watched file and
forwards file notifications into the asyncio loop with
``call_soon_threadsafe``. Each watched path owns a debounce timer; every new
notification resets it. When the timer fires, the path is classified against
its baseline under a per-path lock, so classification for one path is
strictly sequential while different paths proceed independently.

Classification (first match wins):
    1. path unreachable, baseline existed  -> deleted (renamed if a move
       carried it to a known destination)
    2. no baseline                         -> added
    3. state differs and a move was seen   -> renamed
    4. state differs                       -> changed
    5. otherwise                           -> nothing is emitted

"State differs" compares content digests when ``use_checksum`` is on and
size/mtime otherwise.

Example:
--------
>>> monitor = ChangeMonitor(MonitorConfig(debounce_ms=250))
>>> monitor.subscribe(lambda event: print(event.kind, event.path))
>>> await monitor.watch("data/bookstores.csv")
>>> ...
>>> await monitor.close()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import inspect
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config import MonitorConfig
from ..exceptions import WatchError
from ..notifier import Notifier
from ..utils import file_hash, utc_now
from .models import ChangeEvent, ChangeKind, FileBaseline, RawKind

__all__ = ["ChangeMonitor", "ChangeHandler", "ErrorHandler", "normalize_path"]

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[str, Exception], Union[None, Awaitable[None]]]


def normalize_path(path: Path | str) -> str:
    return str(Path(path).expanduser().resolve())


@dataclass
class _WatchState:
    path: str
    baseline: Optional[FileBaseline] = None
    timer: Optional[asyncio.TimerHandle] = None
    moved_seen: bool = False
    destination: Optional[str] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class _DirectoryEventHandler(FileSystemEventHandler):
    """Forwards watchdog notifications for one directory into the event loop.

    Runs on the observer thread; it does no filtering beyond dropping
    directory events, so all state stays on the loop thread.
    """

    def __init__(self, monitor: "ChangeMonitor", loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._monitor = monitor
        self._loop = loop

    def _push(self, path: str, kind: RawKind, destination: str | None = None) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._monitor._on_raw_notification, path, kind, destination)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(event.src_path, "created")

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(event.src_path, "modified")

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(event.src_path, "deleted")

    def on_moved(self, event: FileSystemEvent) -> None:
        # Only the source was renamed; a file moved onto a watched path
        # (atomic save) replaced its content.
        if not event.is_directory:
            self._push(event.src_path, "moved", event.dest_path)
            self._push(event.dest_path, "created")


class ChangeMonitor:
    """Coalesces noisy filesystem notifications into one ChangeEvent per disturbance."""

    def __init__(self, config: MonitorConfig | None = None, notifier: Notifier | None = None):
        self.config = config or MonitorConfig()
        self.notifier = notifier or Notifier()
        self._watched: dict[str, _WatchState] = {}
        self._handlers: list[ChangeHandler] = []
        self._error_handlers: list[ErrorHandler] = []
        self._tasks: set[asyncio.Task] = set()
        self._observer: Any = None
        self._scheduled: dict[str, Any] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self.last_activity: datetime | None = None

    @property
    def debounce_seconds(self) -> float:
        return self.config.debounce_ms / 1000.0

    # =========================================================================
    # Subscription
    # =========================================================================

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        """Register a ChangeEvent consumer; returns an unsubscribe function."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def subscribe_errors(self, handler: ErrorHandler) -> Callable[[], None]:
        """Register a consumer for watcher-level I/O errors."""
        self._error_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._error_handlers:
                self._error_handlers.remove(handler)

        return unsubscribe

    # =========================================================================
    # Watch lifecycle
    # =========================================================================

    def is_watching(self, path: Path | str) -> bool:
        return normalize_path(path) in self._watched

    @property
    def watched_paths(self) -> list[str]:
        return sorted(self._watched)

    async def watch(self, path: Path | str) -> None:
        """Begin observing a file and record its baseline.

        A path that does not exist yet is accepted and awaits creation.
        Watching an already watched path is a no-op.

        Raises:
            WatchError: If the parent directory is unreachable or unreadable,
                or the existing file cannot be read for its baseline
        """
        self._loop = asyncio.get_running_loop()
        key = normalize_path(path)
        if key in self._watched:
            logger.debug(f"Already watching {key}")
            return

        parent = Path(key).parent
        if not parent.is_dir():
            raise WatchError(f"Cannot watch {key}: directory {parent} is unreachable")
        if not os.access(parent, os.R_OK | os.X_OK):
            raise WatchError(f"Cannot watch {key}: permission denied on {parent}")

        try:
            baseline = await asyncio.to_thread(self._snapshot, key)
        except OSError as e:
            raise WatchError(f"Cannot watch {key}: {e}") from e

        if self.config.use_observer:
            try:
                self._schedule_directory(str(parent))
            except OSError as e:
                raise WatchError(f"Cannot observe {parent}: {e}") from e
        self._watched[key] = _WatchState(path=key, baseline=baseline)

        state = "awaiting creation" if baseline is None else f"{baseline.size} bytes"
        logger.info(f"Watching {key} ({state})")
        await self.notifier.publish("monitor.watch_started", path=key, exists=baseline is not None)

    async def unwatch(self, path: Path | str) -> bool:
        """Stop observing a path and cancel its pending debounce timer.

        Classification already in flight is allowed to finish. Idempotent.

        Returns:
            True if the path was being watched
        """
        key = normalize_path(path)
        state = self._watched.pop(key, None)
        if state is None:
            return False

        if state.timer is not None:
            state.timer.cancel()
            state.timer = None

        directory = str(Path(key).parent)
        if not any(str(Path(p).parent) == directory for p in self._watched):
            self._unschedule_directory(directory)

        logger.info(f"Stopped watching {key}")
        await self.notifier.publish("monitor.watch_stopped", path=key)
        return True

    async def unwatch_all(self) -> None:
        """Stop observing every path. Idempotent."""
        for key in list(self._watched):
            await self.unwatch(key)

    async def close(self) -> None:
        """Unwatch everything, stop the observer and wait for in-flight classification."""
        await self.unwatch_all()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, 5.0)
        self._scheduled.clear()

    # =========================================================================
    # Raw notifications and debounce
    # =========================================================================

    def notify(self, path: Path | str, kind: RawKind = "modified", destination: str | None = None) -> None:
        """Feed one raw notification for a watched path.

        Must be called on the event loop thread. The observer calls it through
        ``call_soon_threadsafe``; tests and pollers may call it directly.
        """
        self._on_raw_notification(str(path), kind, destination)

    def _on_raw_notification(self, path: str, kind: RawKind, destination: str | None = None) -> None:
        key = normalize_path(path)
        state = self._watched.get(key)
        if state is None:
            return

        self.last_activity = utc_now()
        if kind == "moved":
            state.moved_seen = True
            if destination is not None:
                state.destination = normalize_path(destination)

        if state.timer is not None:
            state.timer.cancel()
        loop = self._loop or asyncio.get_running_loop()
        state.timer = loop.call_later(self.debounce_seconds, self._fire, key)

    def _fire(self, key: str) -> None:
        state = self._watched.get(key)
        if state is None:
            return
        state.timer = None
        task = asyncio.ensure_future(self._classify(state))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until no debounce timer is pending and no classification is running."""
        while True:
            pending_timer = any(state.timer is not None for state in self._watched.values())
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            elif pending_timer:
                await asyncio.sleep(max(self.debounce_seconds / 4, 0.005))
            else:
                return

    # =========================================================================
    # Classification
    # =========================================================================

    def _snapshot(self, path: str) -> FileBaseline | None:
        """Current state of a path, or None if it does not exist."""
        try:
            stat = os.stat(path)
        except FileNotFoundError:
            return None
        digest = file_hash(path, self.config.checksum_algorithm) if self.config.use_checksum else None
        return FileBaseline(size=stat.st_size, mtime_ns=stat.st_mtime_ns, digest=digest)

    async def _classify(self, state: _WatchState) -> None:
        async with state.lock:
            moved = state.moved_seen
            destination = state.destination
            state.moved_seen = False
            state.destination = None

            try:
                current = await asyncio.to_thread(self._snapshot, state.path)
            except OSError as e:
                await self._report_error(state.path, e)
                return

            previous = state.baseline
            kind: ChangeKind | None
            if current is None:
                if previous is None:
                    kind = None
                elif moved and destination is not None:
                    kind = ChangeKind.RENAMED
                else:
                    kind = ChangeKind.DELETED
            elif previous is None:
                kind = ChangeKind.ADDED
            elif current.differs_from(previous, self.config.use_checksum):
                kind = ChangeKind.RENAMED if moved else ChangeKind.CHANGED
            else:
                kind = None

            state.baseline = current
            if kind is None:
                logger.debug(f"No net change for {state.path}; nothing emitted")
                return

            event = ChangeEvent(
                kind=kind,
                path=state.path,
                timestamp=utc_now(),
                previous_digest=previous.digest if previous else None,
                current_digest=current.digest if current else None,
                size=current.size if current else 0,
                modified_at=datetime.fromtimestamp(current.mtime_ns / 1e9, tz=timezone.utc) if current else None,
                destination=destination if kind is ChangeKind.RENAMED else None,
            )
            logger.info(f"{event.kind.value}: {event.path}")
            await self._emit(event)

    async def _emit(self, event: ChangeEvent) -> None:
        await self.notifier.publish("monitor.change", event=event)
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Change handler failed for {event.path}: {e}")

    async def _report_error(self, path: str, error: Exception) -> None:
        logger.error(f"Watcher error on {path}: {error}")
        await self.notifier.publish("monitor.error", path=path, error=str(error))
        for handler in list(self._error_handlers):
            try:
                result = handler(path, error)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error handler failed for {path}: {e}")

    # =========================================================================
    # Observer plumbing
    # =========================================================================

    def _schedule_directory(self, directory: str) -> None:
        if directory in self._scheduled:
            return
        if self._observer is None:
            self._observer = Observer()
            self._observer.daemon = True
            self._observer.start()
        handler = _DirectoryEventHandler(self, self._loop or asyncio.get_running_loop())
        self._scheduled[directory] = self._observer.schedule(handler, directory, recursive=False)
        logger.debug(f"Observer scheduled on {directory}")

    def _unschedule_directory(self, directory: str) -> None:
        watch = self._scheduled.pop(directory, None)
        if watch is not None and self._observer is not None:
            self._observer.unschedule(watch)
            logger.debug(f"Observer unscheduled from {directory}")

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> dict[str, Any]:
        """Watched paths, last raw activity and pending debounce count."""
        return {
            "watched_files": self.watched_paths,
            "last_activity": self.last_activity,
            "pending": sum(1 for state in self._watched.values() if state.timer is not None),
            "observer_running": self._observer is not None,
        }
