"""Flat, per-directory file system notifiers and the watchdog-backed implementation."""

import logging
import os
import queue
import stat
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple, Type, Union

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers.api import BaseObserver, EventEmitter, ObservedWatch
from watchdog.observers.polling import PollingEmitter
from watchdog.utils import platform

from .config import TreeWatcherConfig
from .exceptions import NotifierInitError, NotifierRegisterError, NotifierRuntimeError
from .models import EventKind, RawEvent

logger = logging.getLogger(__name__)

# Opened/closed events are not part of the change model.
WATCHED_EVENT_TYPES = [
    FileCreatedEvent,
    DirCreatedEvent,
    FileModifiedEvent,
    DirModifiedEvent,
    FileDeletedEvent,
    DirDeletedEvent,
    FileMovedEvent,
    DirMovedEvent,
]


class Notifier(ABC):
    """
    Watches individual directories, without recursion.

    Each registered directory reports changes to the entries directly
    inside it. Raw events and raw errors are delivered asynchronously on
    two unbounded queues, `events` and `errors`.
    """

    events: "queue.Queue[RawEvent]"
    errors: "queue.Queue[NotifierRuntimeError]"

    @abstractmethod
    def register(self, path: Union[str, os.PathLike]) -> bool:
        """
        Start monitoring the immediate children of a directory.

        Args:
            path: Directory to watch

        Returns:
            True if a new watch was started, False if the path was
            already being watched

        Raises:
            NotifierRegisterError: If the path cannot be watched
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Stop all monitoring. Pending raw events may be dropped."""
        pass

    @abstractmethod
    def watched_paths(self) -> FrozenSet[str]:
        """Return the registered directories. For diagnostics only."""
        pass


def check_directory(path: str) -> os.stat_result:
    """
    Stat a path that is about to be registered.

    Raises:
        NotifierRegisterError: If path is missing or not a directory
    """
    try:
        st = os.stat(path)
    except OSError as e:
        raise NotifierRegisterError(f"Cannot watch {path}: {e}", path=path, cause=e) from e
    if not stat.S_ISDIR(st.st_mode):
        raise NotifierRegisterError(f"Not a directory: {path}", path=path)
    return st


def is_under(path: str, root: str) -> bool:
    """Check whether path is root itself or lies below it."""
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def create_notifier(config: Optional[TreeWatcherConfig] = None) -> "Notifier":
    """
    Create the notifier for this platform.

    Linux gets InotifyNotifier, which keeps every watch on a single inotify
    instance. Other platforms, and polling on any platform, use
    WatchdogNotifier.

    Raises:
        NotifierInitError: If the notifier cannot be started
    """
    config = config or TreeWatcherConfig()
    if platform.is_linux() and not config.use_polling:
        from .inotify_notifier import InotifyNotifier
        return InotifyNotifier(config)
    return WatchdogNotifier(config)


def native_emitter_class() -> Type[EventEmitter]:
    """Pick the watchdog emitter for the current platform."""
    if platform.is_linux():
        from watchdog.observers.inotify import InotifyEmitter
        return InotifyEmitter
    if platform.is_darwin():
        from watchdog.observers.fsevents import FSEventsEmitter
        return FSEventsEmitter
    if platform.is_windows():
        from watchdog.observers.read_directory_changes import WindowsApiEmitter
        return WindowsApiEmitter
    if platform.is_bsd():
        from watchdog.observers.kqueue import KqueueEmitter
        return KqueueEmitter
    return PollingEmitter


def reporting_emitter_class(
    base: Type[EventEmitter],
    report: Callable[[NotifierRuntimeError], None],
) -> Type[EventEmitter]:
    """
    Wrap an emitter class so that a watch thread dying on an OS error is
    reported instead of only printed by the threading machinery.
    """

    class ReportingEmitter(base):
        def run(self):
            try:
                super().run()
            except OSError as e:
                path = os.fsdecode(self.watch.path)
                report(NotifierRuntimeError(f"Watch on {path} failed: {e}", path=path, cause=e))

    return ReportingEmitter


class WatchHandler(FileSystemEventHandler):
    """
    Handler that converts watchdog events for one watched directory to RawEvents.

    A retired handler drops everything. Its directory was deleted or renamed
    away, and anything its emitter still reports would carry stale paths.
    """

    def __init__(self, watched_path: str, callback: Callable[[RawEvent, "WatchHandler"], None]):
        super().__init__()
        self.watched_path = watched_path
        self.callback = callback
        self.active = True

    def _emit(self, kind: EventKind, path: Union[str, bytes], is_directory: bool) -> None:
        if not self.active:
            return
        self.callback(RawEvent(path=os.fsdecode(path), kind=kind, is_directory=is_directory), self)

    def on_created(self, event: FileSystemEvent):
        self._emit(EventKind.CREATE, event.src_path, event.is_directory)

    def on_deleted(self, event: FileSystemEvent):
        self._emit(EventKind.DELETE, event.src_path, event.is_directory)

    def on_modified(self, event: FileSystemEvent):
        # watchdog also reports the watched directory itself as modified
        # whenever an entry inside it changes.
        if event.is_directory and os.fsdecode(event.src_path) == self.watched_path:
            return
        self._emit(EventKind.MODIFY, event.src_path, event.is_directory)

    def on_moved(self, event: FileSystemEvent):
        self._emit(EventKind.RENAME, event.src_path, event.is_directory)
        self._emit(EventKind.CREATE, event.dest_path, event.is_directory)


def _identity(path: str) -> Optional[Tuple[int, int]]:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return (st.st_dev, st.st_ino) if stat.S_ISDIR(st.st_mode) else None


@dataclass
class _Watch:
    """A scheduled watchdog watch for one directory."""

    observed: ObservedWatch
    handler: WatchHandler
    identity: Tuple[int, int]


class WatchdogNotifier(Notifier):
    """
    Notifier backed by a single watchdog observer.

    Every registered directory gets its own non-recursive watch, driven by
    its own emitter thread. This is the notifier for polling and for
    platforms without inotify. On Linux each native watchdog watch opens a
    separate inotify instance, so large trees belong on InotifyNotifier.

    When a watched directory is reported deleted or renamed away, its
    handler and those of every watched directory below it are retired at
    once. The emitters themselves are unscheduled on the next register()
    or close(), outside the observer thread.
    """

    def __init__(self, config: Optional[TreeWatcherConfig] = None):
        """
        Create and start the observer.

        Args:
            config: Tree watcher configuration

        Raises:
            NotifierInitError: If the observer cannot be created or started
        """
        self.config = config or TreeWatcherConfig()
        self.events = queue.Queue()
        self.errors = queue.Queue()
        # Serializes register() and close(), the only callers into the
        # observer. Guards _scheduled.
        self._lock = threading.Lock()
        # Guards _watches and _retired. Also taken on the observer thread,
        # so it is never held while calling into the observer.
        self._state_lock = threading.Lock()
        self._watches: Dict[str, _Watch] = {}
        self._retired: List[_Watch] = []
        # Watch currently holding the observer's slot for each path.
        self._scheduled: Dict[str, _Watch] = {}
        self._closed = False

        try:
            base = PollingEmitter if self.config.use_polling else native_emitter_class()
            self._observer = BaseObserver(
                reporting_emitter_class(base, self.errors.put),
                timeout=self.config.notifier_timeout,
            )
            self._observer.start()
        except Exception as e:
            raise NotifierInitError(f"Cannot start file system observer: {e}", cause=e) from e

        logger.debug(f"Notifier started with {base.__name__}")

    def register(self, path: Union[str, os.PathLike]) -> bool:
        path = os.path.abspath(os.fspath(path))

        with self._lock:
            if self._closed:
                raise NotifierRegisterError(f"Notifier is closed: {path}", path=path)

            self._release_retired()

            st = check_directory(path)
            identity = (st.st_dev, st.st_ino)

            with self._state_lock:
                existing = self._watches.get(path)
            if existing is not None:
                if existing.identity == identity and self._is_live(existing.observed):
                    return False
                # Directory was replaced, or its emitter gave up on it.
                logger.debug(f"Replacing stale watch: {path}")
                with self._state_lock:
                    existing.handler.active = False
                    if self._watches.get(path) is existing:
                        del self._watches[path]

            # The observer shares one emitter per path, so whatever still
            # holds this path has to go before a fresh watch is scheduled.
            previous = self._scheduled.get(path)
            if previous is not None:
                self._unschedule(previous)

            handler = WatchHandler(path, self._on_event)
            try:
                observed = self._observer.schedule(
                    handler,
                    path,
                    recursive=False,
                    event_filter=WATCHED_EVENT_TYPES,
                )
            except OSError as e:
                self._observer.remove_handler_for_watch(
                    handler,
                    ObservedWatch(path, recursive=False, event_filter=WATCHED_EVENT_TYPES),
                )
                raise NotifierRegisterError(f"Cannot watch {path}: {e}", path=path, cause=e) from e

            watch = _Watch(observed, handler, identity)
            self._scheduled[path] = watch
            with self._state_lock:
                self._watches[path] = watch

        logger.debug(f"Watching {path}")
        return True

    def _on_event(self, event: RawEvent, handler: WatchHandler) -> None:
        """Queue a raw event, first retiring watches on directories that went away."""
        if event.path == handler.watched_path:
            # The watched directory itself is gone. Its parent's watch, when
            # there is one, has reported that already.
            if not self._retire_gone(event.path):
                return
            with self._state_lock:
                if os.path.dirname(event.path) in self._watches:
                    return
        elif event.is_delete or event.is_rename:
            self._retire_gone(event.path)
        self.events.put(event)

    def _retire_gone(self, path: str) -> bool:
        """
        Retire the watches on path and below it.

        Returns:
            False if path is still the watched directory, meaning the report
            predates its current watch
        """
        with self._state_lock:
            watch = self._watches.get(path)
            if watch is not None and _identity(path) == watch.identity:
                return False
            gone = [p for p in self._watches if is_under(p, path)]
            for p in gone:
                retired = self._watches.pop(p)
                retired.handler.active = False
                self._retired.append(retired)
        if gone:
            logger.debug(f"Retired {len(gone)} watch(es) under {path}")
        return True

    def _release_retired(self) -> None:
        with self._state_lock:
            retired, self._retired = self._retired, []
        for watch in retired:
            if self._scheduled.get(watch.handler.watched_path) is watch:
                self._unschedule(watch)

    def _unschedule(self, watch: _Watch) -> None:
        del self._scheduled[watch.handler.watched_path]
        self._observer.unschedule(watch.observed)

    def _is_live(self, observed: ObservedWatch) -> bool:
        """Check whether the emitter thread for a watch is still running."""
        return any(
            emitter.watch == observed and emitter.is_alive()
            for emitter in list(self._observer.emitters)
        )

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            with self._state_lock:
                count = len(self._watches)
                for watch in self._scheduled.values():
                    watch.handler.active = False
                self._watches.clear()
                self._retired.clear()
            self._scheduled.clear()

        self._observer.stop()
        if self._observer.is_alive():
            self._observer.join(timeout=self.config.shutdown_timeout)
        logger.debug(f"Notifier closed, released {count} watch(es)")

    def watched_paths(self) -> FrozenSet[str]:
        with self._state_lock:
            return frozenset(self._watches)

    def __len__(self) -> int:
        """Return the number of registered directories."""
        with self._state_lock:
            return len(self._watches)
