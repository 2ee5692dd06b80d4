"""Recursive directory tree watcher on top of a flat notifier."""

import logging
import os
import queue
import threading
from typing import Iterator, List, Optional, Union

from .config import TreeWatcherConfig
from .exceptions import NotifierRegisterError, NotifierRuntimeError, TreeWatcherClosedError
from .models import RawEvent
from .notifier import Notifier, create_notifier
from .walk import iter_subdirectories

logger = logging.getLogger(__name__)


class TreeWatcher:
    """
    Watches every directory of one or more trees and keeps coverage in sync
    with the live file system.

    Raw events from the notifier pass through a single dispatch thread.
    When an event announces a new directory, that directory's whole subtree
    is registered before the event is published on `events`, so nothing
    written inside the new directory can slip past unobserved. Notifier
    errors are published on `errors`.

    Both outbound channels are bounded queues. A client that stops reading
    stalls the dispatch thread rather than losing events.
    """

    def __init__(
        self,
        config: Optional[TreeWatcherConfig] = None,
        notifier: Optional[Notifier] = None,
    ):
        """
        Create the notifier and start the dispatch thread.

        Args:
            config: Tree watcher configuration
            notifier: Notifier to use instead of the platform default

        Raises:
            NotifierInitError: If the notifier cannot be created
        """
        self.config = config or TreeWatcherConfig()
        self._notifier = notifier if notifier is not None else create_notifier(self.config)

        self.events: "queue.Queue[RawEvent]" = queue.Queue(maxsize=self.config.queue_size)
        self.errors: "queue.Queue[NotifierRuntimeError]" = queue.Queue(maxsize=self.config.queue_size)

        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._closed = False

        self._thread = threading.Thread(target=self._dispatch_loop, name="TreeWatcherDispatch")
        self._thread.daemon = True
        self._thread.start()

    def watch_tree(self, path: Union[str, os.PathLike]) -> None:
        """
        Watch a directory and every directory below it.

        Best effort: directories that cannot be listed or registered are
        skipped and the rest of the tree is still covered. Safe to call
        again on a tree that is already watched.

        Args:
            path: Root of the tree to watch

        Raises:
            TreeWatcherClosedError: If the watcher has been closed
        """
        self._check_open()
        root = os.path.abspath(os.fspath(path))
        count = self._watch_tree(root)
        logger.info(f"Watching tree {root} ({count} new directories)")

    def watch(self, path: Union[str, os.PathLike]) -> None:
        """
        Watch a single directory, without recursion.

        Args:
            path: Directory to watch

        Raises:
            NotifierRegisterError: If the notifier cannot watch the path
            TreeWatcherClosedError: If the watcher has been closed
        """
        self._check_open()
        self._notifier.register(os.path.abspath(os.fspath(path)))

    def _watch_tree(self, root: str) -> int:
        """Register root and its subdirectories, returning how many watches are new."""
        count = int(self._register_quietly(root))
        for directory in iter_subdirectories(root, follow_symlinks=self.config.follow_symlinks):
            count += self._register_quietly(directory)
        return count

    def _register_quietly(self, path: str) -> bool:
        """Register one directory as part of a walk, swallowing failures."""
        try:
            return self._notifier.register(path)
        except NotifierRegisterError as e:
            logger.debug(f"Skipping {path}: {e}")
            return False

    def _check_open(self) -> None:
        if self._closed:
            raise TreeWatcherClosedError("Tree watcher is closed")

    def _is_directory(self, path: str) -> bool:
        """Stat a freshly created path. A path that is already gone is not a directory."""
        if not self.config.follow_symlinks and os.path.islink(path):
            return False
        return os.path.isdir(path)

    def _dispatch_loop(self) -> None:
        """Worker loop that extends coverage and republishes notifier output."""
        logger.debug("Dispatch loop started")
        poll_interval = self.config.poll_interval

        while not self._stop_event.is_set():
            try:
                try:
                    error = self._notifier.errors.get_nowait()
                except queue.Empty:
                    pass
                else:
                    self._handle_error(error)
                    continue

                try:
                    event = self._notifier.events.get(timeout=poll_interval)
                except queue.Empty:
                    continue
                self._handle_event(event)
            except Exception:
                logger.exception("Unexpected error in dispatch loop")

        logger.debug("Dispatch loop stopped")

    def _handle_event(self, event: RawEvent) -> None:
        # Register before publishing: once the client sees the CREATE, the
        # new directory is already covered.
        if event.is_create and self._is_directory(event.path):
            count = self._watch_tree(event.path)
            logger.debug(f"New directory {event.path} ({count} new watches)")
        self._publish(self.events, event)

    def _handle_error(self, error: NotifierRuntimeError) -> None:
        logger.warning(f"Notifier error: {error}")
        self._publish(self.errors, error)

    def _publish(self, channel: queue.Queue, item) -> bool:
        """
        Blocking send that only gives up on shutdown.

        Returns:
            True if the item was queued, False if it was dropped because
            the watcher is stopping
        """
        while not self._stop_event.is_set():
            try:
                channel.put(item, timeout=self.config.poll_interval)
                return True
            except queue.Full:
                continue
        logger.debug(f"Dropped on shutdown: {item}")
        return False

    def close(self) -> None:
        """
        Stop watching and stop the dispatch thread.

        Items already in `events` and `errors` stay readable. Calling
        close() again has no effect.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._notifier.close()
        self._stop_event.set()

        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.config.shutdown_timeout)

        logger.info("Tree watcher closed")

    @property
    def is_running(self) -> bool:
        """Check if the dispatch thread is running."""
        return self._thread.is_alive() and not self._stop_event.is_set()

    def get_pending_events(self, max_count: int = 100) -> List[RawEvent]:
        """
        Get pending events without blocking.

        Args:
            max_count: Maximum number of events to return

        Returns:
            List of pending events, oldest first
        """
        return self._drain(self.events, max_count)

    def get_pending_errors(self, max_count: int = 100) -> List[NotifierRuntimeError]:
        """
        Get pending notifier errors without blocking.

        Args:
            max_count: Maximum number of errors to return

        Returns:
            List of pending errors, oldest first
        """
        return self._drain(self.errors, max_count)

    @staticmethod
    def _drain(channel: queue.Queue, max_count: int) -> list:
        items = []
        while len(items) < max_count:
            try:
                items.append(channel.get_nowait())
            except queue.Empty:
                break
        return items

    def iter_events(self, timeout: Optional[float] = None) -> Iterator[RawEvent]:
        """
        Iterate over events as they arrive.

        Ends once the watcher is closed and no queued events remain, or
        when no event arrives within `timeout` seconds.

        Args:
            timeout: Seconds to wait for each event (None waits forever)

        Yields:
            RawEvent objects
        """
        waited = 0.0
        poll_interval = self.config.poll_interval

        while True:
            try:
                event = self.events.get(timeout=poll_interval)
            except queue.Empty:
                if self._closed:
                    return
                waited += poll_interval
                if timeout is not None and waited >= timeout:
                    return
                continue
            waited = 0.0
            yield event

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
