"""Linux notifier that keeps every directory watch on one inotify instance."""

import logging
import os
import queue
import threading
import time
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from inotify_simple import INotify, flags

from .config import TreeWatcherConfig
from .exceptions import NotifierInitError, NotifierRegisterError, NotifierRuntimeError
from .models import EventKind, RawEvent
from .notifier import Notifier, check_directory, is_under

logger = logging.getLogger(__name__)

WATCH_MASK = (
    flags.CREATE
    | flags.MODIFY
    | flags.DELETE
    | flags.MOVED_FROM
    | flags.MOVED_TO
    | flags.DELETE_SELF
    | flags.MOVE_SELF
)

# How long a MOVED_FROM waits for its MOVED_TO before it counts as a delete.
MOVE_PAIR_WINDOW = 0.05


class InotifyNotifier(Notifier):
    """
    Notifier backed by a single inotify file descriptor.

    Each registered directory costs one watch descriptor on a shared
    instance, so coverage is bounded by fs.inotify.max_user_watches rather
    than by the number of instances a user may open.

    A reader thread translates kernel events. When a watched directory is
    renamed inside the watched set, its watch descriptor and those below it
    are re-mapped to the new path, so later events carry the new names.
    Directories that leave the watched set lose their watches immediately.
    """

    def __init__(self, config: Optional[TreeWatcherConfig] = None):
        """
        Open the inotify instance and start the reader thread.

        Args:
            config: Tree watcher configuration

        Raises:
            NotifierInitError: If the inotify instance cannot be created
        """
        self.config = config or TreeWatcherConfig()
        self.events = queue.Queue()
        self.errors = queue.Queue()
        self._lock = threading.Lock()
        self._wd_for_path: Dict[str, int] = {}
        self._path_for_wd: Dict[int, str] = {}
        # MOVED_FROM halves waiting for a partner: cookie -> (path, is_dir, deadline)
        self._pending_moves: Dict[int, Tuple[str, bool, float]] = {}
        self._closed = False
        self._stop_event = threading.Event()

        try:
            self._inotify = INotify()
        except OSError as e:
            raise NotifierInitError(f"Cannot create inotify instance: {e}", cause=e) from e

        self._thread = threading.Thread(target=self._read_loop, name="InotifyReader")
        self._thread.daemon = True
        self._thread.start()

        logger.debug("Notifier started with inotify")

    def register(self, path: Union[str, os.PathLike]) -> bool:
        path = os.path.abspath(os.fspath(path))

        with self._lock:
            if self._closed:
                raise NotifierRegisterError(f"Notifier is closed: {path}", path=path)

            check_directory(path)
            try:
                wd = self._inotify.add_watch(path, WATCH_MASK)
            except OSError as e:
                raise NotifierRegisterError(f"Cannot watch {path}: {e}", path=path, cause=e) from e

            # The kernel hands back the existing descriptor for a directory
            # that is already watched.
            known = self._path_for_wd.get(wd)
            if known == path:
                return False
            if known is not None:
                logger.debug(f"{path} is already watched as {known}")
                return False

            stale_wd = self._wd_for_path.pop(path, None)
            if stale_wd is not None:
                # The directory at this path was replaced.
                logger.debug(f"Replacing stale watch: {path}")
                self._path_for_wd.pop(stale_wd, None)
                self._rm_watch(stale_wd)

            self._wd_for_path[path] = wd
            self._path_for_wd[wd] = path

        logger.debug(f"Watching {path}")
        return True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            count = len(self._wd_for_path)
            self._wd_for_path.clear()
            self._path_for_wd.clear()

        self._stop_event.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.config.shutdown_timeout)
        self._inotify.close()
        logger.debug(f"Notifier closed, released {count} watch(es)")

    def watched_paths(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._wd_for_path)

    def __len__(self) -> int:
        """Return the number of registered directories."""
        with self._lock:
            return len(self._wd_for_path)

    def _read_loop(self) -> None:
        """Worker loop that reads kernel events until close()."""
        poll_ms = int(self.config.poll_interval * 1000)

        while not self._stop_event.is_set():
            try:
                batch = self._inotify.read(timeout=self._read_timeout(poll_ms))
            except (OSError, ValueError) as e:
                if self._stop_event.is_set():
                    break
                self.errors.put(NotifierRuntimeError(f"Reading inotify events failed: {e}", cause=e))
                break

            with self._lock:
                if self._closed:
                    break
                raw = []
                for event in batch:
                    raw.extend(self._translate(event))
                raw.extend(self._expire_moves())

            for item in raw:
                if isinstance(item, NotifierRuntimeError):
                    self.errors.put(item)
                else:
                    self.events.put(item)

    def _read_timeout(self, poll_ms: int) -> int:
        with self._lock:
            if not self._pending_moves:
                return poll_ms
            deadline = min(d for _, _, d in self._pending_moves.values())
        return max(0, min(poll_ms, int((deadline - time.monotonic()) * 1000)))

    def _translate(self, event) -> List[Union[RawEvent, NotifierRuntimeError]]:
        """Turn one kernel event into raw events. Called with the lock held."""
        mask = event.mask

        if mask & flags.Q_OVERFLOW:
            return [NotifierRuntimeError("inotify event queue overflowed, events were lost")]

        if mask & flags.IGNORED:
            self._forget_wd(event.wd)
            return []

        path = self._path_for_wd.get(event.wd)
        if path is None:
            return []

        if mask & (flags.DELETE_SELF | flags.MOVE_SELF):
            # The parent's watch reports this under the entry's name.
            if os.path.dirname(path) in self._wd_for_path:
                return []
            self._remove_subtree(path)
            kind = EventKind.DELETE if mask & flags.DELETE_SELF else EventKind.RENAME
            return [RawEvent(path=path, kind=kind, is_directory=True)]

        if not event.name:
            return []

        child = os.path.join(path, event.name)
        is_dir = bool(mask & flags.ISDIR)

        if mask & flags.CREATE:
            return [RawEvent(path=child, kind=EventKind.CREATE, is_directory=is_dir)]
        if mask & flags.MODIFY:
            return [RawEvent(path=child, kind=EventKind.MODIFY, is_directory=is_dir)]
        if mask & flags.DELETE:
            return [RawEvent(path=child, kind=EventKind.DELETE, is_directory=is_dir)]
        if mask & flags.MOVED_FROM:
            self._pending_moves[event.cookie] = (child, is_dir, time.monotonic() + MOVE_PAIR_WINDOW)
            return []
        if mask & flags.MOVED_TO:
            source = self._pending_moves.pop(event.cookie, None)
            if source is None:
                return [RawEvent(path=child, kind=EventKind.CREATE, is_directory=is_dir)]
            source_path = source[0]
            if is_dir:
                self._move_subtree(source_path, child)
            return [
                RawEvent(path=source_path, kind=EventKind.RENAME, is_directory=is_dir),
                RawEvent(path=child, kind=EventKind.CREATE, is_directory=is_dir),
            ]
        return []

    def _expire_moves(self) -> List[RawEvent]:
        """Report MOVED_FROM halves whose partner never came as deletions."""
        now = time.monotonic()
        expired = [c for c, (_, _, deadline) in self._pending_moves.items() if deadline <= now]
        raw = []
        for cookie in expired:
            path, is_dir, _ = self._pending_moves.pop(cookie)
            if is_dir:
                self._remove_subtree(path)
            raw.append(RawEvent(path=path, kind=EventKind.DELETE, is_directory=is_dir))
        return raw

    def _move_subtree(self, source: str, dest: str) -> None:
        moved = [p for p in self._wd_for_path if is_under(p, source)]
        for old_path in moved:
            wd = self._wd_for_path.pop(old_path)
            new_path = dest + old_path[len(source):]
            self._wd_for_path[new_path] = wd
            self._path_for_wd[wd] = new_path
        if moved:
            logger.debug(f"Moved {len(moved)} watch(es) from {source} to {dest}")

    def _remove_subtree(self, root: str) -> None:
        gone = [p for p in self._wd_for_path if is_under(p, root)]
        for path in gone:
            wd = self._wd_for_path.pop(path)
            self._path_for_wd.pop(wd, None)
            self._rm_watch(wd)
        if gone:
            logger.debug(f"Released {len(gone)} watch(es) under {root}")

    def _forget_wd(self, wd: int) -> None:
        path = self._path_for_wd.pop(wd, None)
        if path is not None and self._wd_for_path.get(path) == wd:
            del self._wd_for_path[path]

    def _rm_watch(self, wd: int) -> None:
        try:
            self._inotify.rm_watch(wd)
        except OSError as e:
            # The kernel already dropped it along with its directory.
            logger.debug(f"Watch {wd} already gone: {e}")
