"""Shared fixtures for tree watcher tests."""

import os
import queue
import threading
import time
from typing import Callable, List, Optional

import pytest

from src.treewatch.config import TreeWatcherConfig
from src.treewatch.exceptions import NotifierRegisterError
from src.treewatch.models import EventKind, RawEvent
from src.treewatch.notifier import Notifier
from src.treewatch.tree_watcher import TreeWatcher


class FakeNotifier(Notifier):
    """In-memory notifier: tests push raw events and errors by hand."""

    def __init__(self, fail_paths=()):
        self.events = queue.Queue()
        self.errors = queue.Queue()
        self.registrations: List[str] = []
        self.fail_paths = set(fail_paths)
        self.closed = False
        self._watched = set()
        self._lock = threading.Lock()

    def register(self, path) -> bool:
        path = os.fspath(path)
        with self._lock:
            self.registrations.append(path)
            if self.closed:
                raise NotifierRegisterError(f"Notifier is closed: {path}", path=path)
            if path in self.fail_paths or not os.path.isdir(path):
                raise NotifierRegisterError(f"Cannot watch {path}", path=path)
            if path in self._watched:
                return False
            self._watched.add(path)
            return True

    def close(self) -> None:
        self.closed = True

    def watched_paths(self):
        with self._lock:
            return frozenset(self._watched)

    def push(self, path, kind: EventKind = EventKind.CREATE) -> RawEvent:
        event = RawEvent(path=os.fspath(path), kind=kind)
        self.events.put(event)
        return event


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.02) -> bool:
    """Poll predicate until it holds or the timeout expires."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def collect_events(
    watcher: TreeWatcher,
    until: Optional[Callable[[List[RawEvent]], bool]] = None,
    timeout: float = 2.0,
) -> List[RawEvent]:
    """
    Read events from a watcher until `until` holds for the collected list,
    or for `timeout` seconds when no condition is given.
    """
    events: List[RawEvent] = []
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            events.append(watcher.events.get(timeout=0.05))
        except queue.Empty:
            pass
        if until is not None and until(events):
            break
    return events


def has_event(kind: EventKind, path) -> Callable[[List[RawEvent]], bool]:
    path = os.fspath(path)
    return lambda events: any(e.kind is kind and e.path == path for e in events)


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def fake_watcher(fake_notifier):
    watcher = TreeWatcher(config=TreeWatcherConfig(poll_interval=0.02), notifier=fake_notifier)
    yield watcher
    watcher.close()


@pytest.fixture
def watched_root(tmp_path):
    root = tmp_path.resolve() / "root"
    root.mkdir()
    return root


@pytest.fixture
def tree_watcher(watched_root):
    watcher = TreeWatcher(config=TreeWatcherConfig(poll_interval=0.02))
    watcher.watch_tree(watched_root)
    # Give the watches a moment to settle
    time.sleep(0.1)
    yield watcher
    watcher.close()
