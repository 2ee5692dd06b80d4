"""
Tree Watcher Package

Recursive change notification for directory trees on top of a flat,
per-directory notifier.

Features:
- Create, modify, delete and rename events for every directory in a tree
- Automatic coverage of newly created or moved-in subdirectories
- New directories are watched before their CREATE event is published
- Bounded outbound queues that apply backpressure instead of dropping
- Best-effort tree walks that skip unreadable directories
"""

from .models import EventKind, RawEvent

from .config import TreeWatcherConfig

from .exceptions import (
    TreeWatchError,
    NotifierError,
    NotifierInitError,
    NotifierRegisterError,
    NotifierRuntimeError,
    TreeWatcherClosedError,
)

from .walk import iter_subdirectories, log_and_continue
from .notifier import Notifier, WatchdogNotifier, WatchHandler, create_notifier
from .tree_watcher import TreeWatcher


__all__ = [
    # Models
    "EventKind",
    "RawEvent",
    # Config
    "TreeWatcherConfig",
    # Exceptions
    "TreeWatchError",
    "NotifierError",
    "NotifierInitError",
    "NotifierRegisterError",
    "NotifierRuntimeError",
    "TreeWatcherClosedError",
    # Components
    "iter_subdirectories",
    "log_and_continue",
    "Notifier",
    "create_notifier",
    "WatchdogNotifier",
    "WatchHandler",
    # Main Watcher
    "TreeWatcher",
]

__version__ = "0.1.0"
