"""Configuration for the tree watcher package."""

from dataclasses import dataclass


@dataclass
class TreeWatcherConfig:
    """
    Configuration options for the tree watcher.

    Attributes:
        queue_size: Capacity of each outbound channel (events and errors).
            A full channel blocks the dispatch loop instead of dropping.
        poll_interval: Seconds the dispatch loop and the inotify reader wait
            on an input before re-checking the shutdown signal
        shutdown_timeout: Seconds close() waits for background threads
        follow_symlinks: Whether symlinked directories are walked and watched
        use_polling: Use stat polling instead of the native OS backend
        notifier_timeout: watchdog emitter read timeout, or the polling
            interval when use_polling is set
    """
    queue_size: int = 10
    poll_interval: float = 0.1
    shutdown_timeout: float = 5.0
    follow_symlinks: bool = False
    use_polling: bool = False
    notifier_timeout: float = 1.0

    def __post_init__(self):
        if self.queue_size < 1:
            raise ValueError(f"queue_size must be at least 1: {self.queue_size}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive: {self.poll_interval}")
