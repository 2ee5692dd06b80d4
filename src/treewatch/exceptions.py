"""Custom exceptions for the tree watcher package."""

from typing import Optional


class TreeWatchError(Exception):
    """Base exception for all tree watcher errors."""
    pass


class NotifierError(TreeWatchError):
    """
    Error raised by or reported from the underlying notifier.

    Attributes:
        path: The path the error relates to, if any
        cause: The underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.path = path
        self.cause = cause


class NotifierInitError(NotifierError):
    """The underlying watch primitive could not be created."""
    pass


class NotifierRegisterError(NotifierError):
    """A path could not be registered with the notifier."""
    pass


class NotifierRuntimeError(NotifierError):
    """Asynchronous error surfaced by the notifier after registration."""
    pass


class TreeWatcherClosedError(TreeWatchError):
    """Tree watcher has already been closed."""
    pass
