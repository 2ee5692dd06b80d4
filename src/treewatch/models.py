"""Data models for the tree watcher package."""

import os
import time
from dataclasses import dataclass, field
from enum import Enum


class EventKind(Enum):
    """Kinds of raw file system events."""
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"


@dataclass(frozen=True)
class RawEvent:
    """
    A single file system change reported by the notifier.

    Attributes:
        path: Absolute path of the entry that changed. For RENAME events
            this is the old path; the new path arrives as a separate
            CREATE event.
        kind: The kind of change
        is_directory: Notifier hint that the entry is a directory. The
            tree watcher stats the path itself instead of trusting it.
        timestamp: Unix timestamp when the event was observed
    """
    path: str
    kind: EventKind
    is_directory: bool = False
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if not os.path.isabs(self.path):
            raise ValueError(f"path must be absolute: {self.path}")

    @property
    def is_create(self) -> bool:
        return self.kind is EventKind.CREATE

    @property
    def is_modify(self) -> bool:
        return self.kind is EventKind.MODIFY

    @property
    def is_delete(self) -> bool:
        return self.kind is EventKind.DELETE

    @property
    def is_rename(self) -> bool:
        return self.kind is EventKind.RENAME

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "path": self.path,
            "kind": self.kind.value,
            "is_directory": self.is_directory,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RawEvent":
        """Create from dictionary."""
        return cls(
            path=data["path"],
            kind=EventKind(data["kind"]),
            is_directory=data.get("is_directory", False),
            timestamp=data.get("timestamp", time.time()),
        )

    def __str__(self) -> str:
        return f"{self.kind.value.upper()} {self.path}"
