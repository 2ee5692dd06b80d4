"""Best-effort directory tree traversal."""

import logging
import os
from typing import Callable, Iterator, Optional, Set, Union

logger = logging.getLogger(__name__)

WalkErrorPolicy = Callable[[OSError], None]


def log_and_continue(error: OSError) -> None:
    """
    Default walk policy: note the unreadable directory and keep going.

    Args:
        error: The error raised while listing a directory
    """
    logger.debug(f"Skipping unreadable directory {error.filename}: {error.strerror or error}")


def iter_subdirectories(
    root: Union[str, os.PathLike],
    *,
    follow_symlinks: bool = False,
    on_error: Optional[WalkErrorPolicy] = None,
) -> Iterator[str]:
    """
    Yield every directory below root.

    The walk never aborts on a single bad entry: each directory that cannot
    be listed is handed to on_error and the traversal moves on to its
    siblings. Order is unspecified.

    Args:
        root: Directory to traverse (not itself yielded)
        follow_symlinks: Whether to yield and descend into symlinked
            directories. Each real directory is visited at most once.
        on_error: Walk policy for listing errors (default: log_and_continue)

    Yields:
        Absolute paths of descendant directories
    """
    on_error = on_error or log_and_continue
    root = os.path.abspath(os.fspath(root))
    seen: Set[str] = set()

    for dirpath, dirnames, _ in os.walk(root, onerror=on_error, followlinks=follow_symlinks):
        if follow_symlinks:
            real = os.path.realpath(dirpath)
            if real in seen:
                dirnames[:] = []
                continue
            seen.add(real)

        kept = []
        for name in dirnames:
            path = os.path.join(dirpath, name)
            if not follow_symlinks and os.path.islink(path):
                continue
            if follow_symlinks and os.path.realpath(path) in seen:
                continue
            kept.append(name)
            yield path
        dirnames[:] = kept
