#!/usr/bin/env python3
"""
CLI for watching a directory tree.

Usage:
    python -m src.cli watch /path/to/folder
    python -m src.cli watch /path/to/folder --polling --queue-size 100
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

from src.treewatch import (
    NotifierInitError,
    TreeWatcher,
    TreeWatcherConfig,
)


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cli")


class GracefulShutdown:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self):
        self.should_exit = False
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.should_exit = True


def cmd_watch(args):
    """Watch a directory tree and print every event."""
    root = Path(args.root).resolve()

    if not root.exists():
        logger.error(f"Root path does not exist: {root}")
        sys.exit(1)
    if not root.is_dir():
        logger.error(f"Root path is not a directory: {root}")
        sys.exit(1)

    config = TreeWatcherConfig(
        queue_size=args.queue_size,
        follow_symlinks=args.follow_symlinks,
        use_polling=args.polling,
    )

    try:
        watcher = TreeWatcher(config=config)
    except NotifierInitError as e:
        logger.error(f"Cannot start watcher: {e}")
        sys.exit(1)

    shutdown = GracefulShutdown()

    with watcher:
        watcher.watch_tree(root)
        logger.info(f"Watching {root}")
        logger.info("Press Ctrl+C to stop")

        while not shutdown.should_exit:
            for error in watcher.get_pending_errors():
                logger.error(f"Watcher error: {error}")
            for event in watcher.iter_events(timeout=0.5):
                print(f"{event.kind.value.upper():<7} {event.path}", flush=True)
                if shutdown.should_exit:
                    break

    logger.info("Watcher stopped")


def main():
    parser = argparse.ArgumentParser(
        description="Recursive directory tree watcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Watch a tree with the native backend
  python -m src.cli watch ./documents

  # Watch a network share by polling
  python -m src.cli watch /mnt/share --polling
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    watch_parser = subparsers.add_parser("watch", help="Watch a directory tree")
    watch_parser.add_argument("root", help="Root directory to watch")
    watch_parser.add_argument("--queue-size", type=int, default=10, help="Outbound queue capacity (default: 10)")
    watch_parser.add_argument("--polling", action="store_true", help="Poll instead of using native OS notifications")
    watch_parser.add_argument("--follow-symlinks", action="store_true", help="Watch symlinked directories")
    watch_parser.set_defaults(func=cmd_watch)

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    args.func(args)


if __name__ == "__main__":
    main()
