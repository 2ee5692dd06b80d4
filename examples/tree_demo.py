#!/usr/bin/env python3
"""
Tree watcher demo.

This example demonstrates:
1. Watching a fresh directory tree
2. File create/modify/delete events
3. Automatic coverage of new subdirectories
4. A directory built outside the tree and moved in

Usage:
    python examples/tree_demo.py
"""

import shutil
import sys
import tempfile
import threading
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from treewatch import EventKind, TreeWatcher


ICONS = {
    EventKind.CREATE: "+",
    EventKind.MODIFY: "~",
    EventKind.DELETE: "-",
    EventKind.RENAME: ">",
}


def consume(watcher: TreeWatcher):
    """Print events until the watcher is closed."""
    for event in watcher.iter_events():
        print(f"[EVENT] {ICONS[event.kind]} {event.kind.value.upper()}: {event.path}")


def main():
    demo_dir = Path(tempfile.mkdtemp(prefix="treewatch_demo_"))
    root = demo_dir / "watched"
    outside = demo_dir / "outside"
    root.mkdir()
    outside.mkdir()

    print("=" * 60)
    print("Tree Watcher Demo")
    print("=" * 60)
    print(f"\nWatched root: {root}\n")

    try:
        with TreeWatcher() as watcher:
            watcher.watch_tree(root)
            consumer = threading.Thread(target=consume, args=(watcher,), daemon=True)
            consumer.start()

            print("[DEMO] Creating, appending to and deleting a file...")
            (root / "abc.txt").write_text("abc")
            time.sleep(0.3)
            with open(root / "abc.txt", "a") as f:
                f.write("def")
            time.sleep(0.3)
            (root / "abc.txt").unlink()
            time.sleep(0.3)

            print("[DEMO] Creating a subdirectory and a file inside it...")
            (root / "dir").mkdir()
            (root / "dir" / "x.txt").write_text("x")
            time.sleep(0.3)

            print("[DEMO] Building a tree outside the root (no events expected)...")
            nested = outside / "a" / "b" / "c"
            nested.mkdir(parents=True)
            (nested / "deep.txt").write_text("deep")
            time.sleep(0.3)

            print("[DEMO] Moving it into the root...")
            (outside / "a").rename(root / "a")
            time.sleep(0.3)
            (root / "a" / "b" / "c" / "deep.txt").write_text("changed")
            time.sleep(0.5)

        consumer.join(timeout=2)
        print("\nDemo complete!")
    finally:
        shutil.rmtree(demo_dir, ignore_errors=True)


if __name__ == "__main__":
    main()
