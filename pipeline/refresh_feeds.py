import signal
import sys
import threading
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from core.logger import get_logger
from core.store import Store
from feed.manager import FeedManager
from feed.registry import build_default_registry

log = get_logger("pipeline")


def run_refresh(purge: bool = True) -> int:
    start = time.time()
    log.info("=" * 60)
    log.info("Feed refresh started")

    store = Store()
    registry = build_default_registry()
    if not registry.kinds():
        log.error("No providers available, aborting")
        return 0

    manager = FeedManager(store, registry)

    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        if purge:
            manager.purge()
        posts = manager.fetch_all(cancel=cancel)
    finally:
        signal.signal(signal.SIGINT, previous)

    elapsed = time.time() - start
    log.info("Feed refresh complete: %d posts, %.1fs elapsed", len(posts), elapsed)
    log.info("Cache now holds %d posts", store.count_posts())
    log.info("=" * 60)
    return len(posts)


if __name__ == "__main__":
    run_refresh()
