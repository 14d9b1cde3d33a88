import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence, TypeVar

from core.errors import FetchCancelled
from core.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def gather_ordered(
    fn: Callable[[T], R | None],
    items: Sequence[T],
    pool_size: int,
    cancel: threading.Event | None = None,
) -> list[R]:
    """Run ``fn`` over ``items`` on at most ``pool_size`` threads.

    Results come back in the order of ``items`` no matter which task finishes
    first. An item whose call returns None or raises contributes nothing.
    """
    if not items:
        return []

    lock = threading.Lock()
    results: dict[int, R] = {}

    def run(index: int, item: T) -> None:
        try:
            check_cancelled(cancel, f"item {item!r}")
            value = fn(item)
        except Exception as exc:
            log.debug("Dropping item %r: %s", item, exc)
            return
        if value is None:
            return
        with lock:
            results[index] = value

    with ThreadPoolExecutor(max_workers=max(1, min(pool_size, len(items)))) as pool:
        for index, item in enumerate(items):
            pool.submit(run, index, item)

    return [results[i] for i in range(len(items)) if i in results]


def check_cancelled(cancel: threading.Event | None, what: str) -> None:
    if cancel is not None and cancel.is_set():
        raise FetchCancelled(f"{what} cancelled")
