import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable

from core.config import config
from core.errors import (
    AlreadySubscribedError,
    FetchCancelled,
    FetchError,
    SourceNotFoundError,
    UnknownProviderError,
)
from core.logger import get_logger
from core.store import Store
from core.utils import now_utc
from feed.registry import ProviderRegistry
from feed.scatter import check_cancelled
from sources.base_source import Comment, Post, Source

log = get_logger(__name__)


class FeedManager:
    """Fetches every subscribed source and keeps the post cache current.

    A source is refreshed from upstream only when it has never been fetched
    or its last fetch is older than ``refresh_interval``; otherwise its
    cached posts are served without touching the network.

    Each source runs on its own worker unless ``max_workers`` caps the pool.
    """

    def __init__(
        self,
        store: Store,
        registry: ProviderRegistry,
        refresh_interval: timedelta = config.REFRESH_INTERVAL,
        max_workers: int | None = config.SOURCE_WORKERS,
        comment_ttl: timedelta | None = config.COMMENT_CACHE_TTL,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._store = store
        self._registry = registry
        self._refresh_interval = refresh_interval
        self._max_workers = max_workers
        self._comment_ttl = comment_ttl
        self._clock = clock

    # --- posts ---

    def fetch_all(self, cancel: threading.Event | None = None) -> list[Post]:
        sources = self._store.list_sources()
        if not sources:
            log.info("No subscribed sources")
            return []

        start = time.time()
        lock = threading.Lock()
        all_posts: list[Post] = []
        failures = 0

        def run(source: Source) -> None:
            nonlocal failures
            try:
                posts = self._fetch_or_get_cached(source, cancel)
            except UnknownProviderError as exc:
                log.error("Source %s (%d) skipped: %s", source.name, source.id, exc)
            except FetchCancelled:
                log.warning("Fetch of %s cancelled", source.name)
            except FetchError as exc:
                log.error("Error fetching from %s: %s", source.name, exc)
            except Exception as exc:
                log.exception("Unexpected error fetching from %s: %s", source.name, exc)
            else:
                with lock:
                    all_posts.extend(posts)
                return
            with lock:
                failures += 1

        workers = min(self._max_workers, len(sources)) if self._max_workers else len(sources)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for source in sources:
                pool.submit(run, source)

        log.info(
            "Fetched %d posts from %d sources (%d failed) in %.1fs",
            len(all_posts), len(sources), failures, time.time() - start,
        )
        return all_posts

    def needs_refresh(self, source: Source, now: datetime | None = None) -> bool:
        if source.last_fetch_at is None:
            return True
        now = now or self._clock()
        return now - source.last_fetch_at > self._refresh_interval

    def _fetch_or_get_cached(self, source: Source, cancel: threading.Event | None) -> list[Post]:
        provider = self._registry.resolve(source.kind)
        now = self._clock()

        if not self.needs_refresh(source, now):
            cached = self._store.posts_for_source(source.id)
            log.debug("Serving %d cached posts for %s", len(cached), source.name)
            return cached

        check_cancelled(cancel, f"fetch of {source.name}")
        posts = provider.fetch_posts(source, cancel=cancel)
        log.debug("Fetched %d posts from %s (%s)", len(posts), source.name, source.kind)
        check_cancelled(cancel, f"fetch of {source.name}")

        self._store.touch_source(source.id, now)
        for post in posts:
            post.source_id = source.id
            if not post.source_kind:
                post.source_kind = source.kind

        saved, updated = self._store.upsert_posts(source.id, posts, fetched_at=now)
        log.info("Saved %d new posts from %s (%d updated)", saved, source.name, updated)
        return posts

    # --- comments ---

    def fetch_comments(self, post: Post, cancel: threading.Event | None = None) -> list[Comment]:
        provider = self._registry.resolve(post.source_kind)
        if self._comment_ttl is None:
            return provider.fetch_comments(post, cancel=cancel)

        cached = self._store.find_post(post.source_kind, post.external_id, post.source_id)
        if cached is None:
            return provider.fetch_comments(post, cancel=cancel)

        post_row_id, fetched_at = cached
        now = self._clock()
        if fetched_at is not None and now - fetched_at <= self._comment_ttl:
            return self._store.load_comments(post_row_id)

        comments = provider.fetch_comments(post, cancel=cancel)
        try:
            self._store.replace_comments(post_row_id, comments, now)
        except sqlite3.Error as exc:
            log.error("Error caching comments for post %s: %s", post.external_id, exc)
        return comments

    # --- subscriptions ---

    def subscribe(self, kind: str, identifier: str) -> Source:
        if self._store.find_source(kind, identifier):
            raise AlreadySubscribedError(kind, identifier)

        provider = self._registry.resolve(kind)
        metadata = provider.validate_source(identifier)

        if metadata.name != identifier and self._store.find_source(kind, metadata.name):
            raise AlreadySubscribedError(kind, metadata.name)

        try:
            source = self._store.create_source(kind, metadata)
        except sqlite3.IntegrityError as exc:
            raise AlreadySubscribedError(kind, metadata.name) from exc

        log.info("Subscribed to %s source %s", kind, source.identifier)
        return source

    def unsubscribe(self, source_id: int) -> None:
        source = self._store.get_source(source_id)
        if source is None or self._store.delete_source(source_id) == 0:
            raise SourceNotFoundError(source_id)
        log.info("Unsubscribed from %s source %s", source.kind, source.identifier)

    def list_sources(self) -> list[Source]:
        return self._store.list_sources()

    # --- cache maintenance ---

    def clear_cache(self) -> tuple[int, int]:
        posts, comments = self._store.clear_cache()
        log.info("Cache cleared: %d posts, %d comments", posts, comments)
        return posts, comments

    def purge(self, older_than: timedelta = timedelta(days=config.PURGE_AFTER_DAYS)) -> int:
        deleted = self._store.purge_posts(self._clock() - older_than)
        log.info("Purged %d posts older than %s", deleted, older_than)
        return deleted
