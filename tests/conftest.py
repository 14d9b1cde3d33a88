"""Shared fixtures: a throwaway SQLite store, a fake provider and a fixed clock."""
import threading
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import SourceValidationError
from core.store import Store
from feed.manager import FeedManager
from feed.registry import ProviderRegistry
from sources.base_source import BaseSource, Comment, Post, SourceMetadata

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_post(external_id, kind="fake", score=1, minutes_ago=0, title=None):
    return Post(
        external_id=external_id,
        source_kind=kind,
        title=title or f"post {external_id}",
        author="alice",
        permalink=f"/p/{external_id}",
        url=f"https://example.com/{external_id}",
        created_at=NOW - timedelta(minutes=minutes_ago),
        score=score,
    )


class FakeProvider(BaseSource):
    """In-memory provider that records how often it was asked for data."""

    def __init__(self, kind="fake", posts=None, comments=None, error=None, on_fetch=None):
        self.kind = kind
        self.posts = posts if posts is not None else []
        self.comments = comments if comments is not None else []
        self.error = error
        self.on_fetch = on_fetch
        self.cancel_seen = None
        self.fetch_calls = 0
        self.comment_calls = 0
        self._lock = threading.Lock()

    def fetch_posts(self, source, cancel=None):
        with self._lock:
            self.fetch_calls += 1
        self.cancel_seen = cancel
        if self.on_fetch:
            self.on_fetch()
        if self.error:
            raise self.error
        return [
            Post(**{**vars(p), "source_kind": p.source_kind or self.kind})
            for p in self.posts
        ]

    def fetch_comments(self, post, cancel=None):
        with self._lock:
            self.comment_calls += 1
        self.cancel_seen = cancel
        return self.comments

    def validate_source(self, identifier):
        if identifier.startswith("bad"):
            raise SourceValidationError(f"subreddit not found: {identifier}")
        name = identifier if ":" in identifier else f"{identifier}:best"
        return SourceMetadata(name=name, display_name=name.upper(), description="desc")


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path / "feeds.db")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def registry(provider):
    reg = ProviderRegistry()
    reg.register(provider)
    return reg


@pytest.fixture
def manager(store, registry, clock):
    return FeedManager(
        store, registry, refresh_interval=timedelta(hours=1), comment_ttl=None, clock=clock
    )


def sample_comments():
    reply = Comment("c2", "bob", "reply", 3, NOW, depth=1)
    return [
        Comment("c1", "alice", "top", 5, NOW, depth=0, replies=[reply]),
        Comment("c3", "carol", "second", 1, NOW, depth=0),
    ]


