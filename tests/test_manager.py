"""Tests for the feed manager: cache gating, upsert and subscription rules."""
import threading
from datetime import timedelta

import pytest

from conftest import NOW, FakeProvider, make_post, sample_comments
from core.errors import (
    AlreadySubscribedError,
    FetchError,
    SourceNotFoundError,
    SourceValidationError,
    UnknownProviderError,
)
from feed.manager import FeedManager
from feed.registry import ProviderRegistry
from sources.base_source import SourceMetadata


def _subscribe(store, kind="fake", name="python:best", fetched=None):
    source = store.create_source(kind, SourceMetadata(name=name, display_name=name))
    if fetched is not None:
        store.touch_source(source.id, fetched)
    return source


def test_fetch_all_without_sources_returns_empty(manager, provider):
    assert manager.fetch_all() == []
    assert provider.fetch_calls == 0


def test_fresh_source_is_served_from_cache(manager, store, provider):
    """A source fetched within the interval must not hit the provider."""
    source = _subscribe(store, fetched=NOW - timedelta(minutes=10))
    store.upsert_posts(source.id, [
        make_post("old", minutes_ago=60),
        make_post("new", minutes_ago=5),
        make_post("mid", minutes_ago=30),
    ])
    provider.posts = [make_post("upstream")]

    posts = manager.fetch_all()

    assert provider.fetch_calls == 0
    assert [p.external_id for p in posts] == ["new", "mid", "old"]


def test_fresh_source_with_empty_cache_is_not_refetched(manager, store, provider):
    _subscribe(store, fetched=NOW - timedelta(minutes=59))

    assert manager.fetch_all() == []
    assert provider.fetch_calls == 0


def test_stale_source_is_refetched(manager, store, provider):
    _subscribe(store, fetched=NOW - timedelta(hours=1, minutes=1))
    provider.posts = [make_post("a"), make_post("b")]

    posts = manager.fetch_all()

    assert provider.fetch_calls == 1
    assert [p.external_id for p in posts] == ["a", "b"]


def test_refresh_updates_timestamp_even_when_empty(manager, store, provider, clock):
    source = _subscribe(store)
    provider.posts = []

    assert manager.fetch_all() == []
    assert store.get_source(source.id).last_fetch_at == NOW

    clock.advance(minutes=30)
    manager.fetch_all()
    assert provider.fetch_calls == 1


def test_upsert_is_idempotent_across_refreshes(manager, store, provider, clock):
    source = _subscribe(store)
    provider.posts = [make_post("abc", score=1)]
    manager.fetch_all()

    clock.advance(hours=2)
    provider.posts = [make_post("abc", score=42, title="edited")]
    manager.fetch_all()

    assert provider.fetch_calls == 2
    assert store.count_posts("fake", "abc") == 1
    cached = store.posts_for_source(source.id)
    assert cached[0].score == 42
    assert cached[0].title == "edited"


def test_empty_external_id_is_never_persisted(manager, store, provider):
    source = _subscribe(store)
    provider.posts = [make_post(""), make_post("kept")]

    posts = manager.fetch_all()

    assert len(posts) == 2
    assert [p.external_id for p in store.posts_for_source(source.id)] == ["kept"]


def test_failing_sources_are_isolated(store, clock):
    good = FakeProvider(kind="good", posts=[make_post("g1", kind="good"), make_post("g2", kind="good")])
    broken = FakeProvider(kind="broken", error=FetchError("status 503"))
    crashing = FakeProvider(kind="crashing", error=RuntimeError("boom"))

    registry = ProviderRegistry()
    for p in (good, broken, crashing):
        registry.register(p)
    manager = FeedManager(store, registry, clock=clock)

    _subscribe(store, kind="good", name="g")
    _subscribe(store, kind="broken", name="b")
    _subscribe(store, kind="crashing", name="c")
    _subscribe(store, kind="uninstalled", name="u")

    posts = manager.fetch_all()

    assert sorted(p.external_id for p in posts) == ["g1", "g2"]
    assert broken.fetch_calls == 1
    assert crashing.fetch_calls == 1


def test_failed_fetch_leaves_timestamp_untouched(manager, store, provider):
    source = _subscribe(store)
    provider.error = FetchError("timeout")

    manager.fetch_all()

    assert store.get_source(source.id).last_fetch_at is None


def test_cancelled_fetch_contributes_nothing(manager, store, provider):
    source = _subscribe(store)
    provider.posts = [make_post("a")]
    cancel = threading.Event()
    cancel.set()

    assert manager.fetch_all(cancel=cancel) == []
    assert provider.fetch_calls == 0
    assert store.get_source(source.id).last_fetch_at is None


def test_subscribe_stores_canonical_identifier(manager, store):
    source = manager.subscribe("fake", "python")

    assert source.identifier == "python:best"
    assert [s.identifier for s in manager.list_sources()] == ["python:best"]


def test_subscribe_twice_fails(manager):
    manager.subscribe("fake", "python:hot")

    with pytest.raises(AlreadySubscribedError):
        manager.subscribe("fake", "python:hot")
    assert len(manager.list_sources()) == 1


def test_subscribe_detects_duplicate_after_normalization(manager):
    manager.subscribe("fake", "python")

    with pytest.raises(AlreadySubscribedError):
        manager.subscribe("fake", "python:best")
    with pytest.raises(AlreadySubscribedError):
        manager.subscribe("fake", "python")
    assert len(manager.list_sources()) == 1


def test_subscribe_surfaces_validation_error_verbatim(manager):
    with pytest.raises(SourceValidationError, match="subreddit not found: badname"):
        manager.subscribe("fake", "badname")
    assert manager.list_sources() == []


def test_subscribe_unknown_kind(manager):
    with pytest.raises(UnknownProviderError, match="unknown provider kind: nope"):
        manager.subscribe("nope", "x")


def test_unsubscribe_missing_source(manager):
    with pytest.raises(SourceNotFoundError):
        manager.unsubscribe(999)


def test_unsubscribe_removes_cached_posts(manager, store, provider):
    source = manager.subscribe("fake", "python")
    provider.posts = [make_post("a")]
    manager.fetch_all()

    manager.unsubscribe(source.id)

    assert manager.list_sources() == []
    assert store.count_posts("fake", "a") == 0


def test_fetch_comments_delegates_to_provider(manager, provider):
    provider.comments = sample_comments()

    comments = manager.fetch_comments(make_post("a"))

    assert comments == provider.comments
    manager.fetch_comments(make_post("a"))
    assert provider.comment_calls == 2


def test_fetch_comments_unknown_kind(manager):
    with pytest.raises(UnknownProviderError):
        manager.fetch_comments(make_post("a", kind="unknown"))


def test_comment_cache_reuses_stored_tree(store, registry, provider, clock):
    manager = FeedManager(store, registry, comment_ttl=timedelta(minutes=30), clock=clock)
    source = _subscribe(store)
    provider.posts = [make_post("a")]
    post = manager.fetch_all()[0]
    provider.comments = sample_comments()

    first = manager.fetch_comments(post)
    clock.advance(minutes=10)
    second = manager.fetch_comments(post)

    assert provider.comment_calls == 1
    assert second == first
    assert second[0].replies[0].depth == 1

    clock.advance(minutes=31)
    manager.fetch_comments(post)
    assert provider.comment_calls == 2
    assert source.id == post.source_id


def test_clear_cache_forces_refetch(manager, store, provider, clock):
    source = _subscribe(store)
    provider.posts = [make_post("a"), make_post("b")]
    manager.fetch_all()

    posts_deleted, _ = manager.clear_cache()

    assert posts_deleted == 2
    assert store.get_source(source.id).last_fetch_at is None
    manager.fetch_all()
    assert provider.fetch_calls == 2


def test_purge_drops_posts_from_old_refreshes(manager, store, provider, clock):
    source = _subscribe(store)
    provider.posts = [make_post("a")]
    manager.fetch_all()

    clock.advance(days=8)
    assert manager.purge(older_than=timedelta(days=7)) == 1
    assert store.posts_for_source(source.id) == []


def test_every_source_gets_its_own_worker(store, clock):
    """Twenty sources that block until all of them have started must all finish."""
    count = 20
    barrier = threading.Barrier(count, timeout=5)
    registry = ProviderRegistry()
    for i in range(count):
        kind = f"k{i}"
        registry.register(FakeProvider(kind=kind, posts=[make_post(f"p{i}", kind=kind)],
                                       on_fetch=barrier.wait))
        _subscribe(store, kind=kind, name=f"s{i}")
    manager = FeedManager(store, registry, max_workers=None, clock=clock)

    posts = manager.fetch_all()

    assert sorted(p.external_id for p in posts) == sorted(f"p{i}" for i in range(count))


def test_cancel_event_reaches_the_provider(manager, store, provider):
    _subscribe(store)
    cancel = threading.Event()

    manager.fetch_all(cancel=cancel)
    assert provider.cancel_seen is cancel

    manager.fetch_comments(make_post("a"), cancel=cancel)
    assert provider.cancel_seen is cancel


def test_cancel_during_fetch_discards_results(manager, store, provider):
    source = _subscribe(store)
    cancel = threading.Event()
    provider.posts = [make_post("a")]
    provider.on_fetch = cancel.set

    assert manager.fetch_all(cancel=cancel) == []
    assert provider.fetch_calls == 1
    assert store.get_source(source.id).last_fetch_at is None
    assert store.count_posts() == 0


def test_unsubscribe_twice_fails(manager):
    source = manager.subscribe("fake", "python")
    manager.unsubscribe(source.id)

    with pytest.raises(SourceNotFoundError):
        manager.unsubscribe(source.id)
