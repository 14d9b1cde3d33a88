import threading

import requests

from core.config import config
from core.errors import FetchError, SourceValidationError
from core.logger import get_logger
from core.utils import from_epoch
from feed.comment_tree import CommentNode, CommentTreeFetcher
from feed.scatter import check_cancelled, gather_ordered
from sources.base_source import BaseSource, Comment, Post, Source, SourceMetadata

log = get_logger(__name__)

CATEGORIES = {
    "top": ("topstories", "Top Stories"),
    "new": ("newstories", "New Stories"),
    "best": ("beststories", "Best Stories"),
    "ask": ("askstories", "Ask HN"),
    "show": ("showstories", "Show HN"),
    "job": ("jobstories", "Jobs"),
}


class HackerNewsSource(BaseSource):
    """Hacker News via the Firebase API.

    Every story and every comment is its own item, so comment threads are
    assembled with :class:`CommentTreeFetcher`.
    """

    kind = "hackernews"

    def fetch_posts(self, source: Source, cancel: threading.Event | None = None) -> list[Post]:
        category = source.identifier
        if category not in CATEGORIES:
            raise FetchError(f"unknown HackerNews category: {category}")
        endpoint, _ = CATEGORIES[category]

        check_cancelled(cancel, f"HackerNews {category}")
        story_ids = self._get_json(f"{config.HN_API_URL}/{endpoint}.json") or []
        story_ids = story_ids[: config.HN_POST_LIMIT]

        posts = gather_ordered(
            lambda story_id: self._fetch_story(story_id, category),
            story_ids,
            config.HN_POST_POOL_SIZE,
            cancel=cancel,
        )
        check_cancelled(cancel, f"HackerNews {category}")
        log.info("HackerNews: %s → %d posts", category, len(posts))
        return posts

    def fetch_comments(self, post: Post, cancel: threading.Event | None = None) -> list[Comment]:
        try:
            story_id = int(post.external_id)
        except ValueError as exc:
            raise FetchError(f"invalid HackerNews story id: {post.external_id!r}") from exc

        check_cancelled(cancel, f"comments for {story_id}")
        item = self._fetch_item(story_id)
        if not item or not item.get("kids"):
            return []

        top_kids = item["kids"][: config.HN_MAX_TOP_COMMENTS]
        comments = CommentTreeFetcher(self._fetch_comment_node, cancel=cancel).fetch(top_kids)
        check_cancelled(cancel, f"comments for {story_id}")
        return comments

    def validate_source(self, identifier: str) -> SourceMetadata:
        if identifier not in CATEGORIES:
            raise SourceValidationError(
                "invalid category. Valid options: " + ", ".join(CATEGORIES)
            )
        _, display_name = CATEGORIES[identifier]
        return SourceMetadata(
            name=identifier,
            display_name=f"HackerNews - {display_name}",
            description=f"HackerNews {display_name} feed",
            icon_url=f"{config.HN_SITE_URL}/favicon.ico",
        )

    def _get_json(self, url: str):
        try:
            resp = requests.get(
                url,
                headers={"User-Agent": config.USER_AGENT},
                timeout=config.REQUEST_TIMEOUT,
            )
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise FetchError(f"error fetching {url}: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"error decoding {url}: {exc}") from exc

    def _fetch_item(self, item_id: int) -> dict | None:
        return self._get_json(f"{config.HN_API_URL}/item/{item_id}.json")

    def _fetch_story(self, story_id: int, category: str) -> Post | None:
        item = self._fetch_item(story_id)
        if not item or item.get("deleted") or item.get("dead"):
            return None
        return self._item_to_post(item, category)

    def _fetch_comment_node(self, item_id: int, depth: int) -> CommentNode | None:
        item = self._fetch_item(item_id)
        if not item or item.get("deleted") or item.get("dead"):
            return None
        if item.get("type") != "comment":
            return None
        comment = Comment(
            external_id=str(item["id"]),
            author=item.get("by") or "",
            body=item.get("text") or "",
            score=item.get("score") or 0,
            created_at=from_epoch(item.get("time")),
            depth=depth,
        )
        return CommentNode(comment, item.get("kids") or [])

    @staticmethod
    def _item_to_post(item: dict, category: str) -> Post:
        item_id = item["id"]
        return Post(
            external_id=str(item_id),
            source_kind="hackernews",
            source_name=f"HackerNews/{category}",
            title=item.get("title") or "",
            author=item.get("by") or "",
            permalink=f"/item?id={item_id}",
            url=item.get("url") or f"{config.HN_SITE_URL}/item?id={item_id}",
            score=item.get("score") or 0,
            num_comments=item.get("descendants") or 0,
            created_at=from_epoch(item.get("time")),
            content=item.get("text") or "",
        )
