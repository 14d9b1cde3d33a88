import threading
from datetime import datetime

import requests

from core.config import config
from core.errors import FetchError, SourceValidationError
from core.logger import get_logger
from core.utils import from_epoch
from feed.scatter import check_cancelled
from sources.base_source import BaseSource, Comment, Post, Source, SourceMetadata

log = get_logger(__name__)

CATEGORIES = ("active", "recent")


def _parse_time(value: str | None) -> datetime:
    if not value:
        return from_epoch(0)
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return from_epoch(0)


class LobstersSource(BaseSource):
    kind = "lobsters"

    def fetch_posts(self, source: Source, cancel: threading.Event | None = None) -> list[Post]:
        category = source.identifier
        if category not in CATEGORIES:
            raise FetchError(f"invalid lobsters category: {category} (use 'active' or 'recent')")

        check_cancelled(cancel, f"lobsters {category}")
        stories = self._get_json(f"{config.LOBSTERS_URL}/{category}.json")
        if not isinstance(stories, list):
            raise FetchError("invalid response format")

        posts = [self._story_to_post(story, category) for story in stories]
        log.info("Lobsters: %s → %d posts", category, len(posts))
        return posts

    def fetch_comments(self, post: Post, cancel: threading.Event | None = None) -> list[Comment]:
        check_cancelled(cancel, f"comments for {post.external_id}")
        story = self._get_json(f"{config.LOBSTERS_URL}/s/{post.external_id}.json")
        if not isinstance(story, dict):
            raise FetchError("invalid response format")
        raw = story.get("comments") or []
        if any("comments" in c for c in raw):
            return [self._parse_nested(c, 0) for c in raw]
        return self._build_flat(raw)

    def validate_source(self, identifier: str) -> SourceMetadata:
        if identifier not in CATEGORIES:
            raise SourceValidationError(
                f"invalid lobsters category: {identifier} (use 'active' or 'recent')"
            )
        return SourceMetadata(
            name=identifier,
            display_name=f"Lobsters - {identifier}",
            description=f"Lobste.rs {identifier} stories",
            icon_url=f"{config.LOBSTERS_URL}/apple-touch-icon-144.png",
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

    @staticmethod
    def _story_to_post(story: dict, category: str) -> Post:
        return Post(
            external_id=story.get("short_id") or "",
            source_kind="lobsters",
            source_name=f"lobsters/{category}",
            title=story.get("title") or "",
            author=_username(story.get("submitter_user")),
            permalink=story.get("comments_url") or "",
            url=story.get("url") or "",
            score=story.get("score") or 0,
            num_comments=story.get("comment_count") or 0,
            created_at=_parse_time(story.get("created_at")),
            content=story.get("description_plain") or story.get("description") or "",
        )

    def _parse_nested(self, raw: dict, depth: int) -> Comment:
        return self._to_comment(
            raw, depth, [self._parse_nested(c, depth + 1) for c in raw.get("comments") or []]
        )

    def _build_flat(self, raw: list[dict]) -> list[Comment]:
        # newer API versions return the thread flattened in display order
        children: dict[str | None, list[dict]] = {}
        for c in raw:
            children.setdefault(c.get("parent_comment"), []).append(c)

        def build(c: dict, depth: int) -> Comment:
            kids = children.get(c.get("short_id"), [])
            return self._to_comment(c, depth, [build(k, depth + 1) for k in kids])

        return [build(c, 0) for c in children.get(None, [])]

    @staticmethod
    def _to_comment(raw: dict, depth: int, replies: list[Comment]) -> Comment:
        return Comment(
            external_id=raw.get("short_id") or "",
            author=_username(raw.get("commenting_user")),
            body=raw.get("comment_plain") or raw.get("comment") or "",
            score=raw.get("score") or 0,
            created_at=_parse_time(raw.get("created_at")),
            depth=depth,
            replies=replies,
        )


def _username(value) -> str:
    # older responses embed the whole user object
    if isinstance(value, dict):
        return value.get("username") or ""
    return value or ""
