import threading

import praw
import prawcore
from praw.models import MoreComments

from core.config import config
from core.errors import FetchError, SourceValidationError
from core.logger import get_logger
from core.utils import from_epoch
from feed.scatter import check_cancelled
from sources.base_source import BaseSource, Comment, Post, Source, SourceMetadata

log = get_logger(__name__)

VALID_SORTS = ("hot", "new", "rising", "top", "best")

# subreddits expose no "best" listing through the API; reddit serves hot for it
_LISTINGS = {"hot": "hot", "new": "new", "rising": "rising", "top": "top", "best": "hot"}

_UNAVAILABLE = (
    prawcore.exceptions.NotFound,
    prawcore.exceptions.Redirect,
    prawcore.exceptions.Forbidden,
)


def parse_identifier(identifier: str) -> tuple[str, str]:
    """Split ``"name:sort"`` into its parts; the sort defaults to ``best``."""
    name, _, sort = identifier.strip().partition(":")
    name = name.strip()
    if name.lower().startswith("r/"):
        name = name[2:]
    return name, (sort.strip().lower() or "best")


class RedditSource(BaseSource):
    kind = "reddit"

    def __init__(self, reddit: praw.Reddit | None = None) -> None:
        if reddit is None:
            if not config.REDDIT_CLIENT_ID:
                raise ValueError("REDDIT_CLIENT_ID is not set")
            reddit = praw.Reddit(
                client_id=config.REDDIT_CLIENT_ID,
                client_secret=config.REDDIT_SECRET,
                user_agent=config.REDDIT_USER_AGENT,
                timeout=config.REQUEST_TIMEOUT,
                check_for_async=False,
            )
        self._reddit = reddit

    def fetch_posts(self, source: Source, cancel: threading.Event | None = None) -> list[Post]:
        name, sort = parse_identifier(source.identifier)
        check_cancelled(cancel, f"r/{name}")
        listing = getattr(self._reddit.subreddit(name), _LISTINGS.get(sort, "hot"))
        try:
            posts = [
                self._to_post(submission, source.identifier)
                for submission in listing(limit=config.REDDIT_FETCH_LIMIT)
            ]
        except (prawcore.exceptions.PrawcoreException, praw.exceptions.PRAWException) as exc:
            raise FetchError(f"error fetching r/{name}: {exc}") from exc
        log.info("Reddit: r/%s (%s) → %d posts", name, sort, len(posts))
        return posts

    def fetch_comments(self, post: Post, cancel: threading.Event | None = None) -> list[Comment]:
        check_cancelled(cancel, f"comments for {post.external_id}")
        try:
            submission = self._reddit.submission(id=post.external_id)
            submission.comments.replace_more(limit=config.REDDIT_COMMENT_EXPAND_LIMIT)
            top_level = list(submission.comments)
        except (prawcore.exceptions.PrawcoreException, praw.exceptions.PRAWException) as exc:
            raise FetchError(f"error fetching comments for {post.external_id}: {exc}") from exc

        comments = []
        for item in top_level:
            comment = self._to_comment(item, 0)
            if comment is not None:
                comments.append(comment)
        return comments

    def validate_source(self, identifier: str) -> SourceMetadata:
        name, sort = parse_identifier(identifier)
        if not name:
            raise SourceValidationError("subreddit name is empty")
        if sort not in VALID_SORTS:
            raise SourceValidationError(
                f"invalid sort type: {sort} (use hot, new, rising, top, or best)"
            )

        subreddit = self._reddit.subreddit(name)
        try:
            description = subreddit.public_description or ""
            icon_url = subreddit.icon_img or ""
            display_name = subreddit.display_name
        except _UNAVAILABLE as exc:
            raise SourceValidationError("subreddit not found or unavailable") from exc
        except prawcore.exceptions.PrawcoreException as exc:
            raise FetchError(f"error fetching subreddit: {exc}") from exc

        return SourceMetadata(
            name=f"{name}:{sort}",
            display_name=f"r/{display_name} ({sort})",
            description=description,
            icon_url=icon_url,
        )

    @staticmethod
    def _to_post(submission, identifier: str) -> Post:
        return Post(
            external_id=submission.id,
            source_kind="reddit",
            source_name=f"r/{identifier}",
            title=submission.title,
            author=submission.author.name if submission.author else "[deleted]",
            permalink=submission.permalink,
            url=submission.url,
            score=submission.score,
            num_comments=submission.num_comments,
            created_at=from_epoch(submission.created_utc),
            content=submission.selftext if submission.is_self else "",
            thumbnail=getattr(submission, "thumbnail", "") or "",
            nsfw=bool(submission.over_18),
        )

    def _to_comment(self, item, depth: int) -> Comment | None:
        if isinstance(item, MoreComments):
            return None
        author = item.author.name if item.author else ""
        body = item.body or ""
        if not author or not body:
            return None

        replies = []
        for reply in item.replies:
            child = self._to_comment(reply, depth + 1)
            if child is not None:
                replies.append(child)

        return Comment(
            external_id=item.id,
            author=author,
            body=body,
            score=item.score,
            created_at=from_epoch(item.created_utc),
            depth=depth,
            replies=replies,
        )
