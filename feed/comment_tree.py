import threading
from dataclasses import dataclass, field, replace
from typing import Callable, Hashable, Sequence

from core.config import config
from core.logger import get_logger
from feed.scatter import gather_ordered
from sources.base_source import Comment

log = get_logger(__name__)


@dataclass
class CommentNode:
    """A single fetched comment plus the ids of its direct replies."""

    comment: Comment
    child_ids: list[Hashable] = field(default_factory=list)


class CommentTreeFetcher:
    """Scatter/gather fetcher for APIs that serve one comment per request.

    ``fetch_node(node_id, depth)`` returns a :class:`CommentNode` without
    replies, or None when the node is missing, deleted or removed upstream.
    Siblings are fetched concurrently on a pool whose size depends on the
    depth, and reassembled in the order their ids were given. Only nodes
    shallower than ``recurse_levels`` have their replies fetched, and at most
    ``max_replies`` replies per node are explored.
    """

    def __init__(
        self,
        fetch_node: Callable[[Hashable, int], CommentNode | None],
        pool_sizes: Sequence[int] = config.COMMENT_POOL_SIZES,
        recurse_levels: int = config.COMMENT_RECURSE_LEVELS,
        max_replies: int = config.COMMENT_MAX_REPLIES,
        cancel: threading.Event | None = None,
    ) -> None:
        if not pool_sizes:
            raise ValueError("pool_sizes must not be empty")
        self._fetch_node = fetch_node
        self._pool_sizes = tuple(pool_sizes)
        self._recurse_levels = recurse_levels
        self._max_replies = max_replies
        self._cancel = cancel

    def pool_size(self, depth: int) -> int:
        return self._pool_sizes[min(depth, len(self._pool_sizes) - 1)]

    def fetch(self, ids: Sequence[Hashable], depth: int = 0) -> list[Comment]:
        comments = gather_ordered(
            lambda node_id: self._fetch_subtree(node_id, depth),
            list(ids),
            self.pool_size(depth),
            cancel=self._cancel,
        )
        log.debug("Fetched %d/%d comments at depth %d", len(comments), len(ids), depth)
        return comments

    def _fetch_subtree(self, node_id: Hashable, depth: int) -> Comment | None:
        node = self._fetch_node(node_id, depth)
        if node is None:
            return None

        comment = node.comment
        if comment.depth != depth:
            comment = replace(comment, depth=depth, replies=[])

        if depth < self._recurse_levels and node.child_ids:
            kids = node.child_ids[: self._max_replies]
            # blocks until every reply subtree is complete
            replies = self.fetch(kids, depth + 1)
            return replace(comment, replies=replies)

        if comment.replies:
            comment = replace(comment, replies=[])
        return comment
