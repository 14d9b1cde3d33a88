import sqlite3
from datetime import datetime
from pathlib import Path

from core.logger import get_logger
from core.utils import from_epoch, get_db, init_db, now_iso, parse_iso, to_epoch
from sources.base_source import Comment, Post, Source, SourceMetadata

log = get_logger(__name__)

_POST_COLUMNS = (
    "source_name", "title", "author", "permalink", "url", "score",
    "num_comments", "created_utc", "content", "thumbnail", "nsfw", "fetched_at",
)
_UPDATE_COLUMNS = tuple(col for col in _POST_COLUMNS if col != "created_utc")
_UPDATE_POST_SQL = "UPDATE posts SET " + ", ".join(f"{col} = ?" for col in _UPDATE_COLUMNS) + " WHERE id = ?"
_INSERT_POST_SQL = (
    "INSERT INTO posts (source_id, source_kind, external_id, " + ", ".join(_POST_COLUMNS) + ") "
    "VALUES (?, ?, ?, " + ", ".join("?" for _ in _POST_COLUMNS) + ")"
)


class Store:
    """SQLite-backed cache of sources, posts and comment trees.

    Every method opens its own connection, so a store can be shared by the
    worker threads of a refresh cycle.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        init_db(db_path)

    def _connect(self):
        return get_db(self._db_path)

    # --- sources ---

    def list_sources(self) -> list[Source]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM sources ORDER BY id").fetchall()
        return [_row_to_source(r) for r in rows]

    def get_source(self, source_id: int) -> Source | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
        return _row_to_source(row) if row else None

    def find_source(self, kind: str, identifier: str) -> Source | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM sources WHERE kind = ? AND identifier = ?",
                (kind, identifier),
            ).fetchone()
        return _row_to_source(row) if row else None

    def create_source(self, kind: str, metadata: SourceMetadata) -> Source:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sources
                    (kind, identifier, name, display_name, description, icon_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    kind, metadata.name, metadata.name, metadata.display_name,
                    metadata.description, metadata.icon_url, now_iso(),
                ),
            )
            source_id = cursor.lastrowid
        return Source(
            id=source_id,
            kind=kind,
            identifier=metadata.name,
            name=metadata.name,
            display_name=metadata.display_name,
            description=metadata.description,
            icon_url=metadata.icon_url,
        )

    def delete_source(self, source_id: int) -> int:
        # posts and their comments go with the source via ON DELETE CASCADE
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
            return cursor.rowcount

    def touch_source(self, source_id: int, when: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE sources SET last_fetch_at = ? WHERE id = ?",
                (when.isoformat(), source_id),
            )

    # --- posts ---

    def posts_for_source(self, source_id: int) -> list[Post]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM posts WHERE source_id = ? ORDER BY created_utc DESC",
                (source_id,),
            ).fetchall()
        return [_row_to_post(r) for r in rows]

    def count_posts(self, source_kind: str | None = None, external_id: str | None = None) -> int:
        sql = "SELECT COUNT(*) AS cnt FROM posts WHERE 1 = 1"
        params: tuple = ()
        if source_kind is not None:
            sql += " AND source_kind = ?"
            params += (source_kind,)
        if external_id is not None:
            sql += " AND external_id = ?"
            params += (external_id,)
        with self._connect() as conn:
            row = conn.execute(sql, params).fetchone()
        return row["cnt"]

    def upsert_posts(self, source_id: int, posts: list[Post],
                     fetched_at: datetime | None = None) -> tuple[int, int]:
        """Insert-or-update each post keyed by (source kind, external id, source id).

        Returns ``(saved, updated)``. Posts without an external id are skipped,
        and a post that fails to convert or write is logged and skipped without
        aborting the rest of the batch. ``created_utc`` is written on insert
        only, so a re-fetched post keeps its original position.
        """
        saved = 0
        updated = 0
        stamp = fetched_at.isoformat() if fetched_at else now_iso()
        with self._connect() as conn:
            for index, post in enumerate(posts):
                if not post.external_id:
                    log.debug("Skipping post %d with empty id: %s", index, post.title)
                    continue
                try:
                    row = _post_values(post, stamp)
                    existing = conn.execute(
                        """
                        SELECT id FROM posts
                        WHERE source_kind = ? AND external_id = ? AND source_id = ?
                        """,
                        (post.source_kind, post.external_id, source_id),
                    ).fetchone()
                    if existing:
                        conn.execute(
                            _UPDATE_POST_SQL,
                            (*(row[col] for col in _UPDATE_COLUMNS), existing["id"]),
                        )
                        updated += 1
                    else:
                        conn.execute(
                            _INSERT_POST_SQL,
                            (source_id, post.source_kind, post.external_id,
                             *(row[col] for col in _POST_COLUMNS)),
                        )
                        saved += 1
                except (sqlite3.Error, TypeError, ValueError, AttributeError) as exc:
                    log.error("Error saving post %s: %s", post.external_id, exc)
        return saved, updated

    def purge_posts(self, fetched_before: datetime) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM posts WHERE fetched_at < ?",
                (fetched_before.isoformat(),),
            )
            return cursor.rowcount

    def clear_cache(self) -> tuple[int, int]:
        with self._connect() as conn:
            comments = conn.execute("DELETE FROM comments").rowcount
            posts = conn.execute("DELETE FROM posts").rowcount
            conn.execute("UPDATE sources SET last_fetch_at = NULL")
        return posts, comments

    # --- comments ---

    def find_post(self, source_kind: str, external_id: str,
                  source_id: int | None = None) -> tuple[int, datetime | None] | None:
        sql = "SELECT id, comments_fetched_at FROM posts WHERE source_kind = ? AND external_id = ?"
        params: tuple = (source_kind, external_id)
        if source_id is not None:
            sql += " AND source_id = ?"
            params += (source_id,)
        with self._connect() as conn:
            row = conn.execute(sql + " ORDER BY id LIMIT 1", params).fetchone()
        if not row:
            return None
        return row["id"], parse_iso(row["comments_fetched_at"])

    def replace_comments(self, post_row_id: int, comments: list[Comment], when: datetime) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM comments WHERE post_id = ?", (post_row_id,))
            self._insert_comments(conn, post_row_id, comments, None)
            conn.execute(
                "UPDATE posts SET comments_fetched_at = ? WHERE id = ?",
                (when.isoformat(), post_row_id),
            )

    def _insert_comments(self, conn: sqlite3.Connection, post_row_id: int,
                         comments: list[Comment], parent_id: int | None) -> None:
        for position, comment in enumerate(comments):
            cursor = conn.execute(
                """
                INSERT INTO comments
                    (external_id, post_id, parent_id, author, body, score, created_utc, depth, position)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    comment.external_id, post_row_id, parent_id, comment.author, comment.body,
                    comment.score, to_epoch(comment.created_at), comment.depth, position,
                ),
            )
            if comment.replies:
                self._insert_comments(conn, post_row_id, comment.replies, cursor.lastrowid)

    def load_comments(self, post_row_id: int) -> list[Comment]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM comments WHERE post_id = ? ORDER BY depth, position",
                (post_row_id,),
            ).fetchall()

        children: dict[int | None, list[sqlite3.Row]] = {}
        for row in rows:
            children.setdefault(row["parent_id"], []).append(row)

        def build(row: sqlite3.Row) -> Comment:
            return Comment(
                external_id=row["external_id"],
                author=row["author"] or "",
                body=row["body"] or "",
                score=row["score"] or 0,
                created_at=from_epoch(row["created_utc"]),
                depth=row["depth"],
                replies=[build(child) for child in children.get(row["id"], [])],
            )

        return [build(row) for row in children.get(None, [])]


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        kind=row["kind"],
        identifier=row["identifier"],
        name=row["name"],
        display_name=row["display_name"] or "",
        description=row["description"] or "",
        icon_url=row["icon_url"] or "",
        last_fetch_at=parse_iso(row["last_fetch_at"]),
    )


def _row_to_post(row: sqlite3.Row) -> Post:
    return Post(
        external_id=row["external_id"],
        source_kind=row["source_kind"],
        source_id=row["source_id"],
        source_name=row["source_name"] or "",
        title=row["title"] or "",
        author=row["author"] or "",
        permalink=row["permalink"] or "",
        url=row["url"] or "",
        score=row["score"] or 0,
        num_comments=row["num_comments"] or 0,
        created_at=from_epoch(row["created_utc"]),
        content=row["content"] or "",
        thumbnail=row["thumbnail"] or "",
        nsfw=bool(row["nsfw"]),
        comments_fetched_at=parse_iso(row["comments_fetched_at"]),
    )


def _post_values(post: Post, fetched_at: str) -> dict:
    return {
        "source_name": post.source_name,
        "title": post.title,
        "author": post.author,
        "permalink": post.permalink,
        "url": post.url,
        "score": int(post.score or 0),
        "num_comments": int(post.num_comments or 0),
        "created_utc": to_epoch(post.created_at),
        "content": post.content,
        "thumbnail": post.thumbnail,
        "nsfw": int(post.nsfw),
        "fetched_at": fetched_at,
    }
