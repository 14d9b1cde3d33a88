import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Source:
    id: int
    kind: str
    identifier: str
    name: str
    display_name: str = ""
    description: str = ""
    icon_url: str = ""
    last_fetch_at: datetime | None = None


@dataclass
class SourceMetadata:
    name: str
    display_name: str
    description: str = ""
    icon_url: str = ""


@dataclass
class Post:
    external_id: str
    source_kind: str
    title: str
    author: str
    permalink: str
    url: str
    created_at: datetime
    source_id: int | None = None
    source_name: str = ""
    score: int = 0
    num_comments: int = 0
    content: str = ""
    thumbnail: str = ""
    nsfw: bool = False
    comments_fetched_at: datetime | None = None


@dataclass
class Comment:
    external_id: str
    author: str
    body: str
    score: int
    created_at: datetime
    depth: int = 0
    replies: list["Comment"] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.depth < 0:
            raise ValueError(f"comment {self.external_id} has negative depth {self.depth}")
        for reply in self.replies:
            if reply.depth != self.depth + 1:
                raise ValueError(
                    f"reply {reply.external_id} has depth {reply.depth}, "
                    f"expected {self.depth + 1} under {self.external_id}"
                )


class BaseSource(ABC):
    """One adapter per source kind.

    Implementations translate upstream data into the canonical shapes above and
    never touch the cache; persistence belongs to the feed manager. The
    optional ``cancel`` event is checked before each upstream request, and a
    provider that sees it set raises ``FetchCancelled``.
    """

    kind: str = "base"

    @abstractmethod
    def fetch_posts(self, source: Source, cancel: threading.Event | None = None) -> list[Post]:
        ...

    @abstractmethod
    def fetch_comments(self, post: Post, cancel: threading.Event | None = None) -> list[Comment]:
        ...

    @abstractmethod
    def validate_source(self, identifier: str) -> SourceMetadata:
        ...
