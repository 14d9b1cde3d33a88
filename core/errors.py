class FeedError(Exception):
    """Base class for every error raised by the aggregation engine."""


class UnknownProviderError(FeedError):
    def __init__(self, kind: str) -> None:
        super().__init__(f"unknown provider kind: {kind}")
        self.kind = kind


class FetchError(FeedError):
    """Network, status or parse failure while talking to an upstream source."""


class FetchCancelled(FetchError):
    pass


class SourceValidationError(FeedError):
    """Candidate identifier does not name a real, fetchable source."""


class AlreadySubscribedError(FeedError):
    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"already subscribed to {kind} source {identifier!r}")
        self.kind = kind
        self.identifier = identifier


class SourceNotFoundError(FeedError):
    def __init__(self, source_id: int) -> None:
        super().__init__(f"source not found: {source_id}")
        self.source_id = source_id
