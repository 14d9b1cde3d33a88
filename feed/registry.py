import threading

from core.errors import UnknownProviderError
from core.logger import get_logger
from sources.base_source import BaseSource
from sources.hackernews_source import HackerNewsSource
from sources.lobsters_source import LobstersSource
from sources.reddit_source import RedditSource
from sources.rss_source import RSSSource

log = get_logger(__name__)


class ProviderRegistry:
    """Maps a source kind to the provider that handles it.

    Built once at startup and handed to the feed manager. Registering the
    same kind again replaces the earlier provider, which tests use to swap in
    fakes. After :meth:`seal` the registry is read-only.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._providers: dict[str, BaseSource] = {}
        self._sealed = False

    def register(self, provider: BaseSource) -> None:
        with self._lock:
            if self._sealed:
                raise RuntimeError("provider registry is sealed")
            if provider.kind in self._providers:
                log.debug("Replacing provider for kind %s", provider.kind)
            self._providers[provider.kind] = provider

    def resolve(self, kind: str) -> BaseSource:
        with self._lock:
            provider = self._providers.get(kind)
        if provider is None:
            raise UnknownProviderError(kind)
        return provider

    def kinds(self) -> list[str]:
        with self._lock:
            return sorted(self._providers)

    def seal(self) -> None:
        with self._lock:
            self._sealed = True


DEFAULT_PROVIDERS = (RedditSource, HackerNewsSource, LobstersSource, RSSSource)


def build_default_registry(seal: bool = True) -> ProviderRegistry:
    registry = ProviderRegistry()
    for factory in DEFAULT_PROVIDERS:
        try:
            registry.register(factory())
            log.info("%s provider enabled", factory.kind)
        except Exception as exc:
            log.warning("%s provider unavailable: %s", factory.kind, exc)
    if seal:
        registry.seal()
    return registry
