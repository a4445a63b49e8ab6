"""
Tag-based read cache.

Read paths cache their results under one or more tags. Write paths
revalidate tags after they commit, which drops every entry carrying them and
notifies subscribers. Cached values must be JSON-serializable.
"""
import json
import time
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import redis

from response_insights.core.config import settings
from response_insights.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def document_tag_by_insight_id(insight_id: str) -> str:
    return f"documents-insight-{insight_id}"


def insight_tag_by_id(insight_id: str) -> str:
    return f"insights-{insight_id}"


def insight_tag_by_environment_id(environment_id: str) -> str:
    return f"environments-{environment_id}-insights"


def document_tag_by_environment_id(environment_id: str) -> str:
    return f"environments-{environment_id}-documents"


class InMemoryCacheBackend:
    """
    Process-local cache. Entries expire after their TTL; expired entries are
    swept on every write so keys that are never read again do not pile up.
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[float, Any, Tuple[str, ...]]] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def _drop(self, key: str) -> bool:
        # Caller holds self._lock.
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        for tag in entry[2]:
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]
        return True

    def _sweep(self, now: float) -> None:
        expired = [key for key, (expires_at, _, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            self._drop(key)

    def get(self, key: str) -> Tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            expires_at, value, _ = entry
            if expires_at <= time.monotonic():
                self._drop(key)
                return False, None
            return True, value

    def set(self, key: str, value: Any, tags: Iterable[str], ttl_seconds: int) -> None:
        with self._lock:
            now = time.monotonic()
            self._sweep(now)
            self._drop(key)
            tag_tuple = tuple(tags)
            self._entries[key] = (now + ttl_seconds, value, tag_tuple)
            for tag in tag_tuple:
                self._tags.setdefault(tag, set()).add(key)

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for tag in tags:
                for key in list(self._tags.get(tag, ())):
                    if self._drop(key):
                        removed += 1
                self._tags.pop(tag, None)
        return removed


class RedisCacheBackend:
    """
    Shared cache in Redis. Each tag is a Redis set holding the keys cached
    under it, so invalidation works across worker processes.
    """

    def __init__(self, client: "redis.Redis", prefix: str = "response-insights"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def _key(self, key: str) -> str:
        return f"{self.prefix}:key:{key}"

    def _tag(self, tag: str) -> str:
        return f"{self.prefix}:tag:{tag}"

    def get(self, key: str) -> Tuple[bool, Any]:
        raw = self.client.get(self._key(key))
        if raw is None:
            return False, None
        return True, json.loads(raw)

    def set(self, key: str, value: Any, tags: Iterable[str], ttl_seconds: int) -> None:
        pipe = self.client.pipeline()
        pipe.setex(self._key(key), ttl_seconds, json.dumps(value))
        for tag in tags:
            pipe.sadd(self._tag(tag), self._key(key))
            pipe.expire(self._tag(tag), ttl_seconds)
        pipe.execute()

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        removed = 0
        for tag in tags:
            tag_key = self._tag(tag)
            keys = self.client.smembers(tag_key)
            if keys:
                removed += self.client.delete(*keys)
            self.client.delete(tag_key)
        return removed


class TagCache:
    """
    Front for a cache backend with tag revalidation and change listeners.
    """

    def __init__(self, backend=None, ttl_seconds: int = 300):
        self.backend = backend or InMemoryCacheBackend()
        self.ttl_seconds = ttl_seconds
        self._listeners: List[Callable[[List[str]], None]] = []
        # Bumped on every revalidation of a tag in this process.
        self._generations: Dict[str, int] = {}
        self._generation_lock = threading.Lock()

    def _generation(self, tags: List[str]) -> Tuple[int, ...]:
        # Caller holds self._generation_lock.
        return tuple(self._generations.get(tag, 0) for tag in tags)

    def get_or_set(self, key: str, tags: Iterable[str], loader: Callable[[], Any]) -> Any:
        """
        Return the cached value for `key`, or load and cache it.

        A value whose tags were revalidated while the loader ran may predate
        that write, so it is returned but not cached. Revalidations from
        other processes sharing a Redis backend are not seen here.
        """
        hit, value = self.backend.get(key)
        if hit:
            logger.debug(f"TagCache: Hit for key '{key}'.")
            return value
        tag_list = list(tags)
        with self._generation_lock:
            before = self._generation(tag_list)
        value = loader()
        with self._generation_lock:
            if self._generation(tag_list) != before:
                logger.debug(f"TagCache: Tags of '{key}' changed during load; not caching.")
                return value
            self.backend.set(key, value, tag_list, self.ttl_seconds)
        return value

    def revalidate(self, *tags: Optional[str]) -> None:
        """Drop every entry carrying one of `tags` and notify subscribers."""
        tag_list = [tag for tag in tags if tag]
        if not tag_list:
            return
        with self._generation_lock:
            for tag in tag_list:
                self._generations[tag] = self._generations.get(tag, 0) + 1
            removed = self.backend.invalidate_tags(tag_list)
        logger.debug(f"TagCache: Revalidated tags {tag_list}, removed {removed} entries.")
        for listener in list(self._listeners):
            try:
                listener(tag_list)
            except Exception:
                # The write that triggered this has already committed.
                logger.exception(f"TagCache: Listener {listener!r} failed for tags {tag_list}.")

    def subscribe(self, listener: Callable[[List[str]], None]) -> Callable[[], None]:
        """Register `listener` for revalidation events. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


_cache: Optional[TagCache] = None
_cache_lock = threading.Lock()


def get_cache() -> TagCache:
    """Return the process-wide cache, building it from settings on first use."""
    global _cache
    with _cache_lock:
        if _cache is None:
            if settings.CACHE_BACKEND == "redis":
                if not settings.REDIS_URL:
                    raise ConfigurationError("CACHE_BACKEND=redis requires REDIS_URL.")
                backend = RedisCacheBackend.from_url(settings.REDIS_URL)
                logger.info("TagCache: Using Redis backend.")
            else:
                backend = InMemoryCacheBackend()
            _cache = TagCache(backend, ttl_seconds=settings.CACHE_TTL_SECONDS)
        return _cache
