"""Last-known-good payload store consulted when a fetch fails.

Brief:
  FallbackCache keeps the most recent successful FetchResult per
  (name, endpoint) in a bounded LRU. CachingFetcher wraps an HttpFetcher:
  successes are recorded, failures are answered from the cache when an entry
  exists and re-raised otherwise.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Tuple

from cachetools import LRUCache

from .fetcher import FetchResult, HttpFetcher, HttpRecordError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 100

CacheKey = Tuple[str, str]


class FallbackCache:
    """Thread-safe LRU of FetchResult values keyed by (name, endpoint).

    Inputs:
      - maxsize: Capacity bound; least-recently-used entries are evicted first.

    Outputs:
      - FallbackCache instance.

    Notes:
      All operations are serialized with a single lock. Concurrent successes
      for the same key are last-writer-wins.

    Example use:
        >>> cache = FallbackCache(maxsize=2)
        >>> cache.set(("a.test.", "https://x/%(fqdn)"), FetchResult("1.2.3.4", 60))
        >>> cache.get(("a.test.", "https://x/%(fqdn)")).ttl
        60
    """

    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE) -> None:
        if int(maxsize) < 1:
            raise ValueError("fallback cache size must be at least 1")
        self._cache: LRUCache = LRUCache(maxsize=int(maxsize))
        self._lock = threading.Lock()

    @property
    def maxsize(self) -> int:
        return int(self._cache.maxsize)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get(self, key: CacheKey) -> Optional[FetchResult]:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: CacheKey, value: FetchResult) -> None:
        with self._lock:
            self._cache[key] = value


class CachingFetcher:
    """Brief: Serve the last good payload when the wrapped fetcher fails.

    Inputs (constructor):
      - fetcher: HttpFetcher performing the actual request.
      - cache: FallbackCache shared by all lookups of one plugin instance.

    Outputs:
      - CachingFetcher exposing the same fetch(name, endpoint) contract. A
        cache hit after a failure is indistinguishable from a fresh success.
    """

    def __init__(self, fetcher: HttpFetcher, cache: FallbackCache) -> None:
        self.fetcher = fetcher
        self.cache = cache

    def fetch(self, name: str, endpoint: str) -> FetchResult:
        key = (name, endpoint)
        try:
            result = self.fetcher.fetch(name, endpoint)
        except HttpRecordError as exc:
            cached = self.cache.get(key)
            if cached is None:
                raise
            logger.warning(
                "Serving cached payload for %s after fetch failure: %s", name, exc
            )
            return cached

        self.cache.set(key, result)
        return result
