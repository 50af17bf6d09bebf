"""Caching, retrying wrapper around any text embedding backend."""

from __future__ import annotations

import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import EmbeddingConfig
from .contracts import EmbeddingService
from .errors import EmbeddingError
from .retry import call_with_retry

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    text: str
    embedding: Tuple[float, ...]
    stored_at: float


class CachingEmbedder:
    """LRU + TTL cache in front of an :class:`EmbeddingService`.

    Vectors longer than ``target_dimensions`` are truncated, which is how
    the upstream embedding models are meant to be shortened. Backend
    failures are retried with backoff and surface as :class:`EmbeddingError`.
    """

    def __init__(
        self,
        backend: EmbeddingService,
        config: Optional[EmbeddingConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backend = backend
        self.config = config or EmbeddingConfig()
        self._clock = clock
        self._sleep = sleep
        self._cache: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    def embed(self, text: str) -> List[float]:
        key = self._make_key(text)
        with self._lock:
            entry = self._get(key)
            if entry is not None:
                self.hits += 1
                return list(entry.embedding)
            self.misses += 1
        # backend call runs outside the lock
        try:
            raw = call_with_retry(
                lambda: self.backend.embed(text),
                self.config.retry,
                label="embedding",
                sleep=self._sleep,
            )
        except Exception as exc:
            raise EmbeddingError(f"embedding failed: {exc}") from exc
        reduced = self._reduce(raw)
        with self._lock:
            self._cache[key] = _CacheEntry(text=text, embedding=reduced, stored_at=self._clock())
            self._cache.move_to_end(key)
            while len(self._cache) > self.config.cache_max_entries:
                self._cache.popitem(last=False)
        return list(reduced)

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        return [self.embed(text) for text in texts]

    def prune(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._cache.items() if now - e.stored_at > self.config.cache_ttl_s]
            for key in expired:
                del self._cache[key]
        return len(expired)

    def stats(self) -> Dict[str, float]:
        with self._lock:
            return {
                "size": len(self._cache),
                "hits": self.hits,
                "misses": self.misses,
                "max_age_s": self.config.cache_ttl_s,
            }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get(self, key: str) -> Optional[_CacheEntry]:
        # caller holds the lock
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > self.config.cache_ttl_s:
            del self._cache[key]
            return None
        self._cache.move_to_end(key)
        return entry

    def _reduce(self, raw: Sequence[float]) -> Tuple[float, ...]:
        vec = np.asarray(raw, dtype=float).reshape(-1)
        if vec.size == 0 or not np.all(np.isfinite(vec)):
            raise EmbeddingError("embedding backend returned an empty or non-finite vector")
        target = self.config.target_dimensions
        if target > 0 and vec.size > target:
            vec = vec[:target]
        return tuple(float(v) for v in vec)

    @staticmethod
    def _make_key(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()


__all__ = ["CachingEmbedder"]
