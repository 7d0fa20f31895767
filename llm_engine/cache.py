"""
Response cache for completed (non-streaming) requests.

Entries are keyed by a hash of the request content, expire after a TTL and
are evicted when the total serialized size would exceed the configured
ceiling. Eviction removes the entry with the lowest
``hits * HIT_WEIGHT_MS + created_at_ms`` first, so rarely read and older
entries go before frequently read and newer ones.
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .models import LLMRequest, LLMResponse

logger = logging.getLogger(__name__)

KEY_PREFIX = "llm_cache:"
# Only the first 1000 characters of each message participate in the key
KEY_CONTENT_WINDOW = 1000
# One hit outweighs one second of age
HIT_WEIGHT_MS = 1000


def make_key(request: LLMRequest, model_id: str | None = None) -> str:
    """
    Build the cache key for a request.

    The key covers the model id, each message's role and (truncated)
    content, the mode, the answer type and the explicit temperature.
    Equal inputs always produce equal keys.

    Args:
        request: The original caller request
        model_id: Resolved model id; defaults to ``request.model_id``
    """
    raw = json.dumps(
        {
            "model": model_id or request.model_id,
            "messages": [
                {"role": m.role, "content": m.content[:KEY_CONTENT_WINDOW]}
                for m in request.messages
            ],
            "mode": request.mode,
            "answer_type": request.answer_type,
            "temperature": request.params.temperature,
        },
        sort_keys=True,
        ensure_ascii=False,
    )
    return f"{KEY_PREFIX}{hashlib.sha256(raw.encode('utf-8')).hexdigest()}"


def response_size(response: LLMResponse) -> int:
    """UTF-8 byte length of the response's JSON serialization."""
    return len(json.dumps(response.to_dict(), ensure_ascii=False).encode("utf-8"))


@dataclass
class CacheEntry:
    """A stored response and its bookkeeping."""
    key: str
    response: LLMResponse
    created_at: float
    expires_at: float
    size_bytes: int
    hits: int = 0

    @property
    def eviction_score(self) -> float:
        return self.hits * HIT_WEIGHT_MS + self.created_at * 1000


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache occupancy."""
    entries: int
    size_bytes: int
    size_mb: float
    max_size_mb: float
    total_hits: int


class ResponseCache:
    """
    Size-bounded TTL cache of LLMResponse objects.

    Args:
        max_size_mb: Ceiling on the total serialized size of all entries
        ttl_ms: Lifetime of an entry in milliseconds
        clock: Returns the current time in seconds
    """

    def __init__(
        self,
        max_size_mb: float = 100.0,
        ttl_ms: int = 3_600_000,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size_mb = max_size_mb
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._size_bytes = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> LLMResponse | None:
        """
        Return the cached response for ``key`` if present and not expired.

        An expired entry is removed and reported as a miss.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                self._remove(key)
                return None
            entry.hits += 1
            return entry.response

    def set(self, key: str, response: LLMResponse) -> bool:
        """
        Store a response, evicting entries until it fits.

        Returns:
            False when the response alone is larger than the ceiling and was
            not stored, True otherwise
        """
        size = response_size(response)
        if size > self.max_size_bytes:
            logger.warning(
                "Response of %d bytes exceeds cache ceiling of %d bytes; not cached",
                size, self.max_size_bytes,
            )
            return False

        with self._lock:
            if key in self._entries:
                self._remove(key)
            while self._entries and self._size_bytes + size > self.max_size_bytes:
                self._evict_one()

            now = self._clock()
            self._entries[key] = CacheEntry(
                key=key,
                response=response,
                created_at=now,
                expires_at=now + self.ttl_ms / 1000,
                size_bytes=size,
            )
            self._size_bytes += size
        return True

    def _evict_one(self) -> None:
        victim = min(self._entries.values(), key=lambda e: e.eviction_score)
        logger.debug("Evicting cache entry %s (hits=%d)", victim.key[:24], victim.hits)
        self._remove(victim.key)

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._size_bytes -= entry.size_bytes

    def prune_expired(self) -> int:
        """Drop every expired entry, returning how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in expired:
                self._remove(key)
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._size_bytes = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                entries=len(self._entries),
                size_bytes=self._size_bytes,
                size_mb=self._size_bytes / (1024 * 1024),
                max_size_mb=self.max_size_mb,
                total_hits=sum(e.hits for e in self._entries.values()),
            )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
