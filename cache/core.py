"""
Core request caching for the daemon API proxy.

Responses from upstream daemons, the local block store and the seed
aggregates are all kept in a single in-process cache keyed by a fingerprint
of the logical request (target host, target port, method and parameters).
Entries expire after a per-entry time-to-live; there is no other eviction.
"""
import copy
import hashlib
import json
import threading
import time
from typing import Any, Callable, Dict, Optional

import structlog

from .monitoring import record_hit, record_miss

logger = structlog.get_logger()

DEFAULT_TTL = 30


def fingerprint(host: Any, port: Any, method: Any, params: Any = None) -> str:
    """
    Build the cache key for one logical request.

    Host and port are compared as strings so a port taken from a URL path
    and a port taken from configuration produce the same key. Parameters are
    serialized with sorted keys so dict ordering never changes the key.

    Args:
        host: Target host (or a pseudo-host such as ``network``)
        port: Target port
        method: Method name or tag identifying the operation
        params: Method parameters, any JSON-serializable value

    Returns:
        A 64 character hex digest
    """
    payload = json.dumps(
        [str(host), str(port), method, params],
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class RequestCache:
    """
    In-memory TTL cache for proxy responses.

    Values are deep-copied on the way in and on the way out so no caller can
    mutate a cached entry after it has been written. ``get`` and ``set``
    only ever hold the internal lock for a dictionary access, which keeps the
    cache safe to share between request handlers, refresh jobs and executor
    threads.
    """

    def __init__(self, default_ttl: float = DEFAULT_TTL,
                 clock: Callable[[], float] = time.monotonic,
                 namespace: str = "request"):
        """
        Initialize the cache.

        Args:
            default_ttl: Time-to-live in seconds for entries set without one
            clock: Monotonic time source, replaceable in tests
            namespace: Label used for the Prometheus hit/miss counters
        """
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._namespace = namespace
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    @property
    def namespace(self) -> str:
        return self._namespace

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from the cache.

        Args:
            key: Fingerprint of the request

        Returns:
            A copy of the cached value, or None if absent or expired
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry["expires_at"] <= now:
                del self._entries[key]
                entry = None

            if entry is None:
                self._misses += 1
            else:
                self._hits += 1

        if entry is None:
            record_miss(self._namespace)
            return None

        record_hit(self._namespace)
        return copy.deepcopy(entry["value"])

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """
        Store a value, replacing any previous entry and restarting its expiry.

        Args:
            key: Fingerprint of the request
            value: Value to cache
            ttl: Time-to-live in seconds, or None to use the default

        Returns:
            True once stored
        """
        ttl = self._default_ttl if ttl is None else ttl
        entry = {
            "value": copy.deepcopy(value),
            "expires_at": self._clock() + ttl,
        }
        with self._lock:
            self._entries[key] = entry
        return True

    def delete(self, key: str) -> bool:
        """Delete a key, returning True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def sweep(self) -> int:
        """
        Drop every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items()
                       if entry["expires_at"] <= now]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug("cache_swept", namespace=self._namespace, removed=len(expired))
        return len(expired)

    def flush(self) -> bool:
        """Clear all entries and statistics."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with size, hits, misses and hit ratio
        """
        with self._lock:
            total_requests = self._hits + self._misses
            return {
                "namespace": self._namespace,
                "size": len(self._entries),
                "default_ttl": self._default_ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_ratio": self._hits / total_requests if total_requests > 0 else 0,
            }
