"""
Prometheus metrics for the proxy request cache.
"""
from prometheus_client import Counter

CACHE_HITS = Counter('proxy_cache_hits_total', 'Total number of cache hits', ['cache_type'])
CACHE_MISSES = Counter('proxy_cache_misses_total', 'Total number of cache misses', ['cache_type'])


def record_hit(cache_type: str) -> None:
    CACHE_HITS.labels(cache_type=cache_type).inc()


def record_miss(cache_type: str) -> None:
    CACHE_MISSES.labels(cache_type=cache_type).inc()


def get_hit_ratio(cache_type: str) -> float:
    """
    Hit ratio recorded for a cache namespace since process start.

    Args:
        cache_type: Cache namespace label

    Returns:
        Hit ratio as a float between 0 and 1
    """
    hits = CACHE_HITS.labels(cache_type=cache_type)._value.get()
    misses = CACHE_MISSES.labels(cache_type=cache_type)._value.get()
    total = hits + misses

    if total == 0:
        return 0.0

    return hits / total
