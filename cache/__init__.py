"""
Daemon API proxy caching module.

Short-lived, in-process caching of upstream daemon responses and network
aggregates, keyed by a fingerprint of the logical request.
"""

from .core import DEFAULT_TTL, RequestCache, fingerprint
from .monitoring import get_hit_ratio

__all__ = [
    'DEFAULT_TTL',
    'RequestCache',
    'fingerprint',
    'get_hit_ratio',
]
