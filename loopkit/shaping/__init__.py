"""
Call shaping for loopkit.

Wrappers that change when, or whether, a function actually runs:

- debounce: one run after the calls stop for ``wait`` seconds.
- throttle: at most one run per ``limit`` seconds (leading edge, optional
  trailing edge).
- memoize: cached results with least-recently-used eviction.

Example:
    >>> from loopkit.shaping import debounce, memoize, throttle
    >>>
    >>> @memoize(capacity=256)
    ... def lookup(user_id):
    ...     return db.fetch_user(user_id)
    >>>
    >>> @throttle(limit=1.0)
    ... def log_progress(done):
    ...     print(done)
    >>>
    >>> save_later = debounce(save, wait=0.5)
"""

from loopkit.shaping.debounce import Debouncer, debounce
from loopkit.shaping.memoize import (
    CacheConfig,
    CacheEntry,
    CacheStats,
    LRUCache,
    make_key,
    memoize,
)
from loopkit.shaping.throttle import Throttler, throttle

__all__ = [
    # Debounce
    "Debouncer",
    "debounce",
    # Throttle
    "Throttler",
    "throttle",
    # Memoize
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "LRUCache",
    "make_key",
    "memoize",
]
