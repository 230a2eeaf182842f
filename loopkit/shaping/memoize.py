"""
Memoization with least-recently-used eviction.

Results are cached under a canonical key derived from the call's
arguments. The cache holds at most ``capacity`` entries; inserting past
capacity evicts the entry whose last access is oldest. Calls that raise are
never cached.
"""

from __future__ import annotations

import functools
import itertools
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any, ParamSpec, TypeVar

from loopkit.exceptions import CacheKeyError, InvalidDurationError
from loopkit.timing.clock import Clock, MonotonicClock

logger = logging.getLogger(__name__)

# Sentinel object to distinguish cache misses from cached None values
_CACHE_MISS = object()

# Separates positional from keyword arguments inside a key
_KWD_MARK = ("__kwargs__",)

P = ParamSpec("P")
T = TypeVar("T")


@dataclass
class CacheConfig:
    """
    Configuration for an LRU cache.

    Attributes:
        capacity: Maximum number of entries. 0 disables caching.
        ttl: Seconds an entry stays valid. None = no expiry.
        typed: Cache arguments of different types separately
            (``f(1)`` vs ``f(1.0)``).

    Example:
        >>> config = CacheConfig(capacity=500, ttl=60.0)
    """

    capacity: int = 128
    ttl: float | None = None
    typed: bool = False

    def __post_init__(self) -> None:
        if self.capacity < 0:
            raise InvalidDurationError(parameter="capacity", value=self.capacity)
        if self.ttl is not None and self.ttl < 0:
            raise InvalidDurationError(parameter="ttl", value=self.ttl)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "capacity": self.capacity,
            "ttl": self.ttl,
            "typed": self.typed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheConfig:
        """Create config from dictionary."""
        return cls(
            capacity=data.get("capacity", 128),
            ttl=data.get("ttl"),
            typed=data.get("typed", False),
        )


@dataclass
class CacheEntry:
    """
    A single cache entry.

    Attributes:
        key: Canonical key.
        value: Cached value.
        last_access_sequence: Cache-wide access counter value at the last
            read or write. The smallest value is evicted first.
        hits: Number of cache hits served by this entry.
        created_at: Clock reading when the entry was stored.
        expires_at: Clock reading after which the entry is stale.
    """

    key: Hashable
    value: Any
    last_access_sequence: int
    hits: int = 0
    created_at: float = 0.0
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check if this entry has expired at ``now``."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": repr(self.key),
            "last_access_sequence": self.last_access_sequence,
            "hits": self.hits,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }


@dataclass
class CacheStats:
    """
    Cache statistics.

    Example:
        >>> stats = cache.get_stats()
        >>> print(f"Hit rate: {stats.hit_rate:.2%}")
    """

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0
    capacity: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def total_requests(self) -> int:
        """Get total number of cache requests."""
        return self.hits + self.misses

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "capacity": self.capacity,
            "hit_rate": self.hit_rate,
            "total_requests": self.total_requests,
        }


def _freeze(value: Any, typed: bool, seen: set[int]) -> Hashable:
    """Turn a value into a hashable, order-stable equivalent."""
    if isinstance(value, (list, tuple, dict, set, frozenset)):
        if id(value) in seen:
            raise CacheKeyError(value, "cyclic structure")
        seen = seen | {id(value)}

    if isinstance(value, dict):
        items = frozenset(
            (_freeze(k, typed, seen), _freeze(v, typed, seen)) for k, v in value.items()
        )
        frozen: Hashable = ("__dict__", items)
    elif isinstance(value, (list, tuple)):
        frozen = ("__seq__", tuple(_freeze(v, typed, seen) for v in value))
    elif isinstance(value, (set, frozenset)):
        frozen = ("__set__", frozenset(_freeze(v, typed, seen) for v in value))
    else:
        try:
            hash(value)
        except TypeError as e:
            raise CacheKeyError(value, str(e)) from e
        frozen = value

    if typed:
        return (type(value).__qualname__, frozen)
    return frozen


def make_key(
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    typed: bool = False,
) -> Hashable:
    """
    Build the canonical cache key for a call.

    Nested lists, tuples, dicts and sets are compared by value; dict and
    keyword ordering does not matter. Positional and keyword spellings of
    the same argument produce different keys.

    Args:
        args: Positional arguments.
        kwargs: Keyword arguments.
        typed: Include argument types in the key.

    Returns:
        A hashable key.

    Raises:
        CacheKeyError: If an argument is unhashable and not a container,
            or a container refers to itself.

    Example:
        >>> make_key((1, [2, 3]), {"b": {"y": 1, "x": 2}}) == make_key(
        ...     (1, [2, 3]), {"b": {"x": 2, "y": 1}}
        ... )
        True
    """
    key: tuple[Hashable, ...] = tuple(_freeze(a, typed, set()) for a in args)
    if kwargs:
        key += _KWD_MARK
        key += tuple((k, _freeze(kwargs[k], typed, set())) for k in sorted(kwargs))
    return key


class LRUCache:
    """
    Bounded key/value cache with least-recently-used eviction.

    Every get hit and every set stamps the entry with the next value of a
    cache-wide access counter. When a set pushes the size past capacity,
    the entry with the smallest stamp is evicted.

    Thread Safety:
        All operations are thread-safe using internal locking.

    Example:
        >>> cache = LRUCache(CacheConfig(capacity=2))
        >>> cache.set("a", 1)
        >>> cache.set("b", 2)
        >>> cache.get("a")
        1
        >>> cache.set("c", 3)   # evicts "b"
        >>> "b" in cache
        False
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the cache.

        Args:
            config: Cache configuration.
            clock: Clock used for TTL bookkeeping.
        """
        self.config = config or CacheConfig()
        self._clock = clock or MonotonicClock()

        # Kept in access order: first item has the smallest sequence
        self._cache: OrderedDict[Hashable, CacheEntry] = OrderedDict()
        self._access = itertools.count(1)
        self._lock = threading.RLock()
        self._stats = CacheStats(capacity=self.config.capacity)

    @property
    def capacity(self) -> int:
        return self.config.capacity

    def get(self, key: Hashable, default: Any = None) -> Any:
        """
        Get a cached value and mark it most recently used.

        Args:
            key: Cache key.
            default: Value to return on a miss. Pass a private sentinel to
                distinguish misses from cached None values.

        Returns:
            The cached value or default.
        """
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._stats.misses += 1
                return default

            if entry.is_expired(self._clock.now()):
                del self._cache[key]
                self._stats.misses += 1
                self._stats.expirations += 1
                return default

            entry.hits += 1
            entry.last_access_sequence = next(self._access)
            self._cache.move_to_end(key)
            self._stats.hits += 1
            return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        """
        Store a value, evicting least recently used entries past capacity.

        Args:
            key: Cache key.
            value: Value to store.
        """
        now = self._clock.now()
        expires_at = now + self.config.ttl if self.config.ttl is not None else None

        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                entry.value = value
                entry.created_at = now
                entry.expires_at = expires_at
                entry.last_access_sequence = next(self._access)
                self._cache.move_to_end(key)
            else:
                self._cache[key] = CacheEntry(
                    key=key,
                    value=value,
                    last_access_sequence=next(self._access),
                    created_at=now,
                    expires_at=expires_at,
                )

            while len(self._cache) > self.config.capacity:
                self._evict_one()

    def _evict_one(self) -> None:
        """Evict the entry with the smallest access sequence."""
        key, entry = self._cache.popitem(last=False)
        self._stats.evictions += 1
        logger.debug(
            f"Evicted cache entry {key!r} (last_access={entry.last_access_sequence})"
        )

    def contains(self, key: Hashable) -> bool:
        """Check for a live entry without touching its recency."""
        with self._lock:
            entry = self._cache.get(key)
            return entry is not None and not entry.is_expired(self._clock.now())

    def invalidate(self, key: Hashable) -> bool:
        """
        Remove one entry.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared.
        """
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock.now()
        with self._lock:
            expired_keys = [k for k, v in self._cache.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]
                self._stats.expirations += 1
            return len(expired_keys)

    def entries(self) -> list[CacheEntry]:
        """Entries from least to most recently used."""
        with self._lock:
            return list(self._cache.values())

    def keys(self) -> list[Hashable]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._cache)

    def get_stats(self) -> CacheStats:
        """
        Get cache statistics.

        Returns:
            A snapshot of the current statistics.
        """
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                expirations=self._stats.expirations,
                size=len(self._cache),
                capacity=self.config.capacity,
            )

    def __contains__(self, key: Hashable) -> bool:
        return self.contains(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


def memoize(
    func: Callable[P, T] | None = None,
    capacity: int = 128,
    *,
    ttl: float | None = None,
    typed: bool = False,
    key_func: Callable[..., Hashable] | None = None,
    clock: Clock | None = None,
) -> Any:
    """
    Cache a function's results in an LRU cache.

    Equal arguments (by canonical key) hit the cache and skip the call.
    Exceptions propagate and leave nothing cached. The wrapper exposes
    ``cache``, ``cache_info()`` and ``cache_clear()``.

    Args:
        func: Function to wrap.
        capacity: Maximum cached results.
        ttl: Seconds a result stays valid. None = no expiry.
        typed: Cache arguments of different types separately.
        key_func: Custom ``key_func(*args, **kwargs) -> Hashable``.
        clock: Clock used for TTL bookkeeping.

    Returns:
        The wrapped function, or a decorator producing one.

    Raises:
        InvalidDurationError: If capacity or ttl is negative.

    Example:
        >>> @memoize(capacity=64)
        ... def fib(n):
        ...     return n if n < 2 else fib(n - 1) + fib(n - 2)
        >>>
        >>> fib(30)
        832040
        >>> fib.cache_info().hits > 0
        True
    """
    config = CacheConfig(capacity=capacity, ttl=ttl, typed=typed)

    def decorator(f: Callable[P, T]) -> Callable[P, T]:
        cache = LRUCache(config, clock=clock)

        @functools.wraps(f)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            if key_func is not None:
                key = key_func(*args, **kwargs)
            else:
                key = make_key(args, kwargs, config.typed)

            # Use sentinel to handle cached falsy values (None, False, 0)
            cached = cache.get(key, default=_CACHE_MISS)
            if cached is not _CACHE_MISS:
                return cached

            result = f(*args, **kwargs)
            cache.set(key, result)
            return result

        wrapper.cache = cache  # type: ignore[attr-defined]
        wrapper.cache_info = cache.get_stats  # type: ignore[attr-defined]
        wrapper.cache_clear = cache.clear  # type: ignore[attr-defined]
        return wrapper

    if func is None:
        return decorator
    return decorator(func)
