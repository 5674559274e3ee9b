"""
Cache utilities
Response caching for the leaderboard read surface and invalidation after
every recompute
"""

import functools

from flask import current_app, request

from prode import cache

LEADERBOARD_CACHE_PREFIX = "leaderboard"
LEADERBOARD_VERSION_KEY = "leaderboard_version"
LEADERBOARD_STALE_KEY = "leaderboard_stale"


def _leaderboard_version():
    version = cache.get(LEADERBOARD_VERSION_KEY)
    if version is None:
        version = 1
        cache.set(LEADERBOARD_VERSION_KEY, version, timeout=0)
    return version


def make_cache_key(key_prefix):
    """Cache key from prefix, leaderboard version, path and query string"""
    args = "_".join(f"{k}_{v}" for k, v in sorted(request.args.items()))
    return f"{key_prefix}_v{_leaderboard_version()}_{request.path}_{args}".replace(
        "/", "_"
    )


def cached_leaderboard_view(timeout=300, key_prefix=LEADERBOARD_CACHE_PREFIX):
    """
    Decorator for caching leaderboard JSON payloads

    The wrapped view returns a JSON-serialisable payload; the payload is
    cached and wrapped by the caller's jsonify. Keys carry the leaderboard
    version, so a recompute makes every cached page stale at once.

    Args:
        timeout: Cache timeout in seconds (default 5 minutes)
        key_prefix: Prefix for cache key
    """

    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            cache_key = make_cache_key(key_prefix)

            result = cache.get(cache_key)
            if result is not None:
                current_app.logger.debug(f"Cache hit for key: {cache_key}")
                return result

            result = f(*args, **kwargs)
            cache.set(cache_key, result, timeout=timeout)
            current_app.logger.debug(f"Cache set for key: {cache_key}")

            return result

        return wrapped

    return decorator


def invalidate_leaderboard_cache():
    """Bump the leaderboard version so cached pages are no longer read"""
    try:
        version = _leaderboard_version()
        cache.set(LEADERBOARD_VERSION_KEY, version + 1, timeout=0)
        current_app.logger.debug(f"Leaderboard cache version -> {version + 1}")
    except Exception as e:
        # The cache is an optimisation; a failed bump must not fail settlement
        current_app.logger.error(f"Failed to invalidate leaderboard cache: {e}")


def mark_leaderboard_stale(reason):
    """Flag the leaderboard for a rebuild by the next pending-settlement run"""
    try:
        cache.set(LEADERBOARD_STALE_KEY, str(reason), timeout=0)
    except Exception as e:
        current_app.logger.error(f"Failed to flag leaderboard as stale: {e}")


def clear_leaderboard_stale():
    try:
        cache.delete(LEADERBOARD_STALE_KEY)
    except Exception as e:
        current_app.logger.error(f"Failed to clear leaderboard stale flag: {e}")


def leaderboard_stale_reason():
    """Reason recorded by the last failed recompute, or None"""
    return cache.get(LEADERBOARD_STALE_KEY)
