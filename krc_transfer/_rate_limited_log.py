"""
Thread-safe rate-limited logging.

Notification callbacks run on the ledger client's thread and may see the
same irrelevant event many times; this keeps them visible without flooding
the log.
"""
import logging
import threading
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

_MAX_KEYS = 256

_caches = {}
_caches_lock = threading.RLock()


def _cache_for(interval: float) -> TTLCache:
    # One cache per interval so every key expires after its own interval
    with _caches_lock:
        cache = _caches.get(interval)
        if cache is None:
            cache = TTLCache(maxsize=_MAX_KEYS, ttl=interval)
            _caches[interval] = cache
        return cache


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: float = 60,
    logger_instance: Optional[logging.Logger] = None,
) -> bool:
    """
    Log a message at most once per ``interval`` seconds.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between identical messages in seconds
        logger_instance: Logger to use (defaults to module logger)

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    key = f"{log_instance.name}:{level}:{message}"

    with _caches_lock:
        cache = _cache_for(interval)
        if key in cache:
            return False
        cache[key] = True

    log_method(message)
    return True


def reset_rate_limits() -> None:
    """Forget every suppressed message."""
    with _caches_lock:
        for cache in _caches.values():
            cache.clear()
