# visibility_scan/services/rate_limiter.py
"""
Distributed rate limiter helpers shared by provider adapters and the cost sink.

- get_redis()
    Lazily connected Redis client, or None when Redis is unreachable.

- allow_platform_request(platform, max_requests, window_seconds)
    Sliding-window per-platform limiter (Redis ZSET). Returns True if allowed.

Notes:
- Requires Redis available at cfg.REDIS_URL (visibility_scan.config.cfg).
- If Redis is unavailable the limiter is permissive: probes are never blocked
  just because the coordination store is down.
"""
from __future__ import annotations
import time
import uuid
import logging
from typing import Optional
from redis import Redis, RedisError
from visibility_scan.config import cfg

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

_redis_client: Optional[Redis] = None


def get_redis() -> Optional[Redis]:
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    try:
        _redis_client = Redis.from_url(cfg.REDIS_URL, decode_responses=True)
        # quick ping to validate connection
        _redis_client.ping()
        logger.debug("Connected to Redis at %s", cfg.REDIS_URL)
        return _redis_client
    except Exception as e:
        logger.warning("Redis not available: %s", e)
        _redis_client = None
        return None


def reset_redis() -> None:
    """Drop the cached client so the next get_redis() reconnects."""
    global _redis_client
    _redis_client = None


# -- Sliding window platform limiter (Redis ZSET) --
# Key: rl:platform:<platform>
def allow_platform_request(platform: str, max_requests: int, window_seconds: int = 60) -> bool:
    """
    Return True if a request to 'platform' is allowed under the sliding window
    of max_requests per window_seconds. max_requests <= 0 means unlimited.
    """
    if max_requests <= 0:
        return True

    r = get_redis()
    if not r:
        logger.debug("Redis unavailable; permissive fallback for platform %s", platform)
        return True

    key = f"rl:platform:{platform}"
    now_ms = int(time.time() * 1000)
    window_start = now_ms - (window_seconds * 1000)
    try:
        r.zremrangebyscore(key, 0, window_start)
        count = r.zcard(key)
        if count >= max_requests:
            logger.info("Platform %s blocked by distributed limiter (count=%s >= max=%s)", platform, count, max_requests)
            return False
        # member must be unique even when two probes land in the same millisecond
        r.zadd(key, {f"{now_ms}:{uuid.uuid4().hex[:6]}": now_ms})
        r.expire(key, window_seconds + 5)
        return True
    except RedisError as e:
        logger.exception("Redis error in allow_platform_request: %s", e)
        return True
