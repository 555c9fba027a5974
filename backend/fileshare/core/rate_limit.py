import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

import redis
from fastapi import HTTPException, Request

from fileshare.core.config import get_settings


logger = logging.getLogger("fs.ratelimit")


def get_client_ip(request: Request) -> str:
    """
    Best-effort client IP extraction.

    - Behind a proxy we try X-Forwarded-For.
    - In tests/dev, fall back to request.client.host.
    """
    xff = (request.headers.get("x-forwarded-for") or "").strip()
    if xff:
        # XFF may contain a chain: client, proxy1, proxy2
        return xff.split(",")[0].strip() or "unknown"
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _hash(s: str) -> str:
    s = (s or "").strip().lower()
    if not s:
        return "empty"
    return hashlib.sha256(s.encode("utf-8")).hexdigest()[:32]


_redis_client: Optional[redis.Redis] = None
_redis_lock = threading.Lock()


def _get_redis_client() -> Optional[redis.Redis]:
    """
    Lazily create a Redis client.

    If Redis is not configured or is unreachable, returns None and we fall back
    to in-memory counters (best-effort protection).
    """
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    url = (settings.redis_url or "").strip()
    if not url:
        return None

    with _redis_lock:
        if _redis_client is not None:
            return _redis_client
        try:
            client = redis.Redis.from_url(url, decode_responses=True)
            client.ping()
        except redis.RedisError:
            # Do not cache failures permanently; redis might appear later.
            logger.warning("redis unreachable; using in-memory rate limits")
            return None
        _redis_client = client
        return _redis_client


@dataclass(frozen=True)
class LimitResult:
    allowed: bool
    retry_after_seconds: int


_mem_lock = threading.Lock()
_mem_counters: dict[str, tuple[float, int]] = {}
_MEM_SWEEP_INTERVAL_SECONDS = 30
_mem_next_sweep_at = 0.0


def _sweep_expired(now: float) -> None:
    """Drop windows that have already reset. Caller holds `_mem_lock`."""
    global _mem_next_sweep_at
    if now < _mem_next_sweep_at:
        return
    expired = [k for k, (reset_at, _) in _mem_counters.items() if now >= reset_at]
    for k in expired:
        del _mem_counters[k]
    _mem_next_sweep_at = now + _MEM_SWEEP_INTERVAL_SECONDS


def _mem_hit(key: str, limit: int, window_seconds: int) -> LimitResult:
    now = time.time()
    with _mem_lock:
        _sweep_expired(now)
        reset_at, count = _mem_counters.get(key, (now + window_seconds, 0))
        if now >= reset_at:
            reset_at, count = now + window_seconds, 0
        count += 1
        _mem_counters[key] = (reset_at, count)
        allowed = count <= limit
        retry_after = max(0, int(reset_at - now)) if not allowed else 0
        return LimitResult(allowed=allowed, retry_after_seconds=retry_after)


def _redis_hit(key: str, limit: int, window_seconds: int) -> Optional[LimitResult]:
    client = _get_redis_client()
    if client is None:
        return None
    try:
        count = int(client.incr(key))
        if count == 1:
            client.expire(key, int(window_seconds))
        ttl = int(client.ttl(key))
    except redis.RedisError:
        logger.warning("redis rate-limit hit failed for %s; using in-memory counter", key)
        return None
    # ttl can be -1/-2; normalize
    retry_after = max(0, ttl) if count > limit else 0
    return LimitResult(allowed=(count <= limit), retry_after_seconds=retry_after)


def hit(key: str, limit: int, window_seconds: int) -> LimitResult:
    """
    Increment a counter in a fixed window and return whether request is allowed.
    Prefers Redis, falls back to in-memory.
    """
    res = _redis_hit(key, limit, window_seconds)
    if res is not None:
        return res
    return _mem_hit(key, limit, window_seconds)


def reset_memory_counters() -> None:
    global _mem_next_sweep_at
    with _mem_lock:
        _mem_counters.clear()
        _mem_next_sweep_at = 0.0


def enforce_rate_limit(
    request: Request,
    *,
    scope: str,
    limit: int,
    window_seconds: int,
    discriminator: str = "",
) -> None:
    """
    Rate limit helper. Raises HTTP 429 when exceeded.
    """
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return

    ip = get_client_ip(request)
    d = _hash(discriminator) if discriminator else ""
    key = f"fs:rl:{scope}:{ip}:{d}"
    res = hit(key, limit, window_seconds)
    if not res.allowed:
        headers = {"Retry-After": str(res.retry_after_seconds)} if res.retry_after_seconds else None
        raise HTTPException(status_code=429, detail="Too many requests", headers=headers)
