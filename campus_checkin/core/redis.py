from __future__ import annotations
import logging
import redis.asyncio as redis
from .config import get_settings

_settings = get_settings()
_r: redis.Redis | None = None
logger = logging.getLogger(__name__)

def get_redis() -> redis.Redis:
    global _r
    if _r is None:
        _r = redis.from_url(_settings.redis_url, decode_responses=True)
    return _r

async def ping_redis() -> bool:
    try:
        r = get_redis()
        pong = await r.ping()
        return bool(pong)
    except redis.RedisError as e:
        logger.warning("redis unavailable: %s", e)
        return False

async def close_redis() -> None:
    global _r
    if _r is not None:
        await _r.aclose()
        _r = None

# ---- fixed-window rate limit per IP/route, applied to scanning ----
async def allow_request(ip: str, route_key: str) -> bool:
    if not _settings.rl_enabled:
        return True
    r = get_redis()
    key = f"rl:{route_key}:{ip}"
    try:
        pipe = r.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = await pipe.execute()
        # the window starts at the first hit; later hits must not extend it
        if ttl < 0:
            await r.expire(key, _settings.rl_window_seconds)
    except redis.RedisError as e:
        # fail open
        logger.warning("rate limiter unavailable: %s", e)
        return True
    return int(count) <= _settings.rl_max_reqs
