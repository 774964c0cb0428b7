from __future__ import annotations
import logging
import redis.asyncio as redis
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_r: redis.Redis | None = None

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
    except Exception:
        logger.warning("redis unreachable at %s", _settings.redis_url)
        return False

async def close_redis() -> None:
    global _r
    if _r is not None:
        await _r.aclose()
        _r = None

# ---- Fixed-window rate limit per client/route ----
async def allow_request(client_key: str, route_key: str) -> bool:
    """
    Increment a per-window counter; allow while it stays <= max.
    Fails open when Redis is down so scans keep working at the venue.
    """
    if not _settings.rl_enabled:
        return True
    key = f"rl:{route_key}:{client_key}"
    try:
        r = get_redis()
        pipe = r.pipeline()
        pipe.incr(key)
        pipe.expire(key, _settings.rl_window_seconds)
        count, _ = await pipe.execute()
    except Exception:
        logger.warning("rate limit check skipped for %s", route_key, exc_info=True)
        return True
    return int(count) <= _settings.rl_max_reqs
