"""
Redis client wrapper.

Responsibilities:
  • Token denylist — STRING keyed by revoked:{jti}, value "1",
                     TTL = the token's remaining validity

Bearer tokens are self-verifying, so logging out cannot make a token fail
signature checks. Instead the token id is parked here until the token would
have expired anyway; after that the key evicts itself and the expiry check
takes over.
"""
import logging
from typing import Optional

import redis.asyncio as aioredis

from app.config import settings

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    global _redis
    _redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        decode_responses=True,
    )
    await _redis.ping()
    logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialised — call init_redis() at startup")
    return _redis


# ─────────────────────── Token Denylist ───────────────────────────────────

REVOKED_KEY = "revoked:{jti}"


class RedisDenylist:
    """Time-bounded set of revoked token ids."""

    async def add(self, jti: str, ttl_seconds: int) -> None:
        r = get_redis()
        # A zero/negative TTL would be rejected by Redis; such a token is
        # already expired and needs no entry.
        if ttl_seconds <= 0:
            return
        await r.set(REVOKED_KEY.format(jti=jti), "1", ex=ttl_seconds)
        logger.debug("Revoked token %s for %ss", jti, ttl_seconds)

    async def contains(self, jti: str) -> bool:
        r = get_redis()
        return bool(await r.exists(REVOKED_KEY.format(jti=jti)))
