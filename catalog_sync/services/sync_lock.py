"""Redis lock preventing overlapping catalog syncs of the same type."""
from typing import Optional, Tuple

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)

SYNC_LOCK_KEY_PREFIX = "catalog-sync:lock"
DEFAULT_LOCK_TTL_SECONDS = 7200

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def lock_key(catalog_type: str) -> str:
    return f"{SYNC_LOCK_KEY_PREFIX}:{catalog_type}"


def _decode(value) -> str:
    if value is None:
        return "unknown"
    return value.decode() if isinstance(value, bytes) else str(value)


async def acquire_sync_lock(
    redis: Redis,
    catalog_type: str,
    holder_id: str,
    ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
) -> Tuple[bool, Optional[str]]:
    """Acquire the lock for catalog_type using SET NX with a TTL.

    Returns:
        (True, None) when acquired, (False, current_holder) otherwise
    """
    key = lock_key(catalog_type)
    log = logger.bind(catalog_type=catalog_type, holder_id=holder_id)
    try:
        acquired = await redis.set(key, holder_id, nx=True, ex=ttl_seconds)
        if acquired:
            log.info("sync_lock_acquired", ttl_seconds=ttl_seconds)
            return True, None
        current_holder = _decode(await redis.get(key))
        log.warning("sync_lock_denied", current_holder=current_holder)
        return False, current_holder
    except RedisError as e:
        log.error("sync_lock_acquire_failed", error=str(e))
        raise


async def release_sync_lock(redis: Redis, catalog_type: str, holder_id: str) -> bool:
    """Release the lock only if holder_id still owns it."""
    key = lock_key(catalog_type)
    log = logger.bind(catalog_type=catalog_type, holder_id=holder_id)
    try:
        released = await redis.eval(_RELEASE_SCRIPT, 1, key, holder_id)
        if released:
            log.info("sync_lock_released")
            return True
        log.warning("sync_lock_not_owned", current_holder=_decode(await redis.get(key)))
        return False
    except RedisError as e:
        log.error("sync_lock_release_failed", error=str(e))
        raise
