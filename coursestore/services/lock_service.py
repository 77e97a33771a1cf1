# coursestore/services/lock_service.py
import redis

from coursestore.utils.retry import redis_retry
from coursestore.utils.settings import REDIS_URL
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)

#LUA compare and delete, runs atomically on the redis side
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

# nobody can slip in between GET and DEL, the script is one uninterruptible operation


class LockService:
    """
    -short lived locks keyed by owner token
    -release only by the owner (lua compare and delete)
    -keys expire on their own after ttl
    """

    def __init__(self, url: str | None = None):
        self.redis = redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @staticmethod
    def checkout_key(session_id: str) -> str:
        return f"checkout:{session_id}:lock"

    @redis_retry()
    def acquire(self, key: str, owner: str, ttl: int) -> bool:
        logger.info(f"Acquire lock {key} for {owner}")
        #SET checkout:cs_123:lock "<owner>" NX EX 60
        return bool(self.redis.set(name=key, value=owner, nx=True, ex=ttl))

    @redis_retry()
    def release(self, key: str, owner: str) -> bool:
        logger.info(f"Release lock {key} for {owner}")
        res = self.redis.eval(_RELEASE_LUA, 1, key, owner)
        return bool(res)

    def acquire_checkout_lock(self, session_id: str, owner: str, ttl: int) -> bool:
        return self.acquire(self.checkout_key(session_id), owner, ttl)

    def release_checkout_lock(self, session_id: str, owner: str) -> bool:
        return self.release(self.checkout_key(session_id), owner)
