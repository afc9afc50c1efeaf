# range_controller/cloning/lock.py
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Optional

import redis

from range_controller.exceptions import LockContentionError, TransientError

logger = logging.getLogger(__name__)

VMID_LOCK = "lock:vmid"
POD_ID_LOCK = "lock:podid"
SDN_LOCK = "lock:sdn"

# delete only if the caller still owns the key
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# refresh the TTL only if the caller still owns the key
EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""


@dataclass(frozen=True)
class LockHandle:
    key: str
    token: str


class DistributedLock:
    """
    Redis-backed mutex with an ownership token and a TTL.
    Usage:
        with locks.hold(VMID_LOCK):
            # critical section
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl: float = 60.0,
        max_attempts: int = 9,
        initial_backoff: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.redis = redis_client
        self.ttl = ttl
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self._sleep = sleep

    def acquire(
        self,
        key: str,
        ttl: Optional[float] = None,
        max_attempts: Optional[int] = None,
        initial_backoff: Optional[float] = None,
    ) -> LockHandle:
        ttl = self.ttl if ttl is None else ttl
        max_attempts = self.max_attempts if max_attempts is None else max_attempts
        backoff = self.initial_backoff if initial_backoff is None else initial_backoff

        token = uuid.uuid4().hex
        for attempt in range(1, max_attempts + 1):
            try:
                ok = self.redis.set(key, token, nx=True, px=int(ttl * 1000))
            except redis.RedisError as e:
                raise TransientError(f"unexpected error while acquiring lock {key}: {e}") from e
            if ok:
                logger.debug("acquired %s on attempt %d", key, attempt)
                return LockHandle(key=key, token=token)
            if attempt == max_attempts:
                break
            logger.debug("%s busy, retrying in %.2fs (attempt %d/%d)", key, backoff, attempt, max_attempts)
            self._sleep(backoff)
            backoff *= 2

        raise LockContentionError(f"could not obtain lock {key!r} after {max_attempts} attempts")

    def release(self, handle: LockHandle) -> bool:
        try:
            released = self.redis.eval(RELEASE_SCRIPT, 1, handle.key, handle.token)
        except redis.RedisError as e:
            # the TTL still frees the key
            logger.warning("failed to release %s: %s", handle.key, e)
            return False
        if not released:
            logger.warning("lock %s expired before release", handle.key)
        return bool(released)

    def extend(self, handle: LockHandle, ttl: Optional[float] = None):
        """Reset the TTL of a held lock. Raises LockContentionError if it was lost meanwhile."""
        ttl = self.ttl if ttl is None else ttl
        try:
            extended = self.redis.eval(EXTEND_SCRIPT, 1, handle.key, handle.token, int(ttl * 1000))
        except redis.RedisError as e:
            raise TransientError(f"unexpected error while extending lock {handle.key}: {e}") from e
        if not extended:
            raise LockContentionError(f"lock {handle.key!r} expired while held")

    @contextmanager
    def hold(self, key: str, **kwargs):
        handle = self.acquire(key, **kwargs)
        try:
            yield handle
        finally:
            self.release(handle)
