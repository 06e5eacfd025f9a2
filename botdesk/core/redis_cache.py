import logging
import time
import uuid
from typing import Optional
import redis
from redis.exceptions import RedisError
from botdesk.core.config import settings

logger = logging.getLogger(__name__)

# Delete the lock only if we still own it (token matches)
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisCache:
    """Redis-backed counters and locks for rate limiting and bot creation"""

    def __init__(self):
        """Initialize Redis cache (lazy connection)"""
        self._client: Optional[redis.Redis] = None
        self._connected = False

    def _connect(self):
        """Connect to Redis server; failures leave the cache unavailable"""
        client_kwargs = {
            'decode_responses': True,
            'socket_connect_timeout': 2,
            'socket_timeout': 2,
            'retry_on_timeout': False,
        }
        # settings.redis_password takes precedence over a password in the URL
        if settings.redis_password:
            client_kwargs['password'] = settings.redis_password

        try:
            client = redis.from_url(settings.redis_url, **client_kwargs)
            client.ping()
            self._client = client
            self._connected = True
            logger.info("RedisCache: Connected to Redis")
        except (RedisError, ValueError) as e:
            logger.warning(f"RedisCache: Connection failed - {e}")
            self._client = None
            self._connected = False

    def _get_client(self) -> Optional[redis.Redis]:
        if not self._connected or self._client is None:
            self._connect()
        return self._client

    def _reset(self):
        self._connected = False
        self._client = None

    def get_int(self, key: str) -> Optional[int]:
        """Get an integer counter, None when missing or Redis is unavailable"""
        client = self._get_client()
        if client is None:
            return None

        try:
            data = client.get(key)
            if data is None:
                return None
            return int(data)
        except ValueError:
            logger.warning(f"RedisCache: Non-integer value for key {key}, deleting")
            client.delete(key)
            return None
        except RedisError as e:
            logger.error(f"RedisCache: Error getting key {key}: {e}")
            self._reset()
            return None

    def set(self, key: str, value: int, ttl_minutes: int):
        """Set an integer counter with TTL in minutes"""
        client = self._get_client()
        if client is None:
            return  # Fail silently if Redis is unavailable

        try:
            client.setex(key, ttl_minutes * 60, int(value))
            logger.debug(f"Cache set: {key}, TTL: {ttl_minutes} minutes")
        except RedisError as e:
            logger.error(f"RedisCache: Error setting key {key}: {e}")
            self._reset()

    def ping(self) -> bool:
        """Check if Redis connection is alive"""
        client = self._get_client()
        if client is None:
            return False
        try:
            return bool(client.ping())
        except RedisError:
            self._reset()
            return False

    def acquire_lock(self, lock_key: str, timeout_seconds: int = 10, block_seconds: int = 5) -> Optional[str]:
        """
        Acquire a distributed lock using Redis.

        Args:
            lock_key: Unique key for the lock
            timeout_seconds: How long the lock will be held (auto-release)
            block_seconds: How long to wait trying to acquire the lock

        Returns:
            The lock token if acquired (pass it to release_lock), None otherwise
        """
        client = self._get_client()
        if client is None:
            logger.warning(f"RedisCache: Cannot acquire lock {lock_key} - Redis not available")
            return None

        token = str(uuid.uuid4())
        deadline = time.monotonic() + block_seconds
        try:
            while True:
                # SET key value NX EX timeout - atomic operation
                if client.set(lock_key, token, nx=True, ex=timeout_seconds):
                    logger.debug(f"RedisCache: Lock acquired - {lock_key}")
                    return token
                if time.monotonic() >= deadline:
                    break
                time.sleep(0.05)
        except RedisError as e:
            logger.error(f"RedisCache: Error acquiring lock {lock_key}: {e}")
            self._reset()
            return None

        logger.debug(f"RedisCache: Failed to acquire lock - {lock_key}")
        return None

    def release_lock(self, lock_key: str, token: str):
        """Release a distributed lock previously returned by acquire_lock"""
        client = self._get_client()
        if client is None:
            logger.warning(f"RedisCache: Cannot release lock {lock_key} - Redis not available")
            return

        try:
            client.eval(_RELEASE_LOCK_SCRIPT, 1, lock_key, token)
            logger.debug(f"RedisCache: Lock released - {lock_key}")
        except RedisError as e:
            logger.error(f"RedisCache: Error releasing lock {lock_key}: {e}")
            self._reset()
