import redis
import json
import logging
from typing import Optional, Any

logger = logging.getLogger(__name__)

# Default TTL (in seconds)
CACHE_TTL_MEDIUM = 300  # 5 minutes

# Set by init_cache(); None means every caller falls through to storage
redis_client = None


def init_cache(app):
    """Create the Redis client from app config, or leave caching disabled"""
    global redis_client

    if not app.config.get('CACHE_ENABLED', True):
        redis_client = None
        logger.info("Cache disabled by configuration")
        return None

    url = app.config.get('REDIS_URL')
    timeout = app.config.get('CACHE_TIMEOUT', 3.0)
    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        # Test connection
        client.ping()
        redis_client = client
        logger.info(f"Redis connected successfully at {url}")
    except Exception as e:
        logger.warning(f"Redis connection failed: {str(e)}. Caching will be disabled.")
        redis_client = None
    return redis_client


class CacheManager:
    """Manager for Redis caching operations"""

    @staticmethod
    def is_available() -> bool:
        """Check if Redis is available"""
        return redis_client is not None

    @staticmethod
    def client():
        """Raw client for callers that need more than get/set (rate limits, leases, pub/sub)"""
        return redis_client

    @staticmethod
    def get(key: str) -> Optional[Any]:
        """
        Get value from cache

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found/error
        """
        if not CacheManager.is_available():
            return None

        try:
            value = redis_client.get(key)
            if value is not None:
                return json.loads(value)
            return None
        except Exception as e:
            logger.error(f"Cache get error for key '{key}': {str(e)}")
            return None

    @staticmethod
    def set(key: str, value: Any, ttl: int = CACHE_TTL_MEDIUM) -> bool:
        """
        Set value in cache with TTL

        Args:
            key: Cache key
            value: Value to cache (will be JSON serialized)
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        if not CacheManager.is_available():
            return False

        try:
            redis_client.setex(
                key,
                ttl,
                json.dumps(value, default=str)  # default=str handles datetime, UUID
            )
            logger.debug(f"Cached key '{key}' with TTL {ttl}s")
            return True
        except Exception as e:
            logger.error(f"Cache set error for key '{key}': {str(e)}")
            return False

    @staticmethod
    def delete(*keys: str) -> bool:
        """
        Delete one or more keys from cache

        Returns:
            True if successful, False otherwise
        """
        if not CacheManager.is_available() or not keys:
            return False

        try:
            redis_client.delete(*keys)
            logger.debug(f"Deleted cache keys {keys}")
            return True
        except Exception as e:
            logger.error(f"Cache delete error for keys {keys}: {str(e)}")
            return False

    @staticmethod
    def delete_pattern(pattern: str) -> int:
        """
        Delete all keys matching a pattern

        Args:
            pattern: Pattern to match (e.g., 'unread:123:*')

        Returns:
            Number of keys deleted
        """
        if not CacheManager.is_available():
            return 0

        try:
            keys = list(redis_client.scan_iter(match=pattern))
            if keys:
                deleted = redis_client.delete(*keys)
                logger.debug(f"Deleted {deleted} cache keys matching '{pattern}'")
                return deleted
            return 0
        except Exception as e:
            logger.error(f"Cache delete pattern error for '{pattern}': {str(e)}")
            return 0

    @staticmethod
    def invalidate_user_cache(user_id):
        """
        Invalidate all cache entries for a specific user

        Args:
            user_id: User ID
        """
        CacheManager.delete(
            build_blocking_cache_key(user_id),
            build_blocked_cache_key(user_id),
        )
        CacheManager.delete_pattern(f"unread:{user_id}*")
        logger.info(f"Invalidated cache for user {user_id}")


# Cache key builders
def build_blocking_cache_key(user_id) -> str:
    """Users that `user_id` has blocked"""
    return f"blocking:{user_id}"


def build_blocked_cache_key(user_id) -> str:
    """Users that have blocked `user_id`"""
    return f"blocked:{user_id}"


def build_unread_cache_key(user_id, conversation_id=None) -> str:
    """Build cache key for a user's unread counter"""
    if conversation_id is None:
        return f"unread:{user_id}"
    return f"unread:{user_id}:{conversation_id}"


def build_access_key_cache_key(access_key: str) -> str:
    """Build cache key for the access_key -> photo id lookup"""
    return f"ephemeral:key:{access_key}"
