import redis
import json
import logging
from typing import Optional, Any, Dict, Callable

from config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600


class CacheKeys:
    FRAMEWORKS = "frameworks"

    @staticmethod
    def framework(framework_id: int) -> str:
        return f"framework:{framework_id}"

    @staticmethod
    def modules(framework_id: int) -> str:
        return f"modules:framework:{framework_id}"

    @staticmethod
    def quizzes(framework_id: int, level: Optional[str] = None) -> str:
        if level:
            return f"quizzes:framework:{framework_id}:level:{level}"
        return f"quizzes:framework:{framework_id}"

    @staticmethod
    def quiz(quiz_id: int) -> str:
        return f"quiz:{quiz_id}"

    @staticmethod
    def quiz_attempts(quiz_id: int) -> str:
        return f"quiz:{quiz_id}:attempts"

    @staticmethod
    def user_quiz_attempts(user_id: int) -> str:
        return f"user:{user_id}:quiz-attempts"


class CacheService:
    """Redis-backed JSON cache for API reads. Every operation is a no-op when Redis is unavailable."""

    def __init__(self, host: str = 'localhost', port: int = 6379, db: int = 0, redis_client: Optional[Any] = None):
        if redis_client is not None:
            self.redis_client = redis_client
            return

        try:
            self.redis_client = redis.Redis(
                host=host,
                port=port,
                db=db,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            self.redis_client.ping()
            logger.info(f"Redis cache connected successfully to {host}:{port}")
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.redis_client = None

    @classmethod
    def disabled(cls) -> "CacheService":
        service = cls.__new__(cls)
        service.redis_client = None
        return service

    def get_json(self, key: str) -> Optional[Any]:
        if not self.redis_client:
            return None

        try:
            cached = self.redis_client.get(key)
            if cached:
                logger.info(f"Cache hit for {key}")
                return json.loads(cached)
            logger.info(f"Cache miss for {key}")
            return None
        except (redis.RedisError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read cache key {key}: {e}")
            return None

    def set_json(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> bool:
        if not self.redis_client:
            return False

        try:
            self.redis_client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to cache {key}: {e}")
            return False

    def get_or_set(self, key: str, loader: Callable[[], Any], ttl: int = DEFAULT_TTL) -> Any:
        """Return the cached value for ``key`` or load, cache and return it"""
        cached = self.get_json(key)
        if cached is not None:
            return cached
        value = loader()
        if value is not None:
            self.set_json(key, value, ttl)
        return value

    def invalidate(self, *keys: str) -> int:
        if not self.redis_client or not keys:
            return 0

        try:
            return self.redis_client.delete(*keys)
        except redis.RedisError as e:
            logger.error(f"Failed to invalidate {keys}: {e}")
            return 0

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern``"""
        if not self.redis_client:
            return 0

        try:
            keys = list(self.redis_client.scan_iter(match=pattern))
            if keys:
                self.redis_client.delete(*keys)
                logger.info(f"Cleared {len(keys)} cache entries matching '{pattern}'")
            return len(keys)
        except redis.RedisError as e:
            logger.error(f"Failed to clear cache for pattern '{pattern}': {e}")
            return 0

    def invalidate_quiz(self, quiz_id: int) -> None:
        """Drop a regenerated quiz and every cached framework quiz list"""
        self.invalidate(CacheKeys.quiz(quiz_id))
        self.invalidate_pattern("quizzes:framework:*")

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        if not self.redis_client:
            return {"status": "disconnected", "stats": {}}

        try:
            info = self.redis_client.info()
            hits = info.get("keyspace_hits", 0)
            misses = info.get("keyspace_misses", 0)
            return {
                "status": "connected",
                "stats": {
                    "total_keys": self.redis_client.dbsize(),
                    "used_memory": info.get("used_memory_human", "N/A"),
                    "keyspace_hits": hits,
                    "keyspace_misses": misses,
                    "hit_rate": f"{(hits / max(1, hits + misses) * 100):.1f}%"
                }
            }
        except redis.RedisError as e:
            logger.error(f"Failed to get cache stats: {e}")
            return {"status": "error", "stats": {}}


cache_service = None

def get_cache_service() -> CacheService:
    """Get or create the global cache service instance"""
    global cache_service
    if cache_service is None:
        settings = get_settings()
        cache_service = CacheService(host=settings.redis_host, port=settings.redis_port, db=settings.redis_db)
    return cache_service
