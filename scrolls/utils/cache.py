"""
Redis cache for the student-facing question projection

Only the answer-stripped projection is ever cached: correct answers and
explanations must not be able to reach a student through a stale entry.
"""
import redis
import json
import logging
from typing import Optional, Any, List, Dict
from scrolls.config import settings

logger = logging.getLogger(__name__)

FORBIDDEN_FIELDS = ("correctAnswer", "explanation")


class CacheService:
    """Redis-backed cache; every operation is a miss/no-op without a client"""

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client

    @classmethod
    def from_settings(cls) -> "CacheService":
        if not settings.CACHE_ENABLED:
            logger.info("Question cache disabled by configuration")
            return cls(None)

        try:
            client = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5
            )
            client.ping()
            logger.info("Redis connection established for question cache")
            return cls(client)
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {str(e)}. Caching disabled.")
            return cls(None)

    @staticmethod
    def questions_key(quiz_id: Any) -> str:
        return f"quiz:{quiz_id}:questions"

    def get(self, key: str) -> Optional[Any]:
        """Decoded JSON value, or None on miss or Redis error"""
        if not self.redis_client:
            return None

        try:
            raw = self.redis_client.get(key)
        except redis.RedisError as e:
            logger.error(f"Cache read failed for {key}: {str(e)}")
            return None

        logger.debug(f"Cache {'hit' if raw else 'miss'}: {key}")
        return json.loads(raw) if raw else None

    def set(self, key: str, value: Any, ttl: int = None) -> bool:
        if not self.redis_client:
            return False

        ttl = ttl or settings.QUIZ_CACHE_TTL
        try:
            self.redis_client.setex(key, ttl, json.dumps(value))
        except redis.RedisError as e:
            logger.error(f"Cache write failed for {key}: {str(e)}")
            return False

        logger.debug(f"Cached {key} for {ttl}s")
        return True

    def delete(self, key: str) -> bool:
        if not self.redis_client:
            return False

        try:
            self.redis_client.delete(key)
        except redis.RedisError as e:
            logger.error(f"Cache delete failed for {key}: {str(e)}")
            return False

        logger.info(f"Cache delete: {key}")
        return True

    def get_question_projection(self, quiz_id: Any) -> Optional[List[Dict[str, Any]]]:
        return self.get(self.questions_key(quiz_id))

    def set_question_projection(self, quiz_id: Any, questions: List[Dict[str, Any]]) -> bool:
        """
        Cache the projection shown to students

        Raises:
            ValueError: a question still carries its answer or explanation
        """
        for question in questions:
            if any(field in question for field in FORBIDDEN_FIELDS):
                raise ValueError("Refusing to cache a question projection that carries answers")
        return self.set(self.questions_key(quiz_id), questions)

    def invalidate_quiz(self, quiz_id: Any) -> bool:
        """Drop cached data for a quiz after its content changed"""
        return self.delete(self.questions_key(quiz_id))


_cache_service: Optional[CacheService] = None


def get_cache() -> CacheService:
    """FastAPI dependency; connects lazily on first use"""
    global _cache_service
    if _cache_service is None:
        _cache_service = CacheService.from_settings()
    return _cache_service
