"""
Redis service with graceful error handling.
- Never raises exceptions (returns None/False on failure)
- Lazy connection with health checks
- Automatic JSON serialization/deserialization
"""

from typing import Optional, Any
import redis
import json
import logging
from gachaapi.config import Settings

logger = logging.getLogger(__name__)


class RedisService:
    def __init__(self, settings: Settings):
        self._settings = settings
        self._client: Optional[redis.Redis] = None

    @property
    def enabled(self) -> bool:
        return bool(self._settings.REDIS_ENABLED)

    def _get_client(self) -> Optional[redis.Redis]:
        """Lazy connection with health check"""
        if not self.enabled:
            return None
        if self._client is None:
            try:
                redis_kwargs = {
                    "host": self._settings.REDIS_HOST,
                    "port": self._settings.REDIS_PORT,
                    "db": self._settings.REDIS_DB,
                    "decode_responses": True,
                    "socket_connect_timeout": 1,
                    "socket_timeout": 1,
                    "health_check_interval": 30,
                }

                # Only add password if it's set
                if self._settings.REDIS_PASSWORD:
                    redis_kwargs["password"] = self._settings.REDIS_PASSWORD

                client = redis.Redis(**redis_kwargs)
                client.ping()
                self._client = client
            except Exception as e:
                logger.warning(f"Redis connection failed: {e}")
                self._client = None
        return self._client

    def ping(self) -> bool:
        try:
            client = self._get_client()
            return bool(client is not None and client.ping())
        except Exception as e:
            logger.warning(f"Redis PING failed: {e}")
            self._client = None
            return False

    def get(self, key: str) -> Optional[Any]:
        """Get cached value, returns None if not found or error"""
        try:
            client = self._get_client()
            if client is None:
                return None
            value = client.get(key)
            return json.loads(value) if value else None
        except Exception as e:
            logger.warning(f"Redis GET failed for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Set cache with TTL, returns success status"""
        try:
            client = self._get_client()
            if client is None:
                return False
            serialized = json.dumps(value, default=str)
            client.setex(key, ttl_seconds, serialized)
            return True
        except Exception as e:
            logger.warning(f"Redis SET failed for {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        """Delete key, returns True if a key was removed"""
        try:
            client = self._get_client()
            if client is None:
                return False
            return client.delete(key) > 0
        except Exception as e:
            logger.warning(f"Redis DELETE failed for {key}: {e}")
            return False

    def close(self):
        """Close connection pool on app shutdown"""
        if self._client:
            self._client.close()
            self._client = None
