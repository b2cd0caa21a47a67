"""
멱등성 저장소

같은 idempotency key로 재시도된 요청에는 최초 결과를 그대로 돌려줍니다.
캐시(Redis)를 쓸 수 없으면 매번 계산하고 경고만 남깁니다 (요청은 실패시키지 않음).

알려진 한계: 같은 키의 요청 두 개가 동시에 도착하면 둘 다 계산될 수 있습니다.
"""

import logging
import uuid
from typing import Any, Callable, Optional

from gachaapi.services.redis_service import RedisService

logger = logging.getLogger(__name__)

KEY_PREFIX = "idempotency:"


class IdempotencyService:
    def __init__(self, redis_service: RedisService, default_ttl_seconds: int = 86400):
        self.redis_service = redis_service
        self.default_ttl_seconds = default_ttl_seconds

    @staticmethod
    def generate_key() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _cache_key(key: str) -> str:
        return f"{KEY_PREFIX}{key}"

    def check_and_set(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        ttl_seconds: Optional[int] = None,
    ) -> Any:
        """캐시된 결과가 있으면 그대로 반환, 없으면 계산 후 저장

        compute_fn의 반환값은 JSON 직렬화 가능해야 하며, compute_fn이 예외를 던지면
        아무것도 저장하지 않고 그대로 전파합니다 (실패한 요청은 재시도 가능).
        """
        cache_key = self._cache_key(key)

        cached = self.redis_service.get(cache_key)
        if cached is not None:
            logger.info(f"Idempotent replay for key {key}")
            return cached

        result = compute_fn()

        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        if not self.redis_service.set(cache_key, result, ttl):
            logger.warning(
                f"Idempotency cache unavailable, result for key {key} was not stored"
            )
        return result

    def invalidate(self, key: str) -> bool:
        return self.redis_service.delete(self._cache_key(key))
