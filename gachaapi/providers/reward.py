import httpx
from typing import Optional, Protocol, runtime_checkable
from gachaapi.config import settings
import logging

logger = logging.getLogger(__name__)


@runtime_checkable
class RewardGateway(Protocol):
    """리워드 지급 인터페이스 (revoke는 선택 구현)"""

    def grant(
        self, user_id: str, reward_id: str, source_type: str, source_ref_id: str
    ) -> bool: ...


class HttpRewardGateway:
    """외부 리워드 API 클라이언트"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.REWARD_API_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.REWARD_API_KEY
        self.timeout = timeout or settings.REWARD_TIMEOUT_SECONDS

    def _post(self, path: str, payload: dict) -> bool:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.TimeoutException:
            logger.error(f"Reward API timeout: {path}")
            raise
        if response.status_code not in (200, 201):
            logger.error(f"Reward API {path} rejected: {response.text}")
            return False
        return True

    def grant(
        self, user_id: str, reward_id: str, source_type: str, source_ref_id: str
    ) -> bool:
        return self._post(
            "/grants",
            {
                "user_id": user_id,
                "reward_id": reward_id,
                "source_type": source_type,
                "source_ref_id": source_ref_id,
            },
        )

    def revoke(
        self, user_id: str, reward_id: str, source_type: str, source_ref_id: str
    ) -> bool:
        return self._post(
            "/grants/revoke",
            {
                "user_id": user_id,
                "reward_id": reward_id,
                "source_type": source_type,
                "source_ref_id": source_ref_id,
            },
        )
