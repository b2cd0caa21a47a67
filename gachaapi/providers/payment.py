import httpx
from typing import Optional, Protocol, runtime_checkable
from pydantic import BaseModel
from gachaapi.config import settings
from gachaapi.core.exceptions import PaymentFailed
import logging

logger = logging.getLogger(__name__)

CHARGE_SUCCEEDED = "succeeded"


class ChargeResult(BaseModel):
    charge_id: str
    status: str

    @property
    def succeeded(self) -> bool:
        return self.status == CHARGE_SUCCEEDED


class RefundResult(BaseModel):
    success: bool
    refund_id: Optional[str] = None


@runtime_checkable
class PaymentGateway(Protocol):
    """결제 게이트웨이 인터페이스"""

    def charge(self, user_id: str, amount: int) -> ChargeResult: ...

    def refund(self, charge_id: str) -> RefundResult: ...


class HttpPaymentGateway:
    """외부 결제 API 클라이언트 - 호출마다 설정된 타임아웃 적용"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.PAYMENT_API_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PAYMENT_API_KEY
        self.timeout = timeout or settings.PAYMENT_TIMEOUT_SECONDS

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def charge(self, user_id: str, amount: int) -> ChargeResult:
        """사용자에게 amount 만큼 과금"""
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}/charges",
                    json={"user_id": user_id, "amount": amount},
                    headers=self._headers(),
                )
        except httpx.TimeoutException:
            logger.error(f"Payment charge timeout for user {user_id}")
            raise PaymentFailed("payment provider timeout", {"user_id": user_id})
        except httpx.HTTPError as e:
            logger.error(f"Payment charge error for user {user_id}: {str(e)}")
            raise PaymentFailed("payment provider error", {"user_id": user_id})

        if response.status_code not in (200, 201):
            logger.error(f"Payment charge rejected: {response.text}")
            raise PaymentFailed(
                "charge rejected",
                {"user_id": user_id, "status_code": response.status_code},
            )

        data = response.json()
        return ChargeResult(charge_id=str(data["id"]), status=data.get("status", ""))

    def refund(self, charge_id: str) -> RefundResult:
        """과금 전액 환불 - 실패 시 예외 대신 success=False"""
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}/charges/{charge_id}/refund",
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            logger.error(f"Refund request failed for charge {charge_id}: {str(e)}")
            return RefundResult(success=False)

        if response.status_code not in (200, 201):
            logger.error(f"Refund rejected for charge {charge_id}: {response.text}")
            return RefundResult(success=False)

        data = response.json()
        return RefundResult(success=True, refund_id=data.get("id"))
