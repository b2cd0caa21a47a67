"""
ErrorLog Service

자동으로 복구되지 않은 실패(환불 실패 등)를 운영자 정산용으로 기록
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from gachaapi.repositories.error_log_repository import ErrorLogRepository
from gachaapi.schemas.error_log import (
    CompensationErrorContext,
    ErrorLogResponse,
    ErrorTypeEnum,
)
from gachaapi.schemas.health import HealthCheckResponse

logger = logging.getLogger(__name__)


class ErrorLogService:
    """ErrorLog 통합 관리 서비스"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ErrorLogRepository(db)

    def log_compensation_failure(
        self,
        user_id: str,
        gacha_id: str,
        charge_id: Optional[str],
        original_error: str,
        failed_steps: Dict[str, str],
        committed_effects: List[str],
    ) -> ErrorLogResponse:
        """보상 트랜잭션 실패 기록 - 수동 정산 대상"""
        details = CompensationErrorContext(
            user_id=user_id,
            gacha_id=gacha_id,
            charge_id=charge_id,
            original_error=original_error,
            failed_steps=failed_steps,
            committed_effects=committed_effects,
        ).model_dump()

        return self.repo.create_error_log(
            check_type=ErrorTypeEnum.COMPENSATION_FAILED.value, details=details
        )

    def log_revoke_skipped(
        self, user_id: str, gacha_id: str, charge_id: Optional[str], reward_ids: List[str]
    ) -> ErrorLogResponse:
        """회수 기능이 없는 리워드 게이트웨이 - 지급된 리워드 수동 회수 필요"""
        return self.repo.create_error_log(
            check_type=ErrorTypeEnum.REWARD_REVOKE_SKIPPED.value,
            details={
                "user_id": user_id,
                "gacha_id": gacha_id,
                "charge_id": charge_id,
                "reward_ids": reward_ids,
            },
        )

    def get_health_summary(self) -> HealthCheckResponse:
        """운영 상태 요약 (미해결 에러 수, 최근 에러 시각)"""
        try:
            recent = self.repo.get_recent_errors(limit=1)
            return HealthCheckResponse(
                status="healthy",
                database=True,
                unresolved_errors=self.repo.count_unresolved(),
                last_error_logged=recent[0].created_at if recent else None,
            )
        except Exception as e:
            logger.error(f"Health summary failed: {str(e)}")
            return HealthCheckResponse(
                status="unhealthy", database=False, error=str(e)
            )
