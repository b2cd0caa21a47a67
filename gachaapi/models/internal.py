from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from gachaapi.models.base import Base, BigIntegerId


class ErrorLog(Base):
    """
    운영자 확인이 필요한 실패 상황 추적용 모델

    보상 트랜잭션 실패(환불 실패 등)처럼 자동 복구되지 않은 금전적 불일치를
    기록하여 수동 정산의 근거로 사용합니다.
    """

    __tablename__ = "error_logs"
    __table_args__ = {"extend_existing": True}

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    check_type: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="에러 타입 (COMPENSATION_FAILED, REWARD_GRANT_FAILED 등)",
    )
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default="FAILED", comment="상태 (FAILED, RESOLVED)"
    )
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True, comment="에러 상세 정보 (사용자, 가챠, 결제 ID, 보상 결과 등)"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), comment="에러 발생 시각"
    )
