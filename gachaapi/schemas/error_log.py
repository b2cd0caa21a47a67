"""
ErrorLog 관련 Pydantic 스키마

운영자 확인이 필요한 실패 상황 추적을 위한 스키마 정의
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ErrorTypeEnum(str, Enum):
    """에러 타입 정의"""

    COMPENSATION_FAILED = "COMPENSATION_FAILED"
    REWARD_REVOKE_SKIPPED = "REWARD_REVOKE_SKIPPED"


class ErrorLogResponse(BaseModel):
    """에러 로그 응답 스키마"""

    id: int
    check_type: str
    status: str
    details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CompensationErrorContext(BaseModel):
    """보상 트랜잭션 실패 컨텍스트"""

    user_id: str
    gacha_id: str
    charge_id: Optional[str] = None
    original_error: str
    failed_steps: Dict[str, str]
    committed_effects: List[str]
