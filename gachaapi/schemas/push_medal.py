from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PushMedalTransactionType(str, Enum):
    """푸시 메달 거래 유형"""

    REWARD_GRANT = "REWARD_GRANT"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    POOL_TRANSFER = "POOL_TRANSFER"
    REFUND_ADJUSTMENT = "REFUND_ADJUSTMENT"


class PushMedalTransactionSchema(BaseModel):
    """푸시 메달 거래 레코드"""

    id: int = Field(..., description="거래 ID")
    user_id: str = Field(..., description="사용자 ID")
    scope_id: Optional[str] = Field(None, description="스코프 ID (None이면 풀)")
    transaction_type: PushMedalTransactionType = Field(..., description="거래 유형")
    amount: int = Field(..., description="변동량 (양수: 적립, 음수: 차감)")
    balance_before: int = Field(..., description="거래 전 잔액")
    balance_after: int = Field(..., description="거래 후 잔액")
    reference_id: Optional[str] = Field(None, description="참조 ID")
    reference_type: Optional[str] = Field(None, description="참조 유형")
    details: Optional[Dict[str, Any]] = Field(None, description="추가 메타데이터")
    reason: Optional[str] = Field(None, description="거래 사유")
    created_at: datetime = Field(..., description="생성 시간")

    class Config:
        from_attributes = True


class PushMedalBalanceResponse(BaseModel):
    """잔액 조회 응답"""

    user_id: str
    scope_id: Optional[str] = None
    balance: int = Field(..., description="현재 잔액")
    last_updated: Optional[datetime] = None


class ScopeBalance(BaseModel):
    scope_id: str
    balance: int


class PushMedalPoolBalanceResponse(BaseModel):
    """풀 잔액 + 스코프별 잔액 응답"""

    user_id: str
    total_pool_balance: int = Field(..., description="풀(스코프 없음) 잔액")
    scope_balances: List[ScopeBalance] = Field(default_factory=list)


class PushMedalHistoryQuery(BaseModel):
    """거래 내역 조회 조건"""

    scope_id: Optional[str] = None
    transaction_type: Optional[PushMedalTransactionType] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: int = Field(20, ge=1, le=100, description="페이지 크기")
    offset: int = Field(0, ge=0, description="오프셋")


class PushMedalHistoryResponse(BaseModel):
    """거래 내역 조회 응답"""

    transactions: List[PushMedalTransactionSchema]
    total_count: int = Field(..., description="전체 항목 수")
    limit: int
    offset: int
    has_next: bool = Field(..., description="다음 페이지 존재 여부")


class TransferRequest(BaseModel):
    """풀 → 스코프 이동 요청"""

    to_scope_id: str = Field(..., min_length=1, description="받는 스코프 ID")
    amount: int = Field(..., gt=0, description="이동할 메달 수")
    from_scope_id: Optional[str] = Field(None, description="보내는 스코프 ID (None이면 풀)")


class TransferResponse(BaseModel):
    debit: PushMedalTransactionSchema
    credit: PushMedalTransactionSchema


class AdminAdjustRequest(BaseModel):
    """관리자 잔액 조정 요청"""

    user_id: str = Field(..., min_length=1, description="대상 사용자 ID")
    scope_id: Optional[str] = Field(None, description="스코프 ID (None이면 풀)")
    amount: int = Field(..., description="조정량 (양수: 추가, 음수: 차감)")
    reason: str = Field(..., min_length=1, max_length=255, description="조정 사유")


class IntegrityCheckResult(BaseModel):
    """(user, scope) 단위 정합성 결과"""

    user_id: str
    scope_id: Optional[str] = None
    expected_balance: int = Field(..., description="거래 내역 재생 결과")
    actual_balance: int = Field(..., description="저장된 잔액")
    discrepancy: int = Field(..., description="actual - expected")
    is_valid: bool
    chain_broken: bool = Field(False, description="before/after 연결 끊김 여부")
    last_transaction_at: Optional[datetime] = None


class IntegrityCheckReport(BaseModel):
    """정합성 검증 리포트"""

    total_checked: int
    valid_balances: int
    invalid_balances: int
    discrepancies: List[IntegrityCheckResult] = Field(default_factory=list)
    checked_at: datetime


class GlobalIntegrityResponse(BaseModel):
    """전체 원장 정합성 (잔액 합계 vs 거래 합계)"""

    status: str = Field(..., description="검증 상태 (OK, MISMATCH)")
    total_balance: int
    total_amount: int
    balance_count: int
    transaction_count: int
    verified_at: datetime
