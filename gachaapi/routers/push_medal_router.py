"""
푸시 메달 API 라우터

사용자용 엔드포인트:
- GET /push-medals/balance: 스코프별(또는 풀) 잔액
- GET /push-medals/pool: 풀 잔액 + 스코프별 잔액 목록
- GET /push-medals/transactions: 거래 내역 (필터/페이징)
- POST /push-medals/transfer: 풀(또는 스코프)에서 스코프로 이동

관리자용 엔드포인트 (X-Admin-Id 필요):
- POST /push-medals/admin/adjust: 잔액 조정 (사유 필수)
- GET /push-medals/admin/integrity: 잔액 정합성 검증
"""

import logging
from datetime import datetime
from typing import Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from gachaapi.containers import Container
from gachaapi.database.session import get_db
from gachaapi.deps import get_admin_id, get_current_user_id
from gachaapi.schemas.push_medal import (
    AdminAdjustRequest,
    GlobalIntegrityResponse,
    IntegrityCheckReport,
    PushMedalBalanceResponse,
    PushMedalHistoryQuery,
    PushMedalHistoryResponse,
    PushMedalPoolBalanceResponse,
    PushMedalTransactionSchema,
    PushMedalTransactionType,
    TransferRequest,
    TransferResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/push-medals", tags=["push-medals"])


@router.get("/balance", response_model=PushMedalBalanceResponse)
@inject
def get_my_balance(
    scope_id: Optional[str] = Query(None, description="스코프 ID (없으면 풀)"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service_factory=Depends(Provide[Container.services.push_medal_service.provider]),
) -> PushMedalBalanceResponse:
    """내 푸시 메달 잔액 - 레코드가 없으면 0"""
    return service_factory(db=db).get_balance_response(user_id, scope_id)


@router.get("/pool", response_model=PushMedalPoolBalanceResponse)
@inject
def get_my_pool_balance(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service_factory=Depends(Provide[Container.services.push_medal_service.provider]),
) -> PushMedalPoolBalanceResponse:
    return service_factory(db=db).get_pool_balance(user_id)


@router.get("/transactions", response_model=PushMedalHistoryResponse)
@inject
def get_my_transactions(
    scope_id: Optional[str] = Query(None, description="스코프 ID 필터"),
    transaction_type: Optional[PushMedalTransactionType] = Query(
        None, description="거래 유형 필터"
    ),
    from_date: Optional[datetime] = Query(None, description="시작 시각"),
    to_date: Optional[datetime] = Query(None, description="종료 시각"),
    limit: int = Query(20, ge=1, le=100, description="페이지 크기"),
    offset: int = Query(0, ge=0, description="오프셋"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service_factory=Depends(Provide[Container.services.push_medal_service.provider]),
) -> PushMedalHistoryResponse:
    """내 푸시 메달 거래 내역 (최신순)"""
    query = PushMedalHistoryQuery(
        scope_id=scope_id,
        transaction_type=transaction_type,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
        offset=offset,
    )
    return service_factory(db=db).get_transaction_history(user_id, query)


@router.post("/transfer", response_model=TransferResponse)
@inject
def transfer_medals(
    request: TransferRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service_factory=Depends(Provide[Container.services.push_medal_service.provider]),
) -> TransferResponse:
    """
    풀(또는 다른 스코프)에서 스코프로 메달 이동

    차감과 적립은 하나의 트랜잭션으로 처리되며, 실패 시 둘 다 반영되지 않습니다.
    """
    return service_factory(db=db).transfer_from_pool(
        user_id=user_id,
        to_scope_id=request.to_scope_id,
        amount=request.amount,
        from_scope_id=request.from_scope_id,
    )


@router.post("/admin/adjust", response_model=PushMedalTransactionSchema)
@inject
def admin_adjust_balance(
    request: AdminAdjustRequest,
    admin_id: str = Depends(get_admin_id),
    db: Session = Depends(get_db),
    service_factory=Depends(Provide[Container.services.push_medal_service.provider]),
) -> PushMedalTransactionSchema:
    """관리자 잔액 조정 - ADMIN_ADJUSTMENT 거래로 기록"""
    return service_factory(db=db).admin_adjust_balance(
        user_id=request.user_id,
        scope_id=request.scope_id,
        amount=request.amount,
        reason=request.reason,
        admin_id=admin_id,
    )


@router.get("/admin/integrity", response_model=IntegrityCheckReport)
@inject
def check_integrity(
    user_id: Optional[str] = Query(None, description="특정 사용자만 검증"),
    admin_id: str = Depends(get_admin_id),
    db: Session = Depends(get_db),
    service_factory=Depends(Provide[Container.services.push_medal_service.provider]),
) -> IntegrityCheckReport:
    """잔액 정합성 검증 (읽기 전용)"""
    logger.info(f"Integrity check requested by admin {admin_id} (user: {user_id or 'all'})")
    return service_factory(db=db).perform_integrity_check(user_id)


@router.get("/admin/integrity/global", response_model=GlobalIntegrityResponse)
@inject
def check_global_integrity(
    admin_id: str = Depends(get_admin_id),
    db: Session = Depends(get_db),
    service_factory=Depends(Provide[Container.services.push_medal_service.provider]),
) -> GlobalIntegrityResponse:
    """전체 잔액 합계 vs 전체 거래 합계"""
    logger.info(f"Global integrity check requested by admin {admin_id}")
    return service_factory(db=db).verify_global_integrity()
