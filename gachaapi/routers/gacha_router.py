"""
가챠 API 라우터

- POST /gacha/{gacha_id}/draw: 가챠 추첨 (Idempotency-Key 헤더 선택)
- GET /gacha/history: 내 추첨 내역

추첨 실패 응답의 error.charge_outcome으로 과금 여부를 구분합니다.
(NOT_CHARGED / REFUNDED / CONTACT_SUPPORT)
"""

import logging
from typing import Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Header, Path, Query
from sqlalchemy.orm import Session

from gachaapi.containers import Container
from gachaapi.database.session import get_db
from gachaapi.deps import get_current_user_id
from gachaapi.schemas.gacha import DrawHistoryResponse, DrawRequest, DrawResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gacha", tags=["gacha"])


@router.post("/{gacha_id}/draw", response_model=DrawResponse)
@inject
def draw_gacha(
    request: DrawRequest,
    gacha_id: str = Path(..., description="가챠 ID"),
    idempotency_key: Optional[str] = Header(
        None, alias="Idempotency-Key", max_length=128
    ),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    coordinator_factory=Depends(Provide[Container.services.draw_coordinator.provider]),
) -> DrawResponse:
    """
    가챠 추첨

    결제 → 추첨 → 결과 저장 → 리워드 지급 → 푸시 메달 적립 순으로 처리되며,
    결제 이후 단계가 실패하면 환불까지 마친 뒤 에러를 반환합니다.

    HTTP Status:
        200: 추첨 성공 (results 길이 == draw_count)
        400: draw_count 범위 오류
        402: 결제 실패 (과금 없음)
        403: 비활성/기간 외 가챠
        404: 가챠 없음
        409: 최대 추첨 수 도달, 재고 소진
        500/502: 처리 실패 (환불 완료 또는 고객센터 문의)
    """
    coordinator = coordinator_factory(db=db)
    return coordinator.execute_draw(
        user_id=user_id,
        gacha_id=gacha_id,
        draw_count=request.draw_count,
        idempotency_key=idempotency_key,
    )


@router.get("/history", response_model=DrawHistoryResponse)
@inject
def get_my_draw_history(
    gacha_id: Optional[str] = Query(None, description="가챠 ID 필터"),
    limit: int = Query(20, ge=1, le=100, description="페이지 크기"),
    offset: int = Query(0, ge=0, description="오프셋"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gacha_service_factory=Depends(Provide[Container.services.gacha_service.provider]),
) -> DrawHistoryResponse:
    """내 추첨 내역 조회 (최신순)"""
    gacha_service = gacha_service_factory(db=db)
    return gacha_service.get_draw_history(
        user_id=user_id, gacha_id=gacha_id, limit=limit, offset=offset
    )
