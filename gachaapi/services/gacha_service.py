import logging
from typing import Optional

from sqlalchemy.orm import Session

from gachaapi.repositories.gacha_repository import DrawResultRepository, GachaRepository
from gachaapi.schemas.gacha import (
    DrawHistoryResponse,
    GachaCreate,
    GachaItemSchema,
    GachaSchema,
)
from gachaapi.services.draw_algorithm import DrawAlgorithm

logger = logging.getLogger(__name__)


class GachaService:
    """가챠 생성 및 추첨 내역 조회"""

    def __init__(self, db: Session, draw_algorithm: Optional[DrawAlgorithm] = None):
        self.db = db
        self.gacha_repo = GachaRepository(db)
        self.draw_repo = DrawResultRepository(db)
        self.draw_algorithm = draw_algorithm or DrawAlgorithm()

    def create_gacha(self, request: GachaCreate) -> GachaSchema:
        """가챠 생성 - 아이템 drop_rate를 저장 시점에 합계 1.0으로 정규화

        Raises:
            InvalidDropRateConfiguration: 모든 가중치가 0인 경우
        """
        raw_items = [
            GachaItemSchema(
                id=str(position),
                name=item.name,
                rarity=item.rarity,
                drop_rate=item.drop_rate,
                max_count=item.max_count,
            )
            for position, item in enumerate(request.items)
        ]
        normalized = self.draw_algorithm.normalize(raw_items)

        gacha = self.gacha_repo.create_gacha(request, normalized)
        logger.info(
            f"Created gacha {gacha.id} ({gacha.name}) with {len(gacha.items)} items"
        )
        return gacha

    def get_draw_history(
        self,
        user_id: str,
        gacha_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> DrawHistoryResponse:
        """사용자 추첨 내역 (최신순)"""
        limit = min(limit, 100)
        return self.draw_repo.get_user_draw_history(
            user_id=user_id, gacha_id=gacha_id, limit=limit, offset=offset
        )
