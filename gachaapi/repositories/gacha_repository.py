"""
가챠 리포지토리 - 가챠/아이템 조회, 재고 확보, 추첨 결과 저장

재고와 누적 추첨 수는 읽고-수정-쓰기 대신 단일 SQL 식으로 갱신합니다.
동시에 같은 한정 아이템을 추첨해도 max_count를 넘을 수 없고,
total_draws 증가분이 유실되지 않습니다.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import case, desc, or_
from sqlalchemy.orm import Session, selectinload

from gachaapi.models.gacha import DrawResult, Gacha, GachaItem
from gachaapi.repositories.base import BaseRepository
from gachaapi.schemas.gacha import (
    DrawHistoryResponse,
    DrawResultEntry,
    GachaCreate,
    GachaItemSchema,
    GachaSchema,
    Rarity,
)


class GachaRepository(BaseRepository[Gacha, GachaSchema]):
    """가챠 및 아이템 재고 관리"""

    def __init__(self, db: Session):
        super().__init__(Gacha, GachaSchema, db)

    def get_gacha_with_items(self, gacha_id: str) -> Optional[GachaSchema]:
        """가챠와 아이템 목록을 함께 조회 (아이템은 sort_order 순)"""
        gacha = (
            self.db.query(Gacha)
            .options(selectinload(Gacha.items))
            .filter(Gacha.id == gacha_id)
            .first()
        )
        return self._to_schema(gacha)

    def create_gacha(
        self, request: GachaCreate, normalized_items: Sequence[GachaItemSchema]
    ) -> GachaSchema:
        """가챠 생성 - 아이템 drop_rate는 호출자가 정규화한 값으로 저장"""
        gacha = Gacha(
            creator_id=request.creator_id,
            name=request.name,
            description=request.description,
            price=request.price,
            medal_reward=request.medal_reward,
            start_date=request.start_date,
            end_date=request.end_date,
            max_draws=request.max_draws,
            total_draws=0,
        )
        for position, (item_request, normalized) in enumerate(
            zip(request.items, normalized_items)
        ):
            gacha.items.append(
                GachaItem(
                    name=item_request.name,
                    rarity=item_request.rarity,
                    reward_id=item_request.reward_id,
                    drop_rate=normalized.drop_rate,
                    max_count=item_request.max_count,
                    current_count=0,
                    sort_order=position,
                )
            )

        self.db.add(gacha)
        try:
            self.db.flush()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(gacha)
        return self._to_schema(gacha)

    def claim_stock(self, counts: Dict[str, int]) -> bool:
        """한정 아이템 재고 확보 (조건부 UPDATE, 커밋하지 않음)

        Args:
            counts: {item_id: 이번 배치에서 선택된 횟수}

        Returns:
            bool: 모든 아이템 확보 성공 여부. False면 호출자가 롤백해야 함
        """
        for item_id, quantity in counts.items():
            updated_count = (
                self.db.query(GachaItem)
                .filter(
                    GachaItem.id == item_id,
                    or_(
                        GachaItem.max_count.is_(None),
                        GachaItem.current_count + quantity <= GachaItem.max_count,
                    ),
                )
                .update(
                    {"current_count": GachaItem.current_count + quantity},
                    synchronize_session=False,
                )
            )
            if updated_count == 0:
                return False

        self.db.flush()
        return True

    def release_stock(self, counts: Dict[str, int]) -> None:
        """확보했던 재고 반환 (음수 방지, 커밋하지 않음)"""
        for item_id, quantity in counts.items():
            self.db.query(GachaItem).filter(GachaItem.id == item_id).update(
                {
                    "current_count": case(
                        (
                            GachaItem.current_count >= quantity,
                            GachaItem.current_count - quantity,
                        ),
                        else_=0,
                    )
                },
                synchronize_session=False,
            )
        self.db.flush()

    def increment_total_draws(self, gacha_id: str, draw_count: int) -> None:
        """누적 추첨 수 증가 - total_draws = total_draws + n"""
        try:
            self.db.query(Gacha).filter(Gacha.id == gacha_id).update(
                {"total_draws": Gacha.total_draws + draw_count},
                synchronize_session=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


class DrawResultRepository(BaseRepository[DrawResult, DrawResultEntry]):
    """추첨 결과 저장/조회"""

    def __init__(self, db: Session):
        super().__init__(DrawResult, DrawResultEntry, db)

    def add_results(
        self,
        user_id: str,
        gacha: GachaSchema,
        items: Sequence[GachaItemSchema],
        timestamp: datetime,
    ) -> List[DrawResultEntry]:
        """선택된 아이템마다 결과 1행 추가 (flush만 수행)"""
        rows = [
            DrawResult(
                user_id=user_id,
                gacha_id=gacha.id,
                item_id=item.id,
                price=gacha.price,
                medal_reward=gacha.medal_reward,
                timestamp=timestamp,
                batch_index=position,
            )
            for position, item in enumerate(items)
        ]
        self.db.add_all(rows)
        self.db.flush()
        return self._to_schemas(rows)

    def delete_results(self, result_ids: Sequence[str]) -> int:
        """보상 처리용 결과 삭제 (커밋하지 않음)"""
        if not result_ids:
            return 0
        deleted_count = (
            self.db.query(DrawResult)
            .filter(DrawResult.id.in_(list(result_ids)))
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted_count

    def get_recent_rarities(
        self, user_id: str, gacha_id: str, limit: int
    ) -> List[Rarity]:
        """사용자의 최근 추첨 희귀도 (오래된 순으로 반환)"""
        rows = (
            self.db.query(GachaItem.rarity)
            .join(DrawResult, DrawResult.item_id == GachaItem.id)
            .filter(DrawResult.user_id == user_id, DrawResult.gacha_id == gacha_id)
            .order_by(desc(DrawResult.timestamp), desc(DrawResult.batch_index))
            .limit(limit)
            .all()
        )
        return [Rarity(rarity) for (rarity,) in reversed(rows)]

    def get_user_draw_history(
        self,
        user_id: str,
        gacha_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> DrawHistoryResponse:
        """사용자 추첨 내역 조회 (최신순, 페이징)"""
        query = self.db.query(DrawResult).filter(DrawResult.user_id == user_id)
        if gacha_id:
            query = query.filter(DrawResult.gacha_id == gacha_id)

        total_count = query.count()
        rows = (
            query.order_by(desc(DrawResult.timestamp), desc(DrawResult.batch_index))
            .offset(offset)
            .limit(limit)
            .all()
        )

        return DrawHistoryResponse(
            results=self._to_schemas(rows),
            total_count=total_count,
            has_next=offset + limit < total_count,
        )
