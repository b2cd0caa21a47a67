"""
가챠 추첨 알고리즘

I/O가 없는 순수 확률 엔진입니다.
1. 드롭 확률 정규화 (비례 스케일링, 합계 = 1.0)
2. 가중치 기반 랜덤 선택
3. 재고 소진 아이템 제외
4. 천장(pity) 보정 - 호출자가 넘겨준 이력만으로 매번 새로 계산 (상태 없음)

이력(history) 저장은 호출자(DrawTransactionCoordinator)의 책임입니다.
"""

import random
from typing import List, Optional, Sequence, TypeVar

from gachaapi.core.exceptions import (
    EmptyItemPool,
    InvalidDropRate,
    InvalidDropRateConfiguration,
    NoAvailableItemsForDraw,
    NoItemsAvailable,
)
from gachaapi.schemas.gacha import GachaItemSchema, Rarity

ItemT = TypeVar("ItemT", bound=GachaItemSchema)

DEFAULT_PITY_THRESHOLD = 50


class DrawAlgorithm:
    """가중치 추첨 엔진 - 난수 생성기만 주입받는 무상태 객체"""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        pity_threshold: int = DEFAULT_PITY_THRESHOLD,
    ):
        self.rng = rng or random.Random()
        self.pity_threshold = pity_threshold

    def validate_items(self, items: Sequence[GachaItemSchema]) -> None:
        """아이템 구성 검증 - 음수 확률/음수 수량은 보정하지 않고 거부"""
        if not items:
            raise EmptyItemPool()

        for item in items:
            if item.drop_rate < 0:
                raise InvalidDropRate(item.id, item.drop_rate)
            if (item.max_count is not None and item.max_count < 0) or item.current_count < 0:
                raise InvalidDropRateConfiguration(
                    f"Invalid count values for item {item.id}"
                )

    def normalize(self, items: Sequence[ItemT]) -> List[ItemT]:
        """드롭 확률 정규화

        rate_i / sum(rate) 비례 스케일링이므로 60/40 같은 원시 가중치도 허용합니다.
        순서와 drop_rate 외의 모든 필드는 그대로 유지됩니다.

        Raises:
            EmptyItemPool: 빈 목록
            InvalidDropRate: 음수 가중치
            InvalidDropRateConfiguration: 가중치 합계가 0
        """
        if not items:
            raise EmptyItemPool()
        for item in items:
            if item.drop_rate < 0:
                raise InvalidDropRate(item.id, item.drop_rate)

        total_rate = sum(item.drop_rate for item in items)
        if total_rate <= 0:
            raise InvalidDropRateConfiguration("all drop rates are zero")

        return [
            item.model_copy(update={"drop_rate": item.drop_rate / total_rate})
            for item in items
        ]

    def select_weighted(self, items: Sequence[ItemT]) -> ItemT:
        """가중치 랜덤 선택

        [0, total) 구간의 난수 r 하나를 뽑아 누적 가중치가 r을 처음 초과하는
        아이템을 반환합니다.
        """
        if not items:
            raise NoItemsAvailable()

        for item in items:
            if item.drop_rate < 0:
                raise InvalidDropRate(item.id, item.drop_rate)

        if len(items) == 1:
            return items[0]

        total_weight = sum(item.drop_rate for item in items)
        if total_weight <= 0:
            raise InvalidDropRateConfiguration("all drop rates are zero")

        r = self.rng.random() * total_weight
        cumulative = 0.0
        for item in items:
            cumulative += item.drop_rate
            if cumulative > r:
                return item

        # 부동소수점 오차로 누적합이 total에 못 미친 경우
        for item in reversed(items):
            if item.drop_rate > 0:
                return item
        return items[-1]

    def filter_available(self, items: Sequence[ItemT]) -> List[ItemT]:
        """재고가 남은 아이템만 반환 (max_count 미설정 시 무제한)"""
        return [
            item
            for item in items
            if item.max_count is None or item.current_count < item.max_count
        ]

    def draws_since_rare(self, history: Sequence[Rarity]) -> int:
        """마지막 rare 이상 결과 이후 연속된 추첨 횟수"""
        count = 0
        for rarity in reversed(history):
            if Rarity(rarity).is_rare_or_better():
                break
            count += 1
        return count

    def should_trigger_guarantee(self, history: Sequence[Rarity]) -> bool:
        """천장 발동 여부 - 이번 추첨이 threshold번째 추첨이 되는 경우"""
        return self.draws_since_rare(history) >= self.pity_threshold - 1

    def apply_pity(self, items: Sequence[ItemT], history: Sequence[Rarity]) -> List[ItemT]:
        """천장 발동 시 후보를 rare 이상으로 제한, 후보가 없으면 전체 풀 유지

        drop_rate가 0인 아이템은 뽑힐 수 없는 아이템이므로 보장 후보에서 제외합니다.
        """
        if not self.should_trigger_guarantee(history):
            return list(items)

        guaranteed = [
            item
            for item in items
            if item.rarity.is_rare_or_better() and item.drop_rate > 0
        ]
        return guaranteed if guaranteed else list(items)

    def execute_draws(
        self,
        items: Sequence[ItemT],
        draw_count: int,
        history: Optional[Sequence[Rarity]] = None,
    ) -> List[ItemT]:
        """다회 추첨 실행

        매 회차마다 재고 필터 → 정규화 → 천장 적용 → 선택 → 메모리상 current_count
        증가 순으로 처리하므로, 같은 배치 안에서도 한정 아이템이 초과 선택되지 않습니다.
        입력 아이템은 복사본으로 처리되어 호출자의 객체는 변경되지 않습니다.

        Args:
            items: 가챠 아이템 목록
            draw_count: 추첨 횟수
            history: 사용자의 이전 추첨 희귀도 (오래된 순)

        Returns:
            선택된 아이템 목록 (길이 == draw_count)

        Raises:
            NoAvailableItemsForDraw: 배치 도중 선택 가능한 아이템이 없는 경우
        """
        self.validate_items(items)

        pool = [item.model_copy() for item in items]
        running_history: List[Rarity] = list(history or [])
        results: List[ItemT] = []

        for position in range(draw_count):
            available = self.filter_available(pool)
            if not available:
                raise NoAvailableItemsForDraw(
                    details={"position": position, "draw_count": draw_count}
                )

            candidates = self.apply_pity(self.normalize(available), running_history)
            selected = self.select_weighted(candidates)

            # 정규화 복사본이 아닌 풀의 원본 아이템 재고를 증가
            stock_item = next(item for item in pool if item.id == selected.id)
            stock_item.current_count += 1

            results.append(stock_item.model_copy())
            running_history.append(stock_item.rarity)

        return results
