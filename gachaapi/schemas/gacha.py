from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Rarity(str, Enum):
    """아이템 희귀도 (common < rare < epic < legendary)"""

    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"

    @property
    def rank(self) -> int:
        return _RARITY_RANK[self]

    def is_rare_or_better(self) -> bool:
        return self.rank >= _RARITY_RANK[Rarity.RARE]


_RARITY_RANK = {
    Rarity.COMMON: 0,
    Rarity.RARE: 1,
    Rarity.EPIC: 2,
    Rarity.LEGENDARY: 3,
}


class GachaStatus(str, Enum):
    """가챠 상태 (ended는 종료 상태)"""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ENDED = "ended"


class GachaItemSchema(BaseModel):
    """가챠 아이템 - 추첨 알고리즘의 입력 단위"""

    id: str = Field(..., description="아이템 ID")
    gacha_id: Optional[str] = Field(None, description="가챠 ID")
    reward_id: Optional[str] = Field(None, description="지급할 리워드 ID")
    name: str = Field("", description="아이템 이름")
    rarity: Rarity = Field(Rarity.COMMON, description="희귀도")
    drop_rate: float = Field(..., description="드롭 확률(가중치)")
    max_count: Optional[int] = Field(None, description="최대 지급 수량")
    current_count: int = Field(0, description="현재 지급 수량")

    model_config = ConfigDict(from_attributes=True)


class GachaSchema(BaseModel):
    """가챠 정보"""

    id: str
    creator_id: str = Field(..., description="가챠 생성자 ID (푸시 메달 스코프)")
    name: str
    description: str = ""
    price: int = Field(..., description="1회 추첨 가격")
    medal_reward: int = Field(..., description="1회 추첨당 푸시 메달 보상")
    status: GachaStatus
    start_date: datetime
    end_date: Optional[datetime] = None
    max_draws: Optional[int] = None
    total_draws: int = 0
    items: List[GachaItemSchema] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class GachaItemCreate(BaseModel):
    """가챠 아이템 생성 요청 (drop_rate는 원시 가중치 허용)"""

    name: str = Field(..., min_length=1, max_length=255)
    rarity: Rarity
    drop_rate: float = Field(..., ge=0)
    reward_id: Optional[str] = None
    max_count: Optional[int] = Field(None, ge=0)


class GachaCreate(BaseModel):
    """가챠 생성 요청"""

    creator_id: str
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    price: int = Field(..., gt=0)
    medal_reward: int = Field(0, ge=0)
    start_date: datetime
    end_date: Optional[datetime] = None
    max_draws: Optional[int] = Field(None, gt=0)
    items: List[GachaItemCreate] = Field(..., min_length=1)


class DrawRequest(BaseModel):
    """추첨 요청"""

    draw_count: int = Field(1, ge=1, le=10, description="추첨 횟수 (1-10)")


class DrawResultEntry(BaseModel):
    """추첨 결과 (1회 추첨당 1건)"""

    id: str
    user_id: str
    gacha_id: str
    item_id: str
    price: int
    medal_reward: int
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class DrawResponse(BaseModel):
    """추첨 응답 - results 길이는 항상 요청한 draw_count와 같음"""

    results: List[DrawResultEntry]
    execution_time: int = Field(
        ..., alias="executionTime", description="처리 시간 (ms)"
    )

    model_config = ConfigDict(populate_by_name=True)


class DrawHistoryResponse(BaseModel):
    """추첨 내역 조회 응답"""

    results: List[DrawResultEntry]
    total_count: int
    has_next: bool
