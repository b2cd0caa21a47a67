"""
가챠 데이터 모델

가챠(Gacha), 가챠 아이템(GachaItem), 추첨 결과(DrawResult) 테이블을 정의합니다.
아이템 재고(current_count)는 성공한 추첨에 의해서만 증가하며,
추첨 결과는 한번 저장되면 수정되지 않습니다 (보상 처리 시 삭제만 가능).
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gachaapi.models.base import Base, BaseModel
from gachaapi.schemas.gacha import GachaStatus, Rarity


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Gacha(BaseModel):
    __tablename__ = "gachas"
    __table_args__ = (
        CheckConstraint("price > 0", name="ck_gachas_price_positive"),
        CheckConstraint("total_draws >= 0", name="ck_gachas_total_draws"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)

    # 가챠 생성자 ID - 푸시 메달이 적립되는 스코프
    creator_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    medal_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[GachaStatus] = mapped_column(
        Enum(
            GachaStatus,
            values_callable=_enum_values,
            native_enum=False,
            length=16,
        ),
        nullable=False,
        default=GachaStatus.ACTIVE,
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    max_draws: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_draws: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    items: Mapped[List["GachaItem"]] = relationship(
        "GachaItem",
        back_populates="gacha",
        order_by="GachaItem.sort_order",
        cascade="all, delete-orphan",
    )


class GachaItem(BaseModel):
    __tablename__ = "gacha_items"
    __table_args__ = (
        CheckConstraint(
            "drop_rate >= 0 AND drop_rate <= 1", name="ck_gacha_items_drop_rate"
        ),
        # 재고 상한 - 조건부 UPDATE와 함께 초과 지급을 막는 최종 방어선
        CheckConstraint(
            "max_count IS NULL OR current_count <= max_count",
            name="ck_gacha_items_stock",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    gacha_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("gachas.id"), nullable=False, index=True
    )
    reward_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    rarity: Mapped[Rarity] = mapped_column(
        Enum(Rarity, values_callable=_enum_values, native_enum=False, length=16),
        nullable=False,
    )
    drop_rate: Mapped[float] = mapped_column(Float, nullable=False)
    max_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    gacha: Mapped[Gacha] = relationship("Gacha", back_populates="items")


class DrawResult(Base):
    """추첨 결과 - 1회 추첨당 1행 (10연차는 10행)"""

    __tablename__ = "draw_results"
    __table_args__ = (
        Index("ix_draw_results_user_gacha", "user_id", "gacha_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    gacha_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("gachas.id"), nullable=False
    )
    item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("gacha_items.id"), nullable=False
    )
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    medal_reward: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    # 같은 배치 내 추첨 순서 (천장 이력 정렬용)
    batch_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
