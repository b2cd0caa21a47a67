"""
푸시 메달 원장 데이터 모델

(user_id, scope) 단위의 잔액 테이블과, 모든 변동을 기록하는 추가 전용(append-only)
거래 테이블을 정의합니다.

원칙:
1. 불변성(Immutable): 거래 레코드는 생성 후 수정/삭제되지 않음
2. 완전성(Complete): 모든 잔액 변동은 거래 레코드를 동반함
3. 정합성(Integrity): balance_after = balance_before + amount (DB 제약)
4. 비음수(Non-negative): 잔액은 0 미만이 될 수 없음 (DB 제약)

scope_id가 NULL이면 "풀(pool)" 잔액입니다. NULL은 유니크 제약에서 서로 다른 값으로
취급되므로, 잠금/조회용으로 NULL이 아닌 scope_key 컬럼을 함께 저장합니다.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from gachaapi.models.base import Base, BaseModel, BigIntegerId

POOL_SCOPE_KEY = "__pool__"


def to_scope_key(scope_id: Optional[str]) -> str:
    return scope_id if scope_id else POOL_SCOPE_KEY


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PushMedalBalance(BaseModel):
    __tablename__ = "push_medal_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "scope_key", name="uq_push_medal_balance_scope"),
        CheckConstraint("balance >= 0", name="ck_push_medal_balance_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    scope_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    scope_key: Mapped[str] = mapped_column(String(36), nullable=False)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class PushMedalTransaction(Base):
    """거래 레코드 - 추가 전용, 수정되지 않으므로 updated_at 없음"""

    __tablename__ = "push_medal_transactions"
    __table_args__ = (
        CheckConstraint(
            "balance_after = balance_before + amount",
            name="ck_push_medal_tx_balance_chain",
        ),
        CheckConstraint("amount <> 0", name="ck_push_medal_tx_amount_nonzero"),
        Index("ix_push_medal_tx_user_scope", "user_id", "scope_key", "id"),
    )

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    scope_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    scope_key: Mapped[str] = mapped_column(String(36), nullable=False)

    # 거래 유형 - REWARD_GRANT, ADMIN_ADJUSTMENT, POOL_TRANSFER, REFUND_ADJUSTMENT
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)

    # 변동량 - 양수면 적립, 음수면 차감
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    # 참조 정보 - 결제 ID, 관리자 ID 등
    reference_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reference_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSON, nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # 마이크로초 단위 기록 (server_default는 초 단위인 DB가 있음)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
