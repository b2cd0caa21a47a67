"""
푸시 메달 리포지토리 - 잔액/거래 원장 데이터 접근

핵심 특징:
- 잔액 변경은 잔액 행을 SELECT ... FOR UPDATE로 잠근 뒤 수행되므로
  같은 (user, scope)에 대한 before/after 체인에 빈틈이 생기지 않습니다
- 잔액 행 갱신과 거래 기록 추가는 같은 flush에 포함되며 커밋은 서비스가 결정합니다
- 음수 잔액은 잠금 이후 검증되어 거부됩니다 (DB CHECK 제약이 최종 방어선)
"""

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import asc, desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gachaapi.core.exceptions import InsufficientBalance, LedgerTransactionFailed
from gachaapi.models.push_medal import (
    PushMedalBalance,
    PushMedalTransaction,
    to_scope_key,
)
from gachaapi.repositories.base import BaseRepository
from gachaapi.schemas.push_medal import (
    PushMedalHistoryQuery,
    PushMedalTransactionSchema,
    PushMedalTransactionType,
)


class PushMedalRepository(
    BaseRepository[PushMedalTransaction, PushMedalTransactionSchema]
):
    """푸시 메달 원장 리포지토리"""

    def __init__(self, db: Session):
        super().__init__(PushMedalTransaction, PushMedalTransactionSchema, db)

    def get_balance_record(
        self, user_id: str, scope_id: Optional[str] = None
    ) -> Optional[PushMedalBalance]:
        return (
            self.db.query(PushMedalBalance)
            .filter(
                PushMedalBalance.user_id == user_id,
                PushMedalBalance.scope_key == to_scope_key(scope_id),
            )
            .first()
        )

    def _select_for_update(
        self, user_id: str, scope_key: str
    ) -> Optional[PushMedalBalance]:
        return (
            self.db.query(PushMedalBalance)
            .filter(
                PushMedalBalance.user_id == user_id,
                PushMedalBalance.scope_key == scope_key,
            )
            .with_for_update()
            .first()
        )

    def _lock_balance_record(
        self, user_id: str, scope_id: Optional[str]
    ) -> PushMedalBalance:
        """잔액 행 잠금 조회, 없으면 0으로 생성

        첫 적립이 동시에 들어와 유니크 제약에 걸리면 savepoint만 되돌리고
        먼저 생성된 행을 다시 잠금 조회합니다.
        """
        scope_key = to_scope_key(scope_id)
        record = self._select_for_update(user_id, scope_key)
        if record is not None:
            return record

        record = PushMedalBalance(
            user_id=user_id, scope_id=scope_id, scope_key=scope_key, balance=0
        )
        try:
            with self.db.begin_nested():
                self.db.add(record)
        except IntegrityError as e:
            record = self._select_for_update(user_id, scope_key)
            if record is None:
                raise LedgerTransactionFailed(
                    "balance record creation failed",
                    details={"user_id": user_id, "scope_id": scope_id, "error": str(e)},
                )
        return record

    def apply_delta(
        self,
        user_id: str,
        scope_id: Optional[str],
        amount: int,
        transaction_type: PushMedalTransactionType,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> PushMedalTransactionSchema:
        """잔액 변경 + 거래 기록 (flush만 수행)

        Raises:
            InsufficientBalance: 결과 잔액이 음수인 경우 (잔액 변경 없음)
        """
        record = self._lock_balance_record(user_id, scope_id)
        balance_before = record.balance
        balance_after = balance_before + amount

        if balance_after < 0:
            raise InsufficientBalance(requested=-amount, available=balance_before)

        record.balance = balance_after
        transaction = PushMedalTransaction(
            user_id=user_id,
            scope_id=scope_id,
            scope_key=record.scope_key,
            transaction_type=PushMedalTransactionType(transaction_type).value,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            reference_id=reference_id,
            reference_type=reference_type,
            details=details,
            reason=reason,
        )
        self.db.add(transaction)
        self.db.flush()
        return self._to_schema(transaction)

    def list_balances(self, user_id: Optional[str] = None) -> List[PushMedalBalance]:
        query = self.db.query(PushMedalBalance)
        if user_id:
            query = query.filter(PushMedalBalance.user_id == user_id)
        return query.order_by(asc(PushMedalBalance.id)).all()

    def list_scope_transactions(
        self, user_id: str, scope_key: str
    ) -> List[PushMedalTransaction]:
        """(user, scope)의 전체 거래 - 기록 순"""
        return (
            self.db.query(PushMedalTransaction)
            .filter(
                PushMedalTransaction.user_id == user_id,
                PushMedalTransaction.scope_key == scope_key,
            )
            .order_by(asc(PushMedalTransaction.id))
            .all()
        )

    def get_transaction_history(
        self, user_id: str, query_params: PushMedalHistoryQuery
    ) -> Tuple[List[PushMedalTransactionSchema], int]:
        """거래 내역 조회 (최신순, 필터/페이징)"""
        query = self.db.query(PushMedalTransaction).filter(
            PushMedalTransaction.user_id == user_id
        )

        if query_params.scope_id:
            query = query.filter(PushMedalTransaction.scope_id == query_params.scope_id)
        if query_params.transaction_type:
            query = query.filter(
                PushMedalTransaction.transaction_type
                == query_params.transaction_type.value
            )
        if query_params.from_date:
            query = query.filter(PushMedalTransaction.created_at >= query_params.from_date)
        if query_params.to_date:
            query = query.filter(PushMedalTransaction.created_at <= query_params.to_date)

        total_count = query.count()
        rows = (
            query.order_by(desc(PushMedalTransaction.id))
            .offset(query_params.offset)
            .limit(query_params.limit)
            .all()
        )
        return self._to_schemas(rows), total_count

    def get_global_totals(self) -> Dict[str, int]:
        """전체 잔액 합계와 전체 거래 합계"""
        total_balance = self.db.query(func.sum(PushMedalBalance.balance)).scalar()
        balance_count = self.db.query(func.count(PushMedalBalance.id)).scalar()
        total_amount = self.db.query(func.sum(PushMedalTransaction.amount)).scalar()
        transaction_count = self.db.query(func.count(PushMedalTransaction.id)).scalar()

        return {
            "total_balance": total_balance or 0,
            "balance_count": balance_count or 0,
            "total_amount": total_amount or 0,
            "transaction_count": transaction_count or 0,
        }
