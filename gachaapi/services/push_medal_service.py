import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from gachaapi.config import settings
from gachaapi.core.exceptions import (
    GachaServiceError,
    InvalidAmount,
    InvalidTransfer,
    LedgerTransactionFailed,
    LedgerTransferFailed,
)
from gachaapi.models.push_medal import POOL_SCOPE_KEY
from gachaapi.repositories.push_medal_repository import PushMedalRepository
from gachaapi.schemas.push_medal import (
    GlobalIntegrityResponse,
    IntegrityCheckReport,
    IntegrityCheckResult,
    PushMedalBalanceResponse,
    PushMedalHistoryQuery,
    PushMedalHistoryResponse,
    PushMedalPoolBalanceResponse,
    PushMedalTransactionSchema,
    PushMedalTransactionType,
    ScopeBalance,
    TransferResponse,
)
from gachaapi.utils.timezone_utils import ensure_utc

logger = logging.getLogger(__name__)


class PushMedalService:
    """푸시 메달 원장 서비스

    잔액 변경 1건 = 잔액 행 갱신 + 불변 거래 기록 1건이며, 둘은 항상 같은
    DB 트랜잭션으로 커밋됩니다. 거부된 변경(0, 잔액 부족)은 잔액과 거래 내역을
    전혀 건드리지 않습니다.
    """

    def __init__(self, db: Session, integrity_epsilon: Optional[float] = None):
        self.db = db
        self.repo = PushMedalRepository(db)
        self.integrity_epsilon = (
            settings.INTEGRITY_EPSILON if integrity_epsilon is None else integrity_epsilon
        )

    def get_balance(self, user_id: str, scope_id: Optional[str] = None) -> int:
        """잔액 조회 - 레코드가 없으면 0"""
        record = self.repo.get_balance_record(user_id, scope_id)
        return record.balance if record else 0

    def get_balance_response(
        self, user_id: str, scope_id: Optional[str] = None
    ) -> PushMedalBalanceResponse:
        record = self.repo.get_balance_record(user_id, scope_id)
        return PushMedalBalanceResponse(
            user_id=user_id,
            scope_id=scope_id,
            balance=record.balance if record else 0,
            last_updated=ensure_utc(record.updated_at) if record else None,
        )

    def update_balance(
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
        """잔액 변경 (원자적 단위)

        Args:
            user_id: 사용자 ID
            scope_id: 스코프 ID (None이면 풀)
            amount: 변동량 (양수: 적립, 음수: 차감, 0 불가)
            transaction_type: 거래 유형

        Returns:
            PushMedalTransactionSchema: 기록된 거래

        Raises:
            InvalidAmount: amount가 0인 경우
            InsufficientBalance: 결과 잔액이 음수인 경우
            LedgerTransactionFailed: DB 오류
        """
        if amount == 0:
            raise InvalidAmount(amount, "Push medal amount must not be zero")

        try:
            transaction = self.repo.apply_delta(
                user_id=user_id,
                scope_id=scope_id,
                amount=amount,
                transaction_type=transaction_type,
                reference_id=reference_id,
                reference_type=reference_type,
                details=details,
                reason=reason,
            )
            self.db.commit()
        except GachaServiceError as e:
            self.db.rollback()
            logger.warning(
                f"Rejected push medal update for user {user_id} "
                f"(scope: {scope_id or 'pool'}, amount: {amount}): {e}"
            )
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to update push medal balance for user {user_id}: {str(e)}"
            )
            raise LedgerTransactionFailed(
                str(e), details={"user_id": user_id, "scope_id": scope_id}
            )

        logger.info(
            f"Push medal {transaction.transaction_type.value} for user {user_id} "
            f"(scope: {scope_id or 'pool'}): {transaction.balance_before} -> "
            f"{transaction.balance_after}"
        )
        return transaction

    def credit(
        self,
        user_id: str,
        scope_id: Optional[str],
        amount: int,
        transaction_type: PushMedalTransactionType = PushMedalTransactionType.REWARD_GRANT,
        **kwargs,
    ) -> PushMedalTransactionSchema:
        """적립 - amount는 양수"""
        if amount <= 0:
            raise InvalidAmount(amount, "Credit amount must be positive")
        return self.update_balance(user_id, scope_id, amount, transaction_type, **kwargs)

    def debit(
        self,
        user_id: str,
        scope_id: Optional[str],
        amount: int,
        transaction_type: PushMedalTransactionType = PushMedalTransactionType.REFUND_ADJUSTMENT,
        **kwargs,
    ) -> PushMedalTransactionSchema:
        """차감 - amount는 양수"""
        if amount <= 0:
            raise InvalidAmount(amount, "Debit amount must be positive")
        return self.update_balance(user_id, scope_id, -amount, transaction_type, **kwargs)

    def transfer_from_pool(
        self,
        user_id: str,
        to_scope_id: str,
        amount: int,
        from_scope_id: Optional[str] = None,
    ) -> TransferResponse:
        """풀(또는 다른 스코프)에서 스코프로 메달 이동

        차감과 적립이 하나의 DB 트랜잭션으로 커밋되며, 적립이 실패하면
        차감도 함께 롤백됩니다. 재시도하지 않습니다.
        """
        if amount <= 0:
            raise InvalidAmount(amount, "Transfer amount must be positive")
        if not to_scope_id:
            raise InvalidTransfer("destination scope is required")
        if from_scope_id == to_scope_id:
            raise InvalidTransfer(
                "source and destination scopes must differ",
                details={"scope_id": to_scope_id},
            )

        transfer_type = "scope_to_scope" if from_scope_id else "pool_to_scope"
        try:
            debit = self.repo.apply_delta(
                user_id=user_id,
                scope_id=from_scope_id,
                amount=-amount,
                transaction_type=PushMedalTransactionType.POOL_TRANSFER,
                reference_type="transfer",
                details={"transfer_to": to_scope_id, "transfer_type": transfer_type},
            )
        except GachaServiceError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            raise LedgerTransferFailed(str(e), details={"stage": "debit"})

        try:
            credit = self.repo.apply_delta(
                user_id=user_id,
                scope_id=to_scope_id,
                amount=amount,
                transaction_type=PushMedalTransactionType.POOL_TRANSFER,
                reference_id=str(debit.id),
                reference_type="transfer",
                details={"transfer_from": from_scope_id, "transfer_type": transfer_type},
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Push medal transfer failed for user {user_id}, debit rolled back: {str(e)}"
            )
            raise LedgerTransferFailed(
                str(e),
                details={
                    "user_id": user_id,
                    "from_scope_id": from_scope_id,
                    "to_scope_id": to_scope_id,
                    "amount": amount,
                },
            )

        logger.info(
            f"Transferred {amount} push medals from {from_scope_id or 'pool'} "
            f"to {to_scope_id} for user {user_id}"
        )
        return TransferResponse(debit=debit, credit=credit)

    def admin_adjust_balance(
        self,
        user_id: str,
        scope_id: Optional[str],
        amount: int,
        reason: str,
        admin_id: str,
    ) -> PushMedalTransactionSchema:
        """관리자 잔액 조정 - 사유 필수"""
        if not reason or not reason.strip():
            raise InvalidAmount(amount, "Adjustment reason is required")

        transaction = self.update_balance(
            user_id=user_id,
            scope_id=scope_id,
            amount=amount,
            transaction_type=PushMedalTransactionType.ADMIN_ADJUSTMENT,
            reference_id=admin_id,
            reference_type="admin_adjustment",
            details={"admin_id": admin_id},
            reason=reason,
        )
        logger.info(
            f"Admin {admin_id} adjusted balance by {amount} for user {user_id} "
            f"(scope: {scope_id or 'pool'}): {reason}"
        )
        return transaction

    def get_pool_balance(self, user_id: str) -> PushMedalPoolBalanceResponse:
        """풀 잔액과 스코프별 잔액"""
        records = self.repo.list_balances(user_id)
        pool_balance = 0
        scope_balances: List[ScopeBalance] = []
        for record in records:
            if record.scope_key == POOL_SCOPE_KEY:
                pool_balance = record.balance
            else:
                scope_balances.append(
                    ScopeBalance(scope_id=record.scope_id, balance=record.balance)
                )

        return PushMedalPoolBalanceResponse(
            user_id=user_id,
            total_pool_balance=pool_balance,
            scope_balances=scope_balances,
        )

    def get_transaction_history(
        self, user_id: str, query: Optional[PushMedalHistoryQuery] = None
    ) -> PushMedalHistoryResponse:
        query = query or PushMedalHistoryQuery()
        transactions, total_count = self.repo.get_transaction_history(user_id, query)
        return PushMedalHistoryResponse(
            transactions=transactions,
            total_count=total_count,
            limit=query.limit,
            offset=query.offset,
            has_next=query.offset + query.limit < total_count,
        )

    def perform_integrity_check(
        self, user_id: Optional[str] = None
    ) -> IntegrityCheckReport:
        """잔액 정합성 검증 (읽기 전용)

        (user, scope)마다 거래 amount 합계를 기대 잔액으로 재계산해 저장된 잔액과
        비교하고, 연속된 거래의 balance_before가 직전 balance_after와 같은지도 확인합니다.
        """
        balances = self.repo.list_balances(user_id)
        discrepancies: List[IntegrityCheckResult] = []
        valid_count = 0

        for record in balances:
            transactions = self.repo.list_scope_transactions(
                record.user_id, record.scope_key
            )
            expected = sum(tx.amount for tx in transactions)
            discrepancy = record.balance - expected

            chain_broken = False
            previous_after = 0
            for tx in transactions:
                if tx.balance_before != previous_after:
                    chain_broken = True
                    break
                previous_after = tx.balance_after

            if abs(discrepancy) <= self.integrity_epsilon and not chain_broken:
                valid_count += 1
                continue

            discrepancies.append(
                IntegrityCheckResult(
                    user_id=record.user_id,
                    scope_id=record.scope_id,
                    expected_balance=expected,
                    actual_balance=record.balance,
                    discrepancy=discrepancy,
                    is_valid=False,
                    chain_broken=chain_broken,
                    last_transaction_at=(
                        ensure_utc(transactions[-1].created_at) if transactions else None
                    ),
                )
            )

        report = IntegrityCheckReport(
            total_checked=len(balances),
            valid_balances=valid_count,
            invalid_balances=len(discrepancies),
            discrepancies=discrepancies,
            checked_at=datetime.now(timezone.utc),
        )

        logger.info(
            f"Integrity check completed: {valid_count}/{len(balances)} valid balances"
        )
        if discrepancies:
            logger.warning(f"Found {len(discrepancies)} balance discrepancies")

        return report

    def verify_global_integrity(self) -> GlobalIntegrityResponse:
        """전체 잔액 합계 == 전체 거래 합계 (메달이 원장 밖에서 생기거나 사라지지 않음)"""
        totals = self.repo.get_global_totals()
        status = "OK" if totals["total_balance"] == totals["total_amount"] else "MISMATCH"
        if status != "OK":
            logger.warning(
                f"Global push medal mismatch: balances={totals['total_balance']}, "
                f"transactions={totals['total_amount']}"
            )

        return GlobalIntegrityResponse(
            status=status,
            verified_at=datetime.now(timezone.utc),
            **totals,
        )
