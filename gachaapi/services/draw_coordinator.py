"""
가챠 추첨 트랜잭션 코디네이터 (Saga)

요청 1건을 선형 상태 머신으로 처리합니다.

    VALIDATING → CHARGING → DRAWING → PERSISTING → REWARDING → CREDITING → DONE
                              └──────────── COMPENSATING → FAILED ────────────┘

결제 이후 커밋된 부수 효과는 committed_effects에 순서대로 쌓이며, 실패 시
최신 효과부터 하나씩 되돌립니다.

    MEDALS_CREDITED   → REFUND_ADJUSTMENT 차감
    REWARDS_GRANTED   → reward.revoke (미지원이면 수동 정산 기록)
    RESULTS_PERSISTED → 결과 행 삭제 + 재고 반환
    CHARGED           → payment.refund

보상 단계는 앞선 단계가 실패해도 모두 시도하며, 하나라도 실패하면
CompensationFailed(CONTACT_SUPPORT)로 CRITICAL 로그와 error_logs 기록을 남깁니다.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from gachaapi.config import Settings, settings as default_settings
from gachaapi.core.exceptions import (
    ChargeOutcome,
    CompensationFailed,
    DrawPersistenceFailed,
    EmptyItemPool,
    GachaInactive,
    GachaNotFound,
    GachaServiceError,
    IdempotencyKeyReused,
    InvalidDrawCount,
    LedgerCreditFailed,
    MaxDrawsReached,
    NoAvailableItemsForDraw,
    PaymentFailed,
    RewardGrantFailed,
)
from gachaapi.providers.payment import PaymentGateway
from gachaapi.providers.reward import RewardGateway
from gachaapi.repositories.gacha_repository import DrawResultRepository, GachaRepository
from gachaapi.schemas.gacha import (
    DrawResponse,
    DrawResultEntry,
    GachaItemSchema,
    GachaSchema,
    GachaStatus,
)
from gachaapi.schemas.push_medal import PushMedalTransactionType
from gachaapi.services.draw_algorithm import DrawAlgorithm
from gachaapi.services.error_log_service import ErrorLogService
from gachaapi.services.idempotency_service import IdempotencyService
from gachaapi.services.push_medal_service import PushMedalService
from gachaapi.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

REWARD_SOURCE_TYPE = "gacha"


class DrawState(str, Enum):
    VALIDATING = "VALIDATING"
    CHARGING = "CHARGING"
    DRAWING = "DRAWING"
    PERSISTING = "PERSISTING"
    REWARDING = "REWARDING"
    CREDITING = "CREDITING"
    DONE = "DONE"
    COMPENSATING = "COMPENSATING"
    FAILED = "FAILED"


class SideEffect(str, Enum):
    CHARGED = "CHARGED"
    RESULTS_PERSISTED = "RESULTS_PERSISTED"
    REWARDS_GRANTED = "REWARDS_GRANTED"
    MEDALS_CREDITED = "MEDALS_CREDITED"


@dataclass
class PendingDrawContext:
    """요청 1건의 진행 상태 (메모리 전용, 저장하지 않음)"""

    user_id: str
    gacha_id: str
    draw_count: int
    total_price: int = 0
    total_medal_reward: int = 0
    scope_id: Optional[str] = None
    charge_id: Optional[str] = None
    state: DrawState = DrawState.VALIDATING
    committed_effects: List[SideEffect] = field(default_factory=list)
    stock_claims: Dict[str, int] = field(default_factory=dict)
    result_ids: List[str] = field(default_factory=list)
    granted_rewards: List[Tuple[str, str]] = field(default_factory=list)

    def commit(self, effect: SideEffect) -> None:
        if effect not in self.committed_effects:
            self.committed_effects.append(effect)

    def log_context(self) -> str:
        return (
            f"user={self.user_id} gacha={self.gacha_id} "
            f"charge={self.charge_id or '-'} state={self.state.value}"
        )


class DrawTransactionCoordinator:
    """추첨 요청 오케스트레이터 - 모든 협력 객체는 생성 시 주입"""

    def __init__(
        self,
        db: Session,
        payment_gateway: PaymentGateway,
        reward_gateway: RewardGateway,
        draw_algorithm: DrawAlgorithm,
        idempotency_service: Optional[IdempotencyService] = None,
        push_medal_service: Optional[PushMedalService] = None,
        error_log_service: Optional[ErrorLogService] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.payment_gateway = payment_gateway
        self.reward_gateway = reward_gateway
        self.draw_algorithm = draw_algorithm
        self.idempotency_service = idempotency_service
        self.settings = settings or default_settings

        self.gacha_repo = GachaRepository(db)
        self.draw_repo = DrawResultRepository(db)
        self.push_medal_service = push_medal_service or PushMedalService(db)
        self.error_log_service = error_log_service or ErrorLogService(db)

    def execute_draw(
        self,
        user_id: str,
        gacha_id: str,
        draw_count: int,
        idempotency_key: Optional[str] = None,
    ) -> DrawResponse:
        """가챠 추첨 실행

        idempotency_key가 주어지면 같은 키의 재시도 요청은 다시 과금하지 않고
        최초 응답을 그대로 반환합니다. 캐시에는 요청(gacha_id, draw_count)도 함께
        저장되며, 같은 키로 다른 추첨을 요청하면 재생하지 않고 거부합니다.

        Raises:
            IdempotencyKeyReused: 같은 키가 다른 요청에 이미 사용된 경우 (과금 없음)
            GachaServiceError: charge_outcome으로 과금/환불 여부를 구분
        """
        if idempotency_key and self.idempotency_service is not None:
            request = {"gacha_id": gacha_id, "draw_count": draw_count}
            payload = self.idempotency_service.check_and_set(
                f"draw:{user_id}:{idempotency_key}",
                lambda: {
                    "request": request,
                    "response": self._run(user_id, gacha_id, draw_count).model_dump(
                        mode="json", by_alias=True
                    ),
                },
                ttl_seconds=self.settings.IDEMPOTENCY_TTL_SECONDS,
            )
            if payload.get("request") != request:
                raise IdempotencyKeyReused(idempotency_key, payload.get("request"))
            return DrawResponse.model_validate(payload["response"])

        return self._run(user_id, gacha_id, draw_count)

    def _run(self, user_id: str, gacha_id: str, draw_count: int) -> DrawResponse:
        started = time.perf_counter()
        ctx = PendingDrawContext(user_id=user_id, gacha_id=gacha_id, draw_count=draw_count)

        gacha = self._validate(ctx)

        ctx.state = DrawState.CHARGING
        self._charge(ctx)

        try:
            ctx.state = DrawState.DRAWING
            drawn = self._draw(ctx, gacha)

            ctx.state = DrawState.PERSISTING
            results = self._persist(ctx, gacha, drawn)

            ctx.state = DrawState.REWARDING
            self._grant_rewards(ctx, drawn, results)

            ctx.state = DrawState.CREDITING
            self._credit_medals(ctx)

            self._finish(ctx)
        except GachaServiceError as e:
            raise self._compensate(ctx, e)
        except Exception as e:
            raise self._compensate(ctx, self._wrap_unexpected(ctx, e))

        ctx.state = DrawState.DONE
        execution_ms = int((time.perf_counter() - started) * 1000)
        budget_ms = int(self.settings.DRAW_LATENCY_BUDGET_SECONDS * 1000)
        if execution_ms > budget_ms:
            logger.warning(
                f"Draw exceeded latency budget ({execution_ms}ms > {budget_ms}ms): "
                f"{ctx.log_context()} count={draw_count}"
            )

        logger.info(
            f"Draw completed: {ctx.log_context()} count={draw_count} "
            f"charged={ctx.total_price} medals={ctx.total_medal_reward} "
            f"time={execution_ms}ms"
        )
        return DrawResponse(results=results, execution_time=execution_ms)

    # ------------------------------------------------------------------
    # Forward steps
    # ------------------------------------------------------------------

    def _validate(self, ctx: PendingDrawContext) -> GachaSchema:
        """외부 호출 전 검증 - 실패 시 과금 없음"""
        max_draw_count = self.settings.MAX_DRAW_COUNT
        if not 1 <= ctx.draw_count <= max_draw_count:
            raise InvalidDrawCount(ctx.draw_count, max_draw_count)

        gacha = self.gacha_repo.get_gacha_with_items(ctx.gacha_id)
        if gacha is None:
            raise GachaNotFound(ctx.gacha_id)

        if gacha.status != GachaStatus.ACTIVE:
            raise GachaInactive(ctx.gacha_id, f"{gacha.status.value}")

        now = utc_now()
        if now < ensure_utc(gacha.start_date):
            raise GachaInactive(ctx.gacha_id, "not started yet")
        if gacha.end_date is not None and now > ensure_utc(gacha.end_date):
            raise GachaInactive(ctx.gacha_id, "already ended")

        if gacha.max_draws is not None and gacha.total_draws >= gacha.max_draws:
            raise MaxDrawsReached(ctx.gacha_id, gacha.max_draws)

        if not gacha.items:
            raise EmptyItemPool()
        if not self.draw_algorithm.filter_available(gacha.items):
            raise NoAvailableItemsForDraw(details={"gacha_id": ctx.gacha_id})

        ctx.total_price = gacha.price * ctx.draw_count
        ctx.total_medal_reward = gacha.medal_reward * ctx.draw_count
        ctx.scope_id = gacha.creator_id
        return gacha

    def _charge(self, ctx: PendingDrawContext) -> None:
        try:
            result = self.payment_gateway.charge(ctx.user_id, ctx.total_price)
        except PaymentFailed:
            raise
        except Exception as e:
            logger.error(f"Payment charge error: {ctx.log_context()}: {str(e)}")
            raise PaymentFailed(str(e), details={"user_id": ctx.user_id})

        if not result.succeeded:
            raise PaymentFailed(
                f"charge status {result.status}",
                details={"user_id": ctx.user_id, "charge_id": result.charge_id},
            )

        ctx.charge_id = result.charge_id
        ctx.commit(SideEffect.CHARGED)

    def _draw(
        self, ctx: PendingDrawContext, gacha: GachaSchema
    ) -> List[GachaItemSchema]:
        """추첨 + 재고 확보 (재고 확보는 결과 저장과 함께 커밋)"""
        history = self.draw_repo.get_recent_rarities(
            ctx.user_id, ctx.gacha_id, self.draw_algorithm.pity_threshold
        )
        drawn = self.draw_algorithm.execute_draws(gacha.items, ctx.draw_count, history)

        claims = dict(Counter(item.id for item in drawn))
        if not self.gacha_repo.claim_stock(claims):
            raise NoAvailableItemsForDraw(
                details={"gacha_id": ctx.gacha_id, "reason": "stock exhausted concurrently"}
            )
        ctx.stock_claims = claims
        return drawn

    def _persist(
        self,
        ctx: PendingDrawContext,
        gacha: GachaSchema,
        drawn: List[GachaItemSchema],
    ) -> List[DrawResultEntry]:
        try:
            results = self.draw_repo.add_results(ctx.user_id, gacha, drawn, utc_now())
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            raise DrawPersistenceFailed(
                str(e), details={"gacha_id": ctx.gacha_id, "draw_count": ctx.draw_count}
            )

        ctx.result_ids = [result.id for result in results]
        ctx.commit(SideEffect.RESULTS_PERSISTED)
        return results

    def _grant_rewards(
        self,
        ctx: PendingDrawContext,
        drawn: List[GachaItemSchema],
        results: List[DrawResultEntry],
    ) -> None:
        for item, result in zip(drawn, results):
            if not item.reward_id:
                continue

            details = {"reward_id": item.reward_id, "result_id": result.id}
            try:
                granted = self.reward_gateway.grant(
                    ctx.user_id, item.reward_id, REWARD_SOURCE_TYPE, result.id
                )
            except Exception as e:
                raise RewardGrantFailed(str(e), details=details)
            if not granted:
                raise RewardGrantFailed("reward service rejected grant", details=details)

            ctx.granted_rewards.append((item.reward_id, result.id))
            ctx.commit(SideEffect.REWARDS_GRANTED)

    def _credit_medals(self, ctx: PendingDrawContext) -> None:
        if ctx.total_medal_reward <= 0:
            return

        try:
            self.push_medal_service.credit(
                ctx.user_id,
                ctx.scope_id,
                ctx.total_medal_reward,
                PushMedalTransactionType.REWARD_GRANT,
                reference_id=ctx.charge_id,
                reference_type="gacha_draw",
                details={"gacha_id": ctx.gacha_id, "draw_count": ctx.draw_count},
            )
        except Exception as e:
            raise LedgerCreditFailed(
                str(e), details={"scope_id": ctx.scope_id, "amount": ctx.total_medal_reward}
            )
        ctx.commit(SideEffect.MEDALS_CREDITED)

    def _finish(self, ctx: PendingDrawContext) -> None:
        try:
            self.gacha_repo.increment_total_draws(ctx.gacha_id, ctx.draw_count)
        except Exception as e:
            raise DrawPersistenceFailed(
                f"total_draws update failed: {str(e)}", details={"gacha_id": ctx.gacha_id}
            )

    # ------------------------------------------------------------------
    # Compensation
    # ------------------------------------------------------------------

    def _wrap_unexpected(
        self, ctx: PendingDrawContext, error: Exception
    ) -> GachaServiceError:
        details = {"state": ctx.state.value, "error_type": type(error).__name__}
        if ctx.state == DrawState.REWARDING:
            return RewardGrantFailed(str(error), details=details)
        if ctx.state == DrawState.CREDITING:
            return LedgerCreditFailed(str(error), details=details)
        return DrawPersistenceFailed(str(error), details=details)

    def _compensate(
        self, ctx: PendingDrawContext, error: GachaServiceError
    ) -> GachaServiceError:
        """커밋된 부수 효과를 최신순으로 되돌리고 호출자에게 던질 에러를 반환"""
        failed_at = ctx.state
        ctx.state = DrawState.COMPENSATING
        logger.error(
            f"Draw failed at {failed_at.value}, compensating: {ctx.log_context()} "
            f"effects={[effect.value for effect in ctx.committed_effects]} "
            f"error={error.kind.value}: {error}"
        )

        # 커밋되지 않은 재고 확보/결과 행 폐기
        self.db.rollback()

        failed_steps: Dict[str, str] = {}
        for effect in reversed(ctx.committed_effects):
            try:
                self._undo(ctx, effect)
            except Exception as e:
                failed_steps[effect.value] = str(e)
                logger.error(
                    f"Compensation step {effect.value} failed: {ctx.log_context()}: {str(e)}"
                )

        ctx.state = DrawState.FAILED

        if failed_steps:
            compensation_error = CompensationFailed(
                error,
                failed_steps,
                details={
                    "user_id": ctx.user_id,
                    "gacha_id": ctx.gacha_id,
                    "charge_id": ctx.charge_id,
                },
            )
            logger.critical(
                f"Compensation failed, manual reconciliation required: "
                f"{ctx.log_context()} failed_steps={failed_steps}"
            )
            self._record_compensation_failure(ctx, error, failed_steps)
            return compensation_error

        if SideEffect.CHARGED in ctx.committed_effects:
            error.charge_outcome = ChargeOutcome.REFUNDED
        logger.error(
            f"Draw compensated ({error.charge_outcome.value}): {ctx.log_context()}"
        )
        return error

    def _undo(self, ctx: PendingDrawContext, effect: SideEffect) -> None:
        if effect == SideEffect.MEDALS_CREDITED:
            self.push_medal_service.debit(
                ctx.user_id,
                ctx.scope_id,
                ctx.total_medal_reward,
                PushMedalTransactionType.REFUND_ADJUSTMENT,
                reference_id=ctx.charge_id,
                reference_type="gacha_draw_compensation",
                details={"gacha_id": ctx.gacha_id, "draw_count": ctx.draw_count},
            )
        elif effect == SideEffect.REWARDS_GRANTED:
            self._revoke_rewards(ctx)
        elif effect == SideEffect.RESULTS_PERSISTED:
            try:
                self.draw_repo.delete_results(ctx.result_ids)
                self.gacha_repo.release_stock(ctx.stock_claims)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        elif effect == SideEffect.CHARGED:
            result = self.payment_gateway.refund(ctx.charge_id)
            if not result.success:
                raise RuntimeError(f"refund rejected for charge {ctx.charge_id}")
            logger.info(f"Refunded charge {ctx.charge_id} ({ctx.total_price})")

    def _revoke_rewards(self, ctx: PendingDrawContext) -> None:
        revoke = getattr(self.reward_gateway, "revoke", None)
        if not callable(revoke):
            logger.warning(
                f"Reward gateway cannot revoke, manual reconciliation needed: "
                f"{ctx.log_context()} rewards={ctx.granted_rewards}"
            )
            self.error_log_service.log_revoke_skipped(
                ctx.user_id,
                ctx.gacha_id,
                ctx.charge_id,
                [reward_id for reward_id, _ in ctx.granted_rewards],
            )
            return

        # 하나가 실패해도 나머지 보상 회수는 계속 시도
        outstanding = []
        for reward_id, result_id in reversed(ctx.granted_rewards):
            try:
                revoked = revoke(ctx.user_id, reward_id, REWARD_SOURCE_TYPE, result_id)
            except Exception as e:
                logger.error(
                    f"Reward revoke error: {ctx.log_context()} "
                    f"reward={reward_id} result={result_id}: {str(e)}"
                )
                revoked = False
            if not revoked:
                outstanding.append(f"{reward_id}:{result_id}")
        if outstanding:
            raise RuntimeError(f"reward revoke failed for {outstanding}")

    def _record_compensation_failure(
        self,
        ctx: PendingDrawContext,
        error: GachaServiceError,
        failed_steps: Dict[str, str],
    ) -> None:
        try:
            self.error_log_service.log_compensation_failure(
                user_id=ctx.user_id,
                gacha_id=ctx.gacha_id,
                charge_id=ctx.charge_id,
                original_error=error.kind.value,
                failed_steps=failed_steps,
                committed_effects=[effect.value for effect in ctx.committed_effects],
            )
        except Exception as e:
            logger.critical(
                f"Failed to write compensation error log: {ctx.log_context()}: {str(e)}"
            )
