import random
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest

from gachaapi.config import Settings
from gachaapi.core.exceptions import (
    ChargeOutcome,
    CompensationFailed,
    DrawPersistenceFailed,
    ErrorKind,
    GachaInactive,
    GachaNotFound,
    IdempotencyKeyReused,
    InvalidDrawCount,
    LedgerCreditFailed,
    MaxDrawsReached,
    NoAvailableItemsForDraw,
    PaymentFailed,
    RewardGrantFailed,
)
from gachaapi.models.gacha import DrawResult, Gacha, GachaItem
from gachaapi.models.internal import ErrorLog
from gachaapi.models.push_medal import PushMedalTransaction
from gachaapi.providers.payment import ChargeResult, RefundResult
from gachaapi.providers.reward import RewardGateway
from gachaapi.schemas.gacha import GachaStatus, Rarity
from gachaapi.schemas.push_medal import PushMedalTransactionType
from gachaapi.services.draw_algorithm import DrawAlgorithm
from gachaapi.services.draw_coordinator import DrawTransactionCoordinator
from gachaapi.services.idempotency_service import IdempotencyService
from gachaapi.services.push_medal_service import PushMedalService
from gachaapi.services.redis_service import RedisService

USER_ID = "user-1"

DEFAULT_ITEMS = [
    {"drop_rate": 0.9, "rarity": Rarity.COMMON, "name": "common"},
    {"drop_rate": 0.1, "rarity": Rarity.RARE, "name": "rare"},
]


@pytest.fixture
def payment():
    gateway = Mock()
    gateway.charge.return_value = ChargeResult(charge_id="ch-1", status="succeeded")
    gateway.refund.return_value = RefundResult(success=True, refund_id="rf-1")
    return gateway


@pytest.fixture
def reward():
    gateway = Mock()
    gateway.grant.return_value = True
    gateway.revoke.return_value = True
    return gateway


@pytest.fixture
def coordinator_factory(db, payment, reward):
    def _make(**overrides):
        kwargs = {
            "db": db,
            "payment_gateway": payment,
            "reward_gateway": reward,
            "draw_algorithm": DrawAlgorithm(rng=random.Random(0)),
            "settings": Settings(REDIS_ENABLED=False),
        }
        kwargs.update(overrides)
        return DrawTransactionCoordinator(**kwargs)

    return _make


@pytest.fixture
def coordinator(coordinator_factory):
    return coordinator_factory()


def result_count(db):
    return db.query(DrawResult).count()


def refreshed(db, model, **filters):
    db.expire_all()
    return db.query(model).filter_by(**filters).one()


class TestSuccessfulDraw:
    def test_ten_pull_charges_once_for_full_price(self, db, coordinator, payment, make_gacha):
        gacha = make_gacha(DEFAULT_ITEMS, price=1000, medal_reward=5)

        response = coordinator.execute_draw(USER_ID, gacha.id, 10)

        payment.charge.assert_called_once_with(USER_ID, 10000)
        payment.refund.assert_not_called()
        assert len(response.results) == 10
        assert all(result.price == 1000 for result in response.results)
        assert result_count(db) == 10
        assert response.execution_time >= 0

    def test_medals_credited_to_creator_scope(self, db, coordinator, make_gacha):
        gacha = make_gacha(DEFAULT_ITEMS, medal_reward=5, creator_id="creator-7")

        coordinator.execute_draw(USER_ID, gacha.id, 3)

        ledger = PushMedalService(db)
        assert ledger.get_balance(USER_ID, "creator-7") == 15
        transaction = db.query(PushMedalTransaction).one()
        assert transaction.transaction_type == PushMedalTransactionType.REWARD_GRANT.value
        assert transaction.reference_id == "ch-1"

    def test_zero_medal_reward_skips_ledger(self, db, coordinator, make_gacha):
        gacha = make_gacha(DEFAULT_ITEMS, medal_reward=0)

        coordinator.execute_draw(USER_ID, gacha.id, 2)

        assert db.query(PushMedalTransaction).count() == 0

    def test_total_draws_and_stock_updated(self, db, coordinator, make_gacha):
        gacha = make_gacha(
            [{"drop_rate": 1.0, "max_count": 10, "name": "limited"}], max_draws=100
        )

        coordinator.execute_draw(USER_ID, gacha.id, 4)

        assert refreshed(db, Gacha, id=gacha.id).total_draws == 4
        assert refreshed(db, GachaItem, gacha_id=gacha.id).current_count == 4

    def test_rewards_granted_per_item(self, coordinator, reward, make_gacha):
        gacha = make_gacha([{"drop_rate": 1.0, "reward_id": "rw-1"}])

        response = coordinator.execute_draw(USER_ID, gacha.id, 3)

        assert reward.grant.call_count == 3
        granted_refs = {call.args[3] for call in reward.grant.call_args_list}
        assert granted_refs == {result.id for result in response.results}

    def test_items_without_reward_id_skip_grant(self, coordinator, reward, make_gacha):
        gacha = make_gacha([{"drop_rate": 1.0}])

        coordinator.execute_draw(USER_ID, gacha.id, 2)

        reward.grant.assert_not_called()


class TestValidation:
    @pytest.mark.parametrize("draw_count", [0, 11])
    def test_invalid_draw_count(self, coordinator, payment, make_gacha, draw_count):
        gacha = make_gacha(DEFAULT_ITEMS)

        with pytest.raises(InvalidDrawCount) as exc_info:
            coordinator.execute_draw(USER_ID, gacha.id, draw_count)

        assert exc_info.value.charge_outcome == ChargeOutcome.NOT_CHARGED
        payment.charge.assert_not_called()

    def test_unknown_gacha(self, coordinator, payment):
        with pytest.raises(GachaNotFound):
            coordinator.execute_draw(USER_ID, "missing", 1)

        payment.charge.assert_not_called()

    def test_inactive_gacha(self, coordinator, payment, make_gacha):
        gacha = make_gacha(DEFAULT_ITEMS, status=GachaStatus.INACTIVE)

        with pytest.raises(GachaInactive):
            coordinator.execute_draw(USER_ID, gacha.id, 1)

        payment.charge.assert_not_called()

    def test_outside_time_window(self, coordinator, payment, make_gacha):
        now = datetime.now(timezone.utc)
        not_started = make_gacha(DEFAULT_ITEMS, start_date=now + timedelta(hours=1))
        ended = make_gacha(
            DEFAULT_ITEMS,
            start_date=now - timedelta(days=2),
            end_date=now - timedelta(days=1),
        )

        for gacha in (not_started, ended):
            with pytest.raises(GachaInactive):
                coordinator.execute_draw(USER_ID, gacha.id, 1)

        payment.charge.assert_not_called()

    def test_max_draws_reached(self, coordinator, payment, make_gacha):
        gacha = make_gacha(DEFAULT_ITEMS, max_draws=100, total_draws=100)

        with pytest.raises(MaxDrawsReached):
            coordinator.execute_draw(USER_ID, gacha.id, 1)

        payment.charge.assert_not_called()

    def test_all_items_exhausted_before_charge(self, coordinator, payment, make_gacha):
        gacha = make_gacha(
            [{"drop_rate": 1.0, "max_count": 2, "current_count": 2}]
        )

        with pytest.raises(NoAvailableItemsForDraw) as exc_info:
            coordinator.execute_draw(USER_ID, gacha.id, 1)

        assert exc_info.value.charge_outcome == ChargeOutcome.NOT_CHARGED
        payment.charge.assert_not_called()


class TestPaymentFailure:
    def test_declined_charge_not_charged(self, db, coordinator, payment, make_gacha):
        payment.charge.side_effect = PaymentFailed("card declined")
        gacha = make_gacha(DEFAULT_ITEMS)

        with pytest.raises(PaymentFailed) as exc_info:
            coordinator.execute_draw(USER_ID, gacha.id, 1)

        assert exc_info.value.charge_outcome == ChargeOutcome.NOT_CHARGED
        payment.refund.assert_not_called()
        assert result_count(db) == 0

    def test_unsuccessful_status_not_charged(self, coordinator, payment, make_gacha):
        payment.charge.return_value = ChargeResult(charge_id="ch-2", status="failed")
        gacha = make_gacha(DEFAULT_ITEMS)

        with pytest.raises(PaymentFailed):
            coordinator.execute_draw(USER_ID, gacha.id, 1)

        payment.refund.assert_not_called()

    def test_gateway_exception_wrapped(self, coordinator, payment, make_gacha):
        payment.charge.side_effect = TimeoutError("read timeout")
        gacha = make_gacha(DEFAULT_ITEMS)

        with pytest.raises(PaymentFailed) as exc_info:
            coordinator.execute_draw(USER_ID, gacha.id, 1)

        assert exc_info.value.kind == ErrorKind.PAYMENT_FAILED


class TestCompensation:
    def test_reward_failure_refunds_and_removes_results(
        self, db, coordinator, payment, reward, make_gacha
    ):
        reward.grant.side_effect = RuntimeError("reward service down")
        gacha = make_gacha(
            [{"drop_rate": 1.0, "reward_id": "rw-1", "max_count": 5}], max_draws=10
        )

        with pytest.raises(RewardGrantFailed) as exc_info:
            coordinator.execute_draw(USER_ID, gacha.id, 2)

        assert exc_info.value.charge_outcome == ChargeOutcome.REFUNDED
        payment.refund.assert_called_once_with("ch-1")
        assert result_count(db) == 0
        assert refreshed(db, GachaItem, gacha_id=gacha.id).current_count == 0
        assert refreshed(db, Gacha, id=gacha.id).total_draws == 0
        assert db.query(PushMedalTransaction).count() == 0

    def test_partial_grants_are_revoked(self, db, coordinator, reward, make_gacha):
        reward.grant.side_effect = [True, RuntimeError("timeout")]
        gacha = make_gacha([{"drop_rate": 1.0, "reward_id": "rw-1"}])

        with pytest.raises(RewardGrantFailed):
            coordinator.execute_draw(USER_ID, gacha.id, 2)

        reward.revoke.assert_called_once()
        assert reward.revoke.call_args.args[:2] == (USER_ID, "rw-1")

    def test_revoke_continues_after_error(self, db, coordinator, payment, reward, make_gacha):
        reward.grant.side_effect = [True, True, True, RuntimeError("timeout")]
        reward.revoke.side_effect = [RuntimeError("revoke timeout"), True, False]
        gacha = make_gacha([{"drop_rate": 1.0, "reward_id": "rw-1"}])

        with pytest.raises(CompensationFailed) as exc_info:
            coordinator.execute_draw(USER_ID, gacha.id, 4)

        assert reward.revoke.call_count == 3
        payment.refund.assert_called_once_with("ch-1")

        granted = [call.args[3] for call in reward.grant.call_args_list]
        failed_step = exc_info.value.failed_steps["REWARDS_GRANTED"]
        assert f"rw-1:{granted[2]}" in failed_step
        assert f"rw-1:{granted[0]}" in failed_step
        assert granted[1] not in failed_step

        error_log = db.query(ErrorLog).one()
        assert error_log.check_type == "COMPENSATION_FAILED"
        assert "REWARDS_GRANTED" in error_log.details["failed_steps"]

    def test_gateway_without_revoke_logs_manual_reconciliation(
        self, db, coordinator_factory, payment, make_gacha
    ):
        reward = Mock(spec=RewardGateway)
        reward.grant.side_effect = [True, RuntimeError("timeout")]
        coordinator = coordinator_factory(reward_gateway=reward)
        gacha = make_gacha([{"drop_rate": 1.0, "reward_id": "rw-1"}])

        with pytest.raises(RewardGrantFailed) as exc_info:
            coordinator.execute_draw(USER_ID, gacha.id, 2)

        assert exc_info.value.charge_outcome == ChargeOutcome.REFUNDED
        payment.refund.assert_called_once()
        error_log = db.query(ErrorLog).one()
        assert error_log.check_type == "REWARD_REVOKE_SKIPPED"
        assert error_log.details["reward_ids"] == ["rw-1"]

    def test_ledger_failure_refunds(self, db, coordinator_factory, payment, reward, make_gacha):
        ledger = Mock()
        ledger.credit.side_effect = RuntimeError("deadlock detected")
        coordinator = coordinator_factory(push_medal_service=ledger)
        gacha = make_gacha([{"drop_rate": 1.0, "reward_id": "rw-1"}], medal_reward=5)

        with pytest.raises(LedgerCreditFailed) as exc_info:
            coordinator.execute_draw(USER_ID, gacha.id, 1)

        assert exc_info.value.charge_outcome == ChargeOutcome.REFUNDED
        reward.revoke.assert_called_once()
        payment.refund.assert_called_once_with("ch-1")
        ledger.debit.assert_not_called()
        assert result_count(db) == 0

    def test_failure_after_credit_reverses_medals(self, db, coordinator, payment, make_gacha):
        gacha = make_gacha(DEFAULT_ITEMS, medal_reward=5, creator_id="creator-1")

        with patch.object(
            coordinator.gacha_repo,
            "increment_total_draws",
            side_effect=RuntimeError("db down"),
        ):
            with pytest.raises(DrawPersistenceFailed) as exc_info:
                coordinator.execute_draw(USER_ID, gacha.id, 2)

        assert exc_info.value.charge_outcome == ChargeOutcome.REFUNDED
        assert PushMedalService(db).get_balance(USER_ID, "creator-1") == 0
        types = [
            tx.transaction_type
            for tx in db.query(PushMedalTransaction).order_by(PushMedalTransaction.id)
        ]
        assert types == [
            PushMedalTransactionType.REWARD_GRANT.value,
            PushMedalTransactionType.REFUND_ADJUSTMENT.value,
        ]
        payment.refund.assert_called_once()

    def test_concurrent_stock_exhaustion_refunds(self, db, coordinator, payment, make_gacha):
        gacha = make_gacha([{"drop_rate": 1.0, "max_count": 5}])

        with patch.object(coordinator.gacha_repo, "claim_stock", return_value=False):
            with pytest.raises(NoAvailableItemsForDraw) as exc_info:
                coordinator.execute_draw(USER_ID, gacha.id, 1)

        assert exc_info.value.charge_outcome == ChargeOutcome.REFUNDED
        payment.refund.assert_called_once_with("ch-1")
        assert result_count(db) == 0

    def test_refund_failure_escalates(self, db, coordinator, payment, reward, make_gacha):
        reward.grant.side_effect = RuntimeError("reward service down")
        payment.refund.return_value = RefundResult(success=False)
        gacha = make_gacha([{"drop_rate": 1.0, "reward_id": "rw-1"}])

        with patch("gachaapi.services.draw_coordinator.logger") as mock_logger:
            with pytest.raises(CompensationFailed) as exc_info:
                coordinator.execute_draw(USER_ID, gacha.id, 1)

        error = exc_info.value
        assert error.charge_outcome == ChargeOutcome.CONTACT_SUPPORT
        assert error.original.kind == ErrorKind.REWARD_GRANT_FAILED
        assert "CHARGED" in error.failed_steps
        mock_logger.critical.assert_called_once()

        error_log = db.query(ErrorLog).one()
        assert error_log.check_type == "COMPENSATION_FAILED"
        assert error_log.details["charge_id"] == "ch-1"
        assert error_log.details["original_error"] == "REWARD_GRANT_FAILED"
        # 결과 행 삭제는 성공했으므로 남은 결과 없음
        assert result_count(db) == 0

    def test_refund_exception_escalates(self, coordinator, payment, reward, make_gacha):
        reward.grant.return_value = False
        payment.refund.side_effect = RuntimeError("connection refused")
        gacha = make_gacha([{"drop_rate": 1.0, "reward_id": "rw-1"}])

        with pytest.raises(CompensationFailed) as exc_info:
            coordinator.execute_draw(USER_ID, gacha.id, 1)

        assert exc_info.value.kind == ErrorKind.COMPENSATION_FAILED


class TestIdempotency:
    @pytest.fixture
    def idempotency(self):
        store = {}
        redis_service = Mock(spec=RedisService)
        redis_service.get.side_effect = lambda key: store.get(key)

        def _set(key, value, ttl_seconds):
            store[key] = value
            return True

        redis_service.set.side_effect = _set
        return IdempotencyService(redis_service)

    def test_retry_with_same_key_replays_first_response(
        self, db, coordinator_factory, payment, make_gacha, idempotency
    ):
        coordinator = coordinator_factory(idempotency_service=idempotency)
        gacha = make_gacha(DEFAULT_ITEMS)

        first = coordinator.execute_draw(USER_ID, gacha.id, 3, idempotency_key="req-1")
        second = coordinator.execute_draw(USER_ID, gacha.id, 3, idempotency_key="req-1")

        payment.charge.assert_called_once()
        assert [r.id for r in first.results] == [r.id for r in second.results]
        assert result_count(db) == 3

    def test_same_key_for_different_draw_rejected(
        self, db, coordinator_factory, payment, make_gacha, idempotency
    ):
        coordinator = coordinator_factory(idempotency_service=idempotency)
        gacha = make_gacha(DEFAULT_ITEMS)
        other = make_gacha(DEFAULT_ITEMS)

        coordinator.execute_draw(USER_ID, gacha.id, 3, idempotency_key="req-1")

        with pytest.raises(IdempotencyKeyReused) as exc_info:
            coordinator.execute_draw(USER_ID, other.id, 3, idempotency_key="req-1")
        assert exc_info.value.charge_outcome == ChargeOutcome.NOT_CHARGED
        assert exc_info.value.details["original_request"] == {
            "gacha_id": gacha.id,
            "draw_count": 3,
        }

        with pytest.raises(IdempotencyKeyReused):
            coordinator.execute_draw(USER_ID, gacha.id, 1, idempotency_key="req-1")

        payment.charge.assert_called_once()
        assert result_count(db) == 3

    def test_different_keys_draw_again(
        self, db, coordinator_factory, payment, make_gacha, idempotency
    ):
        coordinator = coordinator_factory(idempotency_service=idempotency)
        gacha = make_gacha(DEFAULT_ITEMS)

        coordinator.execute_draw(USER_ID, gacha.id, 1, idempotency_key="req-1")
        coordinator.execute_draw(USER_ID, gacha.id, 1, idempotency_key="req-2")

        assert payment.charge.call_count == 2
        assert result_count(db) == 2

    def test_failed_draw_can_be_retried_with_same_key(
        self, db, coordinator_factory, payment, make_gacha, idempotency
    ):
        coordinator = coordinator_factory(idempotency_service=idempotency)
        gacha = make_gacha(DEFAULT_ITEMS)
        payment.charge.side_effect = [
            PaymentFailed("declined"),
            ChargeResult(charge_id="ch-3", status="succeeded"),
        ]

        with pytest.raises(PaymentFailed):
            coordinator.execute_draw(USER_ID, gacha.id, 1, idempotency_key="req-1")
        response = coordinator.execute_draw(USER_ID, gacha.id, 1, idempotency_key="req-1")

        assert len(response.results) == 1
        assert payment.charge.call_count == 2


class TestPity:
    def test_prior_commons_guarantee_rare(self, db, coordinator_factory, make_gacha):
        coordinator = coordinator_factory(
            draw_algorithm=DrawAlgorithm(rng=random.Random(5), pity_threshold=5)
        )
        gacha = make_gacha(
            [
                {"drop_rate": 1.0, "rarity": Rarity.COMMON, "name": "common"},
                {"drop_rate": 1e-9, "rarity": Rarity.RARE, "name": "rare"},
            ],
            medal_reward=0,
        )
        items = {item.name: item.id for item in gacha.items}

        response = coordinator.execute_draw(USER_ID, gacha.id, 5)

        assert [result.item_id for result in response.results] == [
            items["common"],
            items["common"],
            items["common"],
            items["common"],
            items["rare"],
        ]
