import random

import pytest

from gachaapi.core.exceptions import (
    EmptyItemPool,
    InvalidDropRate,
    InvalidDropRateConfiguration,
    NoAvailableItemsForDraw,
    NoItemsAvailable,
)
from gachaapi.schemas.gacha import GachaItemSchema, Rarity
from gachaapi.services.draw_algorithm import DrawAlgorithm


def make_item(item_id, drop_rate, rarity=Rarity.COMMON, max_count=None, current_count=0):
    return GachaItemSchema(
        id=item_id,
        name=f"item {item_id}",
        rarity=rarity,
        drop_rate=drop_rate,
        max_count=max_count,
        current_count=current_count,
    )


@pytest.fixture
def algorithm():
    return DrawAlgorithm(rng=random.Random(42))


class TestNormalize:
    def test_normalized_rates_sum_to_one(self, algorithm):
        items = [make_item("a", 60), make_item("b", 30), make_item("c", 7.5)]

        normalized = algorithm.normalize(items)

        assert sum(item.drop_rate for item in normalized) == pytest.approx(1.0, abs=1e-6)

    def test_preserves_order_and_other_fields(self, algorithm):
        items = [
            make_item("a", 3, Rarity.EPIC, max_count=5, current_count=2),
            make_item("b", 1, Rarity.COMMON),
        ]

        normalized = algorithm.normalize(items)

        assert [item.id for item in normalized] == ["a", "b"]
        assert normalized[0].rarity == Rarity.EPIC
        assert normalized[0].max_count == 5
        assert normalized[0].current_count == 2
        assert normalized[0].drop_rate == pytest.approx(0.75)
        # 원본은 변경되지 않음
        assert items[0].drop_rate == 3

    def test_all_zero_weights_rejected(self, algorithm):
        with pytest.raises(InvalidDropRateConfiguration):
            algorithm.normalize([make_item("a", 0), make_item("b", 0)])

    def test_empty_pool_rejected(self, algorithm):
        with pytest.raises(EmptyItemPool):
            algorithm.normalize([])

    def test_negative_weight_rejected(self, algorithm):
        with pytest.raises(InvalidDropRate):
            algorithm.normalize([make_item("a", 0.5), make_item("b", -0.1)])


class TestSelectWeighted:
    def test_distribution_within_tolerance(self):
        algorithm = DrawAlgorithm(rng=random.Random(1234))
        items = [make_item("common", 0.9), make_item("rare", 0.1, Rarity.RARE)]

        draws = 10_000
        commons = sum(
            1 for _ in range(draws) if algorithm.select_weighted(items).id == "common"
        )

        assert abs(commons / draws - 0.9) <= 0.02

    def test_single_item_is_deterministic(self, algorithm):
        item = make_item("only", 0.3)
        assert algorithm.select_weighted([item]) is item

    def test_empty_list_rejected(self, algorithm):
        with pytest.raises(NoItemsAvailable):
            algorithm.select_weighted([])

    def test_negative_weight_not_clamped(self, algorithm):
        with pytest.raises(InvalidDropRate):
            algorithm.select_weighted([make_item("a", 1), make_item("b", -1)])

    def test_zero_weight_item_never_selected(self, algorithm):
        items = [make_item("never", 0), make_item("always", 1)]
        selected = {algorithm.select_weighted(items).id for _ in range(200)}
        assert selected == {"always"}


class TestFilterAvailable:
    def test_exhausted_item_removed(self, algorithm):
        items = [
            make_item("sold-out", 0.5, max_count=1, current_count=1),
            make_item("unlimited", 0.5),
        ]

        available = algorithm.filter_available(items)

        assert [item.id for item in available] == ["unlimited"]

    def test_all_exhausted_batch_fails(self, algorithm):
        items = [
            make_item("a", 0.5, max_count=1, current_count=1),
            make_item("b", 0.5, max_count=2, current_count=2),
        ]

        with pytest.raises(NoAvailableItemsForDraw):
            algorithm.execute_draws(items, 1)


class TestPity:
    def test_guarantee_after_49_commons(self):
        algorithm = DrawAlgorithm(rng=random.Random(7))
        items = [
            make_item("common", 0.99),
            make_item("rare", 0.01, Rarity.RARE),
        ]
        history = [Rarity.COMMON] * 49

        for _ in range(50):
            result = algorithm.execute_draws(items, 1, history)
            assert result[0].rarity.is_rare_or_better()

    def test_no_guarantee_when_rare_was_recent(self):
        algorithm = DrawAlgorithm()
        history = [Rarity.COMMON] * 30 + [Rarity.RARE] + [Rarity.COMMON] * 9

        assert algorithm.draws_since_rare(history) == 9
        assert algorithm.should_trigger_guarantee(history) is False

        items = [make_item("common", 1), make_item("rare", 0, Rarity.RARE)]
        assert algorithm.apply_pity(items, history) == items

    def test_guarantee_falls_back_when_no_rare_available(self, algorithm):
        items = [
            make_item("common", 0.9),
            make_item("rare", 0.1, Rarity.RARE, max_count=1, current_count=1),
        ]

        result = algorithm.execute_draws(items, 1, [Rarity.COMMON] * 60)

        assert result[0].id == "common"

    def test_batch_history_resets_pity(self):
        algorithm = DrawAlgorithm(rng=random.Random(3), pity_threshold=3)
        items = [make_item("common", 1.0), make_item("rare", 1e-9, Rarity.RARE)]

        results = algorithm.execute_draws(items, 6, [Rarity.COMMON, Rarity.COMMON])

        assert [item.rarity for item in results] == [
            Rarity.RARE,
            Rarity.COMMON,
            Rarity.COMMON,
            Rarity.RARE,
            Rarity.COMMON,
            Rarity.COMMON,
        ]

    def test_zero_weight_rare_not_guaranteed(self, algorithm):
        items = [make_item("common", 1.0), make_item("rare", 0.0, Rarity.RARE)]

        result = algorithm.execute_draws(items, 1, [Rarity.COMMON] * 49)

        assert result[0].id == "common"

    def test_guarantee_with_only_zero_weight_rares_uses_full_pool(self, algorithm):
        items = [
            make_item("common", 1.0),
            make_item("rare", 0.0, Rarity.RARE),
            make_item("epic", 0.0, Rarity.EPIC),
        ]
        history = [Rarity.COMMON] * 49

        assert algorithm.apply_pity(items, history) == items

        result = algorithm.execute_draws(items, 1, history)

        assert result[0].id == "common"


class TestExecuteDraws:
    def test_returns_requested_count(self, algorithm):
        items = [make_item("a", 0.5), make_item("b", 0.5)]
        assert len(algorithm.execute_draws(items, 10)) == 10

    def test_capped_item_not_oversold_within_batch(self, algorithm):
        items = [
            make_item("limited", 0.99, Rarity.EPIC, max_count=2),
            make_item("filler", 0.01),
        ]

        results = algorithm.execute_draws(items, 10)

        assert sum(1 for item in results if item.id == "limited") <= 2
        assert len(results) == 10

    def test_fails_mid_batch_when_stock_runs_out(self, algorithm):
        items = [make_item("limited", 1.0, max_count=3)]

        with pytest.raises(NoAvailableItemsForDraw) as exc_info:
            algorithm.execute_draws(items, 5)

        assert exc_info.value.details["position"] == 3

    def test_caller_items_not_mutated(self, algorithm):
        items = [make_item("a", 1.0, max_count=10)]

        algorithm.execute_draws(items, 4)

        assert items[0].current_count == 0
