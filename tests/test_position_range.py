from decimal import Decimal

import pytest

from cl_rebalancer.errors import InvalidThreshold
from cl_rebalancer.models import Position
from cl_rebalancer.position_range import (
    PositionRangeEvaluator,
    is_position_in_range,
    validate_threshold,
)
from cl_rebalancer.tick_math import CetusTickMath, TickMath


@pytest.mark.parametrize("threshold", [50, 100, 0, 49.9, 100.1, "nan", "abc"])
def test_threshold_outside_open_interval_is_rejected(threshold):
    with pytest.raises(InvalidThreshold):
        validate_threshold(threshold)


@pytest.mark.parametrize("threshold", [50.0001, 75, "90", 99.99])
def test_threshold_inside_open_interval_is_accepted(threshold):
    assert validate_threshold(threshold) == Decimal(str(threshold))


class TestEvaluate:
    evaluator = PositionRangeEvaluator(90)

    def test_centre_is_in_range(self):
        result = self.evaluator.evaluate(1, 0, 1000, current_tick=500)
        assert result.is_in_range
        assert result.percentage_balance == Decimal("50")

    @pytest.mark.parametrize("tick, expected", [(0, Decimal(0)), (1000, Decimal(100))])
    def test_range_edges_are_out_of_range(self, tick, expected):
        result = self.evaluator.evaluate(1, 0, 1000, current_tick=tick)
        assert not result.is_in_range
        assert result.percentage_balance == expected

    def test_below_and_above_range(self):
        below = self.evaluator.evaluate(1, 0, 1000, current_tick=-5)
        above = self.evaluator.evaluate(1, 0, 1000, current_tick=1005)
        assert (below.is_in_range, below.percentage_balance) == (False, Decimal(0))
        assert (above.is_in_range, above.percentage_balance) == (False, Decimal(100))

    def test_threshold_boundaries_are_exclusive(self):
        assert not self.evaluator.evaluate(1, 0, 1000, current_tick=100).is_in_range
        assert self.evaluator.evaluate(1, 0, 1000, current_tick=101).is_in_range
        assert self.evaluator.evaluate(1, 0, 1000, current_tick=899).is_in_range
        assert not self.evaluator.evaluate(1, 0, 1000, current_tick=900).is_in_range

    def test_percentage_is_quantized(self):
        result = self.evaluator.evaluate(1, 0, 3, current_tick=1)
        assert result.percentage_balance == Decimal("33.333333")

    def test_current_tick_is_rounded_to_spacing(self):
        result = self.evaluator.evaluate(100, 0, 1000, current_tick=550)
        assert result.percentage_balance == Decimal("50")

    def test_price_is_converted_through_tick_math(self):
        result = self.evaluator.evaluate(100, -1000, 1000, current_price=Decimal(1))
        assert result.is_in_range
        assert result.percentage_balance == Decimal("50")

    def test_empty_range_is_rejected(self):
        with pytest.raises(ValueError):
            self.evaluator.evaluate(1, 10, 10, current_tick=10)

    def test_requires_price_or_tick(self):
        with pytest.raises(ValueError):
            self.evaluator.evaluate(1, 0, 10)


def test_evaluate_position_uses_scheme_ticks():
    lower, upper = CetusTickMath.band_ticks(Decimal("0.002"), Decimal(5), 60)
    position = Position(position_id="1", lower_tick=lower, upper_tick=upper, liquidity="1")
    evaluator = PositionRangeEvaluator(90, CetusTickMath)
    assert evaluator.evaluate_position(position, 60, Decimal("0.002")).is_in_range
    assert not evaluator.evaluate_position(position, 60, Decimal("0.0025")).is_in_range


def test_is_position_in_range_helper():
    result = is_position_in_range(100, 8_500_000, 9_050_000, 95, current_price=Decimal(10))
    assert result.is_in_range
    assert TickMath.price_to_tick(10) == 9_000_000
