from decimal import Decimal

import pytest

from cl_rebalancer.errors import InvalidTickSpacing, PriceOutOfRange, TickOutOfRange
from cl_rebalancer.tick_math import CetusTickMath, TickMath

ROUND_TRIP_TICKS = [
    -108_000_000,
    -9_001_000,
    -9_000_001,
    -1_234_567,
    -1_000,
    0,
    1_000,
    8_500_000,
    8_765_432,
    9_050_000,
    123_456_000,
    123_456_789,
    341_999_999,
    342_000_000,
]


class TestTickMath:
    def test_price_one_is_tick_zero(self):
        assert TickMath.tick_to_price(0) == Decimal(1)
        assert TickMath.price_to_tick(1) == 0

    def test_exponent_boundaries(self):
        assert TickMath.tick_to_price(9_000_000) == Decimal(10)
        assert TickMath.price_to_tick(10) == 9_000_000
        assert TickMath.tick_to_price(-1) == Decimal("0.9999999")
        assert TickMath.price_to_tick(Decimal("0.9999999")) == -1

    def test_extremes_map_to_price_bounds(self):
        assert TickMath.tick_to_price(TickMath.MIN_TICK) == Decimal("1e-12")
        assert TickMath.tick_to_price(TickMath.MAX_TICK) == Decimal("1e38")
        assert TickMath.price_to_tick(Decimal("1e-12")) == TickMath.MIN_TICK
        assert TickMath.price_to_tick(Decimal("1e38")) == TickMath.MAX_TICK

    @pytest.mark.parametrize("spacing", [1, 10, 100, 1000])
    @pytest.mark.parametrize("tick", ROUND_TRIP_TICKS)
    def test_rounded_tick_survives_price_round_trip(self, tick, spacing):
        expected = TickMath.round_to_tick_spacing(tick, spacing)
        assert TickMath.price_to_rounded_tick(TickMath.tick_to_price(tick), spacing) == expected

    @pytest.mark.parametrize("tick", [-150, -100, -1, 0, 99, 150, 9_050_050])
    def test_rounding_is_floor_and_idempotent(self, tick):
        rounded = TickMath.round_to_tick_spacing(tick, 100)
        assert rounded <= tick
        assert rounded % 100 == 0
        assert TickMath.round_to_tick_spacing(rounded, 100) == rounded

    def test_negative_ticks_round_toward_negative_infinity(self):
        assert TickMath.round_to_tick_spacing(-150, 100) == -200

    def test_out_of_range_tick(self):
        with pytest.raises(TickOutOfRange):
            TickMath.tick_to_price(TickMath.MAX_TICK + 1)
        with pytest.raises(TickOutOfRange):
            TickMath.tick_to_price(TickMath.MIN_TICK - 1)

    def test_out_of_range_price(self):
        with pytest.raises(PriceOutOfRange):
            TickMath.price_to_tick(Decimal("1e-13"))
        with pytest.raises(PriceOutOfRange):
            TickMath.price_to_tick(Decimal("1e39"))
        with pytest.raises(ValueError):
            TickMath.price_to_tick(0)

    def test_tick_spacing_validation(self):
        assert TickMath.validate_tick_spacing("100") == 100
        for bad in (0, 60, -10, "abc", None):
            with pytest.raises(InvalidTickSpacing):
                TickMath.validate_tick_spacing(bad)


class TestBandTicks:
    def test_five_percent_band_around_ten(self):
        lower, upper = TickMath.band_ticks(Decimal(10), Decimal(5), 100)
        assert (lower, upper) == (8_500_000, 9_050_000)
        current = TickMath.price_to_rounded_tick(Decimal(10), 100)
        assert lower < current < upper

    def test_zero_band_still_gives_a_range(self):
        lower, upper = TickMath.band_ticks(Decimal(10), Decimal(0), 100)
        assert upper - lower == 100

    def test_band_prices_are_floored(self):
        lower, upper = TickMath.band_prices(Decimal(1) / 3, Decimal(10), decimals=4)
        assert lower == Decimal("0.2999")
        assert upper == Decimal("0.3666")


class TestCetusTickMath:
    def test_single_tick_is_one_basis_point(self):
        assert CetusTickMath.tick_to_price(1) == Decimal("1.0001")
        assert CetusTickMath.price_to_tick(Decimal("1.0001")) == 1

    @pytest.mark.parametrize("tick", [-443_580, -62_160, -60, 0, 60, 120_000, 443_580])
    def test_round_trip(self, tick):
        assert CetusTickMath.price_to_rounded_tick(CetusTickMath.tick_to_price(tick), 60) == tick

    def test_prices_between_ticks_round_down(self):
        between = (CetusTickMath.tick_to_price(10) + CetusTickMath.tick_to_price(11)) / 2
        assert CetusTickMath.price_to_tick(between) == 10

    def test_any_positive_spacing_is_accepted(self):
        assert CetusTickMath.validate_tick_spacing(60) == 60
        with pytest.raises(InvalidTickSpacing):
            CetusTickMath.validate_tick_spacing(0)

    def test_tick_bounds(self):
        with pytest.raises(TickOutOfRange):
            CetusTickMath.tick_to_price(CetusTickMath.MAX_TICK + 1)
