"""Tick <-> price conversions for concentrated-liquidity pools.

``TickMath`` implements the exponent-segmented scheme used by Osmosis CL
pools: every 9,000,000 ticks cover one order of magnitude of price, and
inside a segment each tick adds a fixed increment (``10^-6`` at price one).
``CetusTickMath`` implements the geometric ``1.0001^tick`` scheme used on
Sui. Both expose the same classmethod surface so callers stay
scheme-agnostic.

All arithmetic is exact ``Decimal`` arithmetic at high precision; no floats.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, localcontext
from typing import FrozenSet, Optional, Tuple, Union

from cl_rebalancer.errors import InvalidTickSpacing, PriceOutOfRange, TickOutOfRange

PriceLike = Union[int, str, Decimal]

_PRECISION = 100


def _truncated_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    quotient = abs(numerator) // denominator
    return quotient if numerator >= 0 else -quotient


class TickScheme:
    """Shared behaviour for tick schemes; subclasses supply the conversion."""

    MIN_TICK: int
    MAX_TICK: int
    AUTHORIZED_TICK_SPACINGS: Optional[FrozenSet[int]] = None

    @classmethod
    def tick_to_price(cls, tick: int) -> Decimal:
        raise NotImplementedError

    @classmethod
    def price_to_tick(cls, price: PriceLike) -> int:
        raise NotImplementedError

    @classmethod
    def min_spot_price(cls) -> Decimal:
        return cls.tick_to_price(cls.MIN_TICK)

    @classmethod
    def max_spot_price(cls) -> Decimal:
        return cls.tick_to_price(cls.MAX_TICK)

    @classmethod
    def check_tick(cls, tick: int) -> int:
        tick = int(tick)
        if tick < cls.MIN_TICK or tick > cls.MAX_TICK:
            raise TickOutOfRange(tick)
        return tick

    @classmethod
    def validate_tick_spacing(cls, tick_spacing: object) -> int:
        try:
            spacing = int(tick_spacing)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            raise InvalidTickSpacing(tick_spacing) from None
        if spacing <= 0 or (
            cls.AUTHORIZED_TICK_SPACINGS is not None
            and spacing not in cls.AUTHORIZED_TICK_SPACINGS
        ):
            raise InvalidTickSpacing(tick_spacing)
        return spacing

    @staticmethod
    def round_to_tick_spacing(tick: int, tick_spacing: int) -> int:
        """Floor ``tick`` to a multiple of ``tick_spacing`` (toward -inf for negatives).

        Idempotent: rounding an already-rounded tick returns it unchanged.
        """
        if tick_spacing <= 0:
            raise InvalidTickSpacing(tick_spacing)
        return int(tick) - int(tick) % tick_spacing

    @classmethod
    def price_to_rounded_tick(cls, price: PriceLike, tick_spacing: int) -> int:
        return cls.round_to_tick_spacing(cls.price_to_tick(price), tick_spacing)

    @classmethod
    def clamp_price(cls, price: PriceLike) -> Decimal:
        value = Decimal(price)
        return min(max(value, cls.min_spot_price()), cls.max_spot_price())

    @classmethod
    def band_prices(
        cls, price: PriceLike, band_percentage: PriceLike, decimals: int = 18
    ) -> Tuple[Decimal, Decimal]:
        """Symmetric ``[price*(1-band), price*(1+band)]`` floored to ``decimals`` places."""
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            band = Decimal(band_percentage) / 100
            quantum = Decimal(1).scaleb(-decimals)
            lower = (Decimal(price) * (1 - band)).quantize(quantum, rounding=ROUND_FLOOR)
            upper = (Decimal(price) * (1 + band)).quantize(quantum, rounding=ROUND_FLOOR)
        return lower, upper

    @classmethod
    def band_ticks(
        cls,
        price: PriceLike,
        band_percentage: PriceLike,
        tick_spacing: int,
        decimals: int = 18,
    ) -> Tuple[int, int]:
        """Tick range for a new position centred on ``price``.

        Both ends are floored to ``tick_spacing``. If the band is so narrow
        that both ends land on the same tick, the upper end is pushed one
        spacing up so the range is never empty.
        """
        lower_price, upper_price = cls.band_prices(price, band_percentage, decimals)
        lower_tick = cls.price_to_rounded_tick(cls.clamp_price(lower_price), tick_spacing)
        upper_tick = cls.price_to_rounded_tick(cls.clamp_price(upper_price), tick_spacing)
        if upper_tick <= lower_tick:
            upper_tick = lower_tick + tick_spacing
        return lower_tick, upper_tick


class TickMath(TickScheme):
    """Osmosis exponent-segmented ticks.

    ``tick_to_price(0) == 1`` exactly; valid ticks span
    ``[MIN_TICK, MAX_TICK]`` which maps onto spot prices ``[1e-12, 1e38]``.
    """

    EXPONENT_AT_PRICE_ONE = -6
    GEOMETRIC_EXPONENT_INCREMENT_DISTANCE_IN_TICKS = 9 * 10**6
    MIN_TICK = -108_000_000
    MAX_TICK = 342_000_000
    MIN_SPOT_PRICE = Decimal("1e-12")
    MAX_SPOT_PRICE = Decimal("1e38")
    AUTHORIZED_TICK_SPACINGS = frozenset({1, 10, 100, 1000})

    @classmethod
    def min_spot_price(cls) -> Decimal:
        return cls.MIN_SPOT_PRICE

    @classmethod
    def max_spot_price(cls) -> Decimal:
        return cls.MAX_SPOT_PRICE

    @classmethod
    def tick_to_price(cls, tick: int) -> Decimal:
        tick = int(tick)
        if tick == 0:
            return Decimal(1)
        cls.check_tick(tick)

        distance = cls.GEOMETRIC_EXPONENT_INCREMENT_DISTANCE_IN_TICKS
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            exponent_delta = _truncated_div(tick, distance)
            exponent_at_tick = cls.EXPONENT_AT_PRICE_ONE + exponent_delta
            if tick < 0:
                exponent_at_tick -= 1
            additive_ticks = tick - exponent_delta * distance
            price = Decimal(10) ** exponent_delta + additive_ticks * Decimal(10) ** exponent_at_tick

        if price < cls.MIN_SPOT_PRICE or price > cls.MAX_SPOT_PRICE:
            raise PriceOutOfRange(price)
        return price

    @classmethod
    def price_to_tick(cls, price: PriceLike) -> int:
        value = Decimal(price)
        if value <= 0:
            raise ValueError("Price must be positive")
        if value == 1:
            return 0
        if value < cls.MIN_SPOT_PRICE or value > cls.MAX_SPOT_PRICE:
            raise PriceOutOfRange(value)

        distance = cls.GEOMETRIC_EXPONENT_INCREMENT_DISTANCE_IN_TICKS
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            if value > 1:
                exponent = 0
                max_price_in_segment = Decimal(10)
                while max_price_in_segment < value:
                    exponent += 1
                    max_price_in_segment *= 10
                segment_start = max_price_in_segment / 10
            else:
                exponent = -1
                segment_start = Decimal("0.1")
                while segment_start > value:
                    exponent -= 1
                    segment_start /= 10
            ticks_passed = distance * exponent

            increment = Decimal(10) ** (cls.EXPONENT_AT_PRICE_ONE + exponent)
            ticks_in_segment = ((value - segment_start) / increment).to_integral_value(
                rounding=ROUND_FLOOR
            )
        return ticks_passed + int(ticks_in_segment)


class CetusTickMath(TickScheme):
    """Geometric ``price = 1.0001^tick`` ticks (Cetus CLMM on Sui)."""

    BASE = Decimal("1.0001")
    MIN_TICK = -443_636
    MAX_TICK = 443_636

    @classmethod
    def tick_to_price(cls, tick: int) -> Decimal:
        tick = cls.check_tick(tick)
        if tick == 0:
            return Decimal(1)
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return cls.BASE ** tick

    @classmethod
    def price_to_tick(cls, price: PriceLike) -> int:
        value = Decimal(price)
        if value <= 0:
            raise ValueError("Price must be positive")
        if value == 1:
            return 0
        if value < cls.min_spot_price() or value > cls.max_spot_price():
            raise PriceOutOfRange(value)

        with localcontext() as ctx:
            ctx.prec = _PRECISION
            estimate = int((value.ln() / cls.BASE.ln()).to_integral_value(rounding=ROUND_FLOOR))
        # the logarithm can land one tick off; settle on the largest tick whose price <= value
        tick = min(max(estimate, cls.MIN_TICK), cls.MAX_TICK)
        while tick < cls.MAX_TICK and cls.tick_to_price(tick + 1) <= value:
            tick += 1
        while tick > cls.MIN_TICK and cls.tick_to_price(tick) > value:
            tick -= 1
        return tick
