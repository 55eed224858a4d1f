"""Position range evaluation: decides when a managed position needs rebalancing."""

from __future__ import annotations

from decimal import Decimal, localcontext
from typing import Optional, Type, Union

from cl_rebalancer.errors import InvalidThreshold
from cl_rebalancer.models import Position, PositionRange
from cl_rebalancer.tick_math import PriceLike, TickMath, TickScheme

ThresholdLike = Union[int, float, str, Decimal]

_HUNDRED = Decimal(100)


def validate_threshold(threshold_percent: ThresholdLike) -> Decimal:
    """Accept thresholds in the open interval (50, 100) only."""
    try:
        threshold = Decimal(str(threshold_percent))
    except ArithmeticError:
        raise InvalidThreshold(threshold_percent) from None
    if not threshold.is_finite() or threshold <= 50 or threshold >= 100:
        raise InvalidThreshold(threshold_percent)
    return threshold


class PositionRangeEvaluator:
    """Classifies a position as balanced or in need of rebalancing.

    ``percentage_balance`` is where the current tick sits inside
    ``[lower_tick, upper_tick]`` (0 at the lower edge, 100 at the upper
    edge). The position only counts as in range while that figure stays
    strictly between ``100 - threshold`` and ``threshold``, so drifting
    toward either edge triggers a rebalance before the position actually
    leaves its range.
    """

    def __init__(
        self,
        threshold_percent: ThresholdLike,
        tick_math: Type[TickScheme] = TickMath,
    ) -> None:
        self.threshold = validate_threshold(threshold_percent)
        self._tick_math = tick_math

    def current_tick(self, current_price: PriceLike, tick_spacing: int) -> int:
        return self._tick_math.price_to_rounded_tick(current_price, tick_spacing)

    def evaluate(
        self,
        tick_spacing: int,
        lower_tick: int,
        upper_tick: int,
        current_price: Optional[PriceLike] = None,
        current_tick: Optional[int] = None,
    ) -> PositionRange:
        if current_tick is None:
            if current_price is None:
                raise ValueError("Either current_price or current_tick is required")
            current = self.current_tick(current_price, tick_spacing)
        else:
            current = self._tick_math.round_to_tick_spacing(current_tick, tick_spacing)

        lower, upper = int(lower_tick), int(upper_tick)
        if upper <= lower:
            raise ValueError(f"Empty position range [{lower}, {upper}]")

        if current < lower:
            return PositionRange(is_in_range=False, percentage_balance=Decimal(0))
        if current > upper:
            return PositionRange(is_in_range=False, percentage_balance=_HUNDRED)

        with localcontext() as ctx:
            ctx.prec = 50
            percentage = (Decimal(current - lower) / Decimal(upper - lower) * _HUNDRED).quantize(
                Decimal("0.000001")
            )

        is_in_range = (_HUNDRED - self.threshold) < percentage < self.threshold
        return PositionRange(is_in_range=is_in_range, percentage_balance=percentage)

    def evaluate_position(
        self, position: Position, tick_spacing: int, current_price: PriceLike
    ) -> PositionRange:
        return self.evaluate(
            tick_spacing,
            position.lower_tick,
            position.upper_tick,
            current_price=current_price,
        )


def is_position_in_range(
    tick_spacing: int,
    lower_tick: int,
    upper_tick: int,
    threshold_percent: ThresholdLike,
    current_price: Optional[PriceLike] = None,
    current_tick: Optional[int] = None,
    tick_math: Type[TickScheme] = TickMath,
) -> PositionRange:
    evaluator = PositionRangeEvaluator(threshold_percent, tick_math)
    return evaluator.evaluate(
        tick_spacing,
        lower_tick,
        upper_tick,
        current_price=current_price,
        current_tick=current_tick,
    )
