"""Exception taxonomy for the rebalancing engine.

``PositionNotFound`` and ``MinimumOutputNotMet`` are recoverable: the
orchestrator and the rebalancer absorb them and take an alternate path.
Everything else surfaces to the caller.
"""

from __future__ import annotations

from typing import List


class RebalancerError(Exception):
    """Base class for every error raised by this package."""


class InvalidThreshold(RebalancerError, ValueError):
    """Rebalance threshold outside the open interval (50, 100)."""

    def __init__(self, threshold: object) -> None:
        super().__init__(
            f"Position balance threshold must be between 50 and 100 (exclusive), got {threshold}"
        )
        self.threshold = threshold


class TickOutOfRange(RebalancerError, ValueError):
    def __init__(self, tick: int) -> None:
        super().__init__(f"Tick out of range: {tick}")
        self.tick = tick


class PriceOutOfRange(RebalancerError, ValueError):
    def __init__(self, price: object) -> None:
        super().__init__(f"Price out of range: {price}")
        self.price = price


class InvalidTickSpacing(RebalancerError, ValueError):
    def __init__(self, tick_spacing: object) -> None:
        super().__init__(f"Invalid tick spacing of {tick_spacing} on the pool")
        self.tick_spacing = tick_spacing


class TokenNotFoundInRegistry(RebalancerError, LookupError):
    pass


class InsufficientBalanceForFees(RebalancerError):
    pass


class MinimumOutputNotMet(RebalancerError):
    """Expected swap output does not clear the venue's minimum output."""

    def __init__(self, expected_output: object, minimum_output: object) -> None:
        super().__init__(
            f"Expected output {expected_output} is not above the venue minimum {minimum_output}"
        )
        self.expected_output = expected_output
        self.minimum_output = minimum_output


class PositionNotFound(RebalancerError, LookupError):
    def __init__(self, position_id: str) -> None:
        super().__init__(f"position not found: {position_id!r}")
        self.position_id = position_id


class BridgeOrSwapFailed(RebalancerError):
    pass


class ConfigMissingRequiredField(RebalancerError):
    def __init__(self, missing_fields: List[str], config_file_found: bool) -> None:
        lines = "\n".join(f"  - {field}" for field in missing_fields)
        super().__init__(
            "Missing required configuration. "
            f"Config file {'was found but' if config_file_found else 'not found and'} "
            "the following required fields are missing from both the config file "
            f"and the environment variables:\n{lines}"
        )
        self.missing_fields = missing_fields


class OperationCancelled(RebalancerError):
    """Shutdown was requested and the run stopped at a safe point."""
