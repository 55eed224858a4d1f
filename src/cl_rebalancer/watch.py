"""Watch mode: run the orchestrator periodically with exponential backoff."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from cl_rebalancer.errors import OperationCancelled
from cl_rebalancer.models import RebalanceResult
from cl_rebalancer.shutdown import GracefulShutdown

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetryPolicy:
    """Delay after ``n`` consecutive failures: ``min_delay * multiplier**(n-1)``, capped."""

    min_delay: float = 2.0
    max_delay: float = 300.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.min_delay <= 0 or self.max_delay <= 0:
            raise ValueError("Retry delays must be positive")
        if self.multiplier < 1:
            raise ValueError("Retry multiplier must be at least 1")

    def delay_for(self, consecutive_failures: int) -> float:
        if consecutive_failures <= 0:
            return self.max_delay
        delay = self.min_delay * self.multiplier ** (consecutive_failures - 1)
        return min(delay, self.max_delay)


async def run_watch_loop(
    orchestrator,
    policy: RetryPolicy,
    shutdown: GracefulShutdown,
    on_result: Optional[Callable[[RebalanceResult], None]] = None,
    max_cycles: Optional[int] = None,
) -> int:
    """Call ``orchestrator.execute`` every ``policy.max_delay`` seconds until cancelled.

    Errors never escape the loop: each one is reported as an ``error``
    result and the next attempt is scheduled with backoff. Returns the
    number of completed cycles.
    """
    token = shutdown.token
    failures = 0
    cycles = 0

    while not token.is_cancelled:
        try:
            result = await shutdown.track(orchestrator.execute(token))
        except OperationCancelled:
            logger.info("watch_cycle_cancelled")
            break
        except Exception as exc:
            logger.error("watch_cycle_failed", error=str(exc), error_type=type(exc).__name__)
            result = RebalanceResult(
                pool_id=orchestrator.pool_id,
                action="error",
                message="Rebalance cycle failed",
                error=str(exc),
            )

        cycles += 1
        if result.action == "error":
            failures += 1
        else:
            failures = 0
            logger.info("watch_cycle_complete", action=result.action, message=result.message)

        if on_result is not None:
            on_result(result)

        if max_cycles is not None and cycles >= max_cycles:
            break

        delay = policy.delay_for(failures)
        logger.info("watch_next_cycle", delay_sec=delay, consecutive_failures=failures)
        if await token.sleep(delay):
            break

    logger.info("watch_loop_stopped", cycles=cycles)
    return cycles
