"""Main entry point for the concentrated-liquidity rebalancer.

Commands:
  run       one orchestration pass, or a watch loop with ``--watch SECONDS``
  status    print the pool and managed position without writing to chain
  withdraw  withdraw the managed position and clear it from the config

Dry-run (the default) wires the in-memory simulation; ``--live`` builds
real chain clients through ``Settings.client_factory``.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import sys
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
import wandb

from cl_rebalancer.config import ConfigStore, PositionConfig, Settings
from cl_rebalancer.errors import OperationCancelled, RebalancerError
from cl_rebalancer.interfaces import ChainClients, TransactionLedger
from cl_rebalancer.ledger import SqlTransactionLedger
from cl_rebalancer.models import RebalanceResult, StatusReport
from cl_rebalancer.orchestrator import ORCHESTRATORS, LiquidityOrchestrator
from cl_rebalancer.shutdown import GracefulShutdown
from cl_rebalancer.simulation import build_simulated_clients
from cl_rebalancer.watch import RetryPolicy, run_watch_loop

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


# ---------------------------------------------------------------------------
# Structured logging setup
# ---------------------------------------------------------------------------

def _setup_logging(log_level: str) -> None:
    """Configure structlog with console rendering."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def _init_metrics(settings: Settings, command: str) -> bool:
    if not settings.wandb_enabled:
        return False
    if settings.wandb_api_key:
        wandb.login(key=settings.wandb_api_key)
    wandb.init(
        project=settings.wandb_project,
        entity=settings.wandb_entity or None,
        job_type=command,
        config=settings.model_dump(exclude={"wandb_api_key"}),
    )
    logger.info("wandb_initialized")
    return True


def _log_cycle_metrics(result: RebalanceResult) -> None:
    metrics: Dict[str, Any] = {
        "cycle/action": result.action,
        "cycle/error": 1 if result.action == "error" else 0,
    }
    if result.percentage_balance is not None:
        metrics["cycle/percentage_balance"] = result.percentage_balance
    wandb.log(metrics)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def _load_client_factory(path: str):
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise RebalancerError(
            f"CLIENT_FACTORY must look like 'package.module:callable', got {path!r}"
        )
    return getattr(importlib.import_module(module_name), attr)


def build_clients(
    settings: Settings,
    ledger: TransactionLedger,
    config: PositionConfig,
    chain: str,
) -> ChainClients:
    if settings.dry_run:
        return build_simulated_clients(settings, ledger, config.pool_id, chain)
    if not settings.client_factory:
        raise RebalancerError("Live mode needs CLIENT_FACTORY pointing at a chain client builder")
    factory = _load_client_factory(settings.client_factory)
    return factory(settings=settings, ledger=ledger, chain=chain)


def build_orchestrator(
    settings: Settings,
    store: ConfigStore,
    clients: ChainClients,
    chain: str,
) -> LiquidityOrchestrator:
    orchestrator_cls = ORCHESTRATORS[chain]
    return orchestrator_cls.from_clients(
        clients,
        store,
        tolerance=Decimal(str(settings.rebalance_tolerance)),
        price_drift_warning=Decimal(str(settings.price_drift_warning)),
    )


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def _print_status(report: StatusReport) -> None:
    if report.pool is None:
        print("No pool configured.")
        return
    pool = report.pool
    print(f"Pool {pool.id}: {pool.token0.name}/{pool.token1.name}")
    print(f"  current tick  {pool.current_tick}")
    print(f"  current price {pool.current_price}")
    print(f"  tick spacing  {pool.tick_spacing}")
    if report.position is None:
        print("No managed position.")
        return
    position = report.position
    print(f"Position {position.position_id}")
    print(f"  ticks     [{position.lower_tick}, {position.upper_tick}]")
    print(f"  prices    [{report.lower_price}, {report.upper_price}]")
    print(f"  liquidity {position.liquidity}")
    if report.position_range is not None:
        state = "in range" if report.position_range.is_in_range else "needs rebalancing"
        print(f"  balance   {report.position_range.percentage_balance}% ({state})")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: Dict[str, Any] = {}
    if args.config_file:
        overrides["config_file"] = args.config_file
    if args.environment:
        overrides["environment"] = args.environment
    if args.chain:
        overrides["chain"] = args.chain
    if args.dry_run:
        overrides["dry_run"] = True
    elif args.live:
        overrides["dry_run"] = False
    return Settings(**overrides)


async def run_command(args: argparse.Namespace) -> int:
    """Core async entry: wire collaborators and dispatch ``args.command``."""
    settings = _settings_from_args(args)
    _setup_logging(settings.log_level)
    log = structlog.get_logger()

    shutdown = GracefulShutdown()
    shutdown.install_signal_handlers()

    try:
        store = ConfigStore(settings.config_file)
        config = store.load()
        chain = (args.chain or config.chain).lower()

        log.info(
            "rebalancer_starting",
            command=args.command,
            chain=chain,
            environment=settings.environment,
            dry_run=settings.dry_run,
            pool_id=config.pool_id,
        )

        ledger = SqlTransactionLedger(settings.db_url)
        await ledger.init()
        shutdown.register_cleanup("ledger", ledger.close)

        if _init_metrics(settings, args.command):
            shutdown.register_cleanup("wandb", wandb.finish)
            on_result = _log_cycle_metrics
        else:
            on_result = None

        clients = build_clients(settings, ledger, config, chain)
        orchestrator = build_orchestrator(settings, store, clients, chain)

        if args.command == "status":
            _print_status(await orchestrator.get_status())
        elif args.command == "withdraw":
            result = await shutdown.track(orchestrator.withdraw_position())
            print(f"Withdrew {result.amount0} and {result.amount1} (tx {result.tx_hash})")
        elif args.watch is not None:
            interval = args.watch or settings.watch_interval_sec
            policy = RetryPolicy(
                min_delay=min(settings.retry_min_delay_sec, interval),
                max_delay=interval,
                multiplier=settings.retry_multiplier,
            )
            await run_watch_loop(orchestrator, policy, shutdown, on_result=on_result)
        else:
            result = await shutdown.track(orchestrator.execute(shutdown.token))
            if on_result is not None:
                on_result(result)
            print(result.model_dump_json(indent=2))
        return EXIT_OK
    except OperationCancelled as exc:
        log.warning("run_cancelled", reason=str(exc))
        return EXIT_CANCELLED
    except Exception as exc:
        log.error("run_failed", error=str(exc), error_type=type(exc).__name__)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        await shutdown.shutdown()
        log.info("rebalancer_stopped")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cl-rebalancer",
        description="Keep a concentrated-liquidity position balanced across chains.",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config-file", help="position config JSON (default: config.json)")
    common.add_argument("--environment", choices=("mainnet", "testnet"))
    common.add_argument("--chain", choices=tuple(ORCHESTRATORS))
    mode = common.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="simulate with a virtual wallet (default)")
    mode.add_argument("--live", action="store_true", help="send real transactions")

    commands = parser.add_subparsers(dest="command", required=True)
    run = commands.add_parser("run", parents=[common], help="check the position and rebalance if needed")
    run.add_argument(
        "--watch",
        type=float,
        nargs="?",
        const=0.0,
        metavar="SECONDS",
        help="repeat every SECONDS (default WATCH_INTERVAL_SEC) until stopped",
    )
    commands.add_parser("status", parents=[common], help="show pool and position state")
    commands.add_parser("withdraw", parents=[common], help="withdraw the managed position")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Synchronous wrapper for ``asyncio.run``."""
    args = build_parser().parse_args(argv)
    if not hasattr(args, "watch"):
        args.watch = None
    if args.watch is not None and args.watch < 0:
        build_parser().error("--watch must not be negative")
    try:
        code = asyncio.run(run_command(args))
    except KeyboardInterrupt:
        code = EXIT_CANCELLED
    sys.exit(code)


if __name__ == "__main__":
    main()
