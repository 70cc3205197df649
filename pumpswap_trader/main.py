"""
PumpSwap trader entry point

Usage:
    pumpswap-trader --config config/config.yml trade
    pumpswap-trader settings set --mint <MINT> --pool <POOL> --amount 0.1 --slippage 5 --pump
    pumpswap-trader settings show
    pumpswap-trader sell-all
    pumpswap-trader wrap 0.5
    pumpswap-trader unwrap
"""

import argparse
import asyncio
import json
import signal
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from pumpswap_trader.clients.pumpswap_client import PumpSwapClient
from pumpswap_trader.core.config import BotConfig, ConfigurationManager
from pumpswap_trader.core.errors import TraderError
from pumpswap_trader.core.logger import setup_logging, get_logger
from pumpswap_trader.core.metrics import get_metrics, init_metrics
from pumpswap_trader.core.models import TradingConfig
from pumpswap_trader.core.rpc_manager import RPCManager
from pumpswap_trader.core.settings import SettingsService
from pumpswap_trader.core.tx_builder import TransactionBuildConfig, TransactionBuilder
from pumpswap_trader.core.tx_submitter import TransactionSubmitter
from pumpswap_trader.core.wallet import Wallet, load_keypair
from pumpswap_trader.services.market_oracle import MarketOracle
from pumpswap_trader.services.trade_executor import TradeExecutor
from pumpswap_trader.services.trading_controller import TradingController
from pumpswap_trader.services.wallet_preparer import WalletPreparer


logger = get_logger(__name__)

STATUS_INTERVAL_S = 30


@dataclass
class Services:
    """Everything a command needs, wired once per process"""
    bot_config: BotConfig
    rpc_manager: RPCManager
    wallet: Wallet
    client: PumpSwapClient
    executor: TradeExecutor
    preparer: WalletPreparer
    controller: TradingController


@asynccontextmanager
async def build_services(bot_config: BotConfig) -> AsyncIterator[Services]:
    """Compose the service graph and own the RPC session's lifetime"""
    rpc_manager = RPCManager(bot_config.rpc_config)
    wallet = Wallet(load_keypair(bot_config.private_key))
    client = PumpSwapClient(rpc_manager, bot_config.pumpswap_config)

    tx_config = bot_config.transaction_config
    builder = TransactionBuilder(TransactionBuildConfig(
        compute_unit_limit=tx_config.compute_unit_limit,
        compute_unit_price=tx_config.compute_unit_price
    ))
    submitter = TransactionSubmitter(rpc_manager, tx_config)

    executor = TradeExecutor(rpc_manager, client, wallet, builder, submitter)
    preparer = WalletPreparer(rpc_manager, client, wallet, builder, submitter, bot_config.loop_config)

    def oracle_factory(config: TradingConfig) -> MarketOracle:
        return MarketOracle(rpc_manager, client, is_pump=config.is_pump)

    controller = TradingController(
        settings=SettingsService(bot_config.settings_file),
        thresholds=bot_config.thresholds,
        loop_config=bot_config.loop_config,
        oracle_factory=oracle_factory,
        executor=executor,
        preparer=preparer,
        wallet=wallet
    )

    await rpc_manager.start()
    try:
        yield Services(bot_config, rpc_manager, wallet, client, executor, preparer, controller)
    finally:
        await rpc_manager.stop()


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

async def run_trade(services: Services) -> int:
    controller = services.controller
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, controller.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C cancels instead
            pass

    try:
        task = controller.run_in_background()
        while not task.done():
            await asyncio.wait({task}, timeout=STATUS_INTERVAL_S)
            if not task.done():
                logger.info("trading_status", **controller.status().to_dict())

        result = task.result()
    except TraderError as e:
        logger.error("trading_session_failed", error=str(e))
        return 1
    except Exception as e:
        logger.exception("trading_session_crashed", error=str(e), error_type=type(e).__name__)
        return 1

    logger.info(
        "trading_session_ended",
        exit_reason=result.exit_reason.value,
        processing_token=result.processing_token,
        **controller.status().to_dict()
    )
    logger.info("metrics_summary", **get_metrics().export_metrics())
    logger.info("rpc_endpoint_health", endpoints=services.rpc_manager.get_health_stats())
    return 0


async def run_sell_all(services: Services) -> int:
    try:
        result = await services.controller.sell_all()
    except TraderError as e:
        logger.error("sell_all_rejected", error=str(e))
        return 1
    if result is None:
        return 0
    return 0 if result.success else 1


async def run_wrap(services: Services, amount_sol: float) -> int:
    # prepare() wraps wrap_multiplier x the amount; undo that for an exact wrap
    multiplier = services.bot_config.loop_config.wrap_multiplier
    ok = await services.preparer.prepare(amount_sol / multiplier)
    return 0 if ok else 1


async def run_unwrap(services: Services) -> int:
    signature = await services.preparer.unwrap()
    logger.info("unwrap_finished", signature=signature)
    return 0


async def run_balance(services: Services) -> int:
    balance = await services.preparer.get_balance_sol()
    print(f"{services.wallet.pubkey}: {balance:.9f} SOL")
    return 0


def run_settings(args: argparse.Namespace, bot_config: BotConfig) -> int:
    settings = SettingsService(bot_config.settings_file)

    if args.settings_command == "set":
        changes = {
            key: value for key, value in (
                ("mint", args.mint),
                ("poolId", args.pool),
                ("amount", args.amount),
                ("slippage", args.slippage),
                ("isPump", args.is_pump),
            ) if value is not None
        }
        current = settings.update(**changes)
    else:
        current = settings.read()

    print(json.dumps(current, indent=2))
    problem = settings.validate(current)
    if problem:
        print(f"Settings incomplete: {problem}")
        return 1
    return 0


# ----------------------------------------------------------------------
# CLI
# ----------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pumpswap-trader",
        description="Unattended PumpSwap market-cap trader"
    )
    parser.add_argument("--config", default="config/config.yml", help="Path to config.yml")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("trade", help="Run the automated trading session")
    commands.add_parser("sell-all", help="Sell the whole balance of the configured token")
    commands.add_parser("unwrap", help="Close the WSOL account back into SOL")
    commands.add_parser("balance", help="Show the wallet's SOL balance")

    wrap = commands.add_parser("wrap", help="Wrap SOL into WSOL")
    wrap.add_argument("amount", type=float, help="SOL to wrap")

    settings = commands.add_parser("settings", help="Show or edit settings.json")
    settings_commands = settings.add_subparsers(dest="settings_command", required=True)
    settings_commands.add_parser("show")
    settings_set = settings_commands.add_parser("set")
    settings_set.add_argument("--mint")
    settings_set.add_argument("--pool")
    settings_set.add_argument("--amount", help="SOL per buy")
    settings_set.add_argument("--slippage", help="Slippage tolerance in percent")
    pump = settings_set.add_mutually_exclusive_group()
    pump.add_argument("--pump", dest="is_pump", action="store_const", const=True)
    pump.add_argument("--no-pump", dest="is_pump", action="store_const", const=False)

    return parser


async def dispatch(args: argparse.Namespace, bot_config: BotConfig) -> int:
    async with build_services(bot_config) as services:
        if args.command == "trade":
            return await run_trade(services)
        if args.command == "sell-all":
            return await run_sell_all(services)
        if args.command == "wrap":
            return await run_wrap(services, args.amount)
        if args.command == "unwrap":
            return await run_unwrap(services)
        return await run_balance(services)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        bot_config = ConfigurationManager(args.config).load_config()
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(
        level=bot_config.log_config.level,
        format=bot_config.log_config.format,
        output_file=bot_config.log_config.output_file
    )
    init_metrics(enable_histogram=bot_config.metrics_config.enable_histogram)

    if args.command == "settings":
        return run_settings(args, bot_config)

    try:
        return asyncio.run(dispatch(args, bot_config))
    except TraderError as e:
        logger.error("startup_failed", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
