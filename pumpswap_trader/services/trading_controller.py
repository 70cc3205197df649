"""
Trading controller: start/stop/status surface over one TradingLoop at a time
"""

import asyncio
from typing import Callable, Optional

from pumpswap_trader.core.config import LoopConfig, TradingThresholds
from pumpswap_trader.core.errors import ConfigurationError
from pumpswap_trader.core.logger import get_logger, short_address
from pumpswap_trader.core.models import Direction, SessionResult, TradeResult, TradingConfig, TradingState
from pumpswap_trader.core.settings import SettingsService
from pumpswap_trader.core.trading_loop import TradingLoop
from pumpswap_trader.core.wallet import Wallet
from pumpswap_trader.services.market_oracle import MarketOracle
from pumpswap_trader.services.trade_executor import TradeExecutor
from pumpswap_trader.services.wallet_preparer import WalletPreparer


logger = get_logger(__name__)


OracleFactory = Callable[[TradingConfig], MarketOracle]


class TradingController:
    """
    Lifecycle wrapper for trading sessions

    Reads the session config from the settings provider on every start, so
    edits made between sessions take effect. Errors that end a session are
    re-raised to the caller; the controller itself stays usable.

    Usage:
        controller = TradingController(settings, thresholds, loop_config, oracle_factory,
                                       executor, preparer, wallet)
        task = controller.run_in_background()
        print(controller.status().to_dict())
        controller.stop()
        await task
    """

    def __init__(
        self,
        settings: SettingsService,
        thresholds: TradingThresholds,
        loop_config: LoopConfig,
        oracle_factory: OracleFactory,
        executor: TradeExecutor,
        preparer: WalletPreparer,
        wallet: Wallet
    ):
        self.settings = settings
        self.thresholds = thresholds
        self.loop_config = loop_config
        self.oracle_factory = oracle_factory
        self.executor = executor
        self.preparer = preparer
        self.wallet = wallet

        self._state = TradingState()
        self._loop: Optional[TradingLoop] = None
        self._active = False

    def _load_config(self) -> TradingConfig:
        config = self.settings.get_config()
        if config is None:
            raise ConfigurationError("Invalid trading configuration")
        return config

    def _claim(self) -> TradingLoop:
        """
        Validate settings and reserve the session slot, without awaiting

        Raises:
            ConfigurationError: Settings or thresholds are invalid
            RuntimeError: A session is already running
        """
        if self._active:
            raise RuntimeError("Trading session already running")

        config = self._load_config()
        try:
            self.thresholds.validate()
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        self._state = TradingState(is_running=True)
        self._loop = TradingLoop(
            config=config,
            thresholds=self.thresholds,
            loop_config=self.loop_config,
            oracle=self.oracle_factory(config),
            executor=self.executor,
            preparer=self.preparer,
            state=self._state
        )
        self._active = True

        logger.info(
            "auto_trading_starting",
            wallet=short_address(str(self.wallet.pubkey)),
            mint=short_address(config.mint),
            amount_sol=config.amount,
            slippage=config.slippage
        )
        return self._loop

    async def _run(self, loop: TradingLoop) -> SessionResult:
        try:
            return await loop.run()
        except Exception as e:
            loop.state.is_running = False
            loop.state.last_error = str(e)
            logger.error("trading_failed", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            self._active = False

    async def start(self) -> SessionResult:
        """
        Run one trading session to completion

        Raises:
            ConfigurationError: Settings or thresholds are invalid; nothing ran
            RuntimeError: A session is already running
            InsufficientBalanceError: Wallet cannot cover the buy amount
        """
        return await self._run(self._claim())

    def run_in_background(self) -> "asyncio.Task[SessionResult]":
        """
        Start a session as a task so status() can be polled meanwhile

        The session slot is taken before this returns, so a stop() or a
        second start issued right after is seen by this session.
        """
        return asyncio.create_task(self._run(self._claim()))

    def stop(self) -> None:
        """Ask the running session to stop after its current step"""
        if self._loop is not None:
            self._loop.request_stop()
        self._state.is_running = False
        logger.info("trading_stopped_by_user")

    def status(self) -> TradingState:
        """Copy of the current session state; never touches the counters"""
        return self._state.snapshot()

    async def sell_all(self) -> Optional[TradeResult]:
        """
        Sell the wallet's whole balance of the configured token

        Returns:
            TradeResult, or None when there was nothing to sell
        """
        config = self._load_config()
        oracle = self.oracle_factory(config)

        balance = await oracle.get_token_balance(self.wallet.pubkey, config.mint)
        if not balance:
            logger.info("no_tokens_to_sell", mint=short_address(config.mint))
            return None

        logger.info("selling_all_tokens", mint=short_address(config.mint), amount=balance)
        result = await self.executor.execute_trade(
            config.pool_id, config.mint, balance, config.slippage, Direction.SELL
        )

        if result.success:
            logger.info("sell_all_completed", signature=result.signature)
        else:
            logger.error("sell_all_failed", error=result.error)
        return result
