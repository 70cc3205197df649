"""
Market-cap trading loop

    IDLE -> POLLING_MC -> BUY_PENDING -> HOLDING -> SELL_PENDING -> HOLDING
                ^             |             |
                +-------------+-------------+        any state -> STOPPED

The loop polls the pool's market cap and keeps a band around floor(mc):
below the band the band follows the price down, above it the loop buys and
hands the position to the ProfitLossMonitor. The token is abandoned after
max_mc_checks polls without a buy, or when the market cap falls under the
dead-pool floor.
"""

import asyncio
from typing import Dict, FrozenSet, Optional

from pumpswap_trader.core.config import LoopConfig, TradingThresholds
from pumpswap_trader.core.errors import InsufficientBalanceError, InvalidTransitionError
from pumpswap_trader.core.logger import get_session_logger
from pumpswap_trader.core.metrics import get_metrics
from pumpswap_trader.core.models import (
    Direction,
    ExitReason,
    HoldResult,
    LoopState,
    SessionResult,
    TradeResult,
    TradingConfig,
    TradingState,
)
from pumpswap_trader.core.pnl_monitor import ProfitLossMonitor
from pumpswap_trader.core.thresholds import BandPosition, ThresholdTracker


metrics = get_metrics()


TRANSITIONS: Dict[LoopState, FrozenSet[LoopState]] = {
    LoopState.IDLE: frozenset({LoopState.POLLING_MC, LoopState.STOPPED}),
    LoopState.POLLING_MC: frozenset({LoopState.BUY_PENDING, LoopState.STOPPED}),
    LoopState.BUY_PENDING: frozenset({LoopState.HOLDING, LoopState.POLLING_MC, LoopState.STOPPED}),
    LoopState.HOLDING: frozenset({LoopState.SELL_PENDING, LoopState.POLLING_MC, LoopState.STOPPED}),
    LoopState.SELL_PENDING: frozenset({LoopState.HOLDING, LoopState.STOPPED}),
    LoopState.STOPPED: frozenset(),
}


class TradingLoop:
    """
    One trading session for one mint

    Owns the session's TradingState; outside callers only ever see
    snapshot() copies through the controller.

    Usage:
        loop = TradingLoop(config, thresholds, loop_config, oracle, executor, preparer)
        result = await loop.run()
        if not result.processing_token:
            ...  # token abandoned
    """

    def __init__(
        self,
        config: TradingConfig,
        thresholds: TradingThresholds,
        loop_config: LoopConfig,
        oracle,
        executor,
        preparer,
        monitor: Optional[ProfitLossMonitor] = None,
        state: Optional[TradingState] = None
    ):
        self.config = config
        self.thresholds = thresholds
        self.loop_config = loop_config
        self.oracle = oracle
        self.executor = executor
        self.preparer = preparer

        self.logger = get_session_logger(__name__, config.mint, config.pool_id)
        self.tracker = ThresholdTracker(thresholds.lower_mc_interval, thresholds.higher_mc_interval)
        self.monitor = monitor or ProfitLossMonitor(
            oracle, preparer, thresholds, loop_config, logger=self.logger
        )
        self.state = state or TradingState()
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Cooperative stop, observed between startup steps and at the top of every iteration"""
        if self.state.is_running:
            self.logger.info("stop_requested", state=self.state.state.value)
        self._stop_requested = True
        self.state.is_running = False

    def _is_running(self) -> bool:
        return self.state.is_running

    def _transition(self, new_state: LoopState) -> None:
        current = self.state.state
        if new_state not in TRANSITIONS[current]:
            raise InvalidTransitionError(f"{current.value} -> {new_state.value}")
        self.state.state = new_state
        self.logger.debug("state_transition", from_state=current.value, to_state=new_state.value)

    def _finish(self, reason: ExitReason, processing_token: bool, checks: int) -> SessionResult:
        self.state.is_running = False
        if self.state.state is not LoopState.STOPPED:
            self._transition(LoopState.STOPPED)

        self.logger.info(
            "session_finished",
            exit_reason=reason.value,
            processing_token=processing_token,
            checks=checks,
            total_trades=self.state.total_trades
        )
        return SessionResult(exit_reason=reason, processing_token=processing_token, checks=checks)

    async def run(self) -> SessionResult:
        """
        Run the session until the token is abandoned or a stop is requested

        Raises:
            InsufficientBalanceError: Wallet cannot cover the buy amount
        """
        self.state.is_running = not self._stop_requested
        try:
            if not await self._start():
                return self._finish(ExitReason.STOPPED, processing_token=True, checks=0)
            return await self._poll_market_cap()
        finally:
            self.state.is_running = False
            self.state.is_processing = False
            if self.state.state is not LoopState.STOPPED:
                self.state.state = LoopState.STOPPED

    async def _start(self) -> bool:
        """Balance check and WSOL wrap; False when a stop arrived meanwhile"""
        if self._stop_requested:
            return False

        if not await self.preparer.check_balance(self.config.amount):
            available = await self.preparer.get_balance_sol()
            raise InsufficientBalanceError(self.config.amount, available)

        if self._stop_requested:
            self.logger.info("stopped_during_startup", step="balance_check")
            return False

        if not await self.preparer.prepare(self.config.amount):
            self.logger.warning("wallet_prepare_failed_continuing")

        if self._stop_requested:
            self.logger.info("stopped_during_startup", step="wallet_prepare")
            return False

        self._transition(LoopState.POLLING_MC)
        self.logger.info(
            "market_cap_monitoring_started",
            amount_sol=self.config.amount,
            slippage=self.config.slippage,
            lower_mc_interval=self.thresholds.lower_mc_interval,
            higher_mc_interval=self.thresholds.higher_mc_interval
        )

    # ------------------------------------------------------------------
    # Outer loop
    # ------------------------------------------------------------------

    async def _poll_market_cap(self) -> SessionResult:
        checks = 0
        band_ready = False

        while True:
            if not self.state.is_running:
                return self._finish(ExitReason.STOPPED, processing_token=True, checks=checks)

            try:
                snapshot = await self.oracle.get_market_snapshot(self.config.pool_id, self.config.mint)
            except Exception as e:
                snapshot = None
                self._poll_failed(e)

            checks += 1
            if checks > self.loop_config.max_mc_checks:
                self.logger.warning("max_mc_checks_reached", checks=checks)
                return self._finish(ExitReason.MAX_CHECKS, processing_token=False, checks=checks)

            if snapshot is None:
                await asyncio.sleep(self.loop_config.error_cooldown_s)
                continue

            market_cap = snapshot.market_cap
            if market_cap < self.loop_config.min_market_cap_sol:
                self.logger.warning(
                    "dead_pool_detected",
                    market_cap=market_cap,
                    floor=self.loop_config.min_market_cap_sol
                )
                return self._finish(ExitReason.DEAD_POOL, processing_token=False, checks=checks)

            if not band_ready:
                thresholds = self.tracker.recenter(market_cap)
                band_ready = True
                self.logger.info("market_cap_band_set", **thresholds.to_dict())
                await asyncio.sleep(self.loop_config.mc_check_interval_s)
                continue

            try:
                bought = await self._decide(market_cap)
            except InvalidTransitionError:
                raise
            except Exception as e:
                self._poll_failed(e)
                await asyncio.sleep(self.loop_config.error_cooldown_s)
                continue

            if bought:
                hold = await self._hold()
                if hold.exit_reason is ExitReason.STOPPED or not self.state.is_running:
                    return self._finish(ExitReason.STOPPED, processing_token=True, checks=checks)

                self._transition(LoopState.POLLING_MC)
                await asyncio.sleep(self.loop_config.post_hold_delay_s)
                band_ready = await self._recenter_after_hold()
                checks = 0
                continue

            await asyncio.sleep(self.loop_config.mc_check_interval_s)

    def _poll_failed(self, error: Exception) -> None:
        metrics.increment_counter("mc_poll_errors")
        self.state.last_error = str(error)
        self.logger.error("market_cap_poll_failed", error=str(error))

    async def _decide(self, market_cap: float) -> bool:
        """Apply one market cap observation; True when a buy succeeded"""
        thresholds = self.tracker.thresholds
        position = self.tracker.observe(market_cap)

        self.logger.debug(
            "market_cap_checked",
            market_cap=market_cap,
            lower=thresholds.lower,
            higher=thresholds.higher
        )

        if position is BandPosition.BELOW:
            updated = self.tracker.recenter(market_cap)
            self.logger.info("market_cap_falling", **updated.to_dict())
            return False

        if position is BandPosition.INSIDE:
            return False

        self.logger.warning("buy_signal", market_cap=market_cap, higher=thresholds.higher)
        result = await self._trade(Direction.BUY, self.config.amount_lamports)

        if not result.success:
            self._transition(LoopState.POLLING_MC)
            return False

        updated = self.tracker.recenter(market_cap)
        self.logger.info("market_cap_band_raised", **updated.to_dict())
        self._transition(LoopState.HOLDING)
        return True

    async def _hold(self) -> HoldResult:
        hold = await self.monitor.hold(self.config, liquidate=self.sell, is_running=self._is_running)

        if hold.exit_reason is ExitReason.SETTLEMENT_TIMEOUT:
            self.state.last_error = "Token account did not settle after buy"

        self.logger.info(
            "holding_finished",
            exit_reason=hold.exit_reason.value,
            checks=hold.checks,
            final_pnl=hold.final_pnl
        )
        return hold

    async def _recenter_after_hold(self) -> bool:
        """Recentre on the latest market cap; False leaves it to the next good poll"""
        try:
            snapshot = await self.oracle.get_market_snapshot(self.config.pool_id, self.config.mint)
        except Exception as e:
            self._poll_failed(e)
            return False

        thresholds = self.tracker.recenter(snapshot.market_cap)
        self.logger.info("market_cap_monitoring_resumed", **thresholds.to_dict())
        return True

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    async def sell(self, token_amount: int) -> TradeResult:
        """Liquidate token_amount raw units; leaves the loop in HOLDING"""
        result = await self._trade(Direction.SELL, token_amount)
        self._transition(LoopState.HOLDING)
        return result

    async def _trade(self, direction: Direction, amount: int) -> TradeResult:
        """Run one executor call with the processing flag held and counters updated"""
        if self.state.is_processing:
            raise InvalidTransitionError("A trade is already in flight")

        self._transition(LoopState.BUY_PENDING if direction is Direction.BUY else LoopState.SELL_PENDING)
        self.state.is_processing = True
        try:
            result = await self.executor.execute_trade(
                self.config.pool_id,
                self.config.mint,
                amount,
                self.config.slippage,
                direction
            )
        except Exception as e:
            result = TradeResult(success=False, direction=direction, amount=amount, error=str(e))
        finally:
            self.state.is_processing = False

        self._record(result)
        return result

    def _record(self, result: TradeResult) -> None:
        self.state.total_trades += 1

        if result.success:
            self.state.successful_trades += 1
            if result.direction is Direction.BUY:
                self.state.last_buy_time = result.timestamp
            else:
                self.state.last_sell_time = result.timestamp
            self.logger.info(
                "trade_succeeded",
                direction=result.direction.value,
                signature=result.signature,
                amount=result.amount
            )
        else:
            self.state.failed_trades += 1
            self.state.last_error = result.error
            self.logger.error("trade_failed", direction=result.direction.value, error=result.error)
