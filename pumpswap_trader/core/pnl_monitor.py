"""
Profit/loss monitor for one holding period

Entered right after a confirmed buy. Each check, in priority order:

    1. stop requested        -> exit STOPPED, position kept
    2. value below stop loss -> liquidate (STOP_LOSS)
    3. pnl < 0               -> take-profit ladder back to baseline
    4. pnl > tp_level        -> ladder armed
    5. pnl > higher_tp       -> ladder ratchets up to floor(pnl)
       pnl < lower_tp, armed -> liquidate (TAKE_PROFIT)

When the check budget runs out the position is sold unconditionally (TIMEOUT).
"""

import asyncio
import math
from typing import Awaitable, Callable, Optional

import structlog

from pumpswap_trader.core.config import LoopConfig, TradingThresholds
from pumpswap_trader.core.errors import SettlementTimeoutError
from pumpswap_trader.core.logger import get_logger
from pumpswap_trader.core.metrics import get_metrics
from pumpswap_trader.core.models import ExitReason, HoldResult, TradeResult, TradingConfig
from pumpswap_trader.core.thresholds import ProfitBand


metrics = get_metrics()

Liquidate = Callable[[int], Awaitable[TradeResult]]


def check_budget(sell_timer_s: float, check_interval_s: float) -> int:
    """Number of PnL checks that fit in the sell timer, at least one"""
    # round() absorbs float noise such as 300 / 0.2 == 1499.9999999999998
    return max(1, math.ceil(round(sell_timer_s / check_interval_s, 9)))


def compute_pnl(value: float, buy_amount: float) -> float:
    """Percent gain of value over buy_amount"""
    return (value - buy_amount) / buy_amount * 100


def stop_loss_floor(buy_amount: float, stop_loss_pct: float) -> float:
    return buy_amount * (100 - stop_loss_pct) / 100


class ProfitLossMonitor:
    """
    Watches an open position and decides when to sell it

    The monitor never talks to the executor directly: the trading loop
    passes a liquidate callable so every trade goes through the loop's
    bookkeeping.

    Usage:
        monitor = ProfitLossMonitor(oracle, preparer, thresholds, loop_config)
        result = await monitor.hold(config, liquidate=loop.sell, is_running=lambda: state.is_running)
    """

    def __init__(
        self,
        oracle,
        preparer,
        thresholds: TradingThresholds,
        loop_config: LoopConfig,
        logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.oracle = oracle
        self.preparer = preparer
        self.thresholds = thresholds
        self.loop_config = loop_config
        self.logger = logger or get_logger(__name__)

    @property
    def max_checks(self) -> int:
        return check_budget(self.thresholds.sell_timer, self.loop_config.pnl_check_interval_s)

    async def hold(
        self,
        config: TradingConfig,
        liquidate: Liquidate,
        is_running: Callable[[], bool]
    ) -> HoldResult:
        """
        Run one holding period to completion

        Args:
            config: Session trading config (amount is the buy amount in SOL)
            liquidate: Coroutine selling a raw token amount
            is_running: Cooperative stop flag, read before every check

        Returns:
            HoldResult describing which exit fired
        """
        try:
            token_amount = await self.preparer.wait_for_token_account(config.mint)
        except SettlementTimeoutError as e:
            metrics.increment_counter("settlement_timeouts")
            self.logger.error("settlement_timeout", attempts=e.attempts, error=str(e.last_error))
            return HoldResult(exit_reason=ExitReason.SETTLEMENT_TIMEOUT, checks=0)

        buy_amount = config.amount
        floor_value = stop_loss_floor(buy_amount, self.thresholds.stop_loss)
        band = ProfitBand(
            lower_tp_interval=self.thresholds.lower_tp_interval,
            higher_tp_interval=self.thresholds.higher_tp_interval,
            baseline=self.loop_config.tp_baseline
        )
        max_checks = self.max_checks
        interval = self.loop_config.pnl_check_interval_s

        self.logger.info(
            "pnl_monitoring_started",
            token_amount=token_amount,
            buy_amount=buy_amount,
            stop_loss_value=floor_value,
            max_checks=max_checks,
            **band.to_dict()
        )

        checks = 0
        pnl: Optional[float] = None

        while checks < max_checks:
            if not is_running():
                self.logger.info("pnl_monitoring_stopped", checks=checks)
                return HoldResult(exit_reason=ExitReason.STOPPED, checks=checks, final_pnl=pnl)

            checks += 1

            try:
                value = await self.oracle.quote_sell_value(config.pool_id, config.mint, token_amount)
            except Exception as e:
                metrics.increment_counter("pnl_check_errors")
                self.logger.warning("pnl_check_failed", check=checks, error=str(e))
                value = None

            if value is not None:
                pnl = compute_pnl(value, buy_amount)
                self.logger.debug("pnl_checked", check=checks, value=value, pnl=pnl, **band.to_dict())

                exit_reason = self._evaluate(value, pnl, floor_value, band)
                if exit_reason is not None:
                    result = await liquidate(token_amount)
                    if result.success:
                        return HoldResult(
                            exit_reason=exit_reason,
                            checks=checks,
                            final_pnl=pnl,
                            sell_result=result
                        )
                    self.logger.warning("liquidation_failed_continuing", reason=exit_reason.value, error=result.error)

            if checks < max_checks:
                await asyncio.sleep(interval)

        if not is_running():
            return HoldResult(exit_reason=ExitReason.STOPPED, checks=checks, final_pnl=pnl)

        self.logger.warning("sell_timer_elapsed", checks=checks, final_pnl=pnl)
        result = await liquidate(token_amount)
        return HoldResult(exit_reason=ExitReason.TIMEOUT, checks=checks, final_pnl=pnl, sell_result=result)

    def _evaluate(
        self,
        value: float,
        pnl: float,
        floor_value: float,
        band: ProfitBand
    ) -> Optional[ExitReason]:
        """Apply one check to the ladder; return the exit to take, if any"""
        if value < floor_value:
            self.logger.warning("stop_loss_triggered", value=value, stop_loss_value=floor_value, pnl=pnl)
            return ExitReason.STOP_LOSS

        if pnl < 0:
            if band.tp_reached or band.tp_level != band.baseline:
                self.logger.info("take_profit_reset", pnl=pnl)
            band.reset()
            return None

        if pnl > band.tp_level and not band.tp_reached:
            band.tp_reached = True
            self.logger.info("take_profit_armed", pnl=pnl, tp_level=band.tp_level)

        if pnl > band.higher_tp:
            previous = band.tp_level
            band.ratchet(pnl)
            self.logger.info("take_profit_raised", pnl=pnl, previous_level=previous, **band.to_dict())
        elif pnl < band.lower_tp and band.tp_reached:
            self.logger.warning("take_profit_triggered", pnl=pnl, lower_tp=band.lower_tp)
            return ExitReason.TAKE_PROFIT

        return None
