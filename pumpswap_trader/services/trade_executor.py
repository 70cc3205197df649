"""
Trade executor: one PumpSwap swap per call, failures reported as values
"""

from typing import Dict, List, Optional

from solders.instruction import Instruction

from pumpswap_trader.clients.pumpswap_client import PumpSwapClient
from pumpswap_trader.core.logger import get_logger, short_address
from pumpswap_trader.core.metrics import get_metrics, LatencyTimer
from pumpswap_trader.core.models import Direction, TradeResult
from pumpswap_trader.core.rpc_manager import RPCManager
from pumpswap_trader.core.tx_builder import TransactionBuilder
from pumpswap_trader.core.tx_submitter import ConfirmationStatus, ConfirmedTransaction, TransactionSubmitter
from pumpswap_trader.core.wallet import Wallet


logger = get_logger(__name__)
metrics = get_metrics()


def apply_slippage(amount: int, slippage_pct: float) -> int:
    """Lower bound on amount after slippage_pct percent"""
    return int(amount * (1 - slippage_pct / 100))


def slippage_ceiling(amount: int, slippage_pct: float) -> int:
    """Upper bound on amount after slippage_pct percent"""
    return int(amount * (100 + slippage_pct) // 100)


class TradeExecutor:
    """
    Builds, signs and submits a single swap

    The executor never retries. Any failure (quote, build, RPC, on-chain
    error, confirmation timeout) comes back as TradeResult(success=False)
    and the caller decides what to do.

    Usage:
        executor = TradeExecutor(rpc_manager, client, wallet, builder, submitter)
        result = await executor.execute_trade(pool_id, mint, lamports, 5.0, Direction.BUY)
    """

    def __init__(
        self,
        rpc_manager: RPCManager,
        client: PumpSwapClient,
        wallet: Wallet,
        builder: TransactionBuilder,
        submitter: TransactionSubmitter
    ):
        self.rpc_manager = rpc_manager
        self.client = client
        self.wallet = wallet
        self.builder = builder
        self.submitter = submitter

    async def execute_trade(
        self,
        pool: str,
        mint: str,
        amount: int,
        slippage: float,
        direction: Direction
    ) -> TradeResult:
        """
        Swap against a pool

        Args:
            pool: Pool address
            mint: Base token mint
            amount: Lamports to spend (BUY) or raw tokens to sell (SELL)
            slippage: Tolerance in percent
            direction: Direction.BUY or Direction.SELL

        Returns:
            TradeResult; success only once the transaction is confirmed
        """
        labels = {"direction": direction.value}
        metrics.increment_counter("trade_attempts", labels=labels)

        logger.info(
            "trade_executing",
            direction=direction.value,
            amount=amount,
            slippage=slippage,
            mint=short_address(mint),
            pool=short_address(pool)
        )

        try:
            with LatencyTimer(metrics, "trade_execute", labels=labels):
                instructions = await self._build_swap(pool, mint, amount, slippage, direction)

                async with self.wallet.signing():
                    blockhash = await self.rpc_manager.get_latest_blockhash()
                    tx = self.builder.build_transaction(instructions, self.wallet.pubkey, blockhash)
                    self.wallet.sign(tx)
                    signature = str(tx.signatures[0])
                    try:
                        confirmed = await self.submitter.submit_and_confirm(tx)
                    except TimeoutError as e:
                        confirmed = await self._status_after_timeout(signature, e)

            if not confirmed.succeeded:
                return self._failed(
                    direction, amount,
                    confirmed.error or f"Transaction {confirmed.confirmation_status.value}",
                    signature=confirmed.signature
                )

        except Exception as e:
            return self._failed(direction, amount, str(e))

        metrics.increment_counter("trade_success", labels=labels)
        logger.info("trade_confirmed", direction=direction.value, signature=confirmed.signature)
        return TradeResult(
            success=True,
            direction=direction,
            amount=amount,
            signature=confirmed.signature
        )

    async def _build_swap(
        self,
        pool: str,
        mint: str,
        amount: int,
        slippage: float,
        direction: Direction
    ) -> List[Instruction]:
        pool_state = await self.client.get_pool(pool)
        if str(pool_state.base_mint) != mint:
            raise ValueError(f"Pool {pool} does not trade mint {mint}")

        base_reserve, quote_reserve = await self.client.get_reserves(pool_state)
        user = self.wallet.pubkey

        if direction is Direction.BUY:
            quote = self.client.calculator.buy_quote(base_reserve, quote_reserve, amount)
            if quote.base_out <= 0:
                raise ValueError("Insufficient liquidity: quote returns no tokens")

            # exact-out buy: the position is the full quote, slippage widens what may be paid
            max_quote_in = slippage_ceiling(amount, slippage)

            logger.debug("buy_quoted", base_out=quote.base_out, max_quote_in=max_quote_in)
            return [
                self.client.create_token_account_instruction(user, pool_state.base_mint),
                self.client.build_buy_instruction(pool_state, user, quote.base_out, max_quote_in),
            ]

        quote = self.client.calculator.sell_quote(base_reserve, quote_reserve, amount)
        min_quote_out = apply_slippage(quote.quote_out, slippage)

        logger.debug("sell_quoted", quote_out=quote.quote_out, min_quote_out=min_quote_out, base_in=amount)
        return [self.client.build_sell_instruction(pool_state, user, amount, min_quote_out)]

    async def _status_after_timeout(self, signature: str, error: TimeoutError) -> ConfirmedTransaction:
        """
        Read the status once more after a confirmation timeout

        A transaction that reached a final status after the deadline is
        reported with that status instead of as a timeout.

        Raises:
            TimeoutError: The cluster still has no final status for signature
        """
        status = await self.submitter.get_signature_status(signature)
        if status is None or status.confirmation_status in (ConfirmationStatus.PENDING, ConfirmationStatus.PROCESSED):
            raise error

        logger.warning(
            "trade_status_after_timeout",
            signature=signature,
            status=status.confirmation_status.value
        )
        return status

    def _failed(
        self,
        direction: Direction,
        amount: int,
        error: str,
        signature: Optional[str] = None
    ) -> TradeResult:
        metrics.increment_counter("trade_failures", labels={"direction": direction.value})
        logger.error("trade_failed", direction=direction.value, amount=amount, error=error)
        return TradeResult(
            success=False,
            direction=direction,
            amount=amount,
            signature=signature,
            error=error
        )

    def get_stats(self) -> Dict[str, int]:
        """Lifetime attempt/success/failure counts per direction"""
        stats = {}
        for direction in Direction:
            labels = {"direction": direction.value}
            stats[f"{direction.value}_attempts"] = metrics.get_counter("trade_attempts", labels=labels)
            stats[f"{direction.value}_success"] = metrics.get_counter("trade_success", labels=labels)
            stats[f"{direction.value}_failures"] = metrics.get_counter("trade_failures", labels=labels)
        return stats
