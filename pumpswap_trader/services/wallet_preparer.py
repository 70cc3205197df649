"""
Wallet preparation: balance checks, WSOL wrap/unwrap and post-buy settlement
"""

from typing import List, Optional

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from spl.token.constants import WRAPPED_SOL_MINT
from spl.token.instructions import get_associated_token_address

from pumpswap_trader.clients.pumpswap_client import PumpSwapClient
from pumpswap_trader.core.config import LoopConfig
from pumpswap_trader.core.errors import RetryExhaustedError, SettlementTimeoutError
from pumpswap_trader.core.logger import get_logger, short_address
from pumpswap_trader.core.metrics import get_metrics
from pumpswap_trader.core.models import LAMPORTS_PER_SOL
from pumpswap_trader.core.retry import retry_until
from pumpswap_trader.core.rpc_manager import RPCManager
from pumpswap_trader.core.tx_builder import TransactionBuilder
from pumpswap_trader.core.tx_submitter import TransactionSubmitter
from pumpswap_trader.core.wallet import Wallet


logger = get_logger(__name__)
metrics = get_metrics()


class WalletPreparer:
    """
    Keeps the wallet ready to trade

    Buys pay from the WSOL associated account, so before the first buy the
    session wraps wrap_multiplier times the buy amount (default 2x, the
    surplus covers fees and a second buy).

    Usage:
        preparer = WalletPreparer(rpc_manager, client, wallet, builder, submitter, loop_config)
        if await preparer.check_balance(0.1):
            await preparer.prepare(0.1)
        tokens = await preparer.wait_for_token_account(mint)
    """

    def __init__(
        self,
        rpc_manager: RPCManager,
        client: PumpSwapClient,
        wallet: Wallet,
        builder: TransactionBuilder,
        submitter: TransactionSubmitter,
        config: Optional[LoopConfig] = None
    ):
        self.rpc_manager = rpc_manager
        self.client = client
        self.wallet = wallet
        self.builder = builder
        self.submitter = submitter
        self.config = config or LoopConfig()

    async def get_balance_sol(self) -> float:
        lamports = await self.rpc_manager.get_balance(str(self.wallet.pubkey))
        return lamports / LAMPORTS_PER_SOL

    async def check_balance(self, required_sol: float) -> bool:
        """True when the native balance covers required_sol"""
        balance_sol = await self.get_balance_sol()
        if balance_sol < required_sol:
            logger.error("insufficient_balance", required_sol=required_sol, available_sol=balance_sol)
            return False

        logger.info("balance_checked", required_sol=required_sol, available_sol=balance_sol)
        return True

    async def prepare(self, buy_amount_sol: float) -> bool:
        """
        Wrap wrap_multiplier x buy_amount_sol into WSOL

        Each attempt is a fresh transaction with a fresh blockhash.

        Returns:
            True once a wrap transaction confirmed, False if every attempt failed
        """
        lamports = int(buy_amount_sol * self.config.wrap_multiplier * LAMPORTS_PER_SOL)
        logger.info("wrapping_sol", amount_sol=lamports / LAMPORTS_PER_SOL)

        try:
            signature = await retry_until(
                lambda: self._send(self.client.wrap_sol_instructions(self.wallet.pubkey, lamports)),
                predicate=bool,
                max_attempts=self.config.wrap_max_attempts,
                delay_s=self.config.wrap_retry_delay_s,
                label="wrap_sol"
            )
        except RetryExhaustedError as e:
            metrics.increment_counter("wrap_failures")
            logger.error("wrap_sol_failed", attempts=e.attempts, error=str(e.last_error))
            return False

        logger.info("sol_wrapped", signature=signature)
        return True

    async def unwrap(self) -> Optional[str]:
        """
        Close the WSOL account, returning its lamports as native SOL

        Returns:
            Signature, or None when there is no WSOL account to close
        """
        wsol_account = get_associated_token_address(self.wallet.pubkey, WRAPPED_SOL_MINT)
        if await self.rpc_manager.get_account_data(str(wsol_account)) is None:
            logger.info("no_wsol_account", account=short_address(str(wsol_account)))
            return None

        signature = await self._send([self.client.unwrap_sol_instruction(self.wallet.pubkey)])
        if signature is None:
            raise RuntimeError("Unwrap transaction failed")

        logger.info("sol_unwrapped", signature=signature)
        return signature

    async def wait_for_token_account(self, mint: str) -> int:
        """
        Wait until the wallet's token account for mint shows a balance

        Returns:
            Raw token balance

        Raises:
            SettlementTimeoutError: If the account never appeared
        """
        ata = str(get_associated_token_address(self.wallet.pubkey, Pubkey.from_string(mint)))

        balance = await retry_until(
            lambda: self.rpc_manager.get_token_account_balance(ata),
            predicate=lambda value: value is not None and value > 0,
            max_attempts=self.config.settlement_max_attempts,
            delay_s=self.config.settlement_delay_s,
            label="token_account_settlement",
            error_cls=SettlementTimeoutError
        )

        logger.info("token_account_settled", account=short_address(ata), balance=balance)
        return balance

    async def _send(self, instructions: List[Instruction]) -> Optional[str]:
        """Build, sign and confirm; signature on success, None on a failed transaction"""
        async with self.wallet.signing():
            blockhash = await self.rpc_manager.get_latest_blockhash()
            tx = self.builder.build_transaction(instructions, self.wallet.pubkey, blockhash)
            self.wallet.sign(tx)
            confirmed = await self.submitter.submit_and_confirm(tx)

        if not confirmed.succeeded:
            logger.warning("wallet_transaction_failed", signature=confirmed.signature, error=confirmed.error)
            return None
        return confirmed.signature
