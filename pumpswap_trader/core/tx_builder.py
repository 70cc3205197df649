"""
Transaction builder
Prepends compute budget instructions and checks the packet size limit
"""

from typing import List, Optional
from dataclasses import dataclass

from solders.transaction import Transaction
from solders.message import Message
from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash

from pumpswap_trader.core.logger import get_logger
from pumpswap_trader.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


# Solana transaction size limit in bytes
MAX_TRANSACTION_SIZE = 1232


@dataclass
class TransactionBuildConfig:
    """Compute budget applied to every transaction"""
    compute_unit_limit: Optional[int] = 200_000
    compute_unit_price: Optional[int] = 1_000_000  # micro-lamports
    max_tx_size_bytes: int = MAX_TRANSACTION_SIZE


class TransactionBuilder:
    """
    Builds unsigned legacy transactions

    Usage:
        builder = TransactionBuilder(TransactionBuildConfig(compute_unit_price=50_000))
        tx = builder.build_transaction([swap_ix], wallet.pubkey, blockhash)
    """

    def __init__(self, config: Optional[TransactionBuildConfig] = None):
        self.config = config or TransactionBuildConfig()

    def build_transaction(
        self,
        instructions: List[Instruction],
        payer: Pubkey,
        recent_blockhash: Hash
    ) -> Transaction:
        """
        Build a transaction with compute budget instructions first

        Raises:
            ValueError: If the serialized transaction exceeds the size limit
        """
        with LatencyTimer(metrics, "tx_build"):
            all_instructions: List[Instruction] = []

            if self.config.compute_unit_limit is not None:
                all_instructions.append(set_compute_unit_limit(self.config.compute_unit_limit))
            if self.config.compute_unit_price is not None:
                all_instructions.append(set_compute_unit_price(self.config.compute_unit_price))

            all_instructions.extend(instructions)

            message = Message.new_with_blockhash(all_instructions, payer, recent_blockhash)
            tx = Transaction.new_unsigned(message)

            tx_size = len(bytes(tx))
            if tx_size > self.config.max_tx_size_bytes:
                raise ValueError(
                    f"Transaction size {tx_size} exceeds limit {self.config.max_tx_size_bytes}"
                )

        metrics.increment_counter("transactions_built")
        logger.debug(
            "transaction_built",
            instruction_count=len(all_instructions),
            tx_size_bytes=tx_size
        )
        return tx
