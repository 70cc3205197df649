"""
Unit tests for Transaction Builder (core/tx_builder.py)
"""

import pytest
from solders.compute_budget import ID as COMPUTE_BUDGET_ID
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.system_program import TransferParams, transfer

from pumpswap_trader.core.tx_builder import TransactionBuildConfig, TransactionBuilder


def transfer_ix(payer):
    return transfer(TransferParams(from_pubkey=payer, to_pubkey=Keypair().pubkey(), lamports=1))


class TestTransactionBuilder:
    """Test transaction assembly"""

    def test_compute_budget_prepended(self, wallet):
        tx = TransactionBuilder().build_transaction([transfer_ix(wallet.pubkey)], wallet.pubkey, Hash.default())

        message = tx.message
        programs = [message.account_keys[ix.program_id_index] for ix in message.instructions]
        assert programs[0] == COMPUTE_BUDGET_ID
        assert programs[1] == COMPUTE_BUDGET_ID
        assert len(programs) == 3
        assert message.account_keys[0] == wallet.pubkey

    def test_compute_budget_optional(self, wallet):
        builder = TransactionBuilder(TransactionBuildConfig(compute_unit_limit=None, compute_unit_price=None))

        tx = builder.build_transaction([transfer_ix(wallet.pubkey)], wallet.pubkey, Hash.default())

        assert len(tx.message.instructions) == 1

    def test_blockhash_set(self, wallet):
        blockhash = Hash.new_unique()

        tx = TransactionBuilder().build_transaction([transfer_ix(wallet.pubkey)], wallet.pubkey, blockhash)

        assert tx.message.recent_blockhash == blockhash

    def test_oversize_rejected(self, wallet):
        program = Keypair().pubkey()
        big = Instruction(program, bytes(1_300), [AccountMeta(wallet.pubkey, True, True)])

        with pytest.raises(ValueError, match="exceeds limit"):
            TransactionBuilder().build_transaction([big], wallet.pubkey, Hash.default())
