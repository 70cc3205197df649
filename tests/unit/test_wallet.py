"""
Unit tests for wallet loading and signing (core/wallet.py)

Tests:
- Keypair loading from every supported encoding
- Rejection of malformed secrets
- Signing and the signing lock
"""

import asyncio
import base64
import json

import base58
import pytest
from solders.hash import Hash
from solders.signature import Signature
from solders.system_program import TransferParams, transfer

from pumpswap_trader.core.errors import ConfigurationError
from pumpswap_trader.core.metrics import get_metrics
from pumpswap_trader.core.tx_builder import TransactionBuilder
from pumpswap_trader.core.wallet import load_keypair


class TestLoadKeypair:
    """Test secret decoding"""

    def test_base58(self, keypair):
        secret = base58.b58encode(bytes(keypair)).decode()

        assert load_keypair(secret).pubkey() == keypair.pubkey()

    def test_json_array(self, keypair):
        secret = json.dumps(list(bytes(keypair)))

        assert load_keypair(secret).pubkey() == keypair.pubkey()

    def test_keypair_file(self, keypair, tmp_path):
        keyfile = tmp_path / "id.json"
        keyfile.write_text(json.dumps(list(bytes(keypair))))

        assert load_keypair(str(keyfile)).pubkey() == keypair.pubkey()

    def test_base64(self, keypair):
        secret = base64.b64encode(bytes(keypair)).decode()

        assert load_keypair(secret).pubkey() == keypair.pubkey()

    def test_surrounding_whitespace(self, keypair):
        secret = "  " + base58.b58encode(bytes(keypair)).decode() + "\n"

        assert load_keypair(secret).pubkey() == keypair.pubkey()

    @pytest.mark.parametrize("secret", ["", "   ", "not-a-key", "[1, 2, 3]", "[1, 2,", "3yZe7d"])
    def test_invalid_secrets(self, secret):
        with pytest.raises(ConfigurationError):
            load_keypair(secret)

    def test_unreadable_keypair_file(self, tmp_path):
        keyfile = tmp_path / "broken.json"
        keyfile.write_text("{oops")

        with pytest.raises(ConfigurationError):
            load_keypair(str(keyfile))


class TestWallet:
    """Test signing"""

    def test_pubkey(self, wallet, keypair):
        assert wallet.pubkey == keypair.pubkey()

    def test_sign(self, wallet):
        ix = transfer(TransferParams(from_pubkey=wallet.pubkey, to_pubkey=wallet.pubkey, lamports=1))
        tx = TransactionBuilder().build_transaction([ix], wallet.pubkey, Hash.default())

        signed = wallet.sign(tx)

        assert signed.signatures[0] != Signature.default()
        assert signed.verify_with_results() == [True]
        assert wallet.total_signatures == 1
        assert get_metrics().get_counter("transactions_signed") == 1

    @pytest.mark.asyncio
    async def test_signing_lock_serializes(self, wallet, signing_released):
        """Test a second signer waits until the first leaves the block"""
        order = []

        async def signer(name, hold):
            async with wallet.signing():
                order.append(f"{name}-in")
                await asyncio.sleep(hold)
                order.append(f"{name}-out")

        await asyncio.gather(signer("a", 0.02), signer("b", 0))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        await signing_released()

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self, wallet, signing_released):
        with pytest.raises(RuntimeError):
            async with wallet.signing():
                raise RuntimeError("submit failed")

        await signing_released()
