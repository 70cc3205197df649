"""
Trading wallet: keypair loading and serialized signing
"""

import asyncio
import base64
import binascii
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from pumpswap_trader.core.errors import ConfigurationError
from pumpswap_trader.core.logger import get_logger, short_address
from pumpswap_trader.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


KEYPAIR_LENGTH = 64


def load_keypair(secret: str) -> Keypair:
    """
    Build a keypair from any of the usual secret encodings

    Accepted forms, tried in order:
    - path to a JSON keypair file (solana-keygen output)
    - JSON byte array "[12, 34, ...]"
    - base58 string (Phantom export)
    - base64 string

    Raises:
        ConfigurationError: If the secret cannot be decoded into a 64-byte keypair
    """
    if not secret or not secret.strip():
        raise ConfigurationError("Private key is empty")

    secret = secret.strip()
    raw = None

    if not secret.startswith("[") and Path(secret).is_file():
        try:
            with open(secret, 'r') as f:
                raw = bytes(json.load(f))
        except (OSError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Unreadable keypair file {secret}: {e}") from e

    elif secret.startswith("["):
        try:
            raw = bytes(json.loads(secret))
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Malformed JSON private key: {e}") from e

    else:
        try:
            raw = base58.b58decode(secret)
        except ValueError:
            raw = None

        if raw is None or len(raw) != KEYPAIR_LENGTH:
            try:
                raw = base64.b64decode(secret, validate=True)
            except (binascii.Error, ValueError):
                raw = None

    if raw is None or len(raw) != KEYPAIR_LENGTH:
        raise ConfigurationError("Private key must decode to 64 bytes")

    try:
        return Keypair.from_bytes(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid private key: {e}") from e


class Wallet:
    """
    Signing capability shared by every session

    Each wallet owns one asyncio.Lock. Build, sign and submit for a
    transaction all happen inside `signing()`, so two sessions sharing
    a wallet never interleave blockhash fetch and submission.

    Usage:
        wallet = Wallet(load_keypair(config.private_key))
        async with wallet.signing():
            tx = builder.build_transaction([...], wallet.pubkey, blockhash)
            wallet.sign(tx)
            await submitter.submit_and_confirm(tx)
    """

    def __init__(self, keypair: Keypair):
        self._keypair = keypair
        self._lock = asyncio.Lock()
        self.total_signatures = 0

        logger.info("wallet_loaded", pubkey=short_address(str(keypair.pubkey())))

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    def sign(self, transaction: Transaction) -> Transaction:
        """Sign in place with the wallet keypair and return the transaction"""
        with LatencyTimer(metrics, "tx_sign"):
            transaction.partial_sign([self._keypair], transaction.message.recent_blockhash)

        self.total_signatures += 1
        metrics.increment_counter("transactions_signed")
        return transaction

    @asynccontextmanager
    async def signing(self) -> AsyncIterator["Wallet"]:
        """Hold the wallet's signing lock for one build/sign/submit sequence"""
        async with self._lock:
            yield self
