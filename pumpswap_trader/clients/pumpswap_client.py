"""
PumpSwap AMM client

Decodes pool accounts, derives the program's PDAs, quotes swaps with the
constant-product formula and encodes buy/sell instructions. Network access
goes through RPCManager; nothing here signs or submits.
"""

import struct
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from solders.instruction import Instruction, AccountMeta
from solders.pubkey import Pubkey
from solders.system_program import transfer, TransferParams
from spl.token.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WRAPPED_SOL_MINT,
)
from spl.token.instructions import (
    close_account,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    sync_native,
)
from spl.token.models import CloseAccountParams, SyncNativeParams

from pumpswap_trader.core.config import PumpSwapConfig
from pumpswap_trader.core.errors import OracleError
from pumpswap_trader.core.logger import get_logger, short_address
from pumpswap_trader.core.metrics import get_metrics
from pumpswap_trader.core.rpc_manager import RPCManager


logger = get_logger(__name__)
metrics = get_metrics()


BPS_DENOMINATOR = 10_000

SYSTEM_PROGRAM = Pubkey.from_string("11111111111111111111111111111111")
EVENT_AUTHORITY_SEED = b"__event_authority"
GLOBAL_CONFIG_SEED = b"global_config"
CREATOR_VAULT_SEED = b"creator_vault"

# Anchor discriminators: sha256("global:<name>")[:8]
BUY_DISCRIMINATOR = bytes.fromhex("66063d1201daebea")
SELL_DISCRIMINATOR = bytes.fromhex("33e685a4017f83ad")

# Pool account: 8 discriminator, u8 bump, u16 index, six pubkeys, u64 lp supply,
# then the coin creator pubkey on pools created after the creator-fee upgrade
POOL_HEADER = struct.Struct("<BH")
POOL_MIN_SIZE = 8 + POOL_HEADER.size + 6 * 32 + 8
POOL_WITH_CREATOR_SIZE = POOL_MIN_SIZE + 32


@dataclass(frozen=True)
class PoolState:
    """Decoded PumpSwap pool account"""
    address: Pubkey
    bump: int
    index: int
    creator: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    lp_mint: Pubkey
    pool_base_token_account: Pubkey
    pool_quote_token_account: Pubkey
    lp_supply: int
    coin_creator: Pubkey = Pubkey.default()


def decode_pool(address: Pubkey, data: bytes) -> PoolState:
    """
    Decode raw pool account data

    Raises:
        OracleError: If the data is too short to be a pool
    """
    if len(data) < POOL_MIN_SIZE:
        raise OracleError(f"Pool account too small: {len(data)} bytes")

    bump, index = POOL_HEADER.unpack_from(data, 8)
    offset = 8 + POOL_HEADER.size

    keys = []
    for _ in range(6):
        keys.append(Pubkey.from_bytes(data[offset:offset + 32]))
        offset += 32

    lp_supply = struct.unpack_from("<Q", data, offset)[0]
    offset += 8

    coin_creator = Pubkey.default()
    if len(data) >= POOL_WITH_CREATOR_SIZE:
        coin_creator = Pubkey.from_bytes(data[offset:offset + 32])

    return PoolState(
        address=address,
        bump=bump,
        index=index,
        creator=keys[0],
        base_mint=keys[1],
        quote_mint=keys[2],
        lp_mint=keys[3],
        pool_base_token_account=keys[4],
        pool_quote_token_account=keys[5],
        lp_supply=lp_supply,
        coin_creator=coin_creator
    )


@dataclass(frozen=True)
class BuyQuote:
    """Tokens received for spending quote (lamports)"""
    base_out: int
    quote_in: int
    fee_lamports: int


@dataclass(frozen=True)
class SellQuote:
    """Lamports received for selling tokens, after fees"""
    quote_out: int
    base_in: int
    fee_lamports: int


class SwapCalculator:
    """
    Constant-product quotes with PumpSwap fees

    Fees are charged on the quote side: added on top of the swapped amount
    when buying, deducted from the output when selling.

    Usage:
        calc = SwapCalculator(lp_fee_bps=20, protocol_fee_bps=5)
        quote = calc.sell_quote(base_reserve, quote_reserve, token_amount)
    """

    def __init__(self, lp_fee_bps: int = 20, protocol_fee_bps: int = 5):
        self.lp_fee_bps = lp_fee_bps
        self.protocol_fee_bps = protocol_fee_bps

    @property
    def total_fee_bps(self) -> int:
        return self.lp_fee_bps + self.protocol_fee_bps

    @staticmethod
    def _fee(amount: int, bps: int) -> int:
        # Ceiling division, as the program rounds fees up
        return -(-amount * bps // BPS_DENOMINATOR)

    def buy_quote(self, base_reserve: int, quote_reserve: int, quote_in: int) -> BuyQuote:
        """
        Tokens out for spending quote_in lamports, fees included

        Raises:
            ValueError: On empty reserves or non-positive input
        """
        if base_reserve <= 0 or quote_reserve <= 0:
            raise ValueError("Pool reserves must be > 0")
        if quote_in <= 0:
            raise ValueError("Amount must be positive")

        effective_in = quote_in * BPS_DENOMINATOR // (BPS_DENOMINATOR + self.total_fee_bps)
        base_out = base_reserve * effective_in // (quote_reserve + effective_in)

        return BuyQuote(base_out=base_out, quote_in=quote_in, fee_lamports=quote_in - effective_in)

    def sell_quote(self, base_reserve: int, quote_reserve: int, base_in: int) -> SellQuote:
        """
        Lamports out for selling base_in raw tokens, fees deducted

        Raises:
            ValueError: On empty reserves or non-positive input
        """
        if base_reserve <= 0 or quote_reserve <= 0:
            raise ValueError("Pool reserves must be > 0")
        if base_in <= 0:
            raise ValueError("Amount must be positive")

        gross = quote_reserve * base_in // (base_reserve + base_in)
        fees = self._fee(gross, self.lp_fee_bps) + self._fee(gross, self.protocol_fee_bps)
        quote_out = max(gross - fees, 0)

        return SellQuote(quote_out=quote_out, base_in=base_in, fee_lamports=gross - quote_out)


class PumpSwapClient:
    """
    Read pool state and build swap instructions for one PumpSwap deployment

    Usage:
        client = PumpSwapClient(rpc_manager, bot_config.pumpswap_config)
        pool = await client.get_pool(pool_id)
        base_reserve, quote_reserve = await client.get_reserves(pool)
        ix = client.build_buy_instruction(pool, wallet.pubkey, base_out, max_quote_in)
    """

    def __init__(self, rpc_manager: RPCManager, config: Optional[PumpSwapConfig] = None):
        self.rpc_manager = rpc_manager
        self.config = config or PumpSwapConfig()
        self.program_id = Pubkey.from_string(self.config.program_id)
        self.protocol_fee_recipient = Pubkey.from_string(self.config.protocol_fee_recipient)
        self.calculator = SwapCalculator(self.config.lp_fee_bps, self.config.protocol_fee_bps)

        self.global_config = Pubkey.find_program_address([GLOBAL_CONFIG_SEED], self.program_id)[0]
        self.event_authority = Pubkey.find_program_address([EVENT_AUTHORITY_SEED], self.program_id)[0]

        self._pools: Dict[str, PoolState] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_pool(self, pool_address: str) -> PoolState:
        """
        Fetch and decode a pool account (cached; the layout never changes)

        Raises:
            OracleError: If the account is missing or not a pool
        """
        cached = self._pools.get(pool_address)
        if cached is not None:
            return cached

        data = await self.rpc_manager.get_account_data(pool_address)
        if data is None:
            raise OracleError(f"Pool account {pool_address} not found")

        pool = decode_pool(Pubkey.from_string(pool_address), data)
        self._pools[pool_address] = pool

        logger.info(
            "pool_loaded",
            pool=short_address(pool_address),
            base_mint=short_address(str(pool.base_mint)),
            quote_mint=short_address(str(pool.quote_mint))
        )
        return pool

    async def get_reserves(self, pool: PoolState) -> Tuple[int, int]:
        """
        (base_reserve, quote_reserve) in raw units

        Raises:
            OracleError: If either vault cannot be read
        """
        base = await self.rpc_manager.get_token_account_balance(str(pool.pool_base_token_account))
        quote = await self.rpc_manager.get_token_account_balance(str(pool.pool_quote_token_account))
        if base is None or quote is None:
            raise OracleError(f"Pool vaults for {pool.address} not found")

        metrics.increment_counter("pool_reserve_reads")
        return base, quote

    # ------------------------------------------------------------------
    # PDAs
    # ------------------------------------------------------------------

    def coin_creator_vault_authority(self, coin_creator: Pubkey) -> Pubkey:
        return Pubkey.find_program_address(
            [CREATOR_VAULT_SEED, bytes(coin_creator)],
            self.program_id
        )[0]

    # ------------------------------------------------------------------
    # Instructions
    # ------------------------------------------------------------------

    def _swap_accounts(self, pool: PoolState, user: Pubkey) -> List[AccountMeta]:
        """Account list shared by buy and sell"""
        creator_authority = self.coin_creator_vault_authority(pool.coin_creator)

        return [
            AccountMeta(pubkey=pool.address, is_signer=False, is_writable=False),
            AccountMeta(pubkey=user, is_signer=True, is_writable=True),
            AccountMeta(pubkey=self.global_config, is_signer=False, is_writable=False),
            AccountMeta(pubkey=pool.base_mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=pool.quote_mint, is_signer=False, is_writable=False),
            AccountMeta(
                pubkey=get_associated_token_address(user, pool.base_mint),
                is_signer=False, is_writable=True
            ),
            AccountMeta(
                pubkey=get_associated_token_address(user, pool.quote_mint),
                is_signer=False, is_writable=True
            ),
            AccountMeta(pubkey=pool.pool_base_token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=pool.pool_quote_token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=self.protocol_fee_recipient, is_signer=False, is_writable=False),
            AccountMeta(
                pubkey=get_associated_token_address(self.protocol_fee_recipient, pool.quote_mint),
                is_signer=False, is_writable=True
            ),
            AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=self.event_authority, is_signer=False, is_writable=False),
            AccountMeta(pubkey=self.program_id, is_signer=False, is_writable=False),
            AccountMeta(
                pubkey=get_associated_token_address(creator_authority, pool.quote_mint),
                is_signer=False, is_writable=True
            ),
            AccountMeta(pubkey=creator_authority, is_signer=False, is_writable=False),
        ]

    def build_buy_instruction(
        self,
        pool: PoolState,
        user: Pubkey,
        base_amount_out: int,
        max_quote_amount_in: int
    ) -> Instruction:
        """Buy exactly base_amount_out tokens, paying at most max_quote_amount_in lamports"""
        data = BUY_DISCRIMINATOR + struct.pack("<QQ", base_amount_out, max_quote_amount_in)
        return Instruction(self.program_id, data, self._swap_accounts(pool, user))

    def build_sell_instruction(
        self,
        pool: PoolState,
        user: Pubkey,
        base_amount_in: int,
        min_quote_amount_out: int
    ) -> Instruction:
        """Sell base_amount_in tokens, receiving at least min_quote_amount_out lamports"""
        data = SELL_DISCRIMINATOR + struct.pack("<QQ", base_amount_in, min_quote_amount_out)
        return Instruction(self.program_id, data, self._swap_accounts(pool, user))

    @staticmethod
    def create_token_account_instruction(owner: Pubkey, mint: Pubkey) -> Instruction:
        """Idempotent ATA creation, safe to include on every buy"""
        return create_idempotent_associated_token_account(owner, owner, mint)

    @staticmethod
    def wrap_sol_instructions(owner: Pubkey, lamports: int) -> List[Instruction]:
        """Create the WSOL account if needed, fund it and sync the native balance"""
        wsol_account = get_associated_token_address(owner, WRAPPED_SOL_MINT)
        return [
            create_idempotent_associated_token_account(owner, owner, WRAPPED_SOL_MINT),
            transfer(TransferParams(from_pubkey=owner, to_pubkey=wsol_account, lamports=lamports)),
            sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=wsol_account)),
        ]

    @staticmethod
    def unwrap_sol_instruction(owner: Pubkey) -> Instruction:
        """Close the WSOL account, returning its lamports to the owner"""
        wsol_account = get_associated_token_address(owner, WRAPPED_SOL_MINT)
        return close_account(CloseAccountParams(
            program_id=TOKEN_PROGRAM_ID,
            account=wsol_account,
            dest=owner,
            owner=owner
        ))
