"""
Market oracle: price and market cap derived from PumpSwap pool reserves
"""

from typing import Dict, Optional

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from pumpswap_trader.clients.pumpswap_client import PumpSwapClient
from pumpswap_trader.core.config import PumpSwapConfig
from pumpswap_trader.core.errors import OracleError
from pumpswap_trader.core.logger import get_logger
from pumpswap_trader.core.metrics import get_metrics, LatencyTimer
from pumpswap_trader.core.models import LAMPORTS_PER_SOL, MarketSnapshot
from pumpswap_trader.core.rpc_manager import RPCManager


logger = get_logger(__name__)
metrics = get_metrics()


class MarketOracle:
    """
    Read-only view of one or more pools

    price      = quote reserve / base reserve, both in UI units (SOL per token)
    market cap = price * total supply

    pump.fun graduates always have the fixed 1B supply, so is_pump skips the
    getTokenSupply call; other mints are read once and cached.

    Usage:
        oracle = MarketOracle(rpc_manager, pumpswap_client, is_pump=True)
        snapshot = await oracle.get_market_snapshot(pool_id, mint)
        value_sol = await oracle.quote_sell_value(pool_id, mint, token_balance)
    """

    def __init__(
        self,
        rpc_manager: RPCManager,
        client: PumpSwapClient,
        is_pump: bool = True,
        config: Optional[PumpSwapConfig] = None
    ):
        self.rpc_manager = rpc_manager
        self.client = client
        self.is_pump = is_pump
        self.config = config or client.config
        self._supply_cache: Dict[str, float] = {}
        self._decimals_cache: Dict[str, int] = {}

    async def get_market_snapshot(self, pool: str, mint: str) -> MarketSnapshot:
        """
        Current price and market cap for a pool

        Raises:
            OracleError: If the pool or its vaults cannot be read
        """
        with LatencyTimer(metrics, "oracle_snapshot"):
            pool_state = await self.client.get_pool(pool)
            if str(pool_state.base_mint) != mint:
                raise OracleError(f"Pool {pool} does not trade mint {mint}")

            base_reserve, quote_reserve = await self.client.get_reserves(pool_state)
            if base_reserve <= 0:
                raise OracleError(f"Pool {pool} has an empty base vault")

            decimals = await self._token_decimals(mint)
            base_ui = base_reserve / (10 ** decimals)
            quote_ui = quote_reserve / LAMPORTS_PER_SOL

            price = quote_ui / base_ui
            market_cap = price * await self._total_supply(mint)

        metrics.set_gauge("market_cap_sol", market_cap)
        return MarketSnapshot(
            price=price,
            market_cap=market_cap,
            base_reserve=base_reserve,
            quote_reserve=quote_reserve
        )

    async def quote_sell_value(self, pool: str, mint: str, token_amount: int) -> float:
        """
        SOL received for selling token_amount raw units into the pool now

        Raises:
            OracleError: If the pool cannot be read
        """
        if token_amount <= 0:
            return 0.0

        pool_state = await self.client.get_pool(pool)
        base_reserve, quote_reserve = await self.client.get_reserves(pool_state)
        try:
            quote = self.client.calculator.sell_quote(base_reserve, quote_reserve, token_amount)
        except ValueError as e:
            raise OracleError(str(e)) from e

        return quote.quote_out / LAMPORTS_PER_SOL

    async def get_token_balance(self, owner: Pubkey, mint: str) -> Optional[int]:
        """Raw balance of the owner's associated token account, None if it does not exist"""
        ata = get_associated_token_address(owner, Pubkey.from_string(mint))
        return await self.rpc_manager.get_token_account_balance(str(ata))

    async def _token_decimals(self, mint: str) -> int:
        if self.is_pump:
            return self.config.token_decimals
        if mint not in self._decimals_cache:
            await self._load_supply(mint)
        return self._decimals_cache[mint]

    async def _total_supply(self, mint: str) -> float:
        if self.is_pump:
            return float(self.config.pump_total_supply)
        if mint not in self._supply_cache:
            await self._load_supply(mint)
        return self._supply_cache[mint]

    async def _load_supply(self, mint: str) -> None:
        raw_supply, decimals = await self.rpc_manager.get_token_supply(mint)
        self._decimals_cache[mint] = decimals
        self._supply_cache[mint] = raw_supply / (10 ** decimals)
        logger.info("token_supply_loaded", mint=mint[:8], supply=self._supply_cache[mint], decimals=decimals)
