"""
Unit tests for MarketOracle (services/market_oracle.py)

Tests:
- Price and market cap from reserves
- Fixed pump supply vs. queried supply
- Sell value quotes
- Token balance lookups
"""

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from pumpswap_trader.clients.pumpswap_client import PumpSwapClient
from pumpswap_trader.core.errors import OracleError
from pumpswap_trader.core.metrics import get_metrics
from pumpswap_trader.services.market_oracle import MarketOracle


@pytest.fixture
def setup_pool(mock_rpc_manager, make_pool_data):
    """Serve one pool with the given reserves through the mock RPC"""

    def _setup(base_reserve, quote_reserve, base_mint=None):
        kwargs = {"base_mint": base_mint} if base_mint else {}
        data, (base_vault, quote_vault) = make_pool_data(**kwargs)
        mock_rpc_manager.get_account_data.return_value = data
        balances = {str(base_vault): base_reserve, str(quote_vault): quote_reserve}

        async def balance(address):
            return balances.get(address)

        mock_rpc_manager.get_token_account_balance.side_effect = balance

    return _setup


@pytest.fixture
def client(mock_rpc_manager):
    return PumpSwapClient(mock_rpc_manager)


class TestMarketSnapshot:
    """Test price and market cap"""

    @pytest.mark.asyncio
    async def test_pump_market_cap(self, client, mock_rpc_manager, setup_pool, trading_config):
        """Test 80 SOL against 200M tokens prices at 4e-7 and caps at 400 SOL"""
        setup_pool(base_reserve=200_000_000 * 10 ** 6, quote_reserve=80 * 10 ** 9)
        oracle = MarketOracle(mock_rpc_manager, client, is_pump=True)

        snapshot = await oracle.get_market_snapshot(trading_config.pool_id, trading_config.mint)

        assert snapshot.price == pytest.approx(4e-7)
        assert snapshot.market_cap == pytest.approx(400.0)
        assert snapshot.base_reserve == 200_000_000 * 10 ** 6
        mock_rpc_manager.get_token_supply.assert_not_awaited()
        assert get_metrics().get_gauge("market_cap_sol") == pytest.approx(400.0)

    @pytest.mark.asyncio
    async def test_non_pump_supply_queried_once(self, client, mock_rpc_manager, setup_pool, trading_config):
        """Test other mints read supply and decimals from the chain, then cache them"""
        setup_pool(base_reserve=100 * 10 ** 9, quote_reserve=10 * 10 ** 9)
        mock_rpc_manager.get_token_supply.return_value = (1_000 * 10 ** 9, 9)
        oracle = MarketOracle(mock_rpc_manager, client, is_pump=False)

        first = await oracle.get_market_snapshot(trading_config.pool_id, trading_config.mint)
        second = await oracle.get_market_snapshot(trading_config.pool_id, trading_config.mint)

        assert first.price == pytest.approx(0.1)
        assert first.market_cap == pytest.approx(100.0)
        assert second.market_cap == pytest.approx(100.0)
        mock_rpc_manager.get_token_supply.assert_awaited_once_with(trading_config.mint)

    @pytest.mark.asyncio
    async def test_wrong_mint_rejected(self, client, mock_rpc_manager, setup_pool, trading_config):
        setup_pool(base_reserve=1_000, quote_reserve=1_000, base_mint=str(Keypair().pubkey()))
        oracle = MarketOracle(mock_rpc_manager, client)

        with pytest.raises(OracleError, match="does not trade"):
            await oracle.get_market_snapshot(trading_config.pool_id, trading_config.mint)

    @pytest.mark.asyncio
    async def test_empty_base_vault(self, client, mock_rpc_manager, setup_pool, trading_config):
        setup_pool(base_reserve=0, quote_reserve=1_000)
        oracle = MarketOracle(mock_rpc_manager, client)

        with pytest.raises(OracleError, match="empty"):
            await oracle.get_market_snapshot(trading_config.pool_id, trading_config.mint)

    @pytest.mark.asyncio
    async def test_rpc_failure_propagates(self, client, mock_rpc_manager, trading_config):
        mock_rpc_manager.get_account_data.side_effect = ConnectionError("reset")
        oracle = MarketOracle(mock_rpc_manager, client)

        with pytest.raises(ConnectionError):
            await oracle.get_market_snapshot(trading_config.pool_id, trading_config.mint)


class TestSellValue:
    """Test quote_sell_value"""

    @pytest.mark.asyncio
    async def test_sell_value_in_sol(self, client, mock_rpc_manager, setup_pool, trading_config):
        setup_pool(base_reserve=1_000_000, quote_reserve=1_000_000_000)
        oracle = MarketOracle(mock_rpc_manager, client)

        value = await oracle.quote_sell_value(trading_config.pool_id, trading_config.mint, 1_000)

        assert value == pytest.approx(996_502 / 1_000_000_000)

    @pytest.mark.asyncio
    async def test_zero_amount_is_worthless(self, client, mock_rpc_manager, trading_config):
        oracle = MarketOracle(mock_rpc_manager, client)

        assert await oracle.quote_sell_value(trading_config.pool_id, trading_config.mint, 0) == 0.0
        mock_rpc_manager.get_account_data.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_drained_pool_raises_oracle_error(self, client, mock_rpc_manager, setup_pool, trading_config):
        setup_pool(base_reserve=1_000, quote_reserve=0)
        oracle = MarketOracle(mock_rpc_manager, client)

        with pytest.raises(OracleError):
            await oracle.quote_sell_value(trading_config.pool_id, trading_config.mint, 10)


class TestTokenBalance:
    """Test get_token_balance"""

    @pytest.mark.asyncio
    async def test_reads_owner_ata(self, client, mock_rpc_manager, wallet, trading_config):
        mock_rpc_manager.get_token_account_balance.return_value = 12_345
        oracle = MarketOracle(mock_rpc_manager, client)

        balance = await oracle.get_token_balance(wallet.pubkey, trading_config.mint)

        expected = get_associated_token_address(wallet.pubkey, Pubkey.from_string(trading_config.mint))
        assert balance == 12_345
        mock_rpc_manager.get_token_account_balance.assert_awaited_once_with(str(expected))
