"""
Pytest configuration and shared fixtures
These fixtures are available to all test files
"""

import asyncio
import struct

import pytest
from typing import Any, Dict
from unittest.mock import AsyncMock

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.constants import WRAPPED_SOL_MINT

from pumpswap_trader.core.config import LoopConfig, TradingThresholds
from pumpswap_trader.core.metrics import MetricsCollector, get_metrics
from pumpswap_trader.core.models import TradingConfig
from pumpswap_trader.core.wallet import Wallet


# Real mainnet addresses; only used as well-formed base58 keys
TEST_MINT = "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R"
TEST_POOL = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


@pytest.fixture(autouse=True)
def reset_global_metrics():
    """Keep the process-wide collector clean between tests"""
    get_metrics().reset()
    yield
    get_metrics().reset()


@pytest.fixture
def test_config_dict() -> Dict[str, Any]:
    """
    Sample configuration dictionary for testing

    Returns valid config that can be modified per test
    """
    return {
        "rpc": {
            "endpoints": [
                {
                    "url": "https://api.devnet.solana.com",
                    "priority": 0,
                    "label": "solana_devnet",
                    "timeout_ms": 5000
                },
                {
                    "url": "https://api.testnet.solana.com",
                    "priority": 1,
                    "label": "solana_testnet",
                    "timeout_ms": 5000
                }
            ],
            "failover_threshold_errors": 3,
            "commitment": "confirmed"
        },
        "wallet": {
            "private_key": "test-private-key"
        },
        "trading": {
            "lower_mc_interval": 10,
            "higher_mc_interval": 20,
            "lower_tp_interval": 5,
            "higher_tp_interval": 15,
            "stop_loss": 15,
            "sell_timer": 300
        },
        "loop": {
            "mc_check_interval_s": 0.2,
            "max_mc_checks": 10000,
            "min_market_cap_sol": 65
        },
        "logging": {
            "level": "DEBUG",
            "format": "json",
            "output_file": None
        },
        "metrics": {
            "enable_histogram": True
        }
    }


@pytest.fixture
def test_config_file(test_config_dict, tmp_path):
    """
    Create a temporary config file for testing

    Returns path to temporary YAML config file
    """
    import yaml

    config_file = tmp_path / "test_config.yml"
    with open(config_file, 'w') as f:
        yaml.dump(test_config_dict, f)

    return str(config_file)


@pytest.fixture
def trading_config() -> TradingConfig:
    """One SOL per buy, 5% slippage"""
    return TradingConfig(
        mint=TEST_MINT,
        pool_id=TEST_POOL,
        is_pump=True,
        amount=1.0,
        slippage=5.0
    )


@pytest.fixture
def thresholds() -> TradingThresholds:
    """Original defaults with a sell timer short enough for tests"""
    return TradingThresholds(
        lower_mc_interval=10,
        higher_mc_interval=10,
        lower_tp_interval=5,
        higher_tp_interval=15,
        stop_loss=15,
        sell_timer=0.05
    )


@pytest.fixture
def fast_loop_config() -> LoopConfig:
    """Loop cadences shrunk to (almost) nothing"""
    return LoopConfig(
        mc_check_interval_s=0,
        max_mc_checks=10_000,
        min_market_cap_sol=65,
        error_cooldown_s=0,
        pnl_check_interval_s=0.01,
        settlement_max_attempts=3,
        settlement_delay_s=0,
        post_hold_delay_s=0,
        wrap_max_attempts=2,
        wrap_retry_delay_s=0
    )


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()


@pytest.fixture
def wallet(keypair) -> Wallet:
    return Wallet(keypair)


@pytest.fixture
def signing_released(wallet):
    """Awaitable check that nothing still holds the wallet's signing lock"""
    async def _check():
        async def reenter():
            async with wallet.signing():
                pass

        await asyncio.wait_for(reenter(), timeout=1)

    return _check


@pytest.fixture
def mock_rpc_manager():
    """RPC manager whose typed helpers are all AsyncMocks"""
    rpc = AsyncMock()
    rpc.call_http_rpc.return_value = {"result": {"value": None}}
    rpc.get_balance.return_value = 5_000_000_000
    return rpc


@pytest.fixture
def metrics_collector() -> MetricsCollector:
    """
    Create fresh metrics collector for each test

    Returns clean MetricsCollector instance
    """
    collector = MetricsCollector(enable_histogram=True)
    yield collector
    collector.reset()


@pytest.fixture
def make_pool_data():
    """
    Factory for raw PumpSwap pool account bytes

    Returns (data, vaults) where vaults is (base_vault, quote_vault).
    """

    def _make(base_mint=TEST_MINT, coin_creator=None, lp_supply=1_000_000):
        base_vault = Keypair().pubkey()
        quote_vault = Keypair().pubkey()
        keys = [
            Keypair().pubkey(),  # creator
            Pubkey.from_string(base_mint),
            WRAPPED_SOL_MINT,
            Keypair().pubkey(),  # lp mint
            base_vault,
            quote_vault,
        ]
        data = bytes(8) + struct.pack("<BH", 254, 0)
        data += b"".join(bytes(key) for key in keys)
        data += struct.pack("<Q", lp_supply)
        if coin_creator is not None:
            data += bytes(coin_creator)
        return data, (base_vault, quote_vault)

    return _make
