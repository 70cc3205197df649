"""
Unit tests for the command line (main.py)
"""

import asyncio
import dataclasses
import json

import pytest
from unittest.mock import MagicMock

from pumpswap_trader.core.config import ConfigurationManager
from pumpswap_trader.core.errors import ConfigurationError
from pumpswap_trader.main import build_parser, main, run_settings, run_trade


@pytest.fixture
def bot_config(test_config_file, tmp_path):
    loaded = ConfigurationManager(test_config_file).load_config()
    return dataclasses.replace(loaded, settings_file=str(tmp_path / "settings.json"))


class TestParser:
    """Test argument parsing"""

    def test_trade_defaults(self):
        args = build_parser().parse_args(["trade"])

        assert args.command == "trade"
        assert args.config == "config/config.yml"

    def test_settings_set(self, trading_config):
        args = build_parser().parse_args([
            "settings", "set", "--mint", trading_config.mint, "--pool", trading_config.pool_id,
            "--amount", "0.1", "--slippage", "5", "--no-pump"
        ])

        assert args.settings_command == "set"
        assert args.mint == trading_config.mint
        assert args.is_pump is False

    def test_wrap_amount(self):
        assert build_parser().parse_args(["wrap", "0.5"]).amount == 0.5

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestSettingsCommand:
    """Test the settings subcommand"""

    def test_set_then_show(self, bot_config, trading_config, capsys):
        set_args = build_parser().parse_args([
            "settings", "set", "--mint", trading_config.mint, "--pool", trading_config.pool_id,
            "--amount", "0.1", "--slippage", "5", "--pump"
        ])

        assert run_settings(set_args, bot_config) == 0

        with open(bot_config.settings_file) as f:
            stored = json.load(f)
        assert stored["poolId"] == trading_config.pool_id
        assert stored["isPump"] is True
        assert stored["amount"] == "0.1"

        capsys.readouterr()
        assert run_settings(build_parser().parse_args(["settings", "show"]), bot_config) == 0
        assert trading_config.mint in capsys.readouterr().out

    def test_incomplete_settings(self, bot_config, capsys):
        assert run_settings(build_parser().parse_args(["settings", "show"]), bot_config) == 1
        assert "Missing required settings" in capsys.readouterr().out


class TestMain:
    """Test process exit codes"""

    def test_missing_config_file(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "absent.yml"), "balance"]) == 2
        assert "Configuration error" in capsys.readouterr().err


class TestRunTrade:
    """Test the trade command's handling of session errors"""

    @pytest.mark.asyncio
    async def test_unexpected_session_error_exits_cleanly(self):
        """Test an error outside the trader hierarchy is logged and returns 1"""
        async def crash():
            raise KeyError("pool")

        services = MagicMock()
        services.controller.run_in_background.side_effect = lambda: asyncio.ensure_future(crash())

        assert await run_trade(services) == 1

    @pytest.mark.asyncio
    async def test_rejected_start_exits_cleanly(self):
        services = MagicMock()
        services.controller.run_in_background.side_effect = ConfigurationError("Invalid trading configuration")

        assert await run_trade(services) == 1

    @pytest.mark.asyncio
    async def test_finished_session_reports_endpoint_health(self):
        result = MagicMock()
        result.processing_token = False

        async def finish():
            return result

        services = MagicMock()
        services.controller.status.return_value.to_dict.return_value = {}
        services.controller.run_in_background.side_effect = lambda: asyncio.ensure_future(finish())

        assert await run_trade(services) == 0
        services.rpc_manager.get_health_stats.assert_called_once_with()
