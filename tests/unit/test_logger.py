"""
Unit tests for logging setup (core/logger.py)

Tests:
- JSON events reach the output file
- Address abbreviation
- Session logger context
"""

import json
import logging

import structlog

from pumpswap_trader.core.logger import get_logger, get_session_logger, setup_logging, short_address


TEST_MINT = "So11111111111111111111111111111111111111112"


class TestSetupLogging:
    """Test structlog configuration"""

    def test_json_events_written_to_file(self, tmp_path):
        """Test a JSON event lands in the log file with its context"""
        log_file = tmp_path / "logs" / "trader.log"

        try:
            setup_logging(level="INFO", format="json", output_file=str(log_file))
            get_logger("test_logger_json").info("buy_signal", market_cap=112.0)
        finally:
            for handler in logging.root.handlers:
                handler.flush()

        lines = log_file.read_text().strip().splitlines()
        event = json.loads(lines[-1])

        assert event["event"] == "buy_signal"
        assert event["market_cap"] == 112.0
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_level_filters_quieter_events(self, tmp_path):
        log_file = tmp_path / "trader.log"

        setup_logging(level="WARNING", format="json", output_file=str(log_file))
        get_logger("test_logger_level").info("market_cap_checked")

        assert log_file.read_text() == ""

    def teardown_method(self):
        structlog.reset_defaults()


class TestShortAddress:
    """Test address abbreviation"""

    def test_long_address_is_abbreviated(self):
        assert short_address(TEST_MINT) == "So111111..1112"

    def test_short_value_untouched(self):
        assert short_address("abc") == "abc"


class TestSessionLogger:
    def test_binds_mint_and_pool(self):
        logger = get_session_logger("test_session", TEST_MINT, TEST_MINT)

        context = structlog.get_context(logger)

        assert context["mint"] == "So111111..1112"
        assert context["pool"] == "So111111..1112"
