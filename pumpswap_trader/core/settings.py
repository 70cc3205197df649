"""
Settings provider

Persists the per-session trading parameters as a small JSON document:

    {
      "mint": "...",
      "poolId": "...",
      "isPump": true,
      "amount": "0.1",
      "slippage": "5"
    }

amount and slippage are stored as strings. The trading core never writes
here; only the CLI does.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from solders.pubkey import Pubkey

from pumpswap_trader.core.logger import get_logger
from pumpswap_trader.core.models import TradingConfig


logger = get_logger(__name__)


SETTINGS_KEYS = ("mint", "poolId", "isPump", "amount", "slippage")


def is_valid_address(value: Any) -> bool:
    """True when value parses as a base58 Solana public key"""
    try:
        Pubkey.from_string(str(value))
    except ValueError:
        return False
    return True


def default_settings() -> Dict[str, Any]:
    return {key: None for key in SETTINGS_KEYS}


class SettingsService:
    """Reads, validates and writes the settings document"""

    def __init__(self, settings_path: str = "settings.json"):
        self.settings_path = Path(settings_path)

    def read(self) -> Dict[str, Any]:
        """
        Load the settings document

        A missing file is created with empty values; an unreadable one is
        logged and treated as empty.
        """
        if not self.settings_path.exists():
            logger.info("settings_file_missing", path=str(self.settings_path))
            self._write(default_settings())
            return default_settings()

        try:
            with open(self.settings_path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("settings_read_failed", path=str(self.settings_path), error=str(e))
            return default_settings()

        if not isinstance(data, dict):
            logger.error("settings_not_an_object", path=str(self.settings_path))
            return default_settings()

        settings = default_settings()
        settings.update({k: v for k, v in data.items() if k in SETTINGS_KEYS})
        logger.debug("settings_loaded", path=str(self.settings_path))
        return settings

    def save(self, config: TradingConfig) -> None:
        """Persist a trading config, amount and slippage as strings"""
        self._write({
            "mint": config.mint,
            "poolId": config.pool_id,
            "isPump": config.is_pump,
            "amount": str(config.amount),
            "slippage": str(config.slippage)
        })
        logger.info("settings_saved", path=str(self.settings_path))

    def update(self, **changes: Any) -> Dict[str, Any]:
        """Merge raw key/value changes into the stored document"""
        unknown = set(changes) - set(SETTINGS_KEYS)
        if unknown:
            raise KeyError(f"Unknown settings: {', '.join(sorted(unknown))}")

        settings = self.read()
        settings.update(changes)
        self._write(settings)
        return settings

    def validate(self, settings: Dict[str, Any]) -> Optional[str]:
        """
        Check a settings document

        Returns:
            None when valid, otherwise a description of the first problem
        """
        if not settings.get("mint") or not settings.get("poolId"):
            return "Missing required settings: mint and poolId"

        if not is_valid_address(settings["mint"]):
            return "Invalid mint"
        if not is_valid_address(settings["poolId"]):
            return "Invalid pool"

        if settings.get("amount") is None or settings.get("slippage") is None:
            return "Missing required settings: amount and slippage"

        try:
            amount = float(settings["amount"])
        except (TypeError, ValueError):
            return "Invalid amount setting"
        if not amount > 0:
            return "Invalid amount setting"

        try:
            slippage = float(settings["slippage"])
        except (TypeError, ValueError):
            return "Invalid slippage setting (must be between 0 and 100)"
        if not 0 < slippage <= 100:
            return "Invalid slippage setting (must be between 0 and 100)"

        return None

    def get_config(self) -> Optional[TradingConfig]:
        """Current settings as a TradingConfig, or None if they are not valid"""
        settings = self.read()

        problem = self.validate(settings)
        if problem:
            logger.error("settings_invalid", reason=problem)
            return None

        return TradingConfig(
            mint=str(settings["mint"]),
            pool_id=str(settings["poolId"]),
            is_pump=bool(settings.get("isPump")),
            amount=float(settings["amount"]),
            slippage=float(settings["slippage"])
        )

    def _write(self, settings: Dict[str, Any]) -> None:
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.settings_path, 'w') as f:
            json.dump(settings, f, indent=2)
