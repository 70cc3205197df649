"""
Configuration Manager for the PumpSwap trader
Loads configuration from YAML files with environment variable support
"""

import os
import re
import yaml
from typing import Dict, Any, Optional, List
from dataclasses import dataclass
from pathlib import Path


@dataclass
class RPCEndpoint:
    """RPC endpoint configuration"""
    url: str
    priority: int
    label: str
    timeout_ms: int = 10000


@dataclass
class RPCConfig:
    """RPC manager configuration"""
    endpoints: List[RPCEndpoint]
    failover_threshold_errors: int = 3
    commitment: str = "confirmed"


@dataclass
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "json"
    output_file: Optional[str] = None


@dataclass
class MetricsConfig:
    """Metrics configuration"""
    enable_histogram: bool = True


@dataclass
class TradingThresholds:
    """Band widths and exit rules, loaded once per session"""
    lower_mc_interval: float = 10.0
    higher_mc_interval: float = 20.0
    lower_tp_interval: float = 5.0
    higher_tp_interval: float = 15.0
    stop_loss: float = 15.0  # percent of buy amount
    sell_timer: float = 300.0  # seconds

    def validate(self) -> None:
        if self.sell_timer <= 0:
            raise ValueError("sell_timer must be greater than 0")
        if self.stop_loss <= 0 or self.stop_loss > 100:
            raise ValueError("stop_loss must be between 0 and 100")
        for name in ("lower_mc_interval", "higher_mc_interval", "lower_tp_interval", "higher_tp_interval"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")


@dataclass
class LoopConfig:
    """Cadences and ceilings of the monitoring loops"""
    mc_check_interval_s: float = 0.2
    max_mc_checks: int = 10_000
    min_market_cap_sol: float = 65.0
    error_cooldown_s: float = 1.0
    pnl_check_interval_s: float = 0.2
    settlement_max_attempts: int = 50
    settlement_delay_s: float = 1.0
    tp_baseline: float = 1.3
    wrap_multiplier: float = 2.0
    wrap_max_attempts: int = 20
    wrap_retry_delay_s: float = 5.0
    post_hold_delay_s: float = 1.0


@dataclass
class PumpSwapConfig:
    """PumpSwap AMM protocol parameters"""
    program_id: str = "pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA"
    protocol_fee_recipient: str = "7hTckgnGnLQR6sdH7YkqFTAA7VwTfYFaZ6EhEsU3saCX"
    lp_fee_bps: int = 20
    protocol_fee_bps: int = 5
    token_decimals: int = 6
    pump_total_supply: int = 1_000_000_000  # whole tokens


@dataclass
class TransactionConfig:
    """Transaction infrastructure configuration"""
    compute_unit_limit: int = 200_000
    compute_unit_price: int = 1_000_000  # micro-lamports
    skip_preflight: bool = True
    max_retries: int = 3
    retry_delay_ms: int = 200
    confirmation_timeout_s: int = 30
    confirmation_poll_interval_s: float = 0.5


@dataclass
class BotConfig:
    """Complete trader configuration"""
    rpc_config: RPCConfig
    private_key: str
    thresholds: TradingThresholds
    loop_config: LoopConfig
    pumpswap_config: PumpSwapConfig
    transaction_config: TransactionConfig
    log_config: LogConfig
    metrics_config: MetricsConfig
    settings_file: str = "settings.json"


class ConfigurationManager:
    """Manages trader configuration from YAML files and environment variables"""

    def __init__(self, config_path: str):
        """
        Initialize configuration manager

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        self._config_data: Optional[Dict[str, Any]] = None
        self._bot_config: Optional[BotConfig] = None

    def load_config(self) -> BotConfig:
        """
        Load and validate configuration from file

        Returns:
            BotConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

        with open(self.config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        self._config_data = self._substitute_env_vars(raw_config)
        self._bot_config = self._parse_config(self._config_data)

        return self._bot_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Dot-notation key (e.g., "trading.stop_loss")
            default: Default value if key not found
        """
        if self._config_data is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")

        value = self._config_data
        for k in key.split('.'):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def _substitute_env_vars(self, config: Any) -> Any:
        """
        Recursively substitute ${VAR_NAME} with environment values

        Supports full-value and embedded substitution:
        - Full: "${PRIVATE_KEY}" -> "5Kd3..."
        - Embedded: "https://rpc.example/?api-key=${RPC_KEY}"
        """
        if isinstance(config, dict):
            return {k: self._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            def replace_var(match):
                var_name = match.group(1)
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(
                        f"Environment variable {var_name} not found"
                    )
                return value

            return re.sub(r'\$\{([^}]+)\}', replace_var, config)
        else:
            return config

    def _parse_config(self, config: Dict[str, Any]) -> BotConfig:
        """
        Parse raw configuration into typed objects

        Raises:
            ValueError: If configuration is invalid
        """
        rpc_data = config.get('rpc', {})
        endpoints_data = rpc_data.get('endpoints', [])

        if not endpoints_data:
            raise ValueError("No RPC endpoints configured")

        endpoints = [
            RPCEndpoint(
                url=ep['url'],
                priority=ep.get('priority', index),
                label=ep.get('label', f"rpc_{index}"),
                timeout_ms=ep.get('timeout_ms', 10000)
            )
            for index, ep in enumerate(endpoints_data)
        ]

        # 0 = highest priority
        endpoints.sort(key=lambda x: x.priority)

        rpc_config = RPCConfig(
            endpoints=endpoints,
            failover_threshold_errors=rpc_data.get('failover_threshold_errors', 3),
            commitment=rpc_data.get('commitment', 'confirmed')
        )

        private_key = config.get('wallet', {}).get('private_key')
        if not private_key:
            raise ValueError("Missing required configuration: wallet.private_key")

        thresholds = TradingThresholds(**self._known_fields(TradingThresholds, config.get('trading', {})))
        thresholds.validate()

        loop_config = LoopConfig(**self._known_fields(LoopConfig, config.get('loop', {})))
        if loop_config.pnl_check_interval_s <= 0 or loop_config.mc_check_interval_s <= 0:
            raise ValueError("Check intervals must be greater than 0")

        pumpswap_config = PumpSwapConfig(**self._known_fields(PumpSwapConfig, config.get('pumpswap', {})))
        transaction_config = TransactionConfig(
            **self._known_fields(TransactionConfig, config.get('transactions', {}))
        )

        log_data = config.get('logging', {})
        log_config = LogConfig(
            level=log_data.get('level', 'INFO'),
            format=log_data.get('format', 'json'),
            output_file=log_data.get('output_file')
        )

        metrics_data = config.get('metrics', {})
        metrics_config = MetricsConfig(
            enable_histogram=metrics_data.get('enable_histogram', True)
        )

        return BotConfig(
            rpc_config=rpc_config,
            private_key=private_key,
            thresholds=thresholds,
            loop_config=loop_config,
            pumpswap_config=pumpswap_config,
            transaction_config=transaction_config,
            log_config=log_config,
            metrics_config=metrics_config,
            settings_file=config.get('settings_file', 'settings.json')
        )

    @staticmethod
    def _known_fields(dataclass_type, data: Dict[str, Any]) -> Dict[str, Any]:
        """Drop keys the dataclass does not declare"""
        names = {f.name for f in dataclass_type.__dataclass_fields__.values()}
        return {k: v for k, v in (data or {}).items() if k in names}
