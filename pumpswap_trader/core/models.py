"""
Data model shared by the trading loop, executor and controller
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


LAMPORTS_PER_SOL = 1_000_000_000


class Direction(Enum):
    """Swap direction relative to the traded token"""
    BUY = "buy"    # acquire token, spend SOL
    SELL = "sell"  # liquidate token, receive SOL


class LoopState(Enum):
    """Trading loop states"""
    IDLE = "idle"
    POLLING_MC = "polling_mc"
    BUY_PENDING = "buy_pending"
    HOLDING = "holding"
    SELL_PENDING = "sell_pending"
    STOPPED = "stopped"


class ExitReason(Enum):
    """Why a session or a holding period ended"""
    # Session exits
    MAX_CHECKS = "max_checks"
    DEAD_POOL = "dead_pool"
    STOPPED = "stopped"
    # Holding exits
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    TIMEOUT = "timeout"
    SETTLEMENT_TIMEOUT = "settlement_timeout"


@dataclass(frozen=True)
class TradingConfig:
    """Per-session trading parameters, loaded once from the settings provider"""
    mint: str
    pool_id: str
    is_pump: bool
    amount: float  # SOL per buy
    slippage: float  # percent

    @property
    def amount_lamports(self) -> int:
        return int(round(self.amount * LAMPORTS_PER_SOL))


@dataclass(frozen=True)
class TradeResult:
    """Outcome of one executor call"""
    success: bool
    direction: Direction
    amount: int  # lamports for BUY, raw token units for SELL
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    signature: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "direction": self.direction.value,
            "amount": self.amount,
            "timestamp": self.timestamp.isoformat(),
            "signature": self.signature,
            "error": self.error
        }


@dataclass(frozen=True)
class MarketSnapshot:
    """Pool-derived price and market cap, in SOL"""
    price: float  # SOL per whole token
    market_cap: float
    base_reserve: int  # raw token units in the pool vault
    quote_reserve: int  # lamports in the pool vault
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TradingState:
    """
    Mutable run state of one session

    Owned by the trading loop; everyone else gets snapshot() copies.
    """
    is_running: bool = False
    is_processing: bool = False
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    last_buy_time: Optional[datetime] = None
    last_sell_time: Optional[datetime] = None
    state: LoopState = LoopState.IDLE
    last_error: Optional[str] = None

    def snapshot(self) -> "TradingState":
        """Return an independent copy for status display"""
        return dataclasses.replace(self)

    def to_dict(self) -> dict:
        return {
            "is_running": self.is_running,
            "is_processing": self.is_processing,
            "total_trades": self.total_trades,
            "successful_trades": self.successful_trades,
            "failed_trades": self.failed_trades,
            "last_buy_time": self.last_buy_time.isoformat() if self.last_buy_time else None,
            "last_sell_time": self.last_sell_time.isoformat() if self.last_sell_time else None,
            "state": self.state.value,
            "last_error": self.last_error
        }


@dataclass(frozen=True)
class HoldResult:
    """How a holding period ended"""
    exit_reason: ExitReason
    checks: int
    final_pnl: Optional[float] = None
    sell_result: Optional[TradeResult] = None


@dataclass(frozen=True)
class SessionResult:
    """How a trading session ended"""
    exit_reason: ExitReason
    processing_token: bool
    checks: int
