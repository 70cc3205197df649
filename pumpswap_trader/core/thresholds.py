"""
Market-cap band and take-profit ladder

Both bands recentre on floor(current) every time they are recomputed,
never on the previous centre.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Tuple


DEFAULT_TP_BASELINE = 1.3  # percent PnL


class BandPosition(Enum):
    """Where a value sits relative to a band"""
    BELOW = "below"
    INSIDE = "inside"
    ABOVE = "above"


def compute_band(
    current: float,
    lower_interval_pct: float,
    higher_interval_pct: float
) -> Tuple[float, float]:
    """
    Market-cap band around floor(current)

    Args:
        current: Current market cap (SOL)
        lower_interval_pct: Band width below the centre, percent
        higher_interval_pct: Band width above the centre, percent

    Returns:
        (lower, higher)

    Example:
        compute_band(112.4, 10, 10) -> (100.8, 123.2)
    """
    center = math.floor(current)
    return (
        center * (1 - lower_interval_pct / 100),
        center * (1 + higher_interval_pct / 100)
    )


@dataclass(frozen=True)
class MarketCapThresholds:
    """Current market cap and the band it is judged against"""
    current: float
    lower: float
    higher: float

    @classmethod
    def around(
        cls,
        current: float,
        lower_interval_pct: float,
        higher_interval_pct: float
    ) -> "MarketCapThresholds":
        lower, higher = compute_band(current, lower_interval_pct, higher_interval_pct)
        return cls(current=current, lower=lower, higher=higher)

    def with_current(self, current: float) -> "MarketCapThresholds":
        """Same band, new observation"""
        return MarketCapThresholds(current=current, lower=self.lower, higher=self.higher)

    def classify(self, value: float) -> BandPosition:
        if value < self.lower:
            return BandPosition.BELOW
        if value > self.higher:
            return BandPosition.ABOVE
        return BandPosition.INSIDE

    def to_dict(self) -> dict:
        return {"current": self.current, "lower": self.lower, "higher": self.higher}


class ThresholdTracker:
    """
    Holds the market-cap band for one session

    Usage:
        tracker = ThresholdTracker(lower_interval_pct=10, higher_interval_pct=20)
        tracker.recenter(100.0)
        if tracker.observe(snapshot.market_cap) is BandPosition.ABOVE:
            ...
    """

    def __init__(self, lower_interval_pct: float, higher_interval_pct: float):
        if lower_interval_pct < 0 or higher_interval_pct < 0:
            raise ValueError("Band intervals must be non-negative")

        self.lower_interval_pct = lower_interval_pct
        self.higher_interval_pct = higher_interval_pct
        self._thresholds: MarketCapThresholds = MarketCapThresholds(0.0, 0.0, 0.0)

    @property
    def thresholds(self) -> MarketCapThresholds:
        return self._thresholds

    def recenter(self, current: float) -> MarketCapThresholds:
        """Recompute the band around floor(current)"""
        self._thresholds = MarketCapThresholds.around(
            current, self.lower_interval_pct, self.higher_interval_pct
        )
        return self._thresholds

    def observe(self, current: float) -> BandPosition:
        """Record a new market cap without moving the band"""
        self._thresholds = self._thresholds.with_current(current)
        return self._thresholds.classify(current)


@dataclass
class ProfitBand:
    """
    Trailing take-profit ladder in percent PnL

    tp_level starts at baseline. Crossing tp_level arms the ladder
    (tp_reached); crossing higher_tp moves the whole band up to
    floor(pnl); falling under lower_tp while armed is the sell signal.
    Any negative PnL drops the ladder back to baseline.
    """
    lower_tp_interval: float
    higher_tp_interval: float
    baseline: float = DEFAULT_TP_BASELINE
    tp_level: float = 0.0
    higher_tp: float = 0.0
    lower_tp: float = 0.0
    tp_reached: bool = False

    def __post_init__(self):
        self.reset()

    def reset(self) -> None:
        self.tp_reached = False
        self._set_level(self.baseline)

    def ratchet(self, pnl: float) -> None:
        """Move the band up to floor(pnl)"""
        self._set_level(math.floor(pnl))

    def _set_level(self, level: float) -> None:
        self.tp_level = level
        self.higher_tp = level + self.higher_tp_interval
        self.lower_tp = level - self.lower_tp_interval

    def to_dict(self) -> dict:
        return {
            "tp_level": self.tp_level,
            "higher_tp": self.higher_tp,
            "lower_tp": self.lower_tp,
            "tp_reached": self.tp_reached
        }
