"""
Exception hierarchy for the PumpSwap trader

Trade execution failures are not exceptions: they come back as
TradeResult(success=False). Everything here either stops a session
from starting or is handled inside the loop.
"""

from typing import Optional


class TraderError(Exception):
    """Base class for trader errors"""


class ConfigurationError(TraderError):
    """Missing or invalid mint, pool, amount, slippage or key material"""


class InsufficientBalanceError(TraderError):
    """Wallet cannot cover the configured buy amount"""

    def __init__(self, required_sol: float, available_sol: float):
        self.required_sol = required_sol
        self.available_sol = available_sol
        super().__init__(
            f"Insufficient balance. Required: {required_sol} SOL, Available: {available_sol} SOL"
        )


class OracleError(TraderError):
    """Pool state could not be read or decoded"""


class RetryExhaustedError(TraderError):
    """A bounded retry ran out of attempts"""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Gave up after {attempts} attempts{detail}")


class SettlementTimeoutError(RetryExhaustedError):
    """Post-buy token account never became queryable"""


class InvalidTransitionError(TraderError):
    """Trading loop asked to move between states that are not connected"""
