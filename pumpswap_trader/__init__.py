"""
PumpSwap market-cap trading agent
"""

__version__ = "0.1.0"
