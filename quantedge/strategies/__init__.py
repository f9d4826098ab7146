"""Staking and signal generation."""

from .kelly import (
    KellyResult,
    break_even_probability,
    expected_log_growth,
    expected_value,
    fractional_kelly,
    kelly_criterion,
)
from .signals import EdgeCandidate, SignalGenerator, TradingSignal, quote_edges

__all__ = [
    # Kelly
    "KellyResult",
    "kelly_criterion",
    "fractional_kelly",
    "expected_log_growth",
    "expected_value",
    "break_even_probability",
    # Signals
    "EdgeCandidate",
    "SignalGenerator",
    "TradingSignal",
    "quote_edges",
]
