"""Odds handling: implied probabilities, de-vig, conversions and simulation."""

from .odds import (
    MarketSimulator,
    OddsBook,
    american_to_decimal,
    decimal_to_american,
    devig,
    fractional_to_decimal,
    implied_probabilities,
    overround,
    synthesize_odds,
)

__all__ = [
    "MarketSimulator",
    "OddsBook",
    "american_to_decimal",
    "decimal_to_american",
    "devig",
    "fractional_to_decimal",
    "implied_probabilities",
    "overround",
    "synthesize_odds",
]
