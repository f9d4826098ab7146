"""
Kelly Criterion Stake Sizing.

The Kelly Criterion maximises the expected logarithm of wealth, i.e. the
long-run geometric growth rate of the bankroll.

For a single outcome with win probability p and decimal odds d:

.. math::

    f^* = \\frac{b p - q}{b}

Where:
    - f* = fraction of bankroll to wager, clamped to [0, 1]
    - p = probability of winning
    - q = 1 - p
    - b = d - 1 (net payout per unit wagered)

A negative f* means the bet has negative expectation and is never taken;
f* above 1 cannot happen for p <= 1 but is clamped all the same.

Fractional Kelly multiplies f* by a risk-tolerance scale (quarter, half,
full Kelly) to trade growth for variance.

.. warning::

    Expected growth is computed with the exact logarithmic formulation,
    never the quadratic approximation log(1+x) ~ x - x^2/2, which
    overstates growth for large stakes.

References
----------
- Kelly, J.L. (1956). "A New Interpretation of Information Rate"
- Thorp, E.O. (2006). "The Kelly Criterion in Blackjack Sports Betting..."
"""

from dataclasses import dataclass
import math

import numpy as np

from ..core.errors import ValidationError


@dataclass
class KellyResult:
    """
    Result of a Kelly calculation.

    Attributes:
        fraction: Recommended wager as fraction of bankroll (after scaling)
        expected_growth: Expected log growth rate per bet at ``fraction``
        edge: Edge over the raw implied probability (p - 1/d)
        is_positive_ev: Whether the bet has positive expected value
        raw_kelly: Unclamped Kelly fraction
        full_kelly: Clamped Kelly fraction before scaling
    """
    fraction: float
    expected_growth: float
    edge: float
    is_positive_ev: bool
    raw_kelly: float
    full_kelly: float = 0.0

    def stake_amount(self, bankroll: float) -> float:
        """Calculate actual stake amount for given bankroll."""
        return self.fraction * bankroll


def _validate(prob: float, decimal_odds: float) -> None:
    if math.isnan(prob) or not 0.0 <= prob <= 1.0:
        raise ValidationError(f"Probability must be in [0, 1], got {prob}")
    if math.isnan(decimal_odds) or not decimal_odds > 1.0:
        raise ValidationError(f"Decimal odds must be > 1.0, got {decimal_odds}")


def expected_log_growth(prob: float, decimal_odds: float, fraction: float) -> float:
    """
    E[log(1 + f R)] for a stake of ``fraction`` of the bankroll.

    Returns ``-inf`` when a loss is possible and the whole bankroll is staked.
    """
    if fraction <= 0:
        return 0.0
    q = 1.0 - prob
    b = decimal_odds - 1.0
    growth = prob * np.log1p(fraction * b)
    if q > 0:
        if fraction >= 1.0:
            return float("-inf")
        growth += q * np.log1p(-fraction)
    return float(growth)


def kelly_criterion(prob: float, decimal_odds: float) -> KellyResult:
    """
    Calculate the full Kelly fraction for one outcome.

    Args:
        prob: Probability of winning, in [0, 1]
        decimal_odds: Decimal odds offered (> 1.0)

    Returns:
        KellyResult with the clamped fraction and metadata

    Raises:
        ValidationError: If the probability or odds are out of range

    Example:
        >>> result = kelly_criterion(0.55, 2.0)
        >>> round(result.fraction, 4)
        0.1
        >>> kelly_criterion(0.40, 2.0).fraction
        0.0
    """
    _validate(prob, decimal_odds)

    q = 1.0 - prob
    b = decimal_odds - 1.0

    raw_kelly = (b * prob - q) / b
    kelly_fraction = min(max(raw_kelly, 0.0), 1.0)

    return KellyResult(
        fraction=kelly_fraction,
        expected_growth=expected_log_growth(prob, decimal_odds, kelly_fraction),
        edge=prob - 1.0 / decimal_odds,
        is_positive_ev=raw_kelly > 0,
        raw_kelly=raw_kelly,
        full_kelly=kelly_fraction,
    )


def fractional_kelly(prob: float, decimal_odds: float, scale: float = 0.5) -> KellyResult:
    """
    Scale the full Kelly fraction by a risk-tolerance multiplier.

    Half Kelly keeps roughly three quarters of the growth rate for half
    the variance.

    Args:
        prob: Win probability
        decimal_odds: Decimal odds
        scale: Kelly multiplier (0 < scale <= 1)

    Example:
        >>> result = fractional_kelly(0.55, 2.0, scale=0.5)
        >>> round(result.fraction, 4)
        0.05
    """
    if not 0 < scale <= 1:
        raise ValidationError(f"Kelly scale must be in (0, 1], got {scale}")

    full = kelly_criterion(prob, decimal_odds)
    scaled = full.full_kelly * scale

    return KellyResult(
        fraction=scaled,
        expected_growth=expected_log_growth(prob, decimal_odds, scaled),
        edge=full.edge,
        is_positive_ev=full.is_positive_ev,
        raw_kelly=full.raw_kelly,
        full_kelly=full.full_kelly,
    )


# ============================================================================
# Utility Functions
# ============================================================================

def expected_value(prob: float, decimal_odds: float) -> float:
    """
    Expected value per unit staked.

    .. math::

        EV = p \\cdot b - (1 - p)
    """
    return prob * (decimal_odds - 1.0) - (1.0 - prob)


def break_even_probability(decimal_odds: float) -> float:
    """Probability at which EV = 0, i.e. ``1 / decimal_odds``."""
    if not decimal_odds > 1.0:
        raise ValidationError(f"Decimal odds must be > 1.0, got {decimal_odds}")
    return 1.0 / decimal_odds
