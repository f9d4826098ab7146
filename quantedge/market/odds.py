"""
Market Model: implied probabilities, overround removal and odds synthesis.

Decimal odds ``d`` imply a raw probability ``1/d``. Bookmakers price in a
margin, so raw implied probabilities sum to more than 1 (the overround).
Multiplicative de-vig divides each by the overround:

.. math::

    q_o = \\frac{1/d_o}{\\sum_k 1/d_k}

In simulation mode the inverse is used: a "true" distribution is inflated
by a margin and rounded to the quoted precision:

.. math::

    d_o = round(1 / (p_o (1 + m)), precision)

Example:
    >>> devig({Outcome.HOME: 1.9, Outcome.AWAY: 1.9})
    {<Outcome.HOME: 'home'>: 0.5, <Outcome.AWAY: 'away'>: 0.5}
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple
from fractions import Fraction
import logging
import threading

import numpy as np

from ..core.config import MarketConfig
from ..core.errors import ValidationError
from ..models.domain import OddsQuote, Outcome, ProbabilityDistribution, utcnow

logger = logging.getLogger(__name__)

MIN_DECIMAL_ODDS = 1.01


# ============================================================================
# Conversions
# ============================================================================

def _check_odds(odds: Mapping[Outcome, float]) -> None:
    if not odds:
        raise ValidationError("No odds supplied")
    for outcome, price in odds.items():
        if not price > 1.0:
            raise ValidationError(f"Odds for {outcome} must be > 1.0, got {price}")


def implied_probabilities(odds: Mapping[Outcome, float]) -> Dict[Outcome, float]:
    """Raw implied probability ``1/odds`` per outcome (includes the margin)."""
    _check_odds(odds)
    return {outcome: 1.0 / price for outcome, price in odds.items()}


def overround(odds: Mapping[Outcome, float]) -> float:
    """Sum of raw implied probabilities; 1.0 means a fair book."""
    return sum(implied_probabilities(odds).values())


def devig(odds: Mapping[Outcome, float]) -> Dict[Outcome, float]:
    """Fair implied probabilities (multiplicative de-vig), summing to 1."""
    raw = implied_probabilities(odds)
    total = sum(raw.values())
    return {outcome: p / total for outcome, p in raw.items()}


def synthesize_odds(
    distribution: ProbabilityDistribution,
    margin: float,
    precision: int = 2
) -> Dict[Outcome, float]:
    """
    Quote decimal odds for a true distribution plus bookmaker margin.

    Outcomes with zero probability are not priced. Quotes never go below
    ``MIN_DECIMAL_ODDS``.
    """
    if margin < 0:
        raise ValidationError(f"Margin must be non-negative, got {margin}")
    odds = {}
    for outcome, p in distribution.as_dict().items():
        if p <= 0:
            continue
        price = round(1.0 / (p * (1.0 + margin)), precision)
        odds[outcome] = max(price, MIN_DECIMAL_ODDS)
    return odds


def american_to_decimal(american: int) -> float:
    """
    Convert American (moneyline) odds to decimal.

    Example:
        >>> american_to_decimal(150)
        2.5
        >>> american_to_decimal(-200)
        1.5
    """
    if american == 0:
        raise ValidationError("American odds cannot be zero")
    if american > 0:
        return american / 100.0 + 1.0
    return 100.0 / -american + 1.0


def fractional_to_decimal(fractional: str) -> float:
    """
    Convert fractional odds such as ``"5/2"`` to decimal.

    Example:
        >>> fractional_to_decimal("5/2")
        3.5
    """
    parts = fractional.strip().split("/")
    if len(parts) != 2:
        raise ValidationError(f"Invalid fractional odds format: {fractional}")
    try:
        numerator, denominator = int(parts[0]), int(parts[1])
    except ValueError as e:
        raise ValidationError(f"Invalid fractional odds: {fractional}") from e
    if denominator == 0:
        raise ValidationError("Denominator cannot be zero")
    if numerator <= 0 or denominator < 0:
        raise ValidationError(f"Fractional odds must be positive: {fractional}")
    return float(Fraction(numerator, denominator) + 1)


def decimal_to_american(decimal_odds: float) -> int:
    """Inverse of ``american_to_decimal`` (rounded to the nearest integer)."""
    if not decimal_odds > 1.0:
        raise ValidationError(f"Decimal odds must be > 1.0, got {decimal_odds}")
    if decimal_odds >= 2.0:
        return int(round((decimal_odds - 1.0) * 100))
    return int(round(-100 / (decimal_odds - 1.0)))


# ============================================================================
# Odds Book
# ============================================================================

class OddsBook:
    """
    Per-match store of odds quotes.

    Keeps the most recent active quote per (bookmaker, market type); a
    newer inactive quote withdraws the price.
    """

    def __init__(self):
        self._quotes: Dict[str, Dict[Tuple[str, str], OddsQuote]] = defaultdict(dict)
        self._lock = threading.Lock()

    def add(self, quote: OddsQuote) -> None:
        key = (quote.bookmaker, quote.market_type)
        with self._lock:
            book = self._quotes[quote.match_id]
            existing = book.get(key)
            if existing is not None and existing.timestamp > quote.timestamp:
                logger.debug(f"Ignoring stale quote {quote.id} for {quote.match_id}")
                return
            book[key] = quote

    def extend(self, quotes: List[OddsQuote]) -> None:
        for quote in quotes:
            self.add(quote)

    def current_quotes(self, match_id: str) -> List[OddsQuote]:
        """Current active quotes for a match, newest first."""
        with self._lock:
            quotes = [q for q in self._quotes.get(match_id, {}).values() if q.is_active]
        return sorted(quotes, key=lambda q: q.timestamp, reverse=True)

    def latest(self, match_id: str) -> Optional[OddsQuote]:
        quotes = self.current_quotes(match_id)
        return quotes[0] if quotes else None

    def all_current(self) -> Dict[str, List[OddsQuote]]:
        with self._lock:
            match_ids = list(self._quotes)
        return {m: self.current_quotes(m) for m in match_ids}

    def forget(self, match_id: str) -> None:
        with self._lock:
            self._quotes.pop(match_id, None)


# ============================================================================
# Simulation
# ============================================================================

class MarketSimulator:
    """
    Synthesises bookmaker quotes from a reference distribution.

    Each outcome probability is perturbed by up to +/- ``noise`` to mimic
    market inefficiency, renormalised and priced with ``config.margin``.
    When ``config.margin_range`` is set each match instead gets its own
    margin, drawn once from that range.
    """

    def __init__(self, config: MarketConfig):
        self._config = config
        self._rng = np.random.default_rng(config.seed)
        self._margins: Dict[str, float] = {}
        self._lock = threading.Lock()

    def margin_for(self, match_id: str) -> float:
        if self._config.margin_range is None:
            return self._config.margin
        with self._lock:
            if match_id not in self._margins:
                self._margins[match_id] = float(self._rng.uniform(*self._config.margin_range))
            return self._margins[match_id]

    def quote(
        self,
        match_id: str,
        reference: ProbabilityDistribution,
        timestamp: Optional[datetime] = None
    ) -> OddsQuote:
        """Produce a quote for ``match_id`` around ``reference``."""
        outcomes = reference.outcomes
        with self._lock:
            jitter = self._rng.uniform(-self._config.noise, self._config.noise, size=len(outcomes))
        scores = {
            o: max(reference.get(o) + float(j), 0.01) for o, j in zip(outcomes, jitter)
        }
        noisy = ProbabilityDistribution.from_scores(scores)
        odds = synthesize_odds(noisy, self.margin_for(match_id), self._config.precision)

        quote = OddsQuote(
            match_id=match_id,
            bookmaker=self._config.bookmaker,
            market_type=self._config.market_type,
            odds=odds,
            timestamp=timestamp or utcnow(),
        )
        logger.info(
            f"Generated market odds for {match_id}: "
            + " ".join(f"{o.value}={p:.2f}" for o, p in quote.odds.items())
        )
        return quote
