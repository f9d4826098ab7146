"""
Edge Detection and Trading Signals.

For every current quote and every outcome it prices:

.. math::

    edge(o) = P_{ensemble}(o) - q_o

where ``q_o`` is the quote's de-vigged implied probability. A signal is
emitted when the best edge clears ``min_edge``, the prediction clears
``min_confidence`` and the price sits inside the optional odds band.

Tie-break between candidates: largest edge; within ``EDGE_TOLERANCE``,
higher model probability (lower variance); then higher odds.

Signal strength ``clamp(edge * confidence_scale, 0, 1)`` is reported for
observability only and plays no part in sizing.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional
import logging

from ..core.config import TradingConfig
from ..market.odds import devig
from ..models.domain import OddsQuote, Outcome, Prediction, new_id, utcnow

logger = logging.getLogger(__name__)

EDGE_TOLERANCE = 1e-9


@dataclass(frozen=True)
class TradingSignal:
    """A positive-edge opportunity handed to the portfolio manager."""
    match_id: str
    outcome: Outcome
    probability: float
    implied_probability: float
    odds: float
    edge: float
    confidence: float
    strength: float
    strategy: str
    bookmaker: str = ""
    market_type: str = ""
    quote_id: str = ""
    prediction_id: str = ""
    model_name: str = ""
    model_version: str = ""
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class EdgeCandidate:
    """Edge for one outcome of one quote."""
    outcome: Outcome
    probability: float
    implied_probability: float
    odds: float
    edge: float
    quote: OddsQuote


def quote_edges(prediction: Prediction, quote: OddsQuote) -> List[EdgeCandidate]:
    """Edge per outcome priced in ``quote`` that the prediction also covers."""
    fair = devig(quote.odds)
    dist = prediction.distribution
    candidates = []
    for outcome, implied in fair.items():
        if outcome not in dist.outcomes:
            continue
        prob = dist.get(outcome)
        candidates.append(EdgeCandidate(
            outcome=outcome,
            probability=prob,
            implied_probability=implied,
            odds=quote.odds[outcome],
            edge=prob - implied,
            quote=quote,
        ))
    return candidates


def _better(a: EdgeCandidate, b: EdgeCandidate) -> bool:
    """True when ``a`` should be preferred over ``b``."""
    if abs(a.edge - b.edge) > EDGE_TOLERANCE:
        return a.edge > b.edge
    if abs(a.probability - b.probability) > EDGE_TOLERANCE:
        return a.probability > b.probability
    return a.odds > b.odds


class SignalGenerator:
    """
    Turns a prediction plus current quotes into at most one signal.

    Example:
        >>> generator = SignalGenerator(TradingConfig(min_edge=0.03, min_confidence=0.6))
        >>> signal = generator.evaluate(prediction, book.current_quotes(match_id))
    """

    def __init__(self, config: TradingConfig):
        self._config = config

    def _in_band(self, odds: float) -> bool:
        cfg = self._config
        if cfg.min_odds is not None and odds < cfg.min_odds:
            return False
        if cfg.max_odds is not None and odds > cfg.max_odds:
            return False
        return True

    def best_candidate(
        self,
        prediction: Prediction,
        quotes: Iterable[OddsQuote]
    ) -> Optional[EdgeCandidate]:
        best: Optional[EdgeCandidate] = None
        for quote in quotes:
            if not quote.is_active or quote.match_id != prediction.match_id:
                continue
            for candidate in quote_edges(prediction, quote):
                if not self._in_band(candidate.odds):
                    continue
                if best is None or _better(candidate, best):
                    best = candidate
        return best

    def evaluate(
        self,
        prediction: Prediction,
        quotes: Iterable[OddsQuote]
    ) -> Optional[TradingSignal]:
        """
        Emit a signal if edge and confidence clear their thresholds.

        Returns:
            TradingSignal, or None when nothing qualifies
        """
        cfg = self._config
        if prediction.confidence < cfg.min_confidence:
            logger.debug(
                f"No signal for {prediction.match_id}: confidence "
                f"{prediction.confidence:.3f} < {cfg.min_confidence}"
            )
            return None

        best = self.best_candidate(prediction, quotes)
        if best is None or best.edge < cfg.min_edge - EDGE_TOLERANCE:
            return None

        strength = min(max(best.edge * cfg.confidence_scale, 0.0), 1.0)
        signal = TradingSignal(
            match_id=prediction.match_id,
            outcome=best.outcome,
            probability=best.probability,
            implied_probability=best.implied_probability,
            odds=best.odds,
            edge=best.edge,
            confidence=prediction.confidence,
            strength=strength,
            strategy=cfg.strategy_name,
            bookmaker=best.quote.bookmaker,
            market_type=best.quote.market_type,
            quote_id=best.quote.id,
            prediction_id=prediction.id,
            model_name=prediction.model_name,
            model_version=prediction.model_version,
        )
        logger.info(
            f"Signal {signal.match_id} {signal.outcome.value} @ {signal.odds:.2f}: "
            f"edge={signal.edge:.3f} conf={signal.confidence:.2f} strength={signal.strength:.2f}"
        )
        return signal

    def edge_table(self, prediction: Prediction, quotes: Iterable[OddsQuote]) -> Dict[str, Dict[str, float]]:
        """Edges by bookmaker and outcome, for the read API."""
        table: Dict[str, Dict[str, float]] = {}
        for quote in quotes:
            table[quote.bookmaker] = {
                c.outcome.value: c.edge for c in quote_edges(prediction, quote)
            }
        return table
