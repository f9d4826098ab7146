"""
Model Performance Tracker.

Scores predictions against realised outcomes and settled bets, and turns
them into ``ModelPerformanceSnapshot`` records per (model, version,
window). Windows have a fixed length and are aligned to the tracker's
origin; a window is only summarised once it has closed, and a recorded
snapshot is never recomputed or overwritten.

Metrics per window:
    - accuracy: arg-max outcome equals the result
    - log-loss and Brier: one-vs-rest over every (outcome, indicator) pair
    - calibration slope/intercept: count-weighted fit over deciles
    - ROI, Sharpe and max drawdown: over bets attributed to the model

The tracker also keeps each model's trailing per-match Brier score, which
feeds the ensemble's weight update.

Example:
    >>> tracker = PerformanceTracker(PerformanceConfig(), Decimal("10000"), origin)
    >>> tracker.record_prediction(prediction, Outcome.HOME)
    >>> tracker.recompute(now)
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Deque, Dict, Iterable, List, Optional, Tuple
import logging
import math
import threading

import pandas as pd

from ..core.config import PerformanceConfig
from ..core.errors import ConfigurationError
from ..models.domain import (
    Bet,
    BetStatus,
    ModelPerformanceSnapshot,
    Outcome,
    Prediction,
    ProbabilityDistribution,
    utcnow,
)
from .calibration_analysis import calibration_line
from .metrics import (
    calculate_accuracy,
    calculate_brier_score,
    calculate_equity_curve,
    calculate_log_loss,
    calculate_max_drawdown,
    calculate_roi,
    calculate_sharpe_ratio,
    one_vs_rest,
)

logger = logging.getLogger(__name__)

ModelKey = Tuple[str, str]


@dataclass(frozen=True)
class ScoredPrediction:
    """A prediction paired with the result it was scored against."""
    match_id: str
    distribution: ProbabilityDistribution
    result: Outcome
    scored_at: datetime
    brier: float


@dataclass(frozen=True)
class SettledBetRecord:
    stake: float
    profit: float
    settled_at: datetime


@dataclass
class _Series:
    """Mutable per-model bookkeeping; only touched under the tracker lock."""
    predictions: List[ScoredPrediction] = field(default_factory=list)
    bets: List[SettledBetRecord] = field(default_factory=list)
    trailing: Deque[float] = field(default_factory=deque)
    next_window: int = 0
    realised_before: float = 0.0


def match_brier(distribution: ProbabilityDistribution, result: Outcome) -> float:
    """Mean squared error across the outcomes of one prediction."""
    probs, labels = one_vs_rest([distribution], [result])
    return calculate_brier_score(probs, labels)


class PerformanceTracker:
    """Rolling model-quality and betting metrics per model version."""

    def __init__(
        self,
        config: PerformanceConfig,
        initial_bankroll: Decimal,
        origin: Optional[datetime] = None
    ):
        if config.window <= timedelta(0):
            raise ConfigurationError("Performance window must be positive")
        self._config = config
        self._initial = float(initial_bankroll)
        self._origin = origin or utcnow()
        self._series: Dict[ModelKey, _Series] = {}
        self._snapshots: List[ModelPerformanceSnapshot] = []
        self._keys: set = set()
        self._lock = threading.Lock()

    @property
    def origin(self) -> datetime:
        return self._origin

    def _get_series(self, key: ModelKey) -> _Series:
        series = self._series.get(key)
        if series is None:
            series = _Series(trailing=deque(maxlen=self._config.trailing_window))
            self._series[key] = series
        return series

    def window_index(self, ts: datetime) -> int:
        return math.floor((ts - self._origin) / self._config.window)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_prediction(
        self,
        prediction: Prediction,
        result: Outcome,
        scored_at: Optional[datetime] = None
    ) -> float:
        """
        Score ``prediction`` against ``result``.

        Returns:
            The per-match Brier score
        """
        brier = match_brier(prediction.distribution, result)
        record = ScoredPrediction(
            match_id=prediction.match_id,
            distribution=prediction.distribution,
            result=result,
            scored_at=scored_at or utcnow(),
            brier=brier,
        )
        with self._lock:
            series = self._get_series((prediction.model_name, prediction.model_version))
            if self.window_index(record.scored_at) < series.next_window:
                logger.warning(
                    f"Prediction for {prediction.match_id} scored in a closed window; "
                    "counted for trailing Brier only"
                )
            else:
                series.predictions.append(record)
            series.trailing.append(brier)
        return brier

    def record_bet(self, bet: Bet) -> None:
        """Record a settled bet against the model that produced its signal."""
        if not bet.status.is_terminal or bet.status is BetStatus.VOID:
            return
        record = SettledBetRecord(
            stake=float(bet.stake),
            profit=float(bet.profit_loss or 0),
            settled_at=bet.settled_at or utcnow(),
        )
        with self._lock:
            series = self._get_series((bet.model_name, bet.model_version))
            if self.window_index(record.settled_at) < series.next_window:
                series.realised_before += record.profit
            else:
                series.bets.append(record)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def trailing_brier(self, model_name: str, model_version: str) -> Optional[float]:
        """Mean per-match Brier over the last N scored outcomes, if any."""
        with self._lock:
            series = self._series.get((model_name, model_version))
            if series is None or not series.trailing:
                return None
            return sum(series.trailing) / len(series.trailing)

    def snapshots(self, model_name: Optional[str] = None) -> List[ModelPerformanceSnapshot]:
        with self._lock:
            snaps = list(self._snapshots)
        if model_name is not None:
            snaps = [s for s in snaps if s.model_name == model_name]
        return snaps

    def latest_snapshots(self) -> Dict[ModelKey, ModelPerformanceSnapshot]:
        latest: Dict[ModelKey, ModelPerformanceSnapshot] = {}
        for snap in self.snapshots():
            key = (snap.model_name, snap.model_version)
            if key not in latest or snap.window_start > latest[key].window_start:
                latest[key] = snap
        return latest

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def recompute(self, now: Optional[datetime] = None) -> List[ModelPerformanceSnapshot]:
        """
        Summarise every closed window not yet recorded.

        Windows without predictions or bets produce no snapshot. Returns
        the snapshots appended by this call.
        """
        now = now or utcnow()
        closed = self.window_index(now)
        created: List[ModelPerformanceSnapshot] = []

        with self._lock:
            for key, series in self._series.items():
                if closed <= series.next_window:
                    continue
                created.extend(self._close_windows(key, series, closed, now))

        for snap in created:
            logger.info(
                f"Performance {snap.model_name}/{snap.model_version} "
                f"[{snap.window_start:%Y-%m-%d %H:%M}]: n={snap.total_predictions} "
                f"acc={snap.accuracy:.3f} brier={snap.brier_score:.4f} roi={snap.roi:.3f}"
            )
        return created

    def _close_windows(
        self,
        key: ModelKey,
        series: _Series,
        closed: int,
        now: datetime
    ) -> List[ModelPerformanceSnapshot]:
        by_window: Dict[int, Tuple[List[ScoredPrediction], List[SettledBetRecord]]] = {}
        keep_preds, keep_bets = [], []
        for rec in series.predictions:
            idx = self.window_index(rec.scored_at)
            if idx < closed:
                by_window.setdefault(idx, ([], []))[0].append(rec)
            else:
                keep_preds.append(rec)
        for rec in series.bets:
            idx = self.window_index(rec.settled_at)
            if idx < closed:
                by_window.setdefault(idx, ([], []))[1].append(rec)
            else:
                keep_bets.append(rec)

        created = []
        for idx in sorted(by_window):
            preds, bets = by_window[idx]
            start = self._origin + idx * self._config.window
            snap = self._summarise(
                key, start, start + self._config.window, preds, bets,
                self._initial + series.realised_before, now,
            )
            series.realised_before += sum(b.profit for b in bets)
            if snap.key in self._keys:
                continue
            self._keys.add(snap.key)
            self._snapshots.append(snap)
            created.append(snap)

        series.predictions = keep_preds
        series.bets = keep_bets
        series.next_window = closed
        return created

    def _summarise(
        self,
        key: ModelKey,
        start: datetime,
        end: datetime,
        preds: List[ScoredPrediction],
        bets: List[SettledBetRecord],
        starting_bankroll: float,
        now: datetime
    ) -> ModelPerformanceSnapshot:
        dists = [p.distribution for p in preds]
        results = [p.result for p in preds]
        correct, total, accuracy = calculate_accuracy(dists, results)
        probs, labels = one_vs_rest(dists, results)
        slope, intercept = calibration_line(probs, labels, self._config.calibration_bins)

        bets = sorted(bets, key=lambda b: b.settled_at)
        profits = pd.Series([b.profit for b in bets], dtype=float)
        stakes = pd.Series([b.stake for b in bets], dtype=float)
        returns = profits / stakes if len(bets) else pd.Series(dtype=float)
        equity = calculate_equity_curve(profits, starting_bankroll)

        return ModelPerformanceSnapshot(
            model_name=key[0],
            model_version=key[1],
            window_start=start,
            window_end=end,
            total_predictions=total,
            correct_predictions=correct,
            accuracy=accuracy,
            log_loss=calculate_log_loss(probs, labels),
            brier_score=calculate_brier_score(probs, labels),
            roi=calculate_roi(profits, stakes),
            sharpe_ratio=calculate_sharpe_ratio(returns),
            max_drawdown=calculate_max_drawdown(equity),
            calibration_slope=slope,
            calibration_intercept=intercept,
            created_at=now,
        )

    def record_outcome(
        self,
        predictions: Iterable[Prediction],
        result: Outcome,
        scored_at: Optional[datetime] = None
    ) -> Dict[str, float]:
        """Score several predictions for one match; returns Brier by model name."""
        return {
            p.model_name: self.record_prediction(p, result, scored_at)
            for p in predictions
        }
