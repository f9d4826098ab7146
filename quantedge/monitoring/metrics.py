"""
Performance Metric Functions.

Stateless helpers used by the performance tracker.

Metrics Categories:
    1. Prediction quality - accuracy, log-loss, Brier (one-vs-rest)
    2. Profitability - ROI
    3. Risk-adjusted - Sharpe ratio of per-bet returns
    4. Drawdown - largest peak-to-trough fall of the bankroll curve
"""

from typing import Iterable, Sequence, Tuple

import numpy as np
import pandas as pd

from ..models.domain import Outcome, ProbabilityDistribution

LOG_LOSS_EPS = 1e-15
STD_EPS = 1e-12


def one_vs_rest(
    distributions: Sequence[ProbabilityDistribution],
    results: Sequence[Outcome]
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Flatten multi-outcome predictions into (probability, indicator) pairs.

    Each prediction contributes one pair per outcome it covers.
    """
    probs, labels = [], []
    for dist, result in zip(distributions, results):
        for outcome, p in dist.as_dict().items():
            probs.append(p)
            labels.append(1.0 if outcome is result else 0.0)
    return np.array(probs, dtype=float), np.array(labels, dtype=float)


def calculate_accuracy(
    distributions: Sequence[ProbabilityDistribution],
    results: Sequence[Outcome]
) -> Tuple[int, int, float]:
    """
    Returns:
        Tuple of (correct, total, accuracy)
    """
    total = len(distributions)
    if total == 0:
        return 0, 0, 0.0
    correct = sum(
        1 for dist, result in zip(distributions, results)
        if dist.most_likely()[0] is result
    )
    return correct, total, correct / total


def calculate_brier_score(predictions: np.ndarray, actuals: np.ndarray) -> float:
    """
    Calculate Brier score for probability predictions.

    Lower is better. Perfect = 0.
    """
    if len(predictions) == 0:
        return 0.0
    return float(np.mean((predictions - actuals) ** 2))


def calculate_log_loss(
    predictions: np.ndarray,
    actuals: np.ndarray,
    eps: float = LOG_LOSS_EPS
) -> float:
    """
    Calculate log loss (cross-entropy).

    Args:
        predictions: Predicted probabilities
        actuals: Actual outcomes
        eps: Clip distance from 0 and 1 to prevent log(0)
    """
    if len(predictions) == 0:
        return 0.0
    predictions = np.clip(predictions, eps, 1 - eps)
    return float(-np.mean(
        actuals * np.log(predictions) +
        (1 - actuals) * np.log(1 - predictions)
    ))


def calculate_roi(profits: Iterable[float], stakes: Iterable[float]) -> float:
    """Total profit / total staked; 0 when nothing was staked."""
    total_staked = float(sum(stakes))
    if total_staked <= 0:
        return 0.0
    return float(sum(profits)) / total_staked


def calculate_sharpe_ratio(returns: pd.Series) -> float:
    """
    Mean per-bet return over its sample standard deviation.

    0 with fewer than two returns or zero spread.
    """
    if len(returns) < 2:
        return 0.0

    std_return = returns.std()
    if not std_return > STD_EPS:
        return 0.0

    return float(returns.mean() / std_return)


def calculate_equity_curve(profits: pd.Series, initial_bankroll: float) -> pd.Series:
    """Bankroll after each settled bet, starting from ``initial_bankroll``."""
    start = pd.Series([initial_bankroll], dtype=float)
    equity = initial_bankroll + profits.astype(float).cumsum()
    return pd.concat([start, equity], ignore_index=True)


def calculate_max_drawdown(equity_curve: pd.Series) -> float:
    """
    Largest peak-to-trough decline as a fraction of the running peak.

    Returns 0.0 for an empty or monotonically rising curve.
    """
    if len(equity_curve) == 0:
        return 0.0

    running_max = equity_curve.cummax()
    drawdown = (running_max - equity_curve) / running_max.where(running_max > 0)
    max_dd = drawdown.max()
    return 0.0 if pd.isna(max_dd) else float(max_dd)
