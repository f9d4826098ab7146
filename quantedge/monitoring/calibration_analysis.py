"""
Calibration Analysis for Live Predictions.

Validates that predicted probabilities match observed frequencies. The
calibration line is a count-weighted least-squares fit of observed
frequency on mean predicted probability across probability bins:

    - slope = 1, intercept = 0: perfectly calibrated
    - slope < 1: overconfident (predictions too extreme)
    - slope > 1: underconfident (predictions too moderate)

Example:
    >>> preds = [0.6, 0.7, 0.55, 0.65]
    >>> actuals = [1, 1, 0, 1]
    >>> brier, bins = calculate_calibration(preds, actuals)
    >>> brier
    0.16875
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
from sklearn.linear_model import LinearRegression

from ..core.errors import ValidationError


@dataclass
class CalibrationBin:
    """Calibration metrics for a probability bin."""
    bin_range: Tuple[float, float]
    predicted_prob: float
    observed_freq: float
    count: int
    brier_contribution: float


def calculate_calibration(
    predictions: Sequence[float],
    actuals: Sequence[int],
    n_bins: int = 10
) -> Tuple[float, List[CalibrationBin]]:
    """
    Calculate calibration curve and Brier score.

    Args:
        predictions: Predicted probabilities [0, 1]
        actuals: Actual outcomes (0 or 1)
        n_bins: Number of equal-width bins (default 10, deciles)

    Returns:
        Tuple of (brier_score, calibration_bins); empty bins are skipped

    Raises:
        ValidationError: If inputs are empty, mismatched or out of range
    """
    if len(predictions) == 0:
        raise ValidationError("Cannot calculate calibration on empty dataset")

    if len(predictions) != len(actuals):
        raise ValidationError(
            f"Predictions ({len(predictions)}) and actuals ({len(actuals)}) "
            "must have same length"
        )

    preds = np.asarray(predictions, dtype=float)
    acts = np.asarray(actuals, dtype=float)

    if not np.all((preds >= 0) & (preds <= 1)):
        raise ValidationError("All predictions must be in [0, 1] range")

    if not np.all((acts == 0) | (acts == 1)):
        raise ValidationError("All actuals must be 0 or 1")

    squared = (preds - acts) ** 2
    edges = np.linspace(0.0, 1.0, n_bins + 1)
    # p == 1.0 lands in the last bin
    index = np.clip(np.floor(preds * n_bins).astype(int), 0, n_bins - 1)
    counts = np.bincount(index, minlength=n_bins)

    bins = []
    for i in np.flatnonzero(counts):
        in_bin = index == i
        bins.append(CalibrationBin(
            bin_range=(float(edges[i]), float(edges[i + 1])),
            predicted_prob=float(preds[in_bin].mean()),
            observed_freq=float(acts[in_bin].mean()),
            count=int(counts[i]),
            brier_contribution=float(squared[in_bin].mean()),
        ))

    return float(squared.mean()), bins


def calibration_line(
    predictions: Sequence[float],
    actuals: Sequence[int],
    n_bins: int = 10
) -> Tuple[float, float]:
    """
    Calibration slope and intercept.

    Weighted linear regression of observed frequency on mean predicted
    probability per bin, weights = bin counts. Fewer than two populated
    bins gives the identity line (1.0, 0.0).

    Example:
        >>> slope, intercept = calibration_line(preds, actuals)
    """
    if len(predictions) == 0:
        return 1.0, 0.0

    _, bins = calculate_calibration(predictions, actuals, n_bins)
    if len(bins) < 2:
        return 1.0, 0.0

    x = np.array([b.predicted_prob for b in bins]).reshape(-1, 1)
    y = np.array([b.observed_freq for b in bins])
    weights = np.array([b.count for b in bins], dtype=float)

    lr = LinearRegression()
    lr.fit(x, y, sample_weight=weights)

    return float(lr.coef_[0]), float(lr.intercept_)


def expected_calibration_error(
    predictions: Sequence[float],
    actuals: Sequence[int],
    n_bins: int = 10
) -> float:
    """
    Expected Calibration Error (ECE).

    Count-weighted mean of |predicted - observed| across bins; 0 is perfect.
    """
    _, bins = calculate_calibration(predictions, actuals, n_bins)
    counts = np.array([b.count for b in bins], dtype=float)
    gaps = np.array([abs(b.predicted_prob - b.observed_freq) for b in bins])
    return float(np.average(gaps, weights=counts))
