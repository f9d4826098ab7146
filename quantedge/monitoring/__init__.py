"""Monitoring package: calibration, metrics and performance tracking."""

from .calibration_analysis import (
    CalibrationBin,
    calculate_calibration,
    calibration_line,
    expected_calibration_error,
)
from .performance import PerformanceTracker, match_brier
from .scheduler import PerformanceScheduler

__all__ = [
    'CalibrationBin',
    'calculate_calibration',
    'calibration_line',
    'expected_calibration_error',
    'PerformanceTracker',
    'match_brier',
    'PerformanceScheduler',
]
