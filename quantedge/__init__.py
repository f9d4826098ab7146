"""
QuantEdge: Live Match Prediction and Trading Engine

Turns a stream of match events into calibrated outcome probabilities from
an ensemble of statistical models, finds positive-edge prices against the
market and sizes bets with fractional Kelly under exposure limits.
"""

__version__ = "0.1.0"
