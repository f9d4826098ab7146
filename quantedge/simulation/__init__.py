"""Seeded match-event and odds simulation."""

from .feed import SAMPLE_MATCHES, SimulatedFeed, SimulatedMatch

__all__ = ["SAMPLE_MATCHES", "SimulatedFeed", "SimulatedMatch"]
