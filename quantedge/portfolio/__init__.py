"""Bankroll ownership, stake sizing and settlement."""

from .manager import PortfolioManager

__all__ = ["PortfolioManager"]
