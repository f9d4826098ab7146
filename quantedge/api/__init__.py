"""Read-only HTTP API for the trading engine."""

from .app import create_app

__all__ = ["create_app"]
