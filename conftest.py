"""
Pytest configuration and shared fixtures for QuantEdge testing.

This file provides:
- Engine configuration tuned for fast tests
- Factories for events, predictions, quotes and trading signals
- In-memory SQLite persistence
- FastAPI test client over a stopped engine
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Generator

import pytest
from fastapi.testclient import TestClient

from quantedge.core.config import EngineConfig, Settings, TradingConfig, get_settings
from quantedge.database import (
    SqlAlchemyPersistence,
    create_engine_with_pool,
    create_session_factory,
    init_db,
)
from quantedge.models.domain import (
    EventType,
    MatchEvent,
    MatchStatus,
    OddsQuote,
    Outcome,
    Prediction,
    ProbabilityDistribution,
)
from quantedge.strategies.signals import TradingSignal


# ============================================================================
# Environment Configuration
# ============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Keep tests independent of any developer .env values."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def t0() -> datetime:
    """Fixed reference time (midnight UTC) for deterministic windows."""
    return datetime(2024, 9, 1, tzinfo=timezone.utc)


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture
def trading_config() -> TradingConfig:
    """Bankroll 10000, 10% exposure cap, half Kelly."""
    return TradingConfig(initial_bankroll=Decimal("10000.00"), max_exposure_percentage=0.10)


@pytest.fixture
def engine_config() -> EngineConfig:
    """Engine config with short timeouts and no retry backoff."""
    return EngineConfig.model_validate({
        "pipeline": {
            "feed_timeout_seconds": 0.2,
            "persistence_timeout_seconds": 0.5,
            "persistence_retries": 3,
            "retry_backoff_seconds": 0.0,
        },
    })


@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None, API_KEY="", RATE_LIMIT="1000/minute")


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def make_event(t0):
    """
    Factory for match events.

    Usage:
        def test_goal(make_event):
            event = make_event(EventType.GOAL, team=TeamSide.HOME, minute=10)
    """
    def _create(event_type: EventType = EventType.MATCH_START, match_id: str = "m1", **overrides):
        fields: Dict[str, Any] = {
            "match_id": match_id,
            "event_type": event_type,
            "timestamp": t0 + timedelta(minutes=overrides.get("minute") or 0),
            "home_team": "Arsenal",
            "away_team": "Chelsea",
            "league": "Premier League",
            "season": "2024-25",
            "status": MatchStatus.LIVE,
        }
        fields.update(overrides)
        return MatchEvent(**fields)

    return _create


@pytest.fixture
def make_prediction(t0):
    """Factory for predictions; defaults to a 55/25/20 ensemble prediction."""
    def _create(home=0.55, draw=0.25, away=0.20, match_id="m1", **overrides):
        fields: Dict[str, Any] = {
            "match_id": match_id,
            "model_name": "ensemble",
            "model_version": "v1.0",
            "distribution": ProbabilityDistribution(home=home, draw=draw, away=away),
            "confidence": 0.8,
            "predicted_at": t0,
        }
        fields.update(overrides)
        return Prediction(**fields)

    return _create


@pytest.fixture
def make_quote(t0):
    def _create(odds: Dict[Outcome, float], match_id="m1", bookmaker="bet365", **overrides):
        fields: Dict[str, Any] = {
            "match_id": match_id,
            "bookmaker": bookmaker,
            "market_type": "match_winner",
            "odds": odds,
            "timestamp": t0,
        }
        fields.update(overrides)
        return OddsQuote(**fields)

    return _create


@pytest.fixture
def make_signal():
    """
    Factory for trading signals.

    Usage:
        def test_place(make_signal):
            signal = make_signal(probability=0.55, odds=2.0)
    """
    def _create(probability=0.55, odds=2.0, match_id="m1", **overrides):
        fields: Dict[str, Any] = {
            "match_id": match_id,
            "outcome": Outcome.HOME,
            "probability": probability,
            "implied_probability": 1.0 / odds if odds > 0 else 0.0,
            "odds": odds,
            "edge": probability - (1.0 / odds if odds > 0 else 0.0),
            "confidence": 0.8,
            "strength": 0.5,
            "strategy": "value",
            "model_name": "ensemble",
            "model_version": "v1.0",
        }
        fields.update(overrides)
        return TradingSignal(**fields)

    return _create


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_engine_with_pool("sqlite:///:memory:")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def persistence(session_factory) -> SqlAlchemyPersistence:
    return SqlAlchemyPersistence(session_factory)


# ============================================================================
# FastAPI Test Client
# ============================================================================

@pytest.fixture
def api_client(engine_config, test_settings) -> Generator[TestClient, None, None]:
    """
    Test client over an engine that has not been started.

    Usage:
        def test_endpoint(api_client):
            response = api_client.get("/health")
            assert response.status_code == 200
    """
    from quantedge.api import create_app
    from quantedge.pipeline import TradingEngine

    engine = TradingEngine(engine_config)
    with TestClient(create_app(engine, test_settings)) as client:
        client.engine = engine
        yield client


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
