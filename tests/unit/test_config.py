"""
Unit tests for engine configuration and process settings.
"""

from decimal import Decimal

import pytest

from pydantic import ValidationError as PydanticValidationError

from quantedge.core.config import (
    EngineConfig,
    LogisticParams,
    PoissonParams,
    RiskTolerance,
    Settings,
    TradingConfig,
    load_engine_config,
)
from quantedge.core.errors import ConfigurationError


class TestTradingConfig:
    """Tests for TradingConfig validation."""

    def test_defaults(self):
        config = TradingConfig()
        assert config.initial_bankroll == Decimal("10000.00")
        assert config.max_exposure_percentage == 0.10
        assert config.risk_tolerance is RiskTolerance.MODERATE
        assert config.kelly_scale == 0.5

    @pytest.mark.parametrize("tolerance,scale", [
        (RiskTolerance.CONSERVATIVE, 0.25),
        (RiskTolerance.MODERATE, 0.5),
        (RiskTolerance.AGGRESSIVE, 1.0),
    ])
    def test_kelly_scale_per_tolerance(self, tolerance, scale):
        assert TradingConfig(risk_tolerance=tolerance).kelly_scale == scale

    def test_custom_scales(self):
        config = TradingConfig(kelly_scales={RiskTolerance.MODERATE: 0.3})
        assert config.kelly_scale == 0.3

    def test_scale_above_one_rejected(self):
        with pytest.raises(ValueError):
            TradingConfig(kelly_scales={RiskTolerance.MODERATE: 1.5})

    def test_missing_scale_for_tolerance_rejected(self):
        with pytest.raises(ValueError):
            TradingConfig(
                risk_tolerance=RiskTolerance.AGGRESSIVE,
                kelly_scales={RiskTolerance.MODERATE: 0.5},
            )

    def test_inverted_odds_band_rejected(self):
        with pytest.raises(ValueError):
            TradingConfig(min_odds=3.0, max_odds=2.0)


class TestLoadEngineConfig:

    def test_defaults(self):
        config = load_engine_config()
        assert isinstance(config, EngineConfig)
        assert config.pipeline.queue_size == 1000
        assert config.ensemble.has_draw

    def test_invalid_section_raises_configuration_error(self):
        with pytest.raises(ConfigurationError):
            load_engine_config(trading={"max_exposure_percentage": 2.0})

    def test_logistic_weight_without_default_raises_configuration_error(self):
        with pytest.raises(ConfigurationError):
            load_engine_config(logistic={"weights": {"elo_difference": 0.4, "shots_difference": 0.3}})


class TestModelParams:
    """Every feature a model reads needs a fallback value."""

    def test_logistic_weight_without_default_rejected(self):
        with pytest.raises(PydanticValidationError, match="shots_difference"):
            LogisticParams(weights={"elo_difference": 0.4, "shots_difference": 0.3})

    def test_logistic_draw_weight_without_default_rejected(self):
        with pytest.raises(PydanticValidationError):
            LogisticParams(draw_weights={"possession_difference": 0.1})

    def test_logistic_custom_weight_with_default_accepted(self):
        params = LogisticParams(
            weights={"elo_difference": 0.4, "shots_difference": 0.3},
            defaults={**LogisticParams().defaults, "shots_difference": 0.0},
        )
        assert params.weights["shots_difference"] == 0.3

    def test_poisson_partial_defaults_rejected(self):
        with pytest.raises(PydanticValidationError, match="away_attack"):
            PoissonParams(defaults={"home_attack": 1.0})

    def test_default_params_valid(self):
        assert LogisticParams().defaults
        assert PoissonParams().defaults


class TestSettings:
    """Tests for environment-driven Settings."""

    def test_to_engine_config(self):
        settings = Settings(
            _env_file=None,
            INITIAL_BANKROLL=Decimal("5000.00"),
            RISK_TOLERANCE="Conservative",
            MIN_EDGE=0.05,
            HAS_DRAW=False,
            SIMULATION_SEED=7,
        )
        config = settings.to_engine_config()
        assert config.trading.initial_bankroll == Decimal("5000.00")
        assert config.trading.kelly_scale == 0.25
        assert config.trading.min_edge == 0.05
        assert config.ensemble.has_draw is False
        assert config.market.seed == 7

    def test_unknown_risk_tolerance(self):
        settings = Settings(_env_file=None, RISK_TOLERANCE="reckless")
        with pytest.raises(ConfigurationError):
            settings.to_engine_config()

    def test_out_of_range_value(self):
        settings = Settings(_env_file=None, MAX_EXPOSURE_PERCENTAGE=0.0)
        with pytest.raises(ConfigurationError):
            settings.to_engine_config()

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("QUANTEDGE_MIN_CONFIDENCE", "0.75")
        monkeypatch.setenv("QUANTEDGE_API_PORT", "9000")
        settings = Settings(_env_file=None)
        assert settings.MIN_CONFIDENCE == 0.75
        assert settings.API_PORT == 9000
