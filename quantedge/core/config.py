"""
Configuration Management for QuantEdge.

Two layers:

    - ``EngineConfig``: the plain configuration object every core
      component receives. Core code never touches the environment.
    - ``Settings``: pydantic-settings loader used by entry points to read
      environment variables / ``.env`` once at process start and build an
      ``EngineConfig``.

Invalid values surface as ``ConfigurationError`` from
``load_engine_config`` / ``Settings.to_engine_config``; they are the only
fatal errors in the system.
"""

from datetime import timedelta
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class RiskTolerance(str, Enum):
    """Risk appetite label; maps to a Kelly multiplier via configuration."""
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


DEFAULT_KELLY_SCALES: Dict[RiskTolerance, float] = {
    RiskTolerance.CONSERVATIVE: 0.25,
    RiskTolerance.MODERATE: 0.5,
    RiskTolerance.AGGRESSIVE: 1.0,
}


# ============================================================================
# Component Configuration
# ============================================================================

class TradingConfig(BaseModel):
    """Bankroll, exposure and signal thresholds."""

    initial_bankroll: Decimal = Field(default=Decimal("10000.00"), gt=0)
    max_exposure_percentage: float = Field(default=0.10, gt=0, le=1)
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    kelly_scales: Dict[RiskTolerance, float] = Field(
        default_factory=lambda: dict(DEFAULT_KELLY_SCALES)
    )
    min_edge: float = Field(default=0.03, ge=0, le=1)
    min_confidence: float = Field(default=0.6, ge=0, le=1)
    confidence_scale: float = Field(default=10.0, gt=0)
    strategy_name: str = "value"
    min_odds: Optional[float] = Field(default=None, gt=1.0)
    max_odds: Optional[float] = Field(default=None, gt=1.0)

    @model_validator(mode="after")
    def _check_scales(self) -> "TradingConfig":
        for level, scale in self.kelly_scales.items():
            if not 0 < scale <= 1:
                raise ValueError(f"Kelly scale for {level.value} must be in (0, 1], got {scale}")
        if self.risk_tolerance not in self.kelly_scales:
            raise ValueError(f"No Kelly scale configured for {self.risk_tolerance.value}")
        if self.min_odds and self.max_odds and self.min_odds > self.max_odds:
            raise ValueError("min_odds must not exceed max_odds")
        return self

    @property
    def kelly_scale(self) -> float:
        """Kelly multiplier for the configured risk tolerance."""
        return self.kelly_scales[self.risk_tolerance]


class LogisticParams(BaseModel):
    """
    Pre-fit logistic regression parameters.

    ``weights``/``bias`` form the home-vs-away head, ``draw_weights``/
    ``draw_bias`` the secondary draw head. Features are standardised with
    ``means``/``scales`` and clamped to +/- ``z_max``.
    """

    weights: Dict[str, float] = Field(default_factory=lambda: {
        "elo_difference": 0.45,
        "form_difference": 0.30,
        "home_advantage": 0.20,
        "goal_difference": 1.10,
        "red_card_difference": -0.45,
    })
    bias: float = 0.20
    draw_weights: Dict[str, float] = Field(default_factory=lambda: {
        "abs_goal_difference": -0.90,
        "league_competitiveness": 0.15,
        "minute_fraction": 0.10,
    })
    draw_bias: float = -1.10
    means: Dict[str, float] = Field(default_factory=lambda: {
        "elo_difference": 0.0,
        "form_difference": 0.0,
        "home_advantage": 1.0,
        "goal_difference": 0.0,
        "red_card_difference": 0.0,
        "abs_goal_difference": 0.5,
        "league_competitiveness": 0.7,
        "minute_fraction": 0.5,
    })
    scales: Dict[str, float] = Field(default_factory=lambda: {
        "elo_difference": 100.0,
        "form_difference": 0.5,
        "home_advantage": 0.3,
        "goal_difference": 1.0,
        "red_card_difference": 1.0,
        "abs_goal_difference": 1.0,
        "league_competitiveness": 0.2,
        "minute_fraction": 0.3,
    })
    defaults: Dict[str, float] = Field(default_factory=lambda: {
        "elo_difference": 0.0,
        "form_difference": 0.0,
        "home_advantage": 1.0,
        "goal_difference": 0.0,
        "red_card_difference": 0.0,
        "abs_goal_difference": 0.0,
        "league_competitiveness": 0.7,
        "minute_fraction": 0.0,
    })
    z_max: float = Field(default=4.0, gt=0)
    base_confidence: float = Field(default=0.5, ge=0, le=1)

    @model_validator(mode="after")
    def _check_defaults(self) -> "LogisticParams":
        missing = sorted((set(self.weights) | set(self.draw_weights)) - set(self.defaults))
        if missing:
            raise ValueError(f"No logistic default for features: {missing}")
        return self


POISSON_FEATURES = (
    "home_attack",
    "home_defense",
    "away_attack",
    "away_defense",
    "home_advantage",
)


class PoissonParams(BaseModel):
    """Pre-fit Poisson goal model parameters."""

    base_home_goals: float = Field(default=1.50, gt=0)
    base_away_goals: float = Field(default=1.15, gt=0)
    lambda_min: float = Field(default=0.05, gt=0)
    lambda_max: float = Field(default=8.0, gt=0)
    max_goals: int = Field(default=10, ge=1)
    match_minutes: float = Field(default=90.0, gt=0)
    centroid: Dict[str, float] = Field(default_factory=lambda: {"home": 1.50, "away": 1.15})
    confidence_scale: float = Field(default=1.5, gt=0)
    defaults: Dict[str, float] = Field(default_factory=lambda: {
        "home_attack": 1.0,
        "home_defense": 1.0,
        "away_attack": 1.0,
        "away_defense": 1.0,
        "home_advantage": 1.0,
    })

    @model_validator(mode="after")
    def _check_defaults(self) -> "PoissonParams":
        missing = sorted(set(POISSON_FEATURES) - set(self.defaults))
        if missing:
            raise ValueError(f"No Poisson default for features: {missing}")
        return self


class EnsembleConfig(BaseModel):
    """Ensemble weighting parameters."""

    weight_floor: float = Field(default=0.01, gt=0)
    has_draw: bool = True
    degraded_confidence_penalty: float = Field(default=0.5, ge=0, le=1)
    prior_brier: float = Field(default=0.25, ge=0)
    model_version: str = "v1.0"


class MarketConfig(BaseModel):
    """Market model and odds simulation parameters."""

    simulation_mode: bool = False
    margin: float = Field(default=0.05, ge=0, lt=1)
    # per-match margin drawn uniformly from this range instead of ``margin``
    margin_range: Optional[Tuple[float, float]] = None
    precision: int = Field(default=2, ge=0, le=4)
    noise: float = Field(default=0.02, ge=0, lt=0.5)
    seed: Optional[int] = None
    bookmaker: str = "simulated"
    market_type: str = "match_winner"

    @model_validator(mode="after")
    def _check_margin_range(self) -> "MarketConfig":
        if self.margin_range is not None:
            low, high = self.margin_range
            if not 0 <= low <= high < 1:
                raise ValueError(f"margin_range must satisfy 0 <= low <= high < 1, got {self.margin_range}")
        return self


class PipelineConfig(BaseModel):
    """Ingestion queue, concurrency and collaborator timeouts."""

    queue_size: int = Field(default=1000, ge=1)
    max_concurrency: int = Field(default=8, ge=1)
    feed_timeout_seconds: float = Field(default=2.0, gt=0)
    persistence_timeout_seconds: float = Field(default=5.0, gt=0)
    persistence_retries: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)
    recent_events_limit: int = Field(default=1000, ge=1)
    recent_predictions_limit: int = Field(default=500, ge=1)
    settled_matches_limit: int = Field(default=10000, ge=1)


class PerformanceConfig(BaseModel):
    """Performance tracker windows and recomputation schedule."""

    window: timedelta = timedelta(days=1)
    recompute_interval_seconds: float = Field(default=300.0, gt=0)
    recompute_every_n_events: int = Field(default=500, ge=1)
    trailing_window: int = Field(default=50, ge=1)
    calibration_bins: int = Field(default=10, ge=2)


class EngineConfig(BaseModel):
    """Complete configuration handed to the engine at start-up."""

    trading: TradingConfig = Field(default_factory=TradingConfig)
    ensemble: EnsembleConfig = Field(default_factory=EnsembleConfig)
    logistic: LogisticParams = Field(default_factory=LogisticParams)
    poisson: PoissonParams = Field(default_factory=PoissonParams)
    market: MarketConfig = Field(default_factory=MarketConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)


def load_engine_config(**sections) -> EngineConfig:
    """
    Build an ``EngineConfig`` from plain mappings.

    Raises:
        ConfigurationError: If any section fails validation
    """
    try:
        return EngineConfig.model_validate(sections)
    except PydanticValidationError as e:
        raise ConfigurationError(str(e)) from e


# ============================================================================
# Process Settings
# ============================================================================

class Settings(BaseSettings):
    """
    Application Settings.

    Loads configuration from ``QUANTEDGE_*`` environment variables and .env file.
    """
    model_config = SettingsConfigDict(
        env_prefix="QUANTEDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # App Info
    APP_NAME: str = "QuantEdge"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///quantedge.db"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    API_KEY: str = ""
    CORS_ORIGINS: str = "*"
    RATE_LIMIT: str = "60/minute"

    # Trading
    INITIAL_BANKROLL: Decimal = Decimal("10000.00")
    MAX_EXPOSURE_PERCENTAGE: float = 0.10
    RISK_TOLERANCE: str = "moderate"
    MIN_EDGE: float = 0.03
    MIN_CONFIDENCE: float = 0.6
    STRATEGY_NAME: str = "value"

    # Models
    WEIGHT_FLOOR: float = 0.01
    HAS_DRAW: bool = True

    # Market
    SIMULATION_MODE: bool = True
    MARKET_MARGIN: float = 0.05
    SIMULATION_SEED: Optional[int] = None

    def to_engine_config(self) -> EngineConfig:
        """
        Translate flat environment settings into an ``EngineConfig``.

        Raises:
            ConfigurationError: On any invalid value (e.g. unknown risk
                tolerance or a Kelly scale outside (0, 1])
        """
        try:
            tolerance = RiskTolerance(self.RISK_TOLERANCE.lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown risk tolerance '{self.RISK_TOLERANCE}'"
            ) from e

        return load_engine_config(
            trading={
                "initial_bankroll": self.INITIAL_BANKROLL,
                "max_exposure_percentage": self.MAX_EXPOSURE_PERCENTAGE,
                "risk_tolerance": tolerance,
                "min_edge": self.MIN_EDGE,
                "min_confidence": self.MIN_CONFIDENCE,
                "strategy_name": self.STRATEGY_NAME,
            },
            ensemble={
                "weight_floor": self.WEIGHT_FLOOR,
                "has_draw": self.HAS_DRAW,
            },
            market={
                "simulation_mode": self.SIMULATION_MODE,
                "margin": self.MARKET_MARGIN,
                "seed": self.SIMULATION_SEED,
            },
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings()
