"""Configuration and error taxonomy shared by every QuantEdge component."""

from .config import (
    EngineConfig,
    TradingConfig,
    EnsembleConfig,
    LogisticParams,
    PoissonParams,
    MarketConfig,
    PipelineConfig,
    PerformanceConfig,
    RiskTolerance,
    Settings,
    get_settings,
    load_engine_config,
)
from .errors import (
    QuantEdgeError,
    ValidationError,
    ConfigurationError,
    BetRejected,
    InsufficientBankroll,
    DuplicateOpenBet,
    ExposureLimitReached,
    StakeTooSmall,
    InvalidBetTransition,
    BetNotFound,
    FeatureMissing,
    TransientCollaboratorError,
)

__all__ = [
    "EngineConfig",
    "TradingConfig",
    "EnsembleConfig",
    "LogisticParams",
    "PoissonParams",
    "MarketConfig",
    "PipelineConfig",
    "PerformanceConfig",
    "RiskTolerance",
    "Settings",
    "get_settings",
    "load_engine_config",
    "QuantEdgeError",
    "ValidationError",
    "ConfigurationError",
    "BetRejected",
    "InsufficientBankroll",
    "DuplicateOpenBet",
    "ExposureLimitReached",
    "StakeTooSmall",
    "InvalidBetTransition",
    "BetNotFound",
    "FeatureMissing",
    "TransientCollaboratorError",
]
