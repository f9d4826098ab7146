"""
FastAPI Application for the QuantEdge Trading Engine.

Read-only REST API over a running ``TradingEngine``:
    - Health and engine status
    - Live event feed and recent predictions
    - Portfolio state and open bets
    - Current markets with edges against the latest prediction
    - Model performance snapshots

Security features:
    - Optional API key (X-API-Key header) when ``QUANTEDGE_API_KEY`` is set
    - Rate limiting per client address (slowapi)
    - Query validation with Pydantic
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging
import secrets
import time

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..core.config import Settings, get_settings
from ..models.domain import (
    Bet,
    MatchEvent,
    ModelPerformanceSnapshot,
    OddsQuote,
    Prediction,
    utcnow,
)
from ..pipeline.engine import TradingEngine

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


# ============================================================================
# API Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    engine_running: bool
    version: str


class StatusResponse(BaseModel):
    """Engine counters and ensemble state."""
    running: bool
    queue_depth: int
    in_flight: int
    live_matches: int
    ensemble_weights: Dict[str, float]
    weights_version: int
    scheduler_runs: int
    stats: Dict[str, Any]


class EventResponse(BaseModel):
    id: str
    match_id: str
    event_type: str
    minute: Optional[int] = None
    team: Optional[str] = None
    player: Optional[str] = None
    home_team: str
    away_team: str
    league: str
    status: str
    timestamp: datetime

    @classmethod
    def from_event(cls, event: MatchEvent) -> "EventResponse":
        return cls(
            id=event.id,
            match_id=event.match_id,
            event_type=event.event_type.value,
            minute=event.minute,
            team=event.team.value if event.team else None,
            player=event.player,
            home_team=event.home_team,
            away_team=event.away_team,
            league=event.league,
            status=event.status.value,
            timestamp=event.timestamp,
        )


class PredictionResponse(BaseModel):
    """Outcome probabilities from one model."""
    id: str
    match_id: str
    model_name: str
    model_version: str
    probabilities: Dict[str, float]
    confidence: float = Field(..., ge=0, le=1)
    expected_goals: Optional[List[float]] = None
    degraded: bool
    predicted_at: datetime

    @classmethod
    def from_prediction(cls, prediction: Prediction) -> "PredictionResponse":
        xg = prediction.expected_goals
        return cls(
            id=prediction.id,
            match_id=prediction.match_id,
            model_name=prediction.model_name,
            model_version=prediction.model_version,
            probabilities={
                o.value: p for o, p in prediction.distribution.as_dict().items()
            },
            confidence=prediction.confidence,
            expected_goals=list(xg) if xg else None,
            degraded=prediction.degraded,
            predicted_at=prediction.predicted_at,
        )


class BetResponse(BaseModel):
    id: str
    match_id: str
    outcome: str
    stake: Decimal
    odds: float
    edge: float
    kelly_fraction: float
    expected_value: float
    strategy: str
    status: str
    placed_at: datetime
    settled_at: Optional[datetime] = None
    payout: Optional[Decimal] = None
    profit_loss: Optional[Decimal] = None

    @classmethod
    def from_bet(cls, bet: Bet) -> "BetResponse":
        return cls(
            id=bet.id,
            match_id=bet.match_id,
            outcome=bet.outcome.value,
            stake=bet.stake,
            odds=bet.odds,
            edge=bet.edge,
            kelly_fraction=bet.kelly_fraction,
            expected_value=bet.expected_value,
            strategy=bet.strategy,
            status=bet.status.value,
            placed_at=bet.placed_at,
            settled_at=bet.settled_at,
            payout=bet.payout,
            profit_loss=bet.profit_loss,
        )


class PortfolioResponse(BaseModel):
    """Bankroll, exposure and summary statistics."""
    bankroll: Decimal
    initial_bankroll: Decimal
    available_bankroll: Decimal
    open_exposure: Decimal
    realised_pnl: Decimal
    peak_bankroll: Decimal
    current_drawdown: float
    roi: float
    win_rate: float
    settled_count: int
    open_bets: List[BetResponse]
    taken_at: datetime


class QuoteResponse(BaseModel):
    id: str
    bookmaker: str
    market_type: str
    odds: Dict[str, float]
    timestamp: datetime

    @classmethod
    def from_quote(cls, quote: OddsQuote) -> "QuoteResponse":
        return cls(
            id=quote.id,
            bookmaker=quote.bookmaker,
            market_type=quote.market_type,
            odds={o.value: price for o, price in quote.odds.items()},
            timestamp=quote.timestamp,
        )


class MarketResponse(BaseModel):
    """Current quotes for a match and their edge per bookmaker and outcome."""
    match_id: str
    quotes: List[QuoteResponse]
    edges: Dict[str, Dict[str, float]]


class PerformanceResponse(BaseModel):
    model_name: str
    model_version: str
    window_start: datetime
    window_end: datetime
    total_predictions: int
    correct_predictions: int
    accuracy: float
    log_loss: float
    brier_score: float
    roi: float
    sharpe_ratio: float
    max_drawdown: float
    calibration_slope: float
    calibration_intercept: float

    @classmethod
    def from_snapshot(cls, snap: ModelPerformanceSnapshot) -> "PerformanceResponse":
        return cls(
            model_name=snap.model_name,
            model_version=snap.model_version,
            window_start=snap.window_start,
            window_end=snap.window_end,
            total_predictions=snap.total_predictions,
            correct_predictions=snap.correct_predictions,
            accuracy=snap.accuracy,
            log_loss=snap.log_loss,
            brier_score=snap.brier_score,
            roi=snap.roi,
            sharpe_ratio=snap.sharpe_ratio,
            max_drawdown=snap.max_drawdown,
            calibration_slope=snap.calibration_slope,
            calibration_intercept=snap.calibration_intercept,
        )


# ============================================================================
# Application Factory
# ============================================================================

def create_app(engine: TradingEngine, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the read API for ``engine``.

    Each app gets its own rate limiter so limits are not shared between
    instances.

    Example:
        >>> app = create_app(engine)
        >>> uvicorn.run(app, host="0.0.0.0", port=8080)
    """
    settings = settings or get_settings()
    limiter = Limiter(key_func=get_remote_address)
    rate = settings.RATE_LIMIT

    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Live match predictions, trading signals and portfolio state",
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS.split(","),
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add X-Process-Time header for performance monitoring."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2)) + "ms"
        return response

    async def verify_api_key(api_key: Optional[str] = Depends(api_key_header)) -> Optional[str]:
        """Check X-API-Key when a key is configured; open otherwise."""
        expected_key = settings.API_KEY
        if not expected_key:
            return None
        if not api_key:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing API key. Provide X-API-Key header.",
                headers={"WWW-Authenticate": "ApiKey"}
            )
        if not secrets.compare_digest(api_key.encode("utf-8"), expected_key.encode("utf-8")):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
        return api_key

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["Info"])
    async def health_check():
        """Liveness probe; never rate limited."""
        return HealthResponse(
            status="healthy" if engine.running else "degraded",
            timestamp=utcnow().isoformat(),
            engine_running=engine.running,
            version=settings.APP_VERSION,
        )

    @app.get("/api/v1/status", response_model=StatusResponse, tags=["Info"])
    @limiter.limit(rate)
    async def get_status(request: Request, _api_key: Optional[str] = Depends(verify_api_key)):
        return StatusResponse(**engine.status())

    @app.get("/api/v1/events/live", response_model=List[EventResponse], tags=["Events"])
    @limiter.limit(rate)
    async def get_live_events(
        request: Request,
        limit: int = Query(50, ge=1, le=1000),
        _api_key: Optional[str] = Depends(verify_api_key)
    ):
        """Most recent events first."""
        return [EventResponse.from_event(e) for e in engine.recent_events(limit)]

    @app.get("/api/v1/predictions", response_model=List[PredictionResponse], tags=["Predictions"])
    @limiter.limit(rate)
    async def get_predictions(
        request: Request,
        limit: int = Query(50, ge=1, le=500),
        match_id: Optional[str] = Query(None, max_length=64),
        _api_key: Optional[str] = Depends(verify_api_key)
    ):
        """Recent ensemble and submodel predictions, newest first."""
        predictions = engine.recent_predictions(limit=limit, match_id=match_id)
        return [PredictionResponse.from_prediction(p) for p in predictions]

    @app.get("/api/v1/portfolio", response_model=PortfolioResponse, tags=["Portfolio"])
    @limiter.limit(rate)
    async def get_portfolio(request: Request, _api_key: Optional[str] = Depends(verify_api_key)):
        snap = engine.portfolio_snapshot()
        return PortfolioResponse(
            bankroll=snap.bankroll,
            initial_bankroll=snap.initial_bankroll,
            available_bankroll=snap.available_bankroll,
            open_exposure=snap.open_exposure,
            realised_pnl=snap.realised_pnl,
            peak_bankroll=snap.peak_bankroll,
            current_drawdown=snap.current_drawdown,
            roi=snap.roi,
            win_rate=snap.win_rate,
            settled_count=snap.settled_count,
            open_bets=[BetResponse.from_bet(b) for b in snap.open_bets],
            taken_at=snap.taken_at,
        )

    @app.get("/api/v1/markets", response_model=List[MarketResponse], tags=["Markets"])
    @limiter.limit(rate)
    async def get_markets(request: Request, _api_key: Optional[str] = Depends(verify_api_key)):
        return [
            MarketResponse(
                match_id=view.match_id,
                quotes=[QuoteResponse.from_quote(q) for q in view.quotes],
                edges=view.edges,
            )
            for view in engine.markets()
        ]

    @app.get("/api/v1/performance", response_model=List[PerformanceResponse], tags=["Monitoring"])
    @limiter.limit(rate)
    async def get_performance(
        request: Request,
        model_name: Optional[str] = Query(None, max_length=50),
        _api_key: Optional[str] = Depends(verify_api_key)
    ):
        """Closed-window performance snapshots."""
        return [PerformanceResponse.from_snapshot(s) for s in engine.performance(model_name)]

    logger.info(f"{settings.APP_NAME} API ready (rate limit {rate})")
    return app
