"""
Run Simulation Script.

Plays the seeded sample fixtures through the trading engine:
1. Load settings (.env / QUANTEDGE_* variables)
2. Build the engine, persistence and simulated feed
3. Stream every match to full time
4. Print the portfolio and ensemble weights

Usage:
    python scripts/run_simulation.py --seed 42
    python scripts/run_simulation.py --serve   # keep the read API up afterwards
"""

import argparse
import asyncio
import logging

import uvicorn

from quantedge.api import create_app
from quantedge.core import ConfigurationError, get_settings
from quantedge.database import SqlAlchemyPersistence, create_engine_with_pool, create_session_factory, init_db
from quantedge.pipeline import TradingEngine
from quantedge.simulation import SimulatedFeed

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the QuantEdge match simulation")
    parser.add_argument("--seed", type=int, default=None, help="RNG seed (overrides settings)")
    parser.add_argument("--no-db", action="store_true", help="Skip persistence")
    parser.add_argument("--serve", action="store_true", help="Serve the read API after the run")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    config = settings.to_engine_config()
    seed = args.seed if args.seed is not None else settings.SIMULATION_SEED

    persistence = None
    if not args.no_db:
        db_engine = create_engine_with_pool(settings.DATABASE_URL, echo=settings.DEBUG)
        init_db(db_engine)
        persistence = SqlAlchemyPersistence(create_session_factory(db_engine))

    feed = SimulatedFeed(
        seed=seed,
        market=config.market,
        has_draw=config.ensemble.has_draw,
    )
    engine = TradingEngine(config, odds_feed=feed, persistence=persistence)

    await engine.start()
    await feed.run(engine)
    await engine.drain()
    await engine.scheduler.run_once()

    snapshot = engine.portfolio_snapshot()
    logger.info("=" * 60)
    logger.info(f"Bankroll:      {snapshot.initial_bankroll} -> {snapshot.bankroll}")
    logger.info(f"Settled bets:  {snapshot.settled_count} (win rate {snapshot.win_rate:.1%})")
    logger.info(f"ROI:           {snapshot.roi:.2%}")
    logger.info(f"Drawdown:      {snapshot.current_drawdown:.2%}")
    logger.info(f"Weights:       {engine.ensemble.weights}")
    for match in feed.matches:
        home, away = feed.score(match.match_id)
        logger.info(f"  {match.home_team} {home}-{away} {match.away_team}")
    logger.info("=" * 60)

    if args.serve:
        app = create_app(engine, settings)
        server = uvicorn.Server(uvicorn.Config(app, host=settings.API_HOST, port=settings.API_PORT))
        await server.serve()

    await engine.stop()


def main():
    args = parse_args()
    settings = get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        asyncio.run(run(args))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        raise SystemExit(2)


if __name__ == "__main__":
    main()
