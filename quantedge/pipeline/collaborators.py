"""
Interfaces the engine calls into: odds feeds and persistence.

Both are async and may be slow or fail. The engine wraps every call in a
timeout; persistence writes are retried with bounded exponential backoff
(tenacity) and odds fetches fall back to the last-known quotes.
"""

from typing import Awaitable, Callable, List, Protocol, TypeVar, runtime_checkable
import asyncio
import logging

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import TransientCollaboratorError
from ..models.domain import Bet, MatchEvent, ModelPerformanceSnapshot, OddsQuote, Prediction

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class OddsFeed(Protocol):
    """Source of current bookmaker quotes for a match."""

    async def fetch_quotes(self, match_id: str) -> List[OddsQuote]:
        ...


@runtime_checkable
class PersistenceGateway(Protocol):
    """
    Durable store for engine records.

    Every save is idempotent by record id; implementations raise
    ``TransientCollaboratorError`` for failures worth retrying.
    """

    async def save_event(self, event: MatchEvent) -> None:
        ...

    async def save_prediction(self, prediction: Prediction) -> None:
        ...

    async def save_bet(self, bet: Bet) -> None:
        ...

    async def save_odds(self, quote: OddsQuote) -> None:
        ...

    async def save_performance(self, snapshot: ModelPerformanceSnapshot) -> None:
        ...


class NullPersistence:
    """Persistence that stores nothing; used when no database is configured."""

    async def save_event(self, event: MatchEvent) -> None:
        return None

    async def save_prediction(self, prediction: Prediction) -> None:
        return None

    async def save_bet(self, bet: Bet) -> None:
        return None

    async def save_odds(self, quote: OddsQuote) -> None:
        return None

    async def save_performance(self, snapshot: ModelPerformanceSnapshot) -> None:
        return None


async def call_with_timeout(
    operation: str,
    call: Callable[[], Awaitable[T]],
    timeout: float
) -> T:
    """
    Await ``call()`` with a timeout.

    Raises:
        TransientCollaboratorError: On timeout
    """
    try:
        return await asyncio.wait_for(call(), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TransientCollaboratorError(operation, e) from e


async def call_with_retry(
    operation: str,
    call: Callable[[], Awaitable[T]],
    timeout: float,
    attempts: int = 3,
    backoff: float = 0.5
) -> T:
    """
    Retry a collaborator call on ``TransientCollaboratorError``.

    Each attempt is bounded by ``timeout``; waits grow exponentially from
    ``backoff`` seconds. The last error is re-raised when attempts run out.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=backoff, max=max(backoff * 8, backoff)),
        retry=retry_if_exception_type(TransientCollaboratorError),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await call_with_timeout(operation, call, timeout)
