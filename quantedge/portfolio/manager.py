"""
Risk & Portfolio Manager.

Sole owner of the bankroll and open exposure. Every write (placing a bet,
settling one) goes through a single re-entrant lock; after each write an
immutable ``PortfolioSnapshot`` is published, and readers take that
snapshot without locking.

Stake sizing:

    1. f* = full Kelly for the signal's probability and odds, in [0, 1]
    2. applied = f* x risk-tolerance scale
    3. stake = applied x bankroll, capped at
       max_exposure_percentage x bankroll (per bet) and at
       max_exposure_percentage x bankroll - open exposure (portfolio)
    4. rounded down to cents

Rejections leave state untouched:
    - ValidationError: probability outside [0, 1] or odds <= 1.0
    - DuplicateOpenBet: open bet already on (match, strategy)
    - StakeTooSmall: no Kelly edge, or stake rounds to zero
    - InsufficientBankroll: nothing available to cover a stake
    - ExposureLimitReached: portfolio cap already used up

Settlement moves bankroll by exactly ``payout - stake`` where payout is
``stake x odds`` (won), 0 (lost) or ``stake`` (void).

Example:
    >>> manager = PortfolioManager(TradingConfig(initial_bankroll=Decimal("10000")))
    >>> bet = manager.place(signal)         # p=0.55 @ 2.0, half Kelly
    >>> bet.stake
    Decimal('500.00')
    >>> manager.settle(bet.id, BetStatus.WON).profit_loss
    Decimal('500.00')
"""

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging
import math
import threading

from ..core.config import TradingConfig
from ..core.errors import (
    BetNotFound,
    DuplicateOpenBet,
    ExposureLimitReached,
    InsufficientBankroll,
    InvalidBetTransition,
    StakeTooSmall,
    ValidationError,
)
from ..models.domain import (
    Bet,
    BetStatus,
    Outcome,
    PortfolioSnapshot,
    money_floor,
    to_money,
    utcnow,
)
from ..strategies.kelly import KellyResult, expected_value, fractional_kelly
from ..strategies.signals import TradingSignal

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class PortfolioManager:
    """Exclusive owner of bankroll and open exposure."""

    def __init__(self, config: TradingConfig):
        self._config = config
        self._lock = threading.RLock()

        self._bankroll: Decimal = to_money(config.initial_bankroll)
        self._initial: Decimal = self._bankroll
        self._peak: Decimal = self._bankroll
        self._open: Dict[str, Bet] = {}
        self._open_keys: Dict[Tuple[str, str], str] = {}
        self._settled: List[Bet] = []
        self._realised = ZERO
        self._staked_settled = ZERO
        self._won = 0

        self._snapshot = self._build_snapshot()

    # ------------------------------------------------------------------
    # Reads (lock-free)
    # ------------------------------------------------------------------

    @property
    def config(self) -> TradingConfig:
        return self._config

    def snapshot(self) -> PortfolioSnapshot:
        """Last published state; may trail an in-flight write."""
        return self._snapshot

    def settled_bets(self) -> List[Bet]:
        with self._lock:
            return list(self._settled)

    def get(self, bet_id: str) -> Bet:
        with self._lock:
            bet = self._open.get(bet_id)
            if bet is not None:
                return bet
            for settled in self._settled:
                if settled.id == bet_id:
                    return settled
        raise BetNotFound(f"Unknown bet {bet_id}")

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def size(
        self,
        probability: float,
        odds: float,
        bankroll: Decimal,
        exposure: Decimal
    ) -> Tuple[Decimal, KellyResult]:
        """
        Kelly stake capped by per-bet and portfolio exposure limits.

        Does not check duplicates or availability; see ``place``.
        """
        kelly = fractional_kelly(probability, odds, self._config.kelly_scale)
        pct = Decimal(str(self._config.max_exposure_percentage))

        applied = Decimal(str(round(kelly.fraction, 12)))
        per_bet_cap = pct * bankroll
        portfolio_cap = per_bet_cap - exposure
        stake = min(applied * bankroll, per_bet_cap, portfolio_cap)
        return money_floor(max(stake, ZERO)), kelly

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def place(self, signal: TradingSignal, placed_at: Optional[datetime] = None) -> Bet:
        """
        Convert a signal into a pending bet.

        Raises:
            ValidationError: Probability or odds out of range
            BetRejected: One of its subclasses, state unchanged
        """
        prob, odds = signal.probability, signal.odds
        if math.isnan(prob) or not 0.0 <= prob <= 1.0:
            raise ValidationError(f"Probability must be in [0, 1], got {prob}")
        if math.isnan(odds) or not odds > 1.0:
            raise ValidationError(f"Odds must be > 1.0, got {odds}")

        key = (signal.match_id, signal.strategy)
        with self._lock:
            if key in self._open_keys:
                raise DuplicateOpenBet(
                    f"Open bet {self._open_keys[key]} already exists for "
                    f"{signal.match_id}/{signal.strategy}",
                    match_id=signal.match_id, strategy=signal.strategy,
                )

            exposure = self._exposure()
            available = self._bankroll - exposure
            stake, kelly = self.size(prob, odds, self._bankroll, exposure)

            if kelly.fraction <= 0:
                raise StakeTooSmall(
                    f"No Kelly edge for {signal.match_id} "
                    f"(p={prob:.3f}, odds={odds:.2f})",
                    match_id=signal.match_id, strategy=signal.strategy,
                )
            if available <= 0:
                raise InsufficientBankroll(
                    f"Available bankroll {available} cannot cover a stake",
                    match_id=signal.match_id, strategy=signal.strategy,
                )
            pct = Decimal(str(self._config.max_exposure_percentage))
            if pct * self._bankroll - exposure <= 0:
                raise ExposureLimitReached(
                    f"Open exposure {exposure} at cap "
                    f"{to_money(pct * self._bankroll)}",
                    match_id=signal.match_id, strategy=signal.strategy,
                )
            if stake <= 0:
                raise StakeTooSmall(
                    f"Stake for {signal.match_id} rounds to zero",
                    match_id=signal.match_id, strategy=signal.strategy,
                )
            if stake > available:
                raise InsufficientBankroll(
                    f"Stake {stake} exceeds available bankroll {available}",
                    match_id=signal.match_id, strategy=signal.strategy,
                )

            bet = Bet(
                match_id=signal.match_id,
                outcome=signal.outcome,
                stake=stake,
                odds=odds,
                expected_value=expected_value(prob, odds),
                kelly_fraction=kelly.fraction,
                raw_kelly_fraction=kelly.raw_kelly,
                confidence=signal.confidence,
                edge=signal.edge,
                strategy=signal.strategy,
                placed_at=placed_at or utcnow(),
                model_name=signal.model_name,
                model_version=signal.model_version,
            )
            self._open[bet.id] = bet
            self._open_keys[key] = bet.id
            self._publish()

        logger.info(
            f"Placed bet {bet.id}: {bet.match_id} {bet.outcome.value} "
            f"stake={bet.stake} @ {bet.odds:.2f} (f={kelly.fraction:.4f})"
        )
        return bet

    def settle(
        self,
        bet_id: str,
        status: BetStatus,
        settled_at: Optional[datetime] = None
    ) -> Bet:
        """
        Settle a pending bet as won, lost or void.

        Raises:
            BetNotFound: Unknown bet id
            InvalidBetTransition: Bet already settled, or status is pending
        """
        if not status.is_terminal:
            raise InvalidBetTransition(f"Cannot settle bet {bet_id} to {status.value}")

        with self._lock:
            bet = self._open.get(bet_id)
            if bet is None:
                if any(b.id == bet_id for b in self._settled):
                    raise InvalidBetTransition(f"Bet {bet_id} is already settled")
                raise BetNotFound(f"Unknown bet {bet_id}")

            if status is BetStatus.WON:
                payout = bet.potential_payout
            elif status is BetStatus.LOST:
                payout = ZERO
            else:
                payout = bet.stake
            profit = payout - bet.stake

            settled = replace(
                bet,
                status=status,
                settled_at=settled_at or utcnow(),
                payout=payout,
                profit_loss=profit,
            )

            self._bankroll += profit
            self._peak = max(self._peak, self._bankroll)
            del self._open[bet_id]
            self._open_keys.pop((bet.match_id, bet.strategy), None)
            self._settled.append(settled)
            if status is not BetStatus.VOID:
                self._realised += profit
                self._staked_settled += bet.stake
                if status is BetStatus.WON:
                    self._won += 1
            self._publish()

        logger.info(
            f"Settled bet {bet_id} {status.value}: payout={payout} "
            f"pnl={profit} bankroll={self._snapshot.bankroll}"
        )
        return settled

    def settle_match(
        self,
        match_id: str,
        outcome: Optional[Outcome],
        settled_at: Optional[datetime] = None
    ) -> List[Bet]:
        """Settle every open bet on ``match_id``; ``outcome=None`` voids them."""
        with self._lock:
            bet_ids = [b.id for b in self._open.values() if b.match_id == match_id]
            results = []
            for bet_id in bet_ids:
                bet = self._open[bet_id]
                if outcome is None:
                    status = BetStatus.VOID
                elif bet.outcome is outcome:
                    status = BetStatus.WON
                else:
                    status = BetStatus.LOST
                results.append(self.settle(bet_id, status, settled_at))
        return results

    # ------------------------------------------------------------------
    # Internals (callers hold the lock)
    # ------------------------------------------------------------------

    def _exposure(self) -> Decimal:
        return sum((b.stake for b in self._open.values()), ZERO)

    def _build_snapshot(self) -> PortfolioSnapshot:
        return PortfolioSnapshot(
            bankroll=self._bankroll,
            initial_bankroll=self._initial,
            open_bets=tuple(self._open.values()),
            open_exposure=self._exposure(),
            realised_pnl=self._realised,
            total_staked=self._staked_settled,
            settled_count=len(self._settled),
            won_count=self._won,
            peak_bankroll=self._peak,
        )

    def _publish(self) -> None:
        self._snapshot = self._build_snapshot()
