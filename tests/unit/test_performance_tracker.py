"""
Unit tests for the performance tracker and its scheduler.
"""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
import asyncio

import pytest

from quantedge.core.config import PerformanceConfig
from quantedge.core.errors import ConfigurationError
from quantedge.models.domain import Bet, BetStatus, Outcome
from quantedge.monitoring.performance import PerformanceTracker, match_brier
from quantedge.monitoring.scheduler import PerformanceScheduler


@pytest.fixture
def tracker(t0):
    return PerformanceTracker(PerformanceConfig(), Decimal("10000.00"), origin=t0)


def settled_bet(t0, profit: str, stake: str = "500.00", hours: int = 1) -> Bet:
    bet = Bet(
        match_id="m1", outcome=Outcome.HOME, stake=Decimal(stake), odds=2.0,
        expected_value=0.1, kelly_fraction=0.05, raw_kelly_fraction=0.1,
        confidence=0.8, edge=0.05, strategy="value",
        model_name="ensemble", model_version="v1.0",
    )
    profit = Decimal(profit)
    return replace(
        bet,
        status=BetStatus.WON if profit > 0 else BetStatus.LOST,
        settled_at=t0 + timedelta(hours=hours),
        payout=bet.stake + profit,
        profit_loss=profit,
    )


class TestMatchBrier:

    def test_one_vs_rest_mean(self, make_prediction):
        dist = make_prediction().distribution
        assert match_brier(dist, Outcome.HOME) == pytest.approx((0.45 ** 2 + 0.25 ** 2 + 0.2 ** 2) / 3)


class TestPerformanceTracker:
    """Tests for windowed snapshots."""

    def test_rejects_non_positive_window(self, t0):
        with pytest.raises(ConfigurationError):
            PerformanceTracker(PerformanceConfig(window=timedelta(0)), Decimal("1"), origin=t0)

    def test_open_window_not_summarised(self, tracker, make_prediction, t0):
        tracker.record_prediction(make_prediction(), Outcome.HOME, scored_at=t0 + timedelta(hours=1))
        assert tracker.recompute(t0 + timedelta(hours=2)) == []

    def test_closed_window_snapshot(self, tracker, make_prediction, t0):
        tracker.record_prediction(make_prediction(), Outcome.HOME, scored_at=t0 + timedelta(hours=1))
        tracker.record_prediction(
            make_prediction(match_id="m2"), Outcome.AWAY, scored_at=t0 + timedelta(hours=2)
        )
        tracker.record_bet(settled_bet(t0, "500.00"))

        snaps = tracker.recompute(t0 + timedelta(days=1, minutes=1))

        assert len(snaps) == 1
        snap = snaps[0]
        assert (snap.model_name, snap.model_version) == ("ensemble", "v1.0")
        assert snap.window_start == t0
        assert snap.window_end == t0 + timedelta(days=1)
        assert snap.total_predictions == 2
        assert snap.correct_predictions == 1
        assert snap.accuracy == 0.5
        assert snap.roi == pytest.approx(1.0)
        assert snap.max_drawdown == 0.0
        assert 0 < snap.brier_score < 1
        assert snap.log_loss > 0

    def test_snapshot_never_recomputed(self, tracker, make_prediction, t0):
        tracker.record_prediction(make_prediction(), Outcome.HOME, scored_at=t0 + timedelta(hours=1))
        later = t0 + timedelta(days=1, hours=1)

        first = tracker.recompute(later)
        assert tracker.recompute(later) == []
        assert tracker.snapshots() == first

    def test_late_record_counts_only_for_trailing_brier(self, tracker, make_prediction, t0):
        tracker.record_prediction(make_prediction(), Outcome.HOME, scored_at=t0 + timedelta(hours=1))
        tracker.recompute(t0 + timedelta(days=1, hours=1))

        tracker.record_prediction(
            make_prediction(match_id="late"), Outcome.AWAY, scored_at=t0 + timedelta(hours=3)
        )

        assert tracker.recompute(t0 + timedelta(days=3)) == []
        assert tracker.snapshots()[0].total_predictions == 1
        assert tracker.trailing_brier("ensemble", "v1.0") == pytest.approx(
            (match_brier(make_prediction().distribution, Outcome.HOME)
             + match_brier(make_prediction().distribution, Outcome.AWAY)) / 2
        )

    def test_one_snapshot_per_window(self, tracker, make_prediction, t0):
        for day in range(3):
            tracker.record_prediction(
                make_prediction(match_id=f"m{day}"), Outcome.HOME,
                scored_at=t0 + timedelta(days=day, hours=1),
            )
        snaps = tracker.recompute(t0 + timedelta(days=3))

        assert [s.window_start for s in snaps] == [t0 + timedelta(days=d) for d in range(3)]
        assert len({s.key for s in tracker.snapshots()}) == 3

    def test_separate_series_per_model(self, tracker, make_prediction, t0):
        scored = t0 + timedelta(hours=1)
        tracker.record_outcome(
            [make_prediction(), make_prediction(model_name="poisson")], Outcome.HOME, scored
        )
        tracker.recompute(t0 + timedelta(days=1))

        assert {s.model_name for s in tracker.snapshots()} == {"ensemble", "poisson"}
        assert len(tracker.snapshots("poisson")) == 1
        assert set(tracker.latest_snapshots()) == {("ensemble", "v1.0"), ("poisson", "v1.0")}

    def test_drawdown_from_bets(self, tracker, t0):
        tracker.record_bet(settled_bet(t0, "500.00", hours=1))
        tracker.record_bet(settled_bet(t0, "-1000.00", stake="1000.00", hours=2))
        snap = tracker.recompute(t0 + timedelta(days=1))[0]

        assert snap.total_predictions == 0
        assert snap.max_drawdown == pytest.approx(1000 / 10500)
        assert snap.roi == pytest.approx(-500 / 1500)

    def test_void_bets_ignored(self, tracker, t0):
        bet = replace(settled_bet(t0, "500.00"), status=BetStatus.VOID)
        tracker.record_bet(bet)
        assert tracker.recompute(t0 + timedelta(days=1)) == []

    def test_trailing_brier_window(self, t0, make_prediction):
        tracker = PerformanceTracker(
            PerformanceConfig(trailing_window=2), Decimal("10000"), origin=t0
        )
        tracker.record_prediction(make_prediction(), Outcome.AWAY, t0)
        tracker.record_prediction(make_prediction(), Outcome.HOME, t0)
        tracker.record_prediction(make_prediction(), Outcome.HOME, t0)

        expected = match_brier(make_prediction().distribution, Outcome.HOME)
        assert tracker.trailing_brier("ensemble", "v1.0") == pytest.approx(expected)
        assert tracker.trailing_brier("unknown", "v1.0") is None


class TestPerformanceScheduler:
    """Tests for the recomputation task."""

    def test_run_once_delivers_snapshots(self, tracker, make_prediction, t0):
        tracker.record_prediction(make_prediction(), Outcome.HOME, scored_at=t0 + timedelta(hours=1))
        delivered = []

        async def on_snapshots(snaps):
            delivered.extend(snaps)

        scheduler = PerformanceScheduler(
            tracker, PerformanceConfig(), on_snapshots=on_snapshots,
            clock=lambda: t0 + timedelta(days=1, hours=1),
        )
        snaps = asyncio.run(scheduler.run_once())

        assert len(snaps) == 1
        assert delivered == snaps
        assert scheduler.runs == 1

    def test_event_count_triggers_run(self, tracker, t0):
        config = PerformanceConfig(recompute_every_n_events=3, recompute_interval_seconds=60)
        scheduler = PerformanceScheduler(tracker, config, clock=lambda: t0)

        async def scenario():
            scheduler.start()
            assert scheduler.running
            for _ in range(3):
                scheduler.notify_event()
            for _ in range(100):
                if scheduler.runs:
                    break
                await asyncio.sleep(0.01)
            await scheduler.stop()

        asyncio.run(scenario())
        assert scheduler.runs >= 1
        assert not scheduler.running

    def test_interval_triggers_run(self, tracker, t0):
        config = PerformanceConfig(recompute_interval_seconds=0.01)
        scheduler = PerformanceScheduler(tracker, config, clock=lambda: t0)

        async def scenario():
            scheduler.start()
            await asyncio.sleep(0.1)
            await scheduler.stop()

        asyncio.run(scenario())
        assert scheduler.runs >= 1

    def test_stop_without_start(self, tracker):
        asyncio.run(PerformanceScheduler(tracker, PerformanceConfig()).stop())
