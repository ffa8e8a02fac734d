"""
Unit Tests for ContributionAggregator and CurrencyNormalizer
"""

import asyncio
import pytest
from datetime import datetime, timedelta

from app.domain.errors import RateUnavailableError
from app.domain.models import ContributionSource, DerivedEvent
from app.domain.services.contribution_aggregator import ContributionAggregator, CurrencyNormalizer

T0 = datetime(2026, 3, 2, 10, 0, 0)


class MockRateLookup:
    """Rate table with call counting"""

    def __init__(self, rates=None, fail=(), delay: float = 0.0):
        self.rates = rates or {}
        self.fail = set(fail)
        self.delay = delay
        self.calls = []

    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        self.calls.append((from_currency, to_currency))
        if self.delay:
            await asyncio.sleep(self.delay)
        if (from_currency, to_currency) in self.fail:
            raise RuntimeError("rate service down")
        return self.rates[(from_currency, to_currency)]


def event(goal_id, asset_currency, goal_currency, delta, minutes=0, asset_id="asset-1"):
    return DerivedEvent(
        timestamp=T0 + timedelta(minutes=minutes),
        source=ContributionSource.DEPOSIT,
        asset_id=asset_id,
        asset_currency=asset_currency,
        goal_id=goal_id,
        goal_currency=goal_currency,
        asset_delta=delta,
    )


class TestTotalsByGoal:

    @pytest.mark.asyncio
    async def test_empty_events_give_empty_totals(self):
        aggregator = ContributionAggregator(MockRateLookup())
        assert await aggregator.totals_by_goal([]) == {}

    @pytest.mark.asyncio
    async def test_failed_rate_skips_only_foreign_deltas(self):
        lookup = MockRateLookup(fail={("EUR", "USD")})
        aggregator = ContributionAggregator(lookup)

        totals = await aggregator.totals_by_goal([
            event("trip", "USD", "USD", 120.0, asset_id="usd-bank"),
            event("trip", "EUR", "USD", 80.0, minutes=5, asset_id="eur-bank"),
        ])

        assert totals == {"trip": pytest.approx(120.0)}

    @pytest.mark.asyncio
    async def test_goal_with_only_failed_deltas_maps_to_zero(self):
        aggregator = ContributionAggregator(MockRateLookup(fail={("EUR", "USD")}))

        totals = await aggregator.totals_by_goal([event("trip", "EUR", "USD", 80.0)])

        assert totals == {"trip": 0.0}

    @pytest.mark.asyncio
    async def test_nets_per_currency_before_converting(self):
        lookup = MockRateLookup(rates={("BTC", "USD"): 50000.0})
        aggregator = ContributionAggregator(lookup)

        totals = await aggregator.totals_by_goal([
            event("house", "BTC", "USD", 0.02),
            event("house", "btc", "USD", -0.01, minutes=1),
            event("house", "BTC", "USD", 0.005, minutes=2),
        ])

        assert totals["house"] == pytest.approx(750.0)
        assert lookup.calls == [("BTC", "USD")]

    @pytest.mark.asyncio
    async def test_one_lookup_per_pair_across_goals(self):
        lookup = MockRateLookup(rates={("BTC", "USD"): 40000.0})
        aggregator = ContributionAggregator(lookup)

        totals = await aggregator.totals_by_goal([
            event("house", "BTC", "USD", 0.01),
            event("car", "BTC", "USD", 0.02),
        ])

        assert totals == {"house": pytest.approx(400.0), "car": pytest.approx(800.0)}
        assert len(lookup.calls) == 1

    @pytest.mark.asyncio
    async def test_same_currency_never_hits_lookup(self):
        lookup = MockRateLookup()
        aggregator = ContributionAggregator(lookup)

        totals = await aggregator.totals_by_goal([event("house", "BTC", "BTC", 0.5)])

        assert totals == {"house": pytest.approx(0.5)}
        assert lookup.calls == []


class TestContributionSnapshots:

    @pytest.mark.asyncio
    async def test_snapshots_record_rate_used(self):
        lookup = MockRateLookup(rates={("BTC", "USD"): 50000.0})
        aggregator = ContributionAggregator(lookup)

        rates, snapshots = await aggregator.build_contribution_snapshots([
            event("house", "BTC", "USD", 0.01, minutes=10),
            event("house", "USD", "USD", 25.0, minutes=1, asset_id="usd-bank"),
        ])

        assert rates == {"BTC->USD": 50000.0}
        assert [s.asset_id for s in snapshots] == ["usd-bank", "asset-1"]
        assert snapshots[0].exchange_rate_used == 1.0
        assert snapshots[1].amount_in_goal_currency == pytest.approx(500.0)

    @pytest.mark.asyncio
    async def test_failed_conversions_are_left_out(self):
        aggregator = ContributionAggregator(MockRateLookup(fail={("EUR", "USD")}))

        rates, snapshots = await aggregator.build_contribution_snapshots([
            event("trip", "EUR", "USD", 80.0),
            event("trip", "USD", "USD", 20.0, asset_id="usd-bank"),
        ])

        assert rates == {}
        assert len(snapshots) == 1
        assert snapshots[0].asset_currency == "USD"


class TestCurrencyNormalizer:

    @pytest.mark.asyncio
    async def test_failure_is_memoized(self):
        lookup = MockRateLookup(fail={("EUR", "USD")})
        normalizer = CurrencyNormalizer(lookup)

        with pytest.raises(RateUnavailableError):
            await normalizer.rate("EUR", "USD")
        with pytest.raises(RateUnavailableError):
            await normalizer.rate("EUR", "USD")

        assert len(lookup.calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_rate_unavailable(self):
        lookup = MockRateLookup(rates={("EUR", "USD"): 1.1}, delay=0.5)
        normalizer = CurrencyNormalizer(lookup, timeout_seconds=0.01)

        with pytest.raises(RateUnavailableError):
            await normalizer.rate("EUR", "USD")

    @pytest.mark.asyncio
    async def test_non_positive_rate_is_rejected(self):
        normalizer = CurrencyNormalizer(MockRateLookup(rates={("EUR", "USD"): 0.0}))

        assert await normalizer.convert(10.0, "EUR", "USD") is None

    @pytest.mark.asyncio
    async def test_convert_non_positive_amount_is_zero(self):
        lookup = MockRateLookup()
        normalizer = CurrencyNormalizer(lookup)

        assert await normalizer.convert(0.0, "EUR", "USD") == 0.0
        assert await normalizer.convert(-5.0, "EUR", "USD") == 0.0
        assert lookup.calls == []


class AbandonedLookup(MockRateLookup):
    """Lookup whose request is cancelled underneath the caller"""

    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        self.calls.append((from_currency, to_currency))
        raise asyncio.CancelledError()


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancelled_lookup_becomes_rate_unavailable(self):
        lookup = AbandonedLookup()
        normalizer = CurrencyNormalizer(lookup)

        with pytest.raises(RateUnavailableError):
            await normalizer.rate("EUR", "USD")
        with pytest.raises(RateUnavailableError):
            await normalizer.rate("EUR", "USD")

        assert len(lookup.calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_lookup_is_skipped_in_totals(self):
        aggregator = ContributionAggregator(AbandonedLookup(), rate_timeout_seconds=1.0)

        totals = await aggregator.totals_by_goal([
            event("trip", "USD", "USD", 120.0, asset_id="usd-bank"),
            event("trip", "EUR", "USD", 80.0, minutes=5, asset_id="eur-bank"),
        ])

        assert totals == {"trip": pytest.approx(120.0)}

    @pytest.mark.asyncio
    async def test_cancelling_the_caller_propagates(self):
        lookup = MockRateLookup(rates={("EUR", "USD"): 1.1}, delay=10.0)
        aggregator = ContributionAggregator(lookup, rate_timeout_seconds=None)

        task = asyncio.create_task(
            aggregator.totals_by_goal([event("trip", "EUR", "USD", 80.0)])
        )
        await asyncio.sleep(0.01)
        assert lookup.calls == [("EUR", "USD")]

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_cancelling_the_caller_propagates_through_timeout(self):
        lookup = MockRateLookup(rates={("EUR", "USD"): 1.1}, delay=10.0)
        normalizer = CurrencyNormalizer(lookup, timeout_seconds=5.0)

        task = asyncio.create_task(normalizer.rate("EUR", "USD"))
        await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
