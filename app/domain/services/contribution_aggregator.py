"""
CONTRIBUTION AGGREGATOR
Nets derived events per goal and converts them to goal currency

RULES:
✅ Net per (goal, asset currency) before converting
✅ One rate lookup per currency pair per aggregation
✅ Failed lookup => skip that delta (conservative undercount)
❌ Never fabricate a fallback rate
"""

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Tuple

from app.config import settings
from app.domain.errors import RateUnavailableError
from app.domain.models import ContributionSnapshot, DerivedEvent
from app.domain.services.derivation_engine import EPSILON

logger = logging.getLogger(__name__)


class RateLookup(Protocol):
    """Exchange rate collaborator - ASYNC"""

    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        """
        Rate converting one unit of `from_currency` into `to_currency`.
        Returns 1.0 for identical currencies; raises on failure.
        """
        ...


def same_currency(a: str, b: str) -> bool:
    return a.upper() == b.upper()


class CurrencyNormalizer:
    """
    Converts amounts between currencies, memoizing one rate per pair.

    A normalizer lives for a single aggregation call so every delta of that
    call is converted with the same rate.
    """

    def __init__(self, rate_lookup: RateLookup, timeout_seconds: Optional[float] = None):
        self._rate_lookup = rate_lookup
        self._timeout_seconds = timeout_seconds
        self._rates: Dict[str, float] = {}
        self._failed: Dict[str, RateUnavailableError] = {}

    @staticmethod
    def pair_key(from_currency: str, to_currency: str) -> str:
        return f"{from_currency.upper()}->{to_currency.upper()}"

    @property
    def rates_used(self) -> Dict[str, float]:
        return dict(self._rates)

    async def rate(self, from_currency: str, to_currency: str) -> float:
        """
        Rate for a pair, memoized.

        Raises:
            RateUnavailableError: lookup failed, timed out or returned a non-positive rate
        """
        if same_currency(from_currency, to_currency):
            return 1.0

        key = self.pair_key(from_currency, to_currency)
        cached = self._rates.get(key)
        if cached is not None:
            return cached
        if key in self._failed:
            raise self._failed[key]

        try:
            rate = await asyncio.wait_for(
                self._rate_lookup.fetch_rate(from_currency, to_currency),
                timeout=self._timeout_seconds,
            )
            if rate is None or rate <= 0:
                raise RateUnavailableError(from_currency, to_currency, f"invalid rate {rate!r}")
        except RateUnavailableError as exc:
            self._failed[key] = exc
            raise
        except asyncio.CancelledError:
            # Only an abandoned lookup is absorbed; cancelling the caller still propagates
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            self._failed[key] = RateUnavailableError(from_currency, to_currency, "lookup cancelled")
            raise self._failed[key]
        except asyncio.TimeoutError:
            self._failed[key] = RateUnavailableError(from_currency, to_currency, "lookup timed out")
            raise self._failed[key]
        except Exception as exc:
            self._failed[key] = RateUnavailableError(from_currency, to_currency, str(exc))
            raise self._failed[key] from exc

        self._rates[key] = float(rate)
        return self._rates[key]

    async def convert(self, amount: float, from_currency: str, to_currency: str) -> Optional[float]:
        """Fail-soft conversion: None when the rate is unavailable."""
        if amount <= 0:
            return 0.0
        try:
            return amount * await self.rate(from_currency, to_currency)
        except RateUnavailableError as exc:
            logger.warning("Conversion failed: %s", exc)
            return None


class ContributionAggregator:
    """
    Turns derived events into goal-currency totals and completion snapshots.
    """

    def __init__(
        self,
        rate_lookup: RateLookup,
        rate_timeout_seconds: Optional[float] = settings.RATE_LOOKUP_TIMEOUT_SECONDS,
        epsilon: float = EPSILON,
    ):
        self.rate_lookup = rate_lookup
        self.rate_timeout_seconds = rate_timeout_seconds
        self.epsilon = epsilon

    def new_normalizer(self) -> CurrencyNormalizer:
        return CurrencyNormalizer(self.rate_lookup, self.rate_timeout_seconds)

    async def totals_by_goal(self, events: List[DerivedEvent]) -> Dict[str, float]:
        """
        Total funded amount per goal, in the goal's own currency.

        Args:
            events: Derived events of one execution record

        Returns:
            goal_id -> total (goals whose every delta failed to convert map to 0)
        """
        if not events:
            return {}

        net: Dict[str, Dict[str, float]] = {}
        asset_currency_label: Dict[str, str] = {}
        goal_currency: Dict[str, str] = {}
        for event in events:
            currency_key = event.asset_currency.upper()
            by_currency = net.setdefault(event.goal_id, {})
            by_currency[currency_key] = by_currency.get(currency_key, 0.0) + event.asset_delta
            asset_currency_label.setdefault(currency_key, event.asset_currency)
            goal_currency[event.goal_id] = event.goal_currency

        normalizer = self.new_normalizer()
        totals: Dict[str, float] = {}

        for goal_id in sorted(net):
            target_currency = goal_currency[goal_id]
            total = 0.0
            for currency_key in sorted(net[goal_id]):
                delta = net[goal_id][currency_key]
                if abs(delta) <= self.epsilon:
                    continue
                source_currency = asset_currency_label[currency_key]
                try:
                    rate = await normalizer.rate(source_currency, target_currency)
                except RateUnavailableError as exc:
                    logger.warning(
                        "Skipping %.8f %s for goal %s: %s",
                        delta, source_currency, goal_id, exc,
                    )
                    continue
                total += delta * rate
            totals[goal_id] = total

        return totals

    async def build_contribution_snapshots(
        self, events: List[DerivedEvent]
    ) -> Tuple[Dict[str, float], List[ContributionSnapshot]]:
        """
        Freeze each derived event with the rate used to convert it.

        Returns:
            (rates used per "FROM->TO" pair, snapshots sorted by timestamp)
        """
        normalizer = self.new_normalizer()
        snapshots: List[ContributionSnapshot] = []

        for event in events:
            if abs(event.asset_delta) <= self.epsilon:
                continue
            try:
                rate = await normalizer.rate(event.asset_currency, event.goal_currency)
            except RateUnavailableError as exc:
                logger.warning("Skipping contribution event during completion snapshot: %s", exc)
                continue

            snapshots.append(
                ContributionSnapshot(
                    timestamp=event.timestamp,
                    source=event.source,
                    asset_id=event.asset_id,
                    asset_currency=event.asset_currency,
                    goal_id=event.goal_id,
                    goal_currency=event.goal_currency,
                    asset_amount=event.asset_delta,
                    amount_in_goal_currency=event.asset_delta * rate,
                    exchange_rate_used=rate,
                )
            )

        snapshots.sort(key=lambda s: s.timestamp)
        return normalizer.rates_used, snapshots
