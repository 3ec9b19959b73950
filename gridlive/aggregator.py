"""
GridLive: Multi-Feed Aggregator
Runs the four feed clients concurrently and merges their outcomes into one
``GridState``.

Merge rules
-----------
  price          <- Pricing feed, most recent point
  emissions      <- Emissions feed, forecast intensity of the current period
  demand_gw      <- Demand feed, ND / 1000
  transfers_gw   <- Demand feed, sum of interconnector flows / 1000
  generation_gw  <- demand_gw - transfers_gw, only when both are known
  fuel_mix       <- Mix feed, per fuel as published (repeat codes summed)

A failed feed leaves exactly its own fields as ``None``; the other feeds are
merged as if the cycle had fully succeeded.  ``aggregate()`` never raises
for a feed failure; only task cancellation propagates.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx
from loguru import logger

from gridlive.config import Settings
from gridlive.demand import DemandClient
from gridlive.emissions import EmissionsClient
from gridlive.errors import FetchError
from gridlive.feed_client import FeedClient
from gridlive.mix import MixClient
from gridlive.models import (
    MW_PER_GW,
    DemandRecord,
    EmissionsRecord,
    FuelKind,
    FuelShare,
    GridState,
    MixRecord,
    PricingRecord,
)
from gridlive.pricing import PricingClient


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Source bundle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceClients:
    """The four feed clients a cycle fans out to."""

    mix:       FeedClient[MixRecord]
    emissions: FeedClient[EmissionsRecord]
    pricing:   FeedClient[PricingRecord]
    demand:    FeedClient[DemandRecord]

    def items(self) -> list[tuple[str, FeedClient]]:
        return [
            ("mix", self.mix),
            ("emissions", self.emissions),
            ("pricing", self.pricing),
            ("demand", self.demand),
        ]

    @classmethod
    def from_settings(cls, http: httpx.AsyncClient, settings: Settings) -> "SourceClients":
        return cls(
            mix=MixClient(http, settings.mix_timeout, settings.carbon_intensity_url),
            emissions=EmissionsClient(http, settings.emissions_timeout, settings.carbon_intensity_url),
            pricing=PricingClient(http, settings.pricing_timeout, settings.pricing_url),
            demand=DemandClient(http, settings.demand_timeout, settings.demand_url),
        )


@dataclass(frozen=True)
class CycleReport:
    """Per-feed outcome of one cycle: ``None`` for success, else the error class name."""

    captured_at: datetime
    failures:    dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not any(self.failures.values())


# ---------------------------------------------------------------------------
# Merge helpers  (pure)
# ---------------------------------------------------------------------------


def merge_fuel_mix(record: Optional[MixRecord]) -> tuple[FuelShare, ...]:
    if record is None:
        return ()
    shares: dict[FuelKind, float] = {}
    for item in record.generation:
        shares[item.fuel] = shares.get(item.fuel, 0.0) + item.generation_percent
    return tuple(FuelShare(fuel=f, share_percent=p) for f, p in shares.items())


def derive_power(record: Optional[DemandRecord]) -> tuple[Optional[float], Optional[float], Optional[float]]:
    """Return ``(demand_gw, transfers_gw, generation_gw)``; unknown inputs stay unknown."""
    if record is None:
        return None, None, None

    demand_gw = None
    if record.national_demand_mw is not None:
        demand_gw = record.national_demand_mw / MW_PER_GW

    transfers_gw = None
    net_mw = record.net_transfers_mw
    if net_mw is not None:
        transfers_gw = net_mw / MW_PER_GW

    generation_gw = None
    if demand_gw is not None and transfers_gw is not None:
        generation_gw = demand_gw - transfers_gw

    return demand_gw, transfers_gw, generation_gw


def build_state(
    captured_at: datetime,
    mix: Optional[MixRecord],
    emissions: Optional[EmissionsRecord],
    pricing: Optional[PricingRecord],
    demand: Optional[DemandRecord],
) -> GridState:
    demand_gw, transfers_gw, generation_gw = derive_power(demand)
    latest = pricing.latest if pricing is not None else None
    return GridState(
        captured_at=captured_at,
        price=latest.price if latest is not None else None,
        emissions=emissions.forecast_intensity if emissions is not None else None,
        demand_gw=demand_gw,
        generation_gw=generation_gw,
        transfers_gw=transfers_gw,
        fuel_mix=merge_fuel_mix(mix),
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


_EXPECTED = {
    "mix": MixRecord,
    "emissions": EmissionsRecord,
    "pricing": PricingRecord,
    "demand": DemandRecord,
}


class GridAggregator:
    """
    Orchestrates one refresh cycle.

    Parameters
    ----------
    sources:
        The four feed clients.
    clock:
        Source of ``captured_at`` when the caller does not supply one.
    """

    def __init__(self, sources: SourceClients, clock: Callable[[], datetime] = _utcnow) -> None:
        self._sources = sources
        self._clock = clock

    @property
    def sources(self) -> SourceClients:
        return self._sources

    async def _settle(self, key: str, client: FeedClient) -> Any:
        """Await one client; return its record or the exception it raised."""
        try:
            record = await client.fetch()
        except FetchError as exc:
            logger.warning("{} feed failed ({}): {}", key, type(exc).__name__, exc.message)
            return exc
        except Exception as exc:
            logger.exception("Unexpected error from {} feed", key)
            return exc

        if not isinstance(record, _EXPECTED[key]):
            logger.error("{} feed returned {} instead of {}", key, type(record).__name__, _EXPECTED[key].__name__)
            return TypeError(f"unexpected record type {type(record).__name__}")
        return record

    async def aggregate_with_report(
        self, captured_at: Optional[datetime] = None
    ) -> tuple[GridState, CycleReport]:
        captured_at = captured_at or self._clock()
        items = self._sources.items()

        # all feeds settle before anything is derived
        outcomes = await asyncio.gather(*(self._settle(key, client) for key, client in items))

        records: dict[str, Any] = {}
        failures: dict[str, Optional[str]] = {}
        for (key, _), outcome in zip(items, outcomes):
            if isinstance(outcome, BaseException):
                records[key] = None
                failures[key] = type(outcome).__name__
            else:
                records[key] = outcome
                failures[key] = None

        state = build_state(
            captured_at,
            mix=records["mix"],
            emissions=records["emissions"],
            pricing=records["pricing"],
            demand=records["demand"],
        )
        report = CycleReport(captured_at=captured_at, failures=failures)

        failed = [k for k, v in failures.items() if v]
        if failed:
            logger.info(
                "Cycle {} merged with {}/{} feeds; unknown: {}",
                captured_at.isoformat(), len(items) - len(failed), len(items), ", ".join(failed),
            )
        else:
            logger.info("Cycle {} merged with all {} feeds.", captured_at.isoformat(), len(items))
        return state, report

    async def aggregate(self, captured_at: Optional[datetime] = None) -> GridState:
        state, _ = await self.aggregate_with_report(captured_at)
        return state
