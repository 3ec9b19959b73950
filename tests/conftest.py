"""Shared fixtures: canned upstream payloads and in-memory feed clients."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx
import pytest

from gridlive.aggregator import SourceClients
from gridlive.models import (
    DemandRecord,
    EmissionsRecord,
    FuelGeneration,
    FuelKind,
    MixRecord,
    PricePoint,
    PricingRecord,
)

NOW = datetime(2024, 5, 1, 12, 10, tzinfo=timezone.utc)

# Scenario mix: Renewables 35, Fossil 35, Other 30
SCENARIO_MIX = [
    ("wind", 20), ("gas", 30), ("nuclear", 15), ("coal", 5),
    ("solar", 10), ("hydro", 5), ("biomass", 5), ("other", 10),
]

# Seven required flows summing to +1500 MW
SCENARIO_FLOWS = {
    "BRITNED_FLOW": 500,
    "IFA_FLOW": 1000,
    "NEMO_FLOW": 0,
    "ELECLINK_FLOW": 800,
    "MOYLE_FLOW": -300,
    "NSL_FLOW": 0,
    "VIKING_FLOW": -500,
}


# ---------------------------------------------------------------------------
# Upstream payloads
# ---------------------------------------------------------------------------


def mix_body(mix=SCENARIO_MIX) -> dict:
    return {
        "data": {
            "from": "2024-05-01T12:00Z",
            "to": "2024-05-01T12:30Z",
            "generationmix": [{"fuel": f, "perc": p} for f, p in mix],
        }
    }


def emissions_body() -> dict:
    return {
        "data": [
            {"from": "2024-05-01T11:30Z", "to": "2024-05-01T12:00Z",
             "intensity": {"forecast": 140, "actual": 137, "index": "moderate"}},
            {"from": "2024-05-01T12:00Z", "to": "2024-05-01T12:30Z",
             "intensity": {"forecast": 128, "actual": None, "index": "moderate"}},
            {"from": "2024-05-01T12:30Z", "to": "2024-05-01T13:00Z",
             "intensity": {"forecast": 119, "actual": None, "index": "low"}},
        ]
    }


def pricing_body() -> dict:
    # oldest-first on purpose; the client re-sorts
    return {
        "data": [
            {"startTime": "2024-05-01T11:00:00Z", "settlementPeriod": 25,
             "dataProvider": "APXMIDP", "price": 70.10, "volume": 800.0},
            {"startTime": "2024-05-01T11:30:00Z", "settlementPeriod": 26,
             "dataProvider": "APXMIDP", "price": 72.45, "volume": 812.5},
            {"startTime": "2024-05-01T12:00:00Z", "settlementPeriod": 27,
             "dataProvider": "APXMIDP", "price": 81.20, "volume": 790.0},
        ]
    }


def demand_csv(nd="32000", flows=None, extra_columns=None) -> str:
    flows = dict(SCENARIO_FLOWS if flows is None else flows)
    if extra_columns:
        flows.update(extra_columns)
    header = ["SETTLEMENT_DATE", "SETTLEMENT_PERIOD", "ND", "TSD"] + list(flows)
    first = ["2024-05-01", "25", nd, "33500"] + [str(v) for v in flows.values()]
    second = ["2024-05-01", "24", "31000", "32500"] + ["999"] * len(flows)
    return "\n".join(",".join(row) for row in (header, first, second)) + "\n"


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def run_with_http(handler: Callable[[httpx.Request], Any], use: Callable) -> Any:
    """Build an AsyncClient over ``handler`` and run ``await use(http)``."""

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            return await use(http)

    return asyncio.run(go())


def json_handler(body: Any, status: int = 200, seen: Optional[list] = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=body)

    return handler


# ---------------------------------------------------------------------------
# In-memory feed clients
# ---------------------------------------------------------------------------


class FakeFeed:
    """Duck-typed feed client returning a canned record / payload or raising."""

    def __init__(self, name: str, record: Any = None, payload: Any = None,
                 error: Optional[BaseException] = None, delay: float = 0.0) -> None:
        self.name = name
        self.record = record
        self.payload = payload
        self.error = error
        self.delay = delay
        self.calls = 0

    async def _maybe_fail(self) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def fetch(self):
        await self._maybe_fail()
        return self.record

    async def fetch_payload(self):
        await self._maybe_fail()
        return self.payload

    async def fetch_current_intensity(self):
        await self._maybe_fail()
        return self.payload


def scenario_records() -> dict:
    return {
        "mix": MixRecord(
            generation=tuple(
                FuelGeneration(FuelKind.from_code(f), float(p)) for f, p in SCENARIO_MIX
            )
        ),
        "emissions": EmissionsRecord(
            forecast_intensity=128.0,
            valid_from=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            valid_to=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        ),
        "pricing": PricingRecord(
            points=(
                PricePoint(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc), 81.20),
                PricePoint(datetime(2024, 5, 1, 11, 30, tzinfo=timezone.utc), 72.45),
            )
        ),
        "demand": DemandRecord(
            national_demand_mw=32000.0,
            interconnector_flows_mw={k: float(v) for k, v in SCENARIO_FLOWS.items()},
        ),
    }


def fake_sources(**errors: BaseException) -> SourceClients:
    records = scenario_records()
    return SourceClients(**{
        key: FakeFeed(key, record=records[key], error=errors.get(key))
        for key in ("mix", "emissions", "pricing", "demand")
    })


@pytest.fixture
def records() -> dict:
    return scenario_records()
