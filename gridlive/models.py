"""
GridLive: Data Model
Typed feed records and the aggregated ``GridState`` snapshot.

Unknown values
--------------
Every numeric field of ``GridState`` is ``Optional[float]``: ``None`` means
"no data this cycle".  Zero is a valid physical reading (no imports, no solar
at night) and is never used as a stand-in for missing data.

Fuel categories
---------------
  Renewables    : wind, solar, hydro
  Fossil Fuels  : coal, gas, oil
  Other Sources : everything else (nuclear, biomass, imports, other)

Category totals are a projection over ``GridState.fuel_mix`` and are
recomputed on every call; they are never stored on the snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Mapping, Optional, Sequence, Union
from zoneinfo import ZoneInfo

UNKNOWN_TEXT = "N/A"
MW_PER_GW = 1000.0

# display labels follow GB wall-clock time (GMT / BST)
DISPLAY_TIMEZONE = ZoneInfo("Europe/London")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class FuelKind(str, Enum):
    COAL = "coal"
    GAS = "gas"
    OIL = "oil"
    WIND = "wind"
    SOLAR = "solar"
    HYDRO = "hydro"
    BIOMASS = "biomass"
    NUCLEAR = "nuclear"
    IMPORTS = "imports"
    OTHER = "other"

    @classmethod
    def from_code(cls, code: object) -> "FuelKind":
        """Map an upstream fuel code onto the closed set; unknown -> OTHER."""
        try:
            return cls(str(code).strip().lower())
        except ValueError:
            return cls.OTHER


class FuelCategory(str, Enum):
    RENEWABLES = "Renewables"
    FOSSIL = "Fossil Fuels"
    OTHER = "Other Sources"


RENEWABLE_FUELS = frozenset({FuelKind.WIND, FuelKind.SOLAR, FuelKind.HYDRO})
FOSSIL_FUELS = frozenset({FuelKind.COAL, FuelKind.GAS, FuelKind.OIL})


def category_of(fuel: FuelKind) -> FuelCategory:
    if fuel in RENEWABLE_FUELS:
        return FuelCategory.RENEWABLES
    if fuel in FOSSIL_FUELS:
        return FuelCategory.FOSSIL
    return FuelCategory.OTHER


# ---------------------------------------------------------------------------
# Feed records  (one per upstream source)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FuelGeneration:
    fuel:               FuelKind
    generation_percent: float


@dataclass(frozen=True)
class MixRecord:
    generation: tuple[FuelGeneration, ...]
    valid_from: Optional[datetime] = None
    valid_to:   Optional[datetime] = None


@dataclass(frozen=True)
class EmissionsRecord:
    forecast_intensity: float              # gCO2/kWh
    valid_from:         datetime
    valid_to:           datetime
    actual_intensity:   Optional[float] = None
    index:              Optional[str] = None   # "very low" ... "very high"


@dataclass(frozen=True)
class PricePoint:
    start_time: datetime
    price:      float   # £/MWh


@dataclass(frozen=True)
class PricingRecord:
    points: tuple[PricePoint, ...]   # most-recent-first

    @property
    def latest(self) -> Optional[PricePoint]:
        return self.points[0] if self.points else None


@dataclass(frozen=True)
class DemandRecord:
    """
    First (canonical) row of the national demand CSV.

    ``interconnector_flows_mw`` follows the feed's sign convention:
    positive = import into GB, negative = export.  A blank cell is ``None``.
    """

    national_demand_mw:      Optional[float]
    interconnector_flows_mw: Mapping[str, Optional[float]]
    settlement_date:         Optional[str] = None
    settlement_period:       Optional[int] = None

    @property
    def net_transfers_mw(self) -> Optional[float]:
        """Sum of all flows, or ``None`` if any flow is unknown."""
        flows = list(self.interconnector_flows_mw.values())
        if not flows or any(f is None for f in flows):
            return None
        return float(sum(flows))


FeedRecord = Union[MixRecord, EmissionsRecord, PricingRecord, DemandRecord]


# ---------------------------------------------------------------------------
# Aggregated snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FuelShare:
    fuel:          FuelKind
    share_percent: float


@dataclass(frozen=True)
class GridState:
    """Immutable result of one refresh cycle."""

    captured_at:   datetime
    price:         Optional[float] = None   # £/MWh
    emissions:     Optional[float] = None   # gCO2/kWh (forecast)
    demand_gw:     Optional[float] = None
    generation_gw: Optional[float] = None
    transfers_gw:  Optional[float] = None
    fuel_mix:      tuple[FuelShare, ...] = field(default_factory=tuple)

    def same_readings(self, other: "GridState") -> bool:
        """True when every field except ``captured_at`` matches."""
        return (
            self.price == other.price
            and self.emissions == other.emissions
            and self.demand_gw == other.demand_gw
            and self.generation_gw == other.generation_gw
            and self.transfers_gw == other.transfers_gw
            and self.fuel_mix == other.fuel_mix
        )

    def formatted(self, cadence_minutes: int = 5) -> dict[str, str]:
        """
        Display strings as the dashboard shows them; Unknown -> "N/A".

        ``time`` is ``captured_at`` in GB local time, floored to the last
        multiple of ``cadence_minutes``.
        """
        local = self.captured_at.astimezone(DISPLAY_TIMEZONE)
        return {
            "time":       round_down_to_cadence(local, cadence_minutes).strftime("%H:%M"),
            "price":      _fmt(self.price, 2),
            "emissions":  _fmt(self.emissions, 0),
            "demand":     _fmt(self.demand_gw, 2),
            "generation": _fmt(self.generation_gw, 2),
            "transfers":  _fmt(self.transfers_gw, 2),
        }

    def to_dict(self) -> dict:
        return {
            "captured_at":   self.captured_at.isoformat(),
            "price":         self.price,
            "emissions":     self.emissions,
            "demand_gw":     self.demand_gw,
            "generation_gw": self.generation_gw,
            "transfers_gw":  self.transfers_gw,
            "fuel_mix": [
                {"fuel": s.fuel.value, "share_percent": s.share_percent}
                for s in self.fuel_mix
            ],
        }


def _fmt(value: Optional[float], decimals: int) -> str:
    if value is None:
        return UNKNOWN_TEXT
    return f"{value:.{decimals}f}"


def round_down_to_cadence(ts: datetime, minutes: int = 5) -> datetime:
    """Floor ``ts`` to the last wall-clock multiple of ``minutes`` since midnight."""
    midnight = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    step = timedelta(minutes=minutes)
    return midnight + ((ts - midnight) // step) * step


# ---------------------------------------------------------------------------
# Derived views  (pure, never stored)
# ---------------------------------------------------------------------------


def category_totals(fuel_mix: Sequence[FuelShare]) -> dict[FuelCategory, float]:
    """Sum ``share_percent`` per category; every category is always present."""
    totals = {category: 0.0 for category in FuelCategory}
    for share in fuel_mix:
        totals[category_of(share.fuel)] += share.share_percent
    return totals


def fuel_generation_gw(state: GridState) -> dict[FuelKind, Optional[float]]:
    """Per-fuel GW estimate from the share and total generation."""
    result: dict[FuelKind, Optional[float]] = {}
    for share in state.fuel_mix:
        if state.generation_gw is None:
            result[share.fuel] = None
        else:
            result[share.fuel] = share.share_percent / 100.0 * state.generation_gw
    return result
