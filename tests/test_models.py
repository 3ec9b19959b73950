"""Tests for the data model and its derived views."""

import dataclasses
from datetime import datetime, timezone

import pytest

from gridlive.models import (
    DemandRecord,
    FuelCategory,
    FuelKind,
    FuelShare,
    GridState,
    category_of,
    category_totals,
    fuel_generation_gw,
)

CAPTURED = datetime(2024, 5, 1, 14, 7, 31, tzinfo=timezone.utc)


def _mix(*pairs):
    return tuple(FuelShare(FuelKind(f), float(p)) for f, p in pairs)


class TestFuelKind:
    """Mapping of upstream fuel codes."""

    @pytest.mark.parametrize("code, expected", [
        ("wind", FuelKind.WIND),
        (" Gas ", FuelKind.GAS),
        ("IMPORTS", FuelKind.IMPORTS),
        ("ccgt", FuelKind.OTHER),
        ("pumped storage", FuelKind.OTHER),
        (None, FuelKind.OTHER),
    ])
    def test_from_code(self, code, expected):
        assert FuelKind.from_code(code) is expected

    def test_category_membership(self):
        assert {f for f in FuelKind if category_of(f) is FuelCategory.RENEWABLES} == {
            FuelKind.WIND, FuelKind.SOLAR, FuelKind.HYDRO,
        }
        assert {f for f in FuelKind if category_of(f) is FuelCategory.FOSSIL} == {
            FuelKind.COAL, FuelKind.GAS, FuelKind.OIL,
        }
        assert category_of(FuelKind.NUCLEAR) is FuelCategory.OTHER
        assert category_of(FuelKind.IMPORTS) is FuelCategory.OTHER


class TestCategoryTotals:
    """Category aggregates are a projection of the fuel mix."""

    def test_reference_mix(self):
        mix = _mix(("wind", 20), ("gas", 30), ("nuclear", 15), ("coal", 5),
                   ("solar", 10), ("hydro", 5), ("biomass", 5), ("other", 10))
        totals = category_totals(mix)
        assert totals[FuelCategory.RENEWABLES] == pytest.approx(35)
        assert totals[FuelCategory.FOSSIL] == pytest.approx(35)
        assert totals[FuelCategory.OTHER] == pytest.approx(30)

    @pytest.mark.parametrize("mix", [
        (),
        (("wind", 100.0),),
        (("gas", 41.3), ("imports", 7.7), ("oil", 0.0), ("solar", 12.25)),
        (("coal", 1.1), ("coal", 2.2), ("biomass", 6.6), ("hydro", 1.9), ("nuclear", 14.0)),
    ])
    def test_categories_sum_to_total_share(self, mix):
        shares = _mix(*mix)
        totals = category_totals(shares)
        assert sum(totals.values()) == pytest.approx(sum(s.share_percent for s in shares))

    def test_every_category_present_for_empty_mix(self):
        assert category_totals(()) == {c: 0.0 for c in FuelCategory}


class TestDemandRecord:
    def test_net_transfers_sums_signed_flows(self):
        record = DemandRecord(32000.0, {"IFA_FLOW": 1000.0, "MOYLE_FLOW": -250.0})
        assert record.net_transfers_mw == pytest.approx(750.0)

    def test_unknown_flow_makes_transfers_unknown(self):
        record = DemandRecord(32000.0, {"IFA_FLOW": 1000.0, "NSL_FLOW": None})
        assert record.net_transfers_mw is None

    def test_zero_flows_are_real_zero(self):
        record = DemandRecord(32000.0, {"IFA_FLOW": 0.0, "NSL_FLOW": 0.0})
        assert record.net_transfers_mw == 0.0


class TestGridState:
    def test_frozen(self):
        state = GridState(captured_at=CAPTURED)
        with pytest.raises(dataclasses.FrozenInstanceError):
            state.price = 10.0

    def test_formatted_values(self):
        state = GridState(
            captured_at=CAPTURED, price=81.2, emissions=128.4,
            demand_gw=32.0, transfers_gw=1.5, generation_gw=30.5,
        )
        assert state.formatted() == {
            "time": "15:05",
            "price": "81.20",
            "emissions": "128",
            "demand": "32.00",
            "generation": "30.50",
            "transfers": "1.50",
        }

    def test_time_label_is_gb_local(self):
        # captured at 14:07:31 UTC; BST in May, GMT in January
        assert GridState(captured_at=CAPTURED).formatted()["time"] == "15:05"
        winter = datetime(2024, 1, 15, 14, 7, 31, tzinfo=timezone.utc)
        assert GridState(captured_at=winter).formatted()["time"] == "14:05"

    @pytest.mark.parametrize("cadence, expected", [(1, "15:07"), (15, "15:00"), (30, "15:00"), (120, "14:00")])
    def test_time_label_follows_cadence(self, cadence, expected):
        assert GridState(captured_at=CAPTURED).formatted(cadence)["time"] == expected

    def test_unknown_is_not_zero(self):
        state = GridState(captured_at=CAPTURED, transfers_gw=0.0)
        text = state.formatted()
        assert text["transfers"] == "0.00"
        assert text["demand"] == "N/A"
        assert text["generation"] == "N/A"
        assert text["price"] == "N/A"

    def test_same_readings_ignores_captured_at(self):
        mix = _mix(("wind", 50), ("gas", 50))
        a = GridState(captured_at=CAPTURED, price=1.0, fuel_mix=mix)
        b = GridState(captured_at=datetime(2024, 5, 1, 14, 10, tzinfo=timezone.utc), price=1.0, fuel_mix=mix)
        assert a != b
        assert a.same_readings(b)
        assert not a.same_readings(GridState(captured_at=CAPTURED, price=2.0, fuel_mix=mix))

    def test_to_dict(self):
        state = GridState(captured_at=CAPTURED, demand_gw=32.0, fuel_mix=_mix(("wind", 20)))
        out = state.to_dict()
        assert out["captured_at"] == CAPTURED.isoformat()
        assert out["demand_gw"] == 32.0
        assert out["price"] is None
        assert out["fuel_mix"] == [{"fuel": "wind", "share_percent": 20.0}]


class TestFuelGeneration:
    def test_scales_share_by_generation(self):
        state = GridState(captured_at=CAPTURED, generation_gw=30.0, fuel_mix=_mix(("wind", 20), ("gas", 50)))
        gw = fuel_generation_gw(state)
        assert gw[FuelKind.WIND] == pytest.approx(6.0)
        assert gw[FuelKind.GAS] == pytest.approx(15.0)

    def test_unknown_generation_stays_unknown(self):
        state = GridState(captured_at=CAPTURED, fuel_mix=_mix(("wind", 20)))
        assert fuel_generation_gw(state) == {FuelKind.WIND: None}
