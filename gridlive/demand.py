"""
GridLive: National Demand Client
National demand and interconnector flows from the NESO "demand data update"
CSV.

Feed:  GET https://data.nationalgrideso.com/.../demanddataupdate.csv
Body:  CSV with a header row; one row per settlement period, newest first.

Only the first data row is read; it is the canonical current state.

Columns used
------------
  ND               national demand (MW)
  *_FLOW           interconnector flow (MW), + import / - export

The seven flows in ``REQUIRED_FLOWS`` must be present in the header, or the
whole record is rejected as a shape failure.  Newer links listed in
``OPTIONAL_FLOWS`` are included when the feed publishes them.  A blank cell
is an unknown value, never zero.
"""

from __future__ import annotations

import io
import math
from typing import Any, Optional

import httpx
import pandas as pd
from loguru import logger

from gridlive.config import DEFAULT_DEMAND_TIMEOUT, DEMAND_URL
from gridlive.errors import ParseFailure, ShapeFailure
from gridlive.feed_client import FeedClient
from gridlive.models import DemandRecord

DEMAND_COLUMN = "ND"

REQUIRED_FLOWS = (
    "BRITNED_FLOW",
    "IFA_FLOW",
    "NEMO_FLOW",
    "ELECLINK_FLOW",
    "MOYLE_FLOW",
    "NSL_FLOW",
    "VIKING_FLOW",
)

OPTIONAL_FLOWS = (
    "IFA2_FLOW",
    "EAST_WEST_FLOW",
    "GREENLINK_FLOW",
)


class DemandClient(FeedClient[DemandRecord]):
    name = "demand"

    def __init__(
        self,
        http: httpx.AsyncClient,
        timeout: float = DEFAULT_DEMAND_TIMEOUT,
        url: str = DEMAND_URL,
    ) -> None:
        super().__init__(http, timeout)
        self._url = url

    async def fetch_payload(self) -> dict[str, str]:
        """First CSV row as ``{header: cell}``; blank cells are ``""``."""
        resp = await self._get(self._url)
        return self.first_row(resp.text)

    def first_row(self, text: str) -> dict[str, str]:
        try:
            df = pd.read_csv(io.StringIO(text), dtype=str, nrows=1, skipinitialspace=True)
        except pd.errors.EmptyDataError as exc:
            raise ShapeFailure(self.name, "CSV body is empty") from exc
        except pd.errors.ParserError as exc:
            raise ParseFailure(self.name, f"unparsable CSV: {exc}") from exc

        df.columns = [str(c).strip() for c in df.columns]
        missing = [c for c in (DEMAND_COLUMN, *REQUIRED_FLOWS) if c not in df.columns]
        if missing:
            raise ShapeFailure(self.name, f"CSV header missing columns: {', '.join(missing)}")
        if df.empty:
            raise ShapeFailure(self.name, "CSV has a header but no data rows")

        row = df.iloc[0]
        return {col: ("" if pd.isna(row[col]) else str(row[col]).strip()) for col in df.columns}

    def parse(self, payload: Any) -> DemandRecord:
        flows: dict[str, Optional[float]] = {}
        for col in REQUIRED_FLOWS:
            flows[col] = self._cell(payload, col)
        for col in OPTIONAL_FLOWS:
            if col in payload:
                flows[col] = self._cell(payload, col)

        unknown = [c for c, v in flows.items() if v is None]
        if unknown:
            logger.warning("Demand row has blank flows: {}", ", ".join(unknown))

        return DemandRecord(
            national_demand_mw=self._cell(payload, DEMAND_COLUMN),
            interconnector_flows_mw=flows,
            settlement_date=payload.get("SETTLEMENT_DATE") or None,
            settlement_period=self._period(payload),
        )

    def _period(self, row: dict) -> Optional[int]:
        if "SETTLEMENT_PERIOD" not in row:
            return None
        value = self._cell(row, "SETTLEMENT_PERIOD")
        if value is None:
            return None
        if not value.is_integer():
            raise ParseFailure(self.name, f"SETTLEMENT_PERIOD is not a whole number: {row['SETTLEMENT_PERIOD']!r}")
        return int(value)

    def _cell(self, row: dict, col: str) -> Optional[float]:
        raw = row.get(col, "")
        if raw is None or str(raw).strip() == "":
            return None
        try:
            value = float(str(raw).replace(",", ""))
        except ValueError as exc:
            raise ParseFailure(self.name, f"column {col} is not numeric: {raw!r}") from exc
        if value != value:
            return None
        if not math.isfinite(value):
            raise ParseFailure(self.name, f"column {col} is not finite: {raw!r}")
        return value
