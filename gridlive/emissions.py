"""
GridLive: Carbon Emissions Client
Half-hourly national carbon intensity from the Carbon Intensity API.

Feeds
-----
  GET {base}/intensity/date/{YYYY-MM-DD}   every half-hour period of the day
  GET {base}/intensity                     current period only (passthrough)

Each period looks like::

    {"from": "2024-05-01T12:00Z", "to": "2024-05-01T12:30Z",
     "intensity": {"forecast": 120, "actual": 118, "index": "moderate"}}

``actual`` is null until the period has been settled.

Current period selection
------------------------
The day feed is ordered oldest-first.  The current record is the last
period whose ``from`` is not after the request time; before the first
period has started (just after midnight UTC) the first period is used.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from gridlive.config import CARBON_INTENSITY_URL, DEFAULT_EMISSIONS_TIMEOUT
from gridlive.errors import ShapeFailure
from gridlive.feed_client import FeedClient, parse_number, parse_timestamp, require_list
from gridlive.models import EmissionsRecord


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class EmissionsClient(FeedClient[EmissionsRecord]):
    name = "emissions"

    def __init__(
        self,
        http: httpx.AsyncClient,
        timeout: float = DEFAULT_EMISSIONS_TIMEOUT,
        base_url: str = CARBON_INTENSITY_URL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__(http, timeout)
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    def _now(self) -> datetime:
        return self._clock().astimezone(timezone.utc)

    async def _fetch_day(self, now: datetime) -> list:
        body = await self._get_json(f"{self._base_url}/intensity/date/{now:%Y-%m-%d}")
        return require_list(self.name, body)

    async def fetch_payload(self) -> list:
        return await self._fetch_day(self._now())

    async def fetch_current_intensity(self) -> dict:
        """Raw ``/intensity`` body for the grid-info passthrough."""
        body = await self._get_json(f"{self._base_url}/intensity")
        require_list(self.name, body)
        return body

    async def fetch(self) -> EmissionsRecord:
        now = self._now()
        return self.select_current(await self._fetch_day(now), now)

    def parse(self, payload: Any) -> EmissionsRecord:
        return self.select_current(payload, self._now())

    def select_current(self, payload: list, now: datetime) -> EmissionsRecord:
        periods = []
        for item in payload:
            if not isinstance(item, dict):
                raise ShapeFailure(self.name, f"period is not an object: {item!r}")
            periods.append((parse_timestamp(self.name, item.get("from")), item))

        started = [p for p in periods if p[0] <= now]
        valid_from, current = started[-1] if started else periods[0]

        intensity = current.get("intensity")
        if not isinstance(intensity, dict):
            raise ShapeFailure(self.name, "period has no 'intensity' object")

        actual = intensity.get("actual")
        return EmissionsRecord(
            forecast_intensity=parse_number(self.name, "forecast", intensity.get("forecast")),
            actual_intensity=None if actual is None else parse_number(self.name, "actual", actual),
            index=intensity.get("index"),
            valid_from=valid_from,
            valid_to=parse_timestamp(self.name, current.get("to")),
        )
