"""
GridLive: Market Price Client
Half-hourly Market Index price from the Elexon Insights (BMRS) API.

Feed:     GET https://data.elexon.co.uk/bmrs/api/v1/balancing/pricing/market-index
Params:   from / to (ISO, rolling 24 h window), dataProviders=APXMIDP
Response: {"data": [{"startTime": "...Z", "settlementPeriod": 25,
                     "dataProvider": "APXMIDP", "price": 71.32, "volume": 812.5}, ...]}

The record is normalised to most-recent-first regardless of upstream order,
so ``PricingRecord.latest`` is the current price.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from gridlive.config import DEFAULT_PRICING_TIMEOUT, PRICING_URL
from gridlive.errors import ShapeFailure
from gridlive.feed_client import FeedClient, parse_number, parse_timestamp, require_list
from gridlive.models import PricePoint, PricingRecord

DATA_PROVIDER = "APXMIDP"
WINDOW = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class PricingClient(FeedClient[PricingRecord]):
    name = "pricing"

    def __init__(
        self,
        http: httpx.AsyncClient,
        timeout: float = DEFAULT_PRICING_TIMEOUT,
        url: str = PRICING_URL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__(http, timeout)
        self._url = url
        self._clock = clock

    async def fetch_payload(self) -> list:
        now = self._clock()
        params = {
            "from": _iso(now - WINDOW),
            "to": _iso(now),
            "dataProviders": DATA_PROVIDER,
        }
        body = await self._get_json(self._url, params)
        return require_list(self.name, body)

    def parse(self, payload: Any) -> PricingRecord:
        points: list[PricePoint] = []
        for item in payload:
            if not isinstance(item, dict):
                raise ShapeFailure(self.name, f"price entry is not an object: {item!r}")
            points.append(
                PricePoint(
                    start_time=parse_timestamp(self.name, item.get("startTime")),
                    price=parse_number(self.name, "price", item.get("price")),
                )
            )
        points.sort(key=lambda p: p.start_time, reverse=True)
        return PricingRecord(points=tuple(points))
