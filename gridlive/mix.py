"""
GridLive: Generation Mix Client
Current GB generation mix from the Carbon Intensity API.

Feed:     GET {base}/generation
Response: {"data": {"from": "...Z", "to": "...Z",
                    "generationmix": [{"fuel": "gas", "perc": 30.1}, ...]}}

Percentages are computed upstream per half-hour and need not sum to 100.
Fuel codes outside the closed ``FuelKind`` set are mapped to ``other``.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from gridlive.config import CARBON_INTENSITY_URL, DEFAULT_MIX_TIMEOUT
from gridlive.errors import ShapeFailure
from gridlive.feed_client import FeedClient, parse_number, parse_timestamp
from gridlive.models import FuelGeneration, FuelKind, MixRecord


class MixClient(FeedClient[MixRecord]):
    name = "generation mix"

    def __init__(
        self,
        http: httpx.AsyncClient,
        timeout: float = DEFAULT_MIX_TIMEOUT,
        base_url: str = CARBON_INTENSITY_URL,
    ) -> None:
        super().__init__(http, timeout)
        self._url = f"{base_url.rstrip('/')}/generation"

    def _unwrap(self, body: Any) -> dict:
        """Return the mix object inside the ``data`` envelope."""
        data = body.get("data") if isinstance(body, dict) else None
        # the endpoint has served both an object and a one-element list
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            raise ShapeFailure(self.name, "response has no 'data' object")
        mix = data.get("generationmix")
        if not isinstance(mix, list) or not mix:
            raise ShapeFailure(self.name, "'generationmix' is missing or empty")
        return data

    async def fetch_payload(self) -> dict:
        """Validated response body, envelope included, exactly as received."""
        body = await self._get_json(self._url)
        self._unwrap(body)
        return body

    def parse(self, payload: Any) -> MixRecord:
        payload = self._unwrap(payload)
        generation: list[FuelGeneration] = []
        for item in payload["generationmix"]:
            if not isinstance(item, dict) or "fuel" not in item:
                raise ShapeFailure(self.name, f"mix entry without 'fuel': {item!r}")
            perc = parse_number(self.name, "perc", item.get("perc"))
            if perc < 0:
                raise ShapeFailure(self.name, f"negative share for {item['fuel']!r}: {perc}")
            fuel = FuelKind.from_code(item["fuel"])
            if fuel is FuelKind.OTHER and str(item["fuel"]).strip().lower() != "other":
                logger.debug("Unmapped fuel code {!r} counted as other.", item["fuel"])
            generation.append(FuelGeneration(fuel=fuel, generation_percent=perc))

        return MixRecord(
            generation=tuple(generation),
            valid_from=parse_timestamp(self.name, payload["from"]) if payload.get("from") else None,
            valid_to=parse_timestamp(self.name, payload["to"]) if payload.get("to") else None,
        )
