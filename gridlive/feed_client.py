"""
GridLive: Base Feed Client
Shared HTTP plumbing for the four upstream feed clients.

How it works
------------
1. Each client owns nothing but a reference to the process-wide
   ``httpx.AsyncClient`` (connection pool) and its own timeout budget.
2. ``fetch_payload()`` performs exactly one GET, validates the envelope and
   returns the decoded payload.  ``fetch()`` turns that payload into a typed
   record.  There is no retry and no cache at this layer: a failed fetch is
   retried by the next scheduled cycle.
3. Every failure leaves as a ``FetchError`` subclass; raw ``httpx`` or
   ``pandas`` exceptions never escape a client.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

import httpx
import pandas as pd
from loguru import logger

from gridlive.errors import ParseFailure, ShapeFailure, StatusFailure, TransportFailure

_R = TypeVar("_R")

USER_AGENT = "gridlive/0.1 (+https://github.com/gridlive)"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_timestamp(feed: str, value: Any) -> datetime:
    """Parse an ISO-ish upstream timestamp into an aware UTC datetime."""
    if value is None or value == "":
        raise ShapeFailure(feed, "timestamp field is empty")
    try:
        ts = pd.to_datetime(value, utc=True)
    except (ValueError, TypeError) as exc:
        raise ParseFailure(feed, f"unparsable timestamp {value!r}") from exc
    if pd.isna(ts):
        raise ParseFailure(feed, f"unparsable timestamp {value!r}")
    return ts.to_pydatetime()


def parse_number(feed: str, name: str, value: Any) -> float:
    """Coerce a required numeric field; ``None`` is a shape problem, junk a parse one."""
    if value is None:
        raise ShapeFailure(feed, f"missing numeric field {name!r}")
    if isinstance(value, bool):
        raise ParseFailure(feed, f"field {name!r} is not numeric: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ParseFailure(feed, f"field {name!r} is not numeric: {value!r}") from exc
    if number != number:  # NaN
        raise ParseFailure(feed, f"field {name!r} is NaN")
    return number


def require_list(feed: str, body: Any, key: str = "data") -> list:
    """Return ``body[key]`` when it is a non-empty list, else a ShapeFailure."""
    if not isinstance(body, dict) or key not in body:
        raise ShapeFailure(feed, f"response has no {key!r} wrapper")
    items = body[key]
    if not isinstance(items, list):
        raise ShapeFailure(feed, f"{key!r} is not a list")
    if not items:
        raise ShapeFailure(feed, f"{key!r} is empty")
    return items


# ---------------------------------------------------------------------------
# Core client class
# ---------------------------------------------------------------------------


class FeedClient(ABC, Generic[_R]):
    """
    One upstream feed, one round-trip per call.

    Parameters
    ----------
    http:
        Shared ``httpx.AsyncClient``.  The caller owns its lifetime.
    timeout:
        Wall-clock budget in seconds for the whole call (connect + body).
    """

    #: short feed name used in logs, errors and proxy messages
    name: str = "feed"

    def __init__(self, http: httpx.AsyncClient, timeout: float) -> None:
        self._http = http
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return self._timeout

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get(self, url: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        """
        Single GET bounded by ``self.timeout``.

        Raises ``TransportFailure`` when nothing usable came back,
        ``ParseFailure`` when the body cannot be decoded and
        ``StatusFailure`` on a non-2xx response.
        """
        logger.debug("{} GET {} params={}", self.name, url, params)
        try:
            resp = await asyncio.wait_for(
                self._http.get(
                    url,
                    params=params,
                    headers={"User-Agent": USER_AGENT},
                    timeout=self._timeout,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransportFailure(self.name, f"no response within {self._timeout:.1f}s") from exc
        except httpx.TimeoutException as exc:
            raise TransportFailure(self.name, f"request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransportFailure(self.name, f"transport error: {exc}") from exc
        except httpx.DecodingError as exc:
            raise ParseFailure(self.name, f"undecodable response body: {exc}") from exc
        except httpx.HTTPError as exc:
            # redirect loops, invalid URLs and anything else httpx raises
            raise TransportFailure(self.name, f"request failed: {exc}") from exc

        if not resp.is_success:
            raise StatusFailure(self.name, resp.status_code)
        return resp

    async def _get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        resp = await self._get(url, params)
        try:
            return resp.json()
        except ValueError as exc:
            raise ParseFailure(self.name, f"malformed JSON body: {exc}") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_payload(self) -> Any:
        """Fetch and validate the upstream payload, returned verbatim."""

    @abstractmethod
    def parse(self, payload: Any) -> _R:
        """Turn a validated payload into the feed's typed record."""

    async def fetch(self) -> _R:
        """One round-trip, one typed record (or a ``FetchError``)."""
        return self.parse(await self.fetch_payload())
