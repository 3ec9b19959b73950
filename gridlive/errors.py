"""
GridLive: Error Taxonomy

Every feed client reports failure through one of four ``FetchError``
subclasses so the aggregator can absorb them uniformly and the API can
answer with a generic message without leaking upstream detail.

  TransportFailure : no response at all (DNS, connect, read timeout)
  StatusFailure    : a response arrived with a non-2xx status
  ShapeFailure     : well-formed payload missing a required field / header
  ParseFailure     : payload could not be decoded (bad JSON, bad CSV, NaN text)
"""

from __future__ import annotations

from typing import Optional


class FetchError(Exception):
    """Base class for a single feed's fetch failure."""

    def __init__(self, feed: str, message: str) -> None:
        super().__init__(f"[{feed}] {message}")
        self.feed = feed
        self.message = message


class TransportFailure(FetchError):
    pass


class StatusFailure(FetchError):
    def __init__(self, feed: str, status_code: int, message: Optional[str] = None) -> None:
        super().__init__(feed, message or f"upstream returned HTTP {status_code}")
        self.status_code = status_code


class ShapeFailure(FetchError):
    pass


class ParseFailure(FetchError):
    pass


class SchedulerFault(Exception):
    """Raised only for an unusable scheduler configuration."""
