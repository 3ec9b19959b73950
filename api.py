"""
GridLive: FastAPI Server
Serves the aggregated GB grid snapshot and rate-limited proxies for each of
the four upstream feeds.

Endpoints:
  GET /health               - service health and scheduler status
  GET /api/grid-state       - latest aggregated snapshot (served from memory)
  GET /api/generation-mix   - Carbon Intensity generation mix (proxy)
  GET /api/emissions        - Carbon Intensity half-hourly intensity for today (proxy)
  GET /api/grid-info        - Carbon Intensity current period (proxy)
  GET /api/pricing          - Elexon market index prices, last 24 h (proxy)
  GET /api/demand           - NESO demand CSV, first row (proxy)

Run:  uvicorn api:app --reload --port 8000
Docs: http://localhost:8000/docs
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from gridlive.aggregator import CycleReport, GridAggregator, SourceClients
from gridlive.config import Settings, configure_logging
from gridlive.errors import FetchError
from gridlive.limiter import FixedWindowRateLimiter
from gridlive.models import GridState, category_totals, fuel_generation_gw
from gridlive.scheduler import RefreshScheduler

# ---------------------------------------------------------------------------
# Application state: shared httpx client, feed clients, latest snapshot
# ---------------------------------------------------------------------------

_settings = Settings.from_env()

_http_client: Optional[httpx.AsyncClient] = None
_sources: Optional[SourceClients] = None
_scheduler: Optional[RefreshScheduler] = None
_limiter = FixedWindowRateLimiter(
    window_seconds=_settings.rate_limit_window_seconds,
    max_requests=_settings.rate_limit_max,
)

_latest_state: Optional[GridState] = None
_latest_report: Optional[CycleReport] = None


def _publish(state: GridState, report: CycleReport) -> None:
    """Replace the served snapshot; each cycle fully supersedes the last."""
    global _latest_state, _latest_report
    _latest_state = state
    _latest_report = report


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the shared httpx client and the refresh scheduler for the process lifetime."""
    global _http_client, _sources, _scheduler
    configure_logging(_settings.log_level)

    _http_client = httpx.AsyncClient(follow_redirects=True)
    _sources = SourceClients.from_settings(_http_client, _settings)
    logger.info("httpx AsyncClient initialised.")

    if _settings.scheduler_enabled:
        _scheduler = RefreshScheduler(
            GridAggregator(_sources),
            timedelta(minutes=_settings.cadence_minutes),
            on_snapshot=_publish,
        )
        _scheduler.start()
    else:
        logger.info("Scheduler disabled; serving proxy endpoints only.")

    yield

    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
    await _http_client.aclose()
    logger.info("httpx AsyncClient closed.")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="GridLive API",
    description=(
        "Live GB electricity grid snapshot aggregated from the Carbon Intensity, "
        "Elexon and NESO public feeds, refreshed every few minutes."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_settings.cors_origins),
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status:            str
    timestamp:         str
    scheduler_running: bool
    cadence_minutes:   int
    last_snapshot_at:  Optional[str]


class FuelShareRecord(BaseModel):
    fuel:          str
    share_percent: float
    generation_gw: Optional[float]   # share x total generation; null when unknown


class GridStateResponse(BaseModel):
    captured_at:   str
    price:         Optional[float]   # £/MWh
    emissions:     Optional[float]   # gCO2/kWh
    demand_gw:     Optional[float]
    generation_gw: Optional[float]
    transfers_gw:  Optional[float]   # + import / - export
    fuel_mix:      list[FuelShareRecord]
    categories:    dict[str, float]  # "Renewables" | "Fossil Fuels" | "Other Sources"
    formatted:     dict[str, str]    # display strings, "N/A" when unknown
    feed_errors:   dict[str, Optional[str]]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FeedUnavailable(Exception):
    def __init__(self, feed: str) -> None:
        super().__init__(feed)
        self.feed = feed


class RateLimitExceeded(Exception):
    def __init__(self, message: str, retry_after: float, limit: int) -> None:
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after
        self.limit = limit


@app.exception_handler(FeedUnavailable)
async def _feed_unavailable_handler(request: Request, exc: FeedUnavailable) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": f"Failed to fetch {exc.feed} data"})


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry = max(int(round(exc.retry_after)), 1)
    return JSONResponse(
        status_code=429,
        content={"error": exc.message, "reason": "rate_limited", "retry_after": retry},
        headers={
            "Retry-After": str(retry),
            "RateLimit-Limit": str(exc.limit),
            "RateLimit-Remaining": "0",
            "RateLimit-Reset": str(retry),
        },
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _client_identity(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def rate_limited(request: Request, response: Response) -> None:
    """Gate a proxy endpoint on the per-client fixed window."""
    admission = _limiter.admit(_client_identity(request))
    if not admission.allowed:
        logger.warning("Rate limited {} on {}", _client_identity(request), request.url.path)
        raise RateLimitExceeded(admission.message, admission.retry_after, admission.limit)
    response.headers["RateLimit-Limit"] = str(admission.limit)
    response.headers["RateLimit-Remaining"] = str(admission.remaining)
    response.headers["RateLimit-Reset"] = str(int(round(admission.reset_after)))


def _require_sources() -> SourceClients:
    if _sources is None:
        raise HTTPException(status_code=503, detail="Feed clients are not initialised.")
    return _sources


async def _proxy(label: str, call: Awaitable[Any]) -> Any:
    """Await one feed call; any fetch failure becomes a generic 500."""
    try:
        return await call
    except FetchError as exc:
        logger.error("Proxy {} failed ({}): {}", label, type(exc).__name__, exc.message)
        raise FeedUnavailable(label) from exc


def _state_response(state: GridState, report: Optional[CycleReport]) -> GridStateResponse:
    per_fuel_gw = fuel_generation_gw(state)
    return GridStateResponse(
        captured_at=state.captured_at.isoformat(),
        price=state.price,
        emissions=state.emissions,
        demand_gw=state.demand_gw,
        generation_gw=state.generation_gw,
        transfers_gw=state.transfers_gw,
        fuel_mix=[
            FuelShareRecord(
                fuel=share.fuel.value,
                share_percent=share.share_percent,
                generation_gw=per_fuel_gw.get(share.fuel),
            )
            for share in state.fuel_mix
        ],
        categories={cat.value: round(total, 2) for cat, total in category_totals(state.fuel_mix).items()},
        formatted=state.formatted(_settings.cadence_minutes),
        feed_errors=dict(report.failures) if report is not None else {},
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse, tags=["Meta"])
async def health():
    """Service health, scheduler status and the age of the served snapshot."""
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(tz=timezone.utc).isoformat(),
        scheduler_running=_scheduler is not None and _scheduler.running,
        cadence_minutes=_settings.cadence_minutes,
        last_snapshot_at=_latest_state.captured_at.isoformat() if _latest_state else None,
    )


@app.get("/api/grid-state", response_model=GridStateResponse, tags=["Grid"])
async def get_grid_state():
    """
    Return the most recent aggregated snapshot.

    Served from memory, so it is not rate limited and never calls upstream.
    Fields whose feed failed in the last cycle are ``null`` (and ``"N/A"`` in
    ``formatted``); ``feed_errors`` names the failure class per feed.
    """
    if _latest_state is None:
        return JSONResponse(status_code=503, content={"error": "No grid snapshot available yet"})
    return _state_response(_latest_state, _latest_report)


@app.get("/api/generation-mix", tags=["Feeds"], dependencies=[Depends(rate_limited)])
async def get_generation_mix():
    """Current generation mix, as published by the Carbon Intensity API."""
    logger.info("GET /api/generation-mix")
    return await _proxy("generation mix", _require_sources().mix.fetch_payload())


@app.get("/api/emissions", tags=["Feeds"], dependencies=[Depends(rate_limited)])
async def get_emissions():
    """Today's half-hourly carbon intensity periods."""
    logger.info("GET /api/emissions")
    return await _proxy("emissions", _require_sources().emissions.fetch_payload())


@app.get("/api/grid-info", tags=["Feeds"], dependencies=[Depends(rate_limited)])
async def get_grid_info():
    """Current-period carbon intensity body, verbatim."""
    logger.info("GET /api/grid-info")
    return await _proxy("grid", _require_sources().emissions.fetch_current_intensity())


@app.get("/api/pricing", tags=["Feeds"], dependencies=[Depends(rate_limited)])
async def get_pricing():
    """Market index prices for the last 24 hours."""
    logger.info("GET /api/pricing")
    return await _proxy("pricing", _require_sources().pricing.fetch_payload())


@app.get("/api/demand", tags=["Feeds"], dependencies=[Depends(rate_limited)])
async def get_demand():
    """Latest row of the national demand CSV."""
    logger.info("GET /api/demand")
    row = await _proxy("demand", _require_sources().demand.fetch_payload())
    return {"data": row}
