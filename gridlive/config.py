"""
GridLive: Runtime Configuration
Environment-driven settings shared by the API, the scheduler and the feed
clients.

Values are read once at startup after ``load_dotenv()`` so a local ``.env``
file can override the defaults below.  Every setting has a working default;
the reference deployment needs no configuration at all.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

load_dotenv()

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

CARBON_INTENSITY_URL = "https://api.carbonintensity.org.uk"
PRICING_URL = "https://data.elexon.co.uk/bmrs/api/v1/balancing/pricing/market-index"
DEMAND_URL = (
    "https://data.nationalgrideso.com/backend/dataset/"
    "7a12172a-939c-404c-b581-a6128b74f588/resource/"
    "177f6fa4-ae49-4182-81ea-0c6b35f26ca6/download/demanddataupdate.csv"
)

DEFAULT_CADENCE_MINUTES = 5
DEFAULT_RATE_LIMIT_WINDOW_MINUTES = 15
DEFAULT_RATE_LIMIT_MAX = 100

# Per-source wall-clock budgets in seconds; the CSV is ~1 MB so it gets more
DEFAULT_MIX_TIMEOUT = 10.0
DEFAULT_EMISSIONS_TIMEOUT = 10.0
DEFAULT_PRICING_TIMEOUT = 10.0
DEFAULT_DEMAND_TIMEOUT = 20.0

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


# ---------------------------------------------------------------------------
# Env helpers
# ---------------------------------------------------------------------------


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Settings:
    """
    Immutable bundle of runtime settings.

    Parameters
    ----------
    cadence_minutes:
        Refresh period; cycles are aligned to wall-clock multiples of it.
    scheduler_enabled:
        When false the API serves proxy endpoints only and never aggregates.
    rate_limit_window_minutes, rate_limit_max:
        Fixed-window budget applied per client identity on proxy endpoints.
    """

    log_level:                 str   = "INFO"
    cadence_minutes:           int   = DEFAULT_CADENCE_MINUTES
    scheduler_enabled:         bool  = True
    mix_timeout:               float = DEFAULT_MIX_TIMEOUT
    emissions_timeout:         float = DEFAULT_EMISSIONS_TIMEOUT
    pricing_timeout:           float = DEFAULT_PRICING_TIMEOUT
    demand_timeout:            float = DEFAULT_DEMAND_TIMEOUT
    rate_limit_window_minutes: int   = DEFAULT_RATE_LIMIT_WINDOW_MINUTES
    rate_limit_max:            int   = DEFAULT_RATE_LIMIT_MAX
    carbon_intensity_url:      str   = CARBON_INTENSITY_URL
    pricing_url:               str   = PRICING_URL
    demand_url:                str   = DEMAND_URL
    cors_origins:              tuple[str, ...] = ("*",)

    @property
    def cadence_seconds(self) -> float:
        return self.cadence_minutes * 60.0

    @property
    def rate_limit_window_seconds(self) -> float:
        return self.rate_limit_window_minutes * 60.0

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (and ``.env``)."""
        origins = os.getenv("GRIDLIVE_CORS_ORIGINS", "*")
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cadence_minutes=_env_int("GRIDLIVE_CADENCE_MINUTES", DEFAULT_CADENCE_MINUTES),
            scheduler_enabled=_env_bool("GRIDLIVE_SCHEDULER_ENABLED", True),
            mix_timeout=_env_float("GRIDLIVE_MIX_TIMEOUT", DEFAULT_MIX_TIMEOUT),
            emissions_timeout=_env_float("GRIDLIVE_EMISSIONS_TIMEOUT", DEFAULT_EMISSIONS_TIMEOUT),
            pricing_timeout=_env_float("GRIDLIVE_PRICING_TIMEOUT", DEFAULT_PRICING_TIMEOUT),
            demand_timeout=_env_float("GRIDLIVE_DEMAND_TIMEOUT", DEFAULT_DEMAND_TIMEOUT),
            rate_limit_window_minutes=_env_int(
                "GRIDLIVE_RATE_LIMIT_WINDOW_MINUTES", DEFAULT_RATE_LIMIT_WINDOW_MINUTES
            ),
            rate_limit_max=_env_int("GRIDLIVE_RATE_LIMIT_MAX", DEFAULT_RATE_LIMIT_MAX),
            carbon_intensity_url=os.getenv("GRIDLIVE_CARBON_INTENSITY_URL", CARBON_INTENSITY_URL).rstrip("/"),
            pricing_url=os.getenv("GRIDLIVE_PRICING_URL", PRICING_URL),
            demand_url=os.getenv("GRIDLIVE_DEMAND_URL", DEMAND_URL),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def configure_logging(level: Optional[str] = None) -> None:
    """Send loguru output to stderr at ``level`` (falls back to ``LOG_LEVEL``)."""
    logger.remove()
    logger.add(sys.stderr, level=(level or os.getenv("LOG_LEVEL", "INFO")).upper())
