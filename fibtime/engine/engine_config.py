"""
engine_config.py — Single Source of Truth for All Engine Tunables
==================================================================

THIS IS THE ONLY PLACE THESE CONSTANTS ARE DEFINED.

The pivot detector, projection generator, confluence detector, backtest
engine and hit tester all read their thresholds from an EngineConfig built
from the defaults below. Nothing downstream hardcodes a window size, a
catalog or a minimum sample count. Change it HERE and every consumer
inherits it.

PROFILES + LEVERS
=================
A profile picks the Gann period set (basic / standard / advanced /
comprehensive). A lever is any single EngineConfig field. Both are applied
without touching source:

    cfg = EngineConfig.from_profile("comprehensive")
    cfg = cfg.with_levers(period_min_samples=3, timezone="America/New_York")

Or from the environment (.env is loaded with python-dotenv):

    FIBTIME_PROFILE=basic
    FIBTIME_TIMEZONE=UTC
    FIBTIME_BASE_UNIT_DAYS=100

EngineConfig is frozen. with_levers() returns a new instance, so a config
can be shared between concurrent analyses without locking.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace, asdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytz
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ── Time base ──────────────────────────────────────────────────────────────
# One ratio unit = BASE_UNIT_DAYS calendar days. 0.618 → 62 days.
BASE_UNIT_DAYS: int = 100

# Calendar dates are derived from candle timestamps in this zone.
# Binance daily candles open at 00:00 UTC, so UTC keeps one candle per date.
TIMEZONE: str = "UTC"

# ── Catalogs ───────────────────────────────────────────────────────────────
# Fibonacci retracements/extensions first, then harmonic (1/3 series) and
# geometric (0.5 series) ratios.
FIBONACCI_RATIOS: Tuple[float, ...] = (0.382, 0.500, 0.618, 0.786, 1.000, 1.272, 1.618, 2.618)
HARMONIC_RATIOS:  Tuple[float, ...] = (0.333, 0.667, 1.333, 1.500, 1.667, 2.000, 2.333, 2.500, 2.667, 3.000)
RATIO_CATALOG:    Tuple[float, ...] = FIBONACCI_RATIOS + HARMONIC_RATIOS

# Gann anniversary day counts per profile.
BASIC_PERIODS:    Tuple[int, ...] = (90, 180, 360)
STANDARD_PERIODS: Tuple[int, ...] = (30, 45, 60, 90, 120, 135, 144, 180, 225, 270, 315, 360, 540, 720)
ADVANCED_PERIODS: Tuple[int, ...] = STANDARD_PERIODS + (1080, 1440)
COMPREHENSIVE_PERIODS: Tuple[int, ...] = (
    30, 45, 60, 72, 90, 120, 135, 144, 150, 180, 216, 225, 240, 270, 288,
    300, 315, 330, 360,
    49, 98, 147, 196,                 # square of seven
    540, 720, 900, 1080, 1260, 1440,  # multiples of 360
)
PERIOD_CATALOG: Tuple[int, ...] = STANDARD_PERIODS

PROFILES: Dict[str, Tuple[int, ...]] = {
    "basic":         BASIC_PERIODS,
    "standard":      STANDARD_PERIODS,
    "advanced":      ADVANCED_PERIODS,
    "comprehensive": COMPREHENSIVE_PERIODS,
}

# ── Pivot detection ────────────────────────────────────────────────────────
# "Recent" tier: daily candles, small window, only the newest few pivots
# seed near-term projections.
RECENT_PIVOT_LOOKBACK: int   = 3
RECENT_PIVOT_LIMIT:    int   = 5
RECENT_PIVOT_STRENGTH: float = 0.7

# "Major" tier: weekly candles, half-year window either side, never capped.
MAJOR_PIVOT_LOOKBACK:  int   = 26
MAJOR_PIVOT_STRENGTH:  float = 0.95
MAJOR_PIVOT_INTERVAL:  str   = "W"

# Confluence replay pivots over the full daily history.
HISTORY_PIVOT_LOOKBACK: int = 10

# Hit-test pivots: wide daily window, only clear turning points.
HIT_PIVOT_LOOKBACK: int   = 30
HIT_PIVOT_STRENGTH: float = 0.8

# ── Forward-looking projection limits ──────────────────────────────────────
# Projections further out than this are dropped from analyze() output.
MAX_FORWARD_DAYS: int = 3 * 365
# Gann dates are only projected from pivots younger than this.
GANN_PIVOT_MAX_AGE_DAYS: int = 2 * 365

# ── Confluence ─────────────────────────────────────────────────────────────
MIN_CONFLUENCE_FACTORS:   int   = 2
CONFLUENCE_FACTOR_WEIGHT: float = 0.3
# Geomagnetic AP index at or above which a forecast day counts as a signal.
SOLAR_AP_THRESHOLD: int = 20
# AP at or above which a solar day is "strong" (window typing only).
SOLAR_STRONG_AP:    int = 30

# ── Backtest gates ─────────────────────────────────────────────────────────
# Fewer candles than this → explicit empty result, never partial stats.
RATIO_MIN_CANDLES:      int = 100
PERIOD_MIN_CANDLES:     int = 400
CONFLUENCE_MIN_CANDLES: int = 100
HIT_MIN_CANDLES:        int = 200

# Buckets below these sample counts are omitted from the result map.
RATIO_MIN_SAMPLES:  int = 1
PERIOD_MIN_SAMPLES: int = 5

CONFLUENCE_HORIZONS: Tuple[int, ...] = (1, 3, 7, 14, 30)
# Horizon used for the overall success rate and effectiveness metrics.
BENCHMARK_HORIZON:   int = 7
# Horizon used to rank best/worst windows.
RANKING_HORIZON:     int = 30
# |return| above this (percent) at the benchmark horizon counts as a hit.
EFFECTIVENESS_HIT_PCT: float = 1.0

# ── Solar impact + overall score ──────────────────────────────────────────
# AP at or above which a historical day counts as geomagnetically active.
SOLAR_IMPACT_AP:          int   = 12
# Mean daily return gap (percentage points) beyond which the impact is
# Positive or Negative rather than Neutral.
SOLAR_IMPACT_GAP:         float = 0.5
SOLAR_IMPACT_MIN_CANDLES: int   = 100
# overall score = 50 + (confluence success rate − 50) × weight, clamped 0..100
CONFLUENCE_SCORE_WEIGHT:  float = 0.5
# (minimum score, recommendation), checked top down. Below the last band: STRONG SELL.
RECOMMENDATION_BANDS: Tuple[Tuple[float, str], ...] = (
    (80.0, "STRONG BUY"),
    (65.0, "BUY"),
    (45.0, "NEUTRAL"),
    (30.0, "SELL"),
)

# ── Hit tester ─────────────────────────────────────────────────────────────
# Best move is reported when ≥ margin × HIT_FLOOR_FACTOR, even on a miss.
HIT_FLOOR_FACTOR:          float = 0.5
# Projections newer than this (days before today) have no verifiable outcome.
HIT_RECENCY_DAYS:          int   = 7
RATIO_HIT_LOOKBACK_DAYS:   int   = 2 * 365
PERIOD_HIT_LOOKBACK_DAYS:  int   = 3 * 365
RATIO_HIT_MIN_PIVOT_AGE:   int   = 30
PERIOD_HIT_MIN_PIVOT_AGE:  int   = 60


@dataclass(frozen=True)
class EngineConfig:
    """Every tunable the engine reads, defaulting to the constants above."""

    profile:                  str              = "standard"
    base_unit_days:           int              = BASE_UNIT_DAYS
    timezone:                 str              = TIMEZONE
    ratio_catalog:            Tuple[float, ...] = RATIO_CATALOG
    period_catalog:           Tuple[int, ...]   = PERIOD_CATALOG

    recent_pivot_lookback:    int   = RECENT_PIVOT_LOOKBACK
    recent_pivot_limit:       int   = RECENT_PIVOT_LIMIT
    recent_pivot_strength:    float = RECENT_PIVOT_STRENGTH
    major_pivot_lookback:     int   = MAJOR_PIVOT_LOOKBACK
    major_pivot_strength:     float = MAJOR_PIVOT_STRENGTH
    major_pivot_interval:     str   = MAJOR_PIVOT_INTERVAL
    history_pivot_lookback:   int   = HISTORY_PIVOT_LOOKBACK
    hit_pivot_lookback:       int   = HIT_PIVOT_LOOKBACK
    hit_pivot_strength:       float = HIT_PIVOT_STRENGTH

    max_forward_days:         int   = MAX_FORWARD_DAYS
    gann_pivot_max_age_days:  int   = GANN_PIVOT_MAX_AGE_DAYS

    min_confluence_factors:   int   = MIN_CONFLUENCE_FACTORS
    confluence_factor_weight: float = CONFLUENCE_FACTOR_WEIGHT
    solar_ap_threshold:       int   = SOLAR_AP_THRESHOLD
    solar_strong_ap:          int   = SOLAR_STRONG_AP

    ratio_min_candles:        int   = RATIO_MIN_CANDLES
    period_min_candles:       int   = PERIOD_MIN_CANDLES
    confluence_min_candles:   int   = CONFLUENCE_MIN_CANDLES
    hit_min_candles:          int   = HIT_MIN_CANDLES
    ratio_min_samples:        int   = RATIO_MIN_SAMPLES
    period_min_samples:       int   = PERIOD_MIN_SAMPLES
    confluence_horizons:      Tuple[int, ...] = CONFLUENCE_HORIZONS
    benchmark_horizon:        int   = BENCHMARK_HORIZON
    ranking_horizon:          int   = RANKING_HORIZON
    effectiveness_hit_pct:    float = EFFECTIVENESS_HIT_PCT

    solar_impact_ap:          int   = SOLAR_IMPACT_AP
    solar_impact_gap:         float = SOLAR_IMPACT_GAP
    solar_impact_min_candles: int   = SOLAR_IMPACT_MIN_CANDLES
    confluence_score_weight:  float = CONFLUENCE_SCORE_WEIGHT

    hit_floor_factor:         float = HIT_FLOOR_FACTOR
    hit_recency_days:         int   = HIT_RECENCY_DAYS
    ratio_hit_lookback_days:  int   = RATIO_HIT_LOOKBACK_DAYS
    period_hit_lookback_days: int   = PERIOD_HIT_LOOKBACK_DAYS
    ratio_hit_min_pivot_age:  int   = RATIO_HIT_MIN_PIVOT_AGE
    period_hit_min_pivot_age: int   = PERIOD_HIT_MIN_PIVOT_AGE

    # symbol → ((iso_date, price, "MAJOR_HIGH" | "MAJOR_LOW", strength), ...)
    anchor_pivots: Dict[str, Tuple[Tuple[str, float, str, float], ...]] = field(
        default_factory=lambda: dict(DEFAULT_ANCHOR_PIVOTS)
    )

    def __post_init__(self):
        if self.base_unit_days <= 0:
            raise ValueError(f"base_unit_days must be positive, got {self.base_unit_days}")
        if not self.ratio_catalog:
            raise ValueError("ratio_catalog must not be empty")
        if not self.period_catalog:
            raise ValueError("period_catalog must not be empty")
        if any(p <= 0 for p in self.period_catalog):
            raise ValueError(f"period_catalog must hold positive day counts: {self.period_catalog}")
        if self.min_confluence_factors < 2:
            raise ValueError("min_confluence_factors must be at least 2")
        if self.timezone not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {self.timezone}")

    # ── Builders ───────────────────────────────────────────────────────

    @classmethod
    def from_profile(cls, name: str) -> "EngineConfig":
        """Config with the Gann period set of a named profile."""
        key = name.strip().lower()
        if key not in PROFILES:
            raise ValueError(f"Unknown profile '{name}'. Use: {sorted(PROFILES)}")
        return cls(profile=key, period_catalog=PROFILES[key])

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "EngineConfig":
        """
        Build from FIBTIME_* environment variables after loading .env.

        Unset variables keep their defaults.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()
        cfg = cls.from_profile(os.getenv("FIBTIME_PROFILE", "standard"))
        overrides = {}
        if os.getenv("FIBTIME_TIMEZONE"):
            overrides["timezone"] = os.getenv("FIBTIME_TIMEZONE")
        if os.getenv("FIBTIME_BASE_UNIT_DAYS"):
            overrides["base_unit_days"] = os.getenv("FIBTIME_BASE_UNIT_DAYS")
        if overrides:
            cfg = cfg.with_levers(**overrides)
        logger.info(f"Engine config from env: profile={cfg.profile} overrides={overrides}")
        return cfg

    def with_levers(self, **overrides) -> "EngineConfig":
        """
        Return a copy with the given fields replaced.

        Type coercion follows the existing field value, so string values
        from a CLI or environment work: "5" → 5, "false" → False,
        "30,60,90" → (30, 60, 90).
        Raises ValueError for unknown lever names.
        """
        known = {f.name for f in fields(self)}
        coerced = {}
        for key, raw_val in overrides.items():
            if key not in known:
                raise ValueError(f"with_levers: unknown lever '{key}'")
            coerced[key] = _coerce(getattr(self, key), raw_val)
        return replace(self, **coerced)

    def tags(self) -> List[str]:
        """
        Short tags for every lever that differs from its default.
        Stored with backtest results so a number can be reproduced.
        """
        default = EngineConfig.from_profile(self.profile) if self.profile in PROFILES else EngineConfig()
        tags = [f"profile_{self.profile}"]
        for f in fields(self):
            if f.name in ("profile", "anchor_pivots"):
                continue
            val = getattr(self, f.name)
            if val != getattr(default, f.name):
                if isinstance(val, tuple):
                    val = "-".join(str(v) for v in val)
                tags.append(f"{f.name}_{val}")
        return tags

    def to_dict(self) -> dict:
        return asdict(self)


def _coerce(existing, raw_val):
    if isinstance(existing, bool):
        if isinstance(raw_val, str):
            return raw_val.strip().lower() not in ("false", "0", "no", "off")
        return bool(raw_val)
    if isinstance(existing, float):
        return float(raw_val)
    if isinstance(existing, int):
        return int(raw_val)
    if isinstance(existing, tuple):
        if isinstance(raw_val, str):
            raw_val = [v for v in raw_val.split(",") if v.strip()]
        item_type = type(existing[0]) if existing else float
        return tuple(item_type(v) for v in raw_val)
    if isinstance(existing, str):
        return str(raw_val)
    return raw_val


# ── Anchor pivots ──────────────────────────────────────────────────────────
# Hand-picked cycle extremes for well-known symbols. Used only where a
# candle exists on the anchor date; otherwise the data-derived fallback
# takes over (see major_pivots.py).
DEFAULT_ANCHOR_PIVOTS: Dict[str, Tuple[Tuple[str, float, str, float], ...]] = {
    "BTC": (
        ("2018-12-15", 3100.00,    "MAJOR_LOW",  1.0),
        ("2023-01-01", 15455.00,   "MAJOR_LOW",  0.9),
        ("2024-03-01", 72000.00,   "MAJOR_HIGH", 0.8),
        ("2025-10-01", 126272.76,  "MAJOR_HIGH", 1.0),
    ),
    "SOL": (
        ("2020-05-11", 0.50,   "MAJOR_LOW",  1.0),
        ("2021-11-07", 258.00, "MAJOR_HIGH", 1.0),
        ("2022-12-29", 8.00,   "MAJOR_LOW",  0.9),
        ("2024-03-18", 210.00, "MAJOR_HIGH", 0.8),
        ("2025-01-19", 293.31, "MAJOR_HIGH", 1.0),
    ),
    "TAO": (
        ("2023-05-14", 30.83,  "MAJOR_LOW",  1.0),
        ("2023-10-20", 47.91,  "MAJOR_LOW",  0.8),
        ("2023-12-16", 348.05, "MAJOR_HIGH", 0.9),
        ("2024-03-07", 757.60, "MAJOR_HIGH", 1.0),
    ),
    "WIF": (
        ("2023-12-13", 0.001555, "MAJOR_LOW",  1.0),
        ("2024-01-04", 4.83,     "MAJOR_HIGH", 1.0),
        ("2024-03-15", 3.16,     "MAJOR_HIGH", 0.8),
        ("2024-08-06", 1.27,     "MAJOR_LOW",  0.9),
        ("2024-11-14", 4.19,     "MAJOR_HIGH", 0.7),
    ),
}
