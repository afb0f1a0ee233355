from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if not raw:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineConfig:
    earth_radius_miles: float = 3958.8

    # Families 1-2: only well-reviewed listings are recommended nationally
    min_reviews: int = _env_int("PARKSTAY_MIN_REVIEWS", 150)

    # Family 4: parks qualify through at least one trail this popular
    popular_trail_popularity: float = _env_float("PARKSTAY_POPULAR_TRAIL_POPULARITY", 6.5731)

    # Family 5: quiet trails near the most reviewed listings
    photo_trail_popularity: float = _env_float("PARKSTAY_PHOTO_TRAIL_POPULARITY", 6.0)
    top_listings: int = _env_int("PARKSTAY_TOP_LISTINGS", 100)
    photo_radius_miles: float = _env_float("PARKSTAY_PHOTO_RADIUS_MILES", 100.0)

    # Family 6
    near_park_default_num: int = 50

    cache_enabled: bool = _env_bool("PARKSTAY_CACHE_ENABLED", True)
    rebuild_on_stale: bool = _env_bool("PARKSTAY_REBUILD_ON_STALE", False)
    ranker_workers: int = _env_int("PARKSTAY_RANKER_WORKERS", 1)


DEFAULT_ENGINE_CONFIG = EngineConfig()
