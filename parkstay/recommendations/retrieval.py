"""
Query façade for the ranked families.

Responsibilities:
- Validate flat request parameters into request models.
- Answer from the aggregate cache when it holds a current entry.
- Fall back to the exact pipeline on a miss or a stale entry.
- Return result models ready for API serialisation.
"""
from __future__ import annotations

import logging
import time
from typing import Any

import pandas as pd
from pydantic import BaseModel, ValidationError

from ..analytics.store import record_event
from .cache import AggregateCache
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .data_store import get_store
from .errors import CacheMiss, CacheStale, InvalidArgument
from .models import (
    BiodiverseListing,
    ListingRecommendation,
    NearbyListing,
    PhotoSpecies,
    PopularSpecies,
)
from .pipeline import (
    BIODIVERSE_LISTINGS,
    FAMILIES,
    NEAR_PARK_LISTINGS,
    PHOTO_SPECIES,
    POPULAR_SPECIES,
    SPECIES_LISTINGS,
    SPECIES_STATE_LISTINGS,
)

logger = logging.getLogger(__name__)

_config: EngineConfig = DEFAULT_ENGINE_CONFIG
_cache: AggregateCache | None = None


def get_config() -> EngineConfig:
    return _config


def set_config(config: EngineConfig) -> None:
    """Swap the engine config; the cache is rebuilt lazily against it."""
    global _config, _cache
    _config = config
    if _cache is not None:
        _cache.close()
    _cache = None


def get_cache() -> AggregateCache:
    """Return the aggregate cache bound to the current dataset store."""
    global _cache
    store = get_store()
    if _cache is None or _cache.store is not store:
        if _cache is not None:
            _cache.close()
        _cache = AggregateCache(store, _config)
    return _cache


def validate(model: type[BaseModel], **params: Any) -> BaseModel:
    try:
        return model(**params)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise InvalidArgument(
            f"Invalid parameters for {model.__name__}: {fields}",
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc


def records(frame: pd.DataFrame) -> list[dict[str, Any]]:
    """DataFrame rows as plain dicts with missing values as ``None``."""
    if frame.empty:
        return []
    boxed = frame.astype(object)
    return boxed.where(frame.notna(), None).to_dict(orient="records")


def run_family(family: str, request: BaseModel) -> tuple[pd.DataFrame, bool]:
    """
    Answer a validated request, returning ``(frame, cache_hit)``.

    The frame is complete or an exception propagates; dataset store failures
    are not caught here.
    """
    spec = FAMILIES[family]
    if _config.cache_enabled:
        cache = get_cache()
        try:
            return cache.lookup(family, request), True
        except CacheMiss as exc:
            logger.info("Aggregate cache has no current %s entry (%s)", family, exc)
            if _config.rebuild_on_stale:
                try:
                    cache.build(family)
                    return cache.lookup(family, request), True
                except CacheStale:
                    logger.warning("Rebuild of %s did not produce a usable entry", family, exc_info=True)
        except CacheStale as exc:
            logger.info("Aggregate cache cannot answer %s (%s), using exact path", family, exc)

    return spec.exact(get_store().snapshot(), request, _config), False


def _query(family: str, **params: Any) -> list[BaseModel]:
    start_time = time.time()
    spec = FAMILIES[family]
    request = validate(spec.request_model, **params)

    frame, cache_hit = run_family(family, request)
    results = [spec.result_model(**row) for row in records(frame)]

    elapsed_ms = round((time.time() - start_time) * 1000, 1)
    record_event("query", {
        "family": family,
        "params": request.model_dump(),
        "results_returned": len(results),
        "response_time_ms": elapsed_ms,
        "cache_hit": cache_hit,
    })
    return results


# ── Entry points ─────────────────────────────────────────────────────────


def recommended_listings_for_species(species: str, num: int) -> list[ListingRecommendation]:
    """Closest well-reviewed listings, ``num`` per park where ``species`` occurs."""
    return _query(SPECIES_LISTINGS, species=species, num=num)


def recommended_listings_for_species_in_state(
    species: str, num: int, state: str
) -> list[ListingRecommendation]:
    """Like ``recommended_listings_for_species`` for parks and listings in ``state``."""
    return _query(SPECIES_STATE_LISTINGS, species=species, num=num, state=state)


def most_biodiverse_listings(
    state: str, neighbourhood: str, radius_miles: float, num: int
) -> list[BiodiverseListing]:
    """Top ``num`` listings of a neighbourhood by distinct species within ``radius_miles``."""
    return _query(
        BIODIVERSE_LISTINGS,
        state=state,
        neighbourhood=neighbourhood,
        radius_miles=radius_miles,
        num=num,
    )


def popular_species_per_park(num: int, min_trail_popularity: float | None = None) -> list[PopularSpecies]:
    return _query(POPULAR_SPECIES, num=num, min_trail_popularity=min_trail_popularity)


def species_near_top_listings(num: int) -> list[PhotoSpecies]:
    return _query(PHOTO_SPECIES, num=num)


def listings_near_park(park_code: str, num: int | None = None) -> list[NearbyListing]:
    if num is None:
        num = _config.near_park_default_num
    return _query(NEAR_PARK_LISTINGS, park_code=park_code, num=num)
