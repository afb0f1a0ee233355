from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .analytics.aggregator import compute_analytics
from .analytics.store import get_events
from .recommendations import catalog
from .recommendations.errors import CacheStale, InvalidArgument
from .recommendations.pipeline import FAMILIES
from .recommendations.retrieval import (
    get_cache,
    listings_near_park,
    most_biodiverse_listings,
    popular_species_per_park,
    recommended_listings_for_species,
    recommended_listings_for_species_in_state,
    species_near_top_listings,
)

app = FastAPI(title="Park & Stay Recommendation API", version="1.0.0")


@app.exception_handler(InvalidArgument)
async def invalid_argument_handler(request: Request, exc: InvalidArgument) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})


# A rebuild that raced a data change publishes nothing; the caller may retry.
@app.exception_handler(CacheStale)
async def cache_stale_handler(request: Request, exc: CacheStale) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# ── Catalogue endpoints ──────────────────────────────────────────────────


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/parks")
def parks(
    sort_by: str = "park_name",
    search_by: str | None = None,
    term: str | None = None,
) -> dict:
    if search_by and term:
        results = catalog.search_parks(search_by, term, sort_by)
    else:
        results = catalog.all_parks(sort_by)
    return {"results": results}


@app.get("/random")
def random_park() -> dict:
    park = catalog.random_park()
    if park is None:
        raise HTTPException(status_code=404, detail="No parks loaded")
    return {"results": [park]}


@app.get("/parks/{park_code}")
def park(park_code: str) -> dict:
    found = catalog.park_info(park_code)
    if found is None:
        raise HTTPException(status_code=404, detail=f"Unknown park: {park_code}")
    return {"results": [found]}


@app.get("/parks/{park_code}/trails")
def trails(park_code: str, limit: int = 20) -> dict:
    return {"results": catalog.trails_for_park(park_code, limit)}


@app.get("/parks/{park_code}/nearby-listings")
def nearby_listings(park_code: str, num: int | None = None) -> dict:
    return {"results": listings_near_park(park_code, num)}


@app.get("/species")
def species(park_name: str) -> dict:
    return {"results": catalog.species_at_park(park_name)}


@app.get("/listings/{listing_id}")
def listing(listing_id: int) -> dict:
    found = catalog.listing_info(listing_id)
    if found is None:
        raise HTTPException(status_code=404, detail=f"Unknown listing: {listing_id}")
    return {"results": [found]}


# ── Ranked families ──────────────────────────────────────────────────────


@app.get("/recommended-listings")
def recommended_listings(
    species: str | None = None,
    num: int | None = None,
    state: str | None = None,
) -> dict:
    if state:
        results = recommended_listings_for_species_in_state(species, num, state)
    else:
        results = recommended_listings_for_species(species, num)
    return {"results": results}


@app.get("/most-biodiverse-listings")
def biodiverse_listings(
    state: str | None = None,
    neighbourhood: str | None = None,
    radius: float | None = None,
    num: int | None = None,
) -> dict:
    return {"results": most_biodiverse_listings(state, neighbourhood, radius, num)}


@app.get("/popular-species")
def popular_species(num: int | None = None, min_trail_popularity: float | None = None) -> dict:
    return {"results": popular_species_per_park(num, min_trail_popularity)}


@app.get("/species-for-photographers")
def species_for_photographers(num: int | None = None) -> dict:
    return {"results": species_near_top_listings(num)}


# ── Admin endpoints ──────────────────────────────────────────────────────


@app.get("/cache/stats")
def cache_stats() -> dict:
    return get_cache().stats()


@app.post("/cache/rebuild")
def cache_rebuild(family: str | None = None) -> dict:
    cache = get_cache()
    if family is None:
        entries = cache.build_all()
    else:
        entries = {family: cache.build(family)}
    return {
        "built": {name: {"rows": e.rows, "build_ms": e.build_ms} for name, e in entries.items()},
        "families": sorted(FAMILIES),
    }


@app.get("/analytics")
def analytics() -> dict:
    return compute_analytics(get_events())
