"""
Ranked query families.

Every family is defined once as three functions over the same planner and
ranker code:

* ``exact``  - plan, rank and finalise against a snapshot for one request;
* ``build``  - plan and rank the whole dataset with unbounded ranks, for the
  aggregate cache;
* ``lookup`` - filter a built cache entry by the request's scalar predicates
  and finalise it exactly the way ``exact`` does.

Sharing the finalisation step is what makes the cached answer identical to
the exact one.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

import pandas as pd
from pydantic import BaseModel

from ..data_ingestion.ingest import CANONICAL_COLUMNS
from .config import EngineConfig
from .data_store import Snapshot, contains_term
from .errors import CacheStale
from .models import (
    BiodiverseListing,
    BiodiverseListingsRequest,
    ListingRecommendation,
    NearbyListing,
    NearParkListingsRequest,
    PhotoSpecies,
    PhotoSpeciesRequest,
    PopularSpecies,
    PopularSpeciesRequest,
    SpeciesListingsRequest,
    SpeciesStateListingsRequest,
)
from .planner import (
    all_park_listing_pairs,
    biodiversity_counts,
    first_seen,
    listing_park_distances,
    park_listing_pairs,
    park_species,
    photo_species_occurrences,
    popular_park_species,
    select_neighbourhood,
    species_listing_pairs,
    species_state_listing_pairs,
)
from .ranking import rank_partitioned, top_ranks

if TYPE_CHECKING:
    from .cache import CacheEntry

SPECIES_LISTINGS = "species_listings"
SPECIES_STATE_LISTINGS = "species_state_listings"
BIODIVERSE_LISTINGS = "biodiverse_listings"
POPULAR_SPECIES = "popular_species"
PHOTO_SPECIES = "photo_species"
NEAR_PARK_LISTINGS = "near_park_listings"

LISTING_ORDER = [("distance", True), ("price", True), ("number_of_reviews", False)]
NEAR_PARK_ORDER = [("distance", True), ("price", True), ("number_of_reviews", True)]
BIODIVERSE_ORDER = [("count", False), ("id", True)]
POPULAR_ORDER = [("species_count", False), ("scientific_name", True)]
PHOTO_ORDER = [("occurrence_count", False), ("species_id", True)]

LISTING_COLUMNS = CANONICAL_COLUMNS["listings"]


@dataclass(frozen=True)
class Family:
    name: str
    request_model: type[BaseModel]
    result_model: type[BaseModel]
    exact: Callable[[Snapshot, Any, EngineConfig], pd.DataFrame]
    build: Callable[[Snapshot, EngineConfig, threading.Event | None], tuple[dict[str, pd.DataFrame], dict[str, Any]]]
    lookup: Callable[["CacheEntry", Any, EngineConfig], pd.DataFrame]


def _require_params(entry: "CacheEntry", expected: dict[str, Any]) -> None:
    if entry.params != expected:
        raise CacheStale(f"{entry.family} was built with {entry.params}, request needs {expected}")


def _species_parks(species: pd.DataFrame, term: str) -> set:
    return set(species.loc[contains_term(species["common_names"], term, case=False), "park_name"])


# ── Families 1-2 ─────────────────────────────────────────────────────────


def _finalize_park_listings(ranked: pd.DataFrame, num: int) -> pd.DataFrame:
    top = top_ranks(ranked, num)
    top = top.sort_values(["distance", "park_name", "rank"], kind="mergesort")
    return top[LISTING_COLUMNS + ["park_name", "distance", "rank"]].reset_index(drop=True)


def _exact_species_listings(snapshot: Snapshot, request: SpeciesListingsRequest, config: EngineConfig) -> pd.DataFrame:
    pairs = species_listing_pairs(snapshot, request.species, config.min_reviews, config.earth_radius_miles)
    ranked = rank_partitioned(
        pairs, LISTING_ORDER, group_key="park_name", limit=request.num, workers=config.ranker_workers
    )
    return _finalize_park_listings(ranked, request.num)


def _build_species_listings(snapshot, config, cancel):
    pairs = all_park_listing_pairs(snapshot, config.min_reviews, config.earth_radius_miles)
    ranked = rank_partitioned(
        pairs, LISTING_ORDER, group_key="park_name", workers=config.ranker_workers, cancel=cancel
    )
    data = {"ranked": ranked, "species": snapshot.species[["park_name", "common_names"]]}
    return data, {"min_reviews": config.min_reviews}


def _lookup_species_listings(entry, request: SpeciesListingsRequest, config: EngineConfig) -> pd.DataFrame:
    _require_params(entry, {"min_reviews": config.min_reviews})
    ranked = entry.data["ranked"]
    parks = _species_parks(entry.data["species"], request.species)
    return _finalize_park_listings(ranked.loc[ranked["park_name"].isin(parks)], request.num)


def _exact_species_state_listings(
    snapshot: Snapshot, request: SpeciesStateListingsRequest, config: EngineConfig
) -> pd.DataFrame:
    pairs = species_state_listing_pairs(snapshot, request.species, request.state, config.earth_radius_miles)
    ranked = rank_partitioned(
        pairs, LISTING_ORDER, group_key="park_name", limit=request.num, workers=config.ranker_workers
    )
    return _finalize_park_listings(ranked, request.num)


def _build_species_state_listings(snapshot, config, cancel):
    # Ranked per (park, listing state): a state-filtered request then reads
    # exactly one partition per park.
    pairs = all_park_listing_pairs(snapshot, earth_radius=config.earth_radius_miles)
    ranked = rank_partitioned(
        pairs,
        LISTING_ORDER,
        group_key=["park_name", "state"],
        workers=config.ranker_workers,
        cancel=cancel,
    )
    data = {"ranked": ranked, "species": snapshot.species[["park_name", "common_names"]]}
    return data, {}


def _lookup_species_state_listings(
    entry, request: SpeciesStateListingsRequest, config: EngineConfig
) -> pd.DataFrame:
    ranked = entry.data["ranked"]
    parks = _species_parks(entry.data["species"], request.species)
    mask = (
        ranked["park_name"].isin(parks)
        & contains_term(ranked["park_state"], request.state)
        & contains_term(ranked["state"], request.state)
    )
    rows = ranked.loc[mask]
    if (rows.groupby("park_name")["state"].nunique() > 1).any():
        raise CacheStale(f"state {request.state!r} spans several listing-state partitions")
    return _finalize_park_listings(rows, request.num)


# ── Family 3 ─────────────────────────────────────────────────────────────


def _finalize_biodiverse(
    distances: pd.DataFrame, occurrences: pd.DataFrame, listings: pd.DataFrame, request: BiodiverseListingsRequest
) -> pd.DataFrame:
    counts = biodiversity_counts(distances, occurrences, request.radius_miles)
    if counts.empty:
        return pd.DataFrame(columns=LISTING_COLUMNS + ["count", "rank"])
    ranked = rank_partitioned(counts, BIODIVERSE_ORDER, limit=request.num)
    details = first_seen(listings, "id")[LISTING_COLUMNS]
    result = ranked.merge(details, on="id", how="left")
    return result[LISTING_COLUMNS + ["count", "rank"]].reset_index(drop=True)


def _exact_biodiverse_listings(
    snapshot: Snapshot, request: BiodiverseListingsRequest, config: EngineConfig
) -> pd.DataFrame:
    anchors = select_neighbourhood(snapshot.listings, request.state, request.neighbourhood)
    distances = listing_park_distances(anchors, snapshot, config.earth_radius_miles)
    return _finalize_biodiverse(distances, park_species(snapshot), anchors, request)


def _build_biodiverse_listings(snapshot, config, cancel):
    data = {
        "listings": snapshot.listings,
        "distances": listing_park_distances(
            snapshot.listings, snapshot, config.earth_radius_miles, cancel=cancel
        ),
        "occurrences": park_species(snapshot),
    }
    return data, {}


def _lookup_biodiverse_listings(entry, request: BiodiverseListingsRequest, config: EngineConfig) -> pd.DataFrame:
    """
    Counting and ranking run here rather than at build time: both depend on
    the caller's radius, so the entry holds only distances and occurrences.
    """
    anchors = select_neighbourhood(entry.data["listings"], request.state, request.neighbourhood)
    distances = entry.data["distances"]
    distances = distances.loc[distances["id"].isin(set(anchors["id"]))]
    return _finalize_biodiverse(distances, entry.data["occurrences"], anchors, request)


# ── Family 4 ─────────────────────────────────────────────────────────────


def _popularity_cut(request: PopularSpeciesRequest, config: EngineConfig) -> float:
    if request.min_trail_popularity is None:
        return config.popular_trail_popularity
    return request.min_trail_popularity


def _finalize_popular_species(ranked: pd.DataFrame, num: int) -> pd.DataFrame:
    top = top_ranks(ranked, num).sort_values(["park_name", "rank"], kind="mergesort")
    return top[["park_name", "scientific_name", "common_names", "species_count", "rank"]].reset_index(drop=True)


def _exact_popular_species(snapshot: Snapshot, request: PopularSpeciesRequest, config: EngineConfig) -> pd.DataFrame:
    rows = popular_park_species(snapshot, _popularity_cut(request, config))
    ranked = rank_partitioned(
        rows, POPULAR_ORDER, group_key="park_name", limit=request.num, workers=config.ranker_workers
    )
    return _finalize_popular_species(ranked, request.num)


def _build_popular_species(snapshot, config, cancel):
    cut = config.popular_trail_popularity
    ranked = rank_partitioned(
        popular_park_species(snapshot, cut),
        POPULAR_ORDER,
        group_key="park_name",
        workers=config.ranker_workers,
        cancel=cancel,
    )
    return {"ranked": ranked}, {"min_trail_popularity": cut}


def _lookup_popular_species(entry, request: PopularSpeciesRequest, config: EngineConfig) -> pd.DataFrame:
    _require_params(entry, {"min_trail_popularity": _popularity_cut(request, config)})
    return _finalize_popular_species(entry.data["ranked"], request.num)


# ── Family 5 ─────────────────────────────────────────────────────────────


def _photo_params(config: EngineConfig) -> dict[str, Any]:
    return {
        "top_listings": config.top_listings,
        "radius": config.photo_radius_miles,
        "max_trail_popularity": config.photo_trail_popularity,
    }


def _finalize_photo_species(ranked: pd.DataFrame, num: int) -> pd.DataFrame:
    top = top_ranks(ranked, num)
    return top[["species_id", "scientific_name", "common_names", "occurrence_count", "rank"]].reset_index(drop=True)


def _exact_photo_species(snapshot: Snapshot, request: PhotoSpeciesRequest, config: EngineConfig) -> pd.DataFrame:
    occurrences = photo_species_occurrences(
        snapshot, **_photo_params(config), earth_radius=config.earth_radius_miles
    )
    ranked = rank_partitioned(occurrences, PHOTO_ORDER, limit=request.num)
    return _finalize_photo_species(ranked, request.num)


def _build_photo_species(snapshot, config, cancel):
    params = _photo_params(config)
    ranked = rank_partitioned(
        photo_species_occurrences(snapshot, **params, earth_radius=config.earth_radius_miles),
        PHOTO_ORDER,
        cancel=cancel,
    )
    return {"ranked": ranked}, params


def _lookup_photo_species(entry, request: PhotoSpeciesRequest, config: EngineConfig) -> pd.DataFrame:
    _require_params(entry, _photo_params(config))
    return _finalize_photo_species(entry.data["ranked"], request.num)


# ── Family 6 ─────────────────────────────────────────────────────────────


def _finalize_near_park(ranked: pd.DataFrame, num: int) -> pd.DataFrame:
    top = top_ranks(ranked, num).sort_values(["park_code", "rank"], kind="mergesort")
    return top[LISTING_COLUMNS + ["park_code", "distance", "rank"]].reset_index(drop=True)


def _exact_near_park_listings(snapshot: Snapshot, request: NearParkListingsRequest, config: EngineConfig) -> pd.DataFrame:
    pairs = park_listing_pairs(snapshot, request.park_code, config.earth_radius_miles)
    ranked = rank_partitioned(pairs, NEAR_PARK_ORDER, group_key="park_code", limit=request.num)
    return _finalize_near_park(ranked, request.num)


def _build_near_park_listings(snapshot, config, cancel):
    ranked = rank_partitioned(
        park_listing_pairs(snapshot, earth_radius=config.earth_radius_miles),
        NEAR_PARK_ORDER,
        group_key="park_code",
        workers=config.ranker_workers,
        cancel=cancel,
    )
    return {"ranked": ranked}, {}


def _lookup_near_park_listings(entry, request: NearParkListingsRequest, config: EngineConfig) -> pd.DataFrame:
    ranked = entry.data["ranked"]
    return _finalize_near_park(ranked.loc[ranked["park_code"] == request.park_code], request.num)


FAMILIES: dict[str, Family] = {
    family.name: family
    for family in (
        Family(
            SPECIES_LISTINGS,
            SpeciesListingsRequest,
            ListingRecommendation,
            _exact_species_listings,
            _build_species_listings,
            _lookup_species_listings,
        ),
        Family(
            SPECIES_STATE_LISTINGS,
            SpeciesStateListingsRequest,
            ListingRecommendation,
            _exact_species_state_listings,
            _build_species_state_listings,
            _lookup_species_state_listings,
        ),
        Family(
            BIODIVERSE_LISTINGS,
            BiodiverseListingsRequest,
            BiodiverseListing,
            _exact_biodiverse_listings,
            _build_biodiverse_listings,
            _lookup_biodiverse_listings,
        ),
        Family(
            POPULAR_SPECIES,
            PopularSpeciesRequest,
            PopularSpecies,
            _exact_popular_species,
            _build_popular_species,
            _lookup_popular_species,
        ),
        Family(
            PHOTO_SPECIES,
            PhotoSpeciesRequest,
            PhotoSpecies,
            _exact_photo_species,
            _build_photo_species,
            _lookup_photo_species,
        ),
        Family(
            NEAR_PARK_LISTINGS,
            NearParkListingsRequest,
            NearbyListing,
            _exact_near_park_listings,
            _build_near_park_listings,
            _lookup_near_park_listings,
        ),
    )
}
