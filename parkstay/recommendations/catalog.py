"""Catalogue lookups over single collections (no ranking across groups)."""
from __future__ import annotations

import random

import pandas as pd

from .data_store import contains_term, get_store
from .errors import InvalidArgument
from .models import ListingOut, ParkOut, SpeciesOut, TrailOut
from .planner import first_seen
from .retrieval import records

PARK_SORTS = {
    "park_name": True,
    "acres": False,
    "species_count": False,
}
PARK_SEARCHES = ("park_name", "state", "species")


def _check_sort(sort_by: str) -> bool:
    if sort_by not in PARK_SORTS:
        raise InvalidArgument(f"sort_by must be one of {sorted(PARK_SORTS)}, got {sort_by!r}")
    return PARK_SORTS[sort_by]


def _parks_with_counts(species: pd.DataFrame) -> pd.DataFrame:
    """Parks joined to their species, one row per park with ``species_count``."""
    store = get_store()
    parks = store.scan("parks")
    joined = parks.merge(species[["park_name", "species_id"]], on="park_name", how="inner")
    counts = joined.groupby("park_name", sort=False)["species_id"].count().rename("species_count")
    return first_seen(parks, "park_name").join(counts, on="park_name", how="inner")


def _sorted_parks(parks: pd.DataFrame, sort_by: str) -> list[ParkOut]:
    ascending = _check_sort(sort_by)
    parks = parks.sort_values([sort_by, "park_name"], ascending=[ascending, True], kind="mergesort")
    return [ParkOut(**row) for row in records(parks)]


def all_parks(sort_by: str = "park_name") -> list[ParkOut]:
    """Every park with at least one species, with its species count."""
    _check_sort(sort_by)
    return _sorted_parks(_parks_with_counts(get_store().scan("species")), sort_by)


def search_parks(search_by: str, term: str, sort_by: str = "park_name") -> list[ParkOut]:
    """
    Parks whose name, state or species common names contain ``term``.

    ``species_count`` counts only the species rows that matched the search,
    so a species search reports how many matching species each park has.
    """
    if search_by not in PARK_SEARCHES:
        raise InvalidArgument(f"search_by must be one of {list(PARK_SEARCHES)}, got {search_by!r}")
    _check_sort(sort_by)

    store = get_store()
    species = store.scan("species")
    if search_by == "species":
        species = species.loc[contains_term(species["common_names"], term, case=False)]
        parks = _parks_with_counts(species)
    else:
        parks = _parks_with_counts(species)
        parks = parks.loc[contains_term(parks[search_by], term, case=False)]
    return _sorted_parks(parks, sort_by)


def species_at_park(park_name: str) -> list[SpeciesOut]:
    species = get_store().scan("species", where={"park_name": park_name})
    species = species.sort_values("category", kind="mergesort", na_position="last")
    return [SpeciesOut(**row) for row in records(species)]


def listing_info(listing_id: int | str) -> ListingOut | None:
    listing = get_store().scan("listings", where={"id": listing_id})
    if listing.empty:
        return None
    return ListingOut(**records(listing.head(1))[0])


def park_info(park_code: str) -> ParkOut | None:
    park = get_store().scan("parks", where={"park_code": park_code})
    if park.empty:
        return None
    return ParkOut(**records(park.head(1))[0])


def trails_for_park(park_code: str, limit: int = 20) -> list[TrailOut]:
    """Best-rated trails of a park."""
    if limit <= 0:
        raise InvalidArgument(f"limit must be a positive integer, got {limit}")
    trails = get_store().scan("trails", where={"park_code": park_code})
    trails = trails.sort_values("avg_rating", ascending=False, kind="mergesort", na_position="last")
    return [TrailOut(**row) for row in records(trails.head(limit))]


def random_park(seed: int | None = None) -> ParkOut | None:
    parks = get_store().scan("parks")
    if parks.empty:
        return None
    index = random.Random(seed).randrange(len(parks))
    return ParkOut(**records(parks.iloc[[index]])[0])
