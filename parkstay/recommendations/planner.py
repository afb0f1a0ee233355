"""
Join and group planning for the ranked query families.

Each function here is a pure transformation of a store snapshot into the
rows a family ranks: anchors are joined to candidates, a group key is
attached and distances are computed. Nothing here ranks or truncates, so
the exact path and the cache builder can share every step.
"""
from __future__ import annotations

import threading

import numpy as np
import pandas as pd

from .data_store import Snapshot, contains_term
from .geo import EARTH_RADIUS_MILES, distance_matrix
from .ranking import check_cancelled, rank_partitioned

TOP_LISTING_ORDER = [("number_of_reviews", False), ("id", True)]


def first_seen(frame: pd.DataFrame, key: str | list[str]) -> pd.DataFrame:
    """One representative row per key: the first one encountered."""
    return frame.drop_duplicates(subset=key, keep="first")


def anchor_parks(snapshot: Snapshot, key: str = "park_name") -> pd.DataFrame:
    """Parks as anchors, renamed so they never collide with candidate columns."""
    parks = first_seen(snapshot.parks.dropna(subset=[key]), key)
    return parks.rename(
        columns={
            "state": "park_state",
            "latitude": "park_latitude",
            "longitude": "park_longitude",
            "acres": "park_acres",
        }
    )[["park_code", "park_name", "park_state", "park_latitude", "park_longitude"]]


def parks_with_species(snapshot: Snapshot, species: str) -> pd.DataFrame:
    """Anchor parks where some species' common names contain ``species``."""
    matches = snapshot.species.loc[
        contains_term(snapshot.species["common_names"], species, case=False), "park_name"
    ]
    parks = anchor_parks(snapshot)
    return parks.loc[parks["park_name"].isin(set(matches))]


PARK_COORDS = ("park_latitude", "park_longitude")
LISTING_COORDS = ("latitude", "longitude")


def cross_distances(
    anchors: pd.DataFrame,
    candidates: pd.DataFrame,
    anchor_coords: tuple[str, str] = PARK_COORDS,
    candidate_coords: tuple[str, str] = LISTING_COORDS,
    earth_radius: float = EARTH_RADIUS_MILES,
) -> pd.DataFrame:
    """
    Every (anchor, candidate) pair with its haversine ``distance``.

    Rows are anchor-major; within one anchor, candidates keep their input
    order, which the ranker relies on for its final tie-break.
    """
    n_anchors, n_candidates = len(anchors), len(candidates)
    if n_anchors == 0 or n_candidates == 0:
        columns = list(anchors.columns) + list(candidates.columns) + ["distance"]
        return pd.DataFrame(columns=columns)

    distances = distance_matrix(
        anchors[anchor_coords[0]],
        anchors[anchor_coords[1]],
        candidates[candidate_coords[0]],
        candidates[candidate_coords[1]],
        radius=earth_radius,
    )
    left = anchors.iloc[np.repeat(np.arange(n_anchors), n_candidates)].reset_index(drop=True)
    right = candidates.iloc[np.tile(np.arange(n_candidates), n_anchors)].reset_index(drop=True)
    pairs = pd.concat([left, right], axis=1)
    pairs["distance"] = distances.reshape(-1)
    return pairs


# ── Families 1-2: listings near parks where a species occurs ────────────


def species_listing_pairs(
    snapshot: Snapshot, species: str, min_reviews: int, earth_radius: float = EARTH_RADIUS_MILES
) -> pd.DataFrame:
    listings = snapshot.listings.loc[snapshot.listings["number_of_reviews"] > min_reviews]
    return cross_distances(parks_with_species(snapshot, species), listings, earth_radius=earth_radius)


def all_park_listing_pairs(
    snapshot: Snapshot, min_reviews: int | None = None, earth_radius: float = EARTH_RADIUS_MILES
) -> pd.DataFrame:
    listings = snapshot.listings
    if min_reviews is not None:
        listings = listings.loc[listings["number_of_reviews"] > min_reviews]
    return cross_distances(anchor_parks(snapshot), listings, earth_radius=earth_radius)


def species_state_listing_pairs(
    snapshot: Snapshot, species: str, state: str, earth_radius: float = EARTH_RADIUS_MILES
) -> pd.DataFrame:
    parks = parks_with_species(snapshot, species)
    parks = parks.loc[contains_term(parks["park_state"], state)]
    listings = snapshot.listings.loc[contains_term(snapshot.listings["state"], state)]
    return cross_distances(parks, listings, earth_radius=earth_radius)


# ── Family 3: biodiversity around listings ───────────────────────────────


def select_neighbourhood(listings: pd.DataFrame, state: str, neighbourhood: str) -> pd.DataFrame:
    """Listings in ``neighbourhood`` (exact match) whose state contains ``state``."""
    mask = (listings["neighbourhood"] == neighbourhood) & contains_term(listings["state"], state)
    return listings.loc[mask.fillna(False).astype(bool)]


LISTING_BATCH_SIZE = 5000


def listing_park_distances(
    listings: pd.DataFrame,
    snapshot: Snapshot,
    earth_radius: float = EARTH_RADIUS_MILES,
    cancel: threading.Event | None = None,
    batch_size: int = LISTING_BATCH_SIZE,
) -> pd.DataFrame:
    """
    (listing id, park_name, distance) for every listing/park combination.

    Listings are measured ``batch_size`` at a time, in input order, and
    ``cancel`` is checked between batches.
    """
    parks = anchor_parks(snapshot)
    listings = listings[["id", "latitude", "longitude"]]
    batches = []
    for start in range(0, len(listings), batch_size):
        check_cancelled(cancel, "distance computation")
        pairs = cross_distances(
            listings.iloc[start : start + batch_size],
            parks,
            anchor_coords=LISTING_COORDS,
            candidate_coords=PARK_COORDS,
            earth_radius=earth_radius,
        )
        batches.append(pairs[["id", "park_name", "distance"]])
    check_cancelled(cancel, "distance computation")
    if not batches:
        return pd.DataFrame(columns=["id", "park_name", "distance"])
    return pd.concat(batches, ignore_index=True)


def park_species(snapshot: Snapshot) -> pd.DataFrame:
    """Distinct (park_name, scientific_name) occurrences."""
    species = snapshot.species.dropna(subset=["park_name", "scientific_name"])
    return first_seen(species[["park_name", "scientific_name"]], ["park_name", "scientific_name"])


def biodiversity_counts(distances: pd.DataFrame, occurrences: pd.DataFrame, radius: float) -> pd.DataFrame:
    """
    Distinct species reachable from each listing through parks closer than
    ``radius``. Listings with no park in range are absent from the result.
    Rows come out in the order listings first appear in ``distances``.
    """
    nearby = distances.loc[distances["distance"] < radius, ["id", "park_name"]]
    reachable = nearby.merge(occurrences, on="park_name", how="inner")
    if reachable.empty:
        return pd.DataFrame({"id": pd.Series(dtype=object), "count": pd.Series(dtype="int64")})
    counts = reachable.groupby("id", sort=False)["scientific_name"].nunique()
    counts = counts.reindex(pd.unique(nearby["id"])).dropna()
    return counts.rename("count").rename_axis("id").astype("int64").reset_index()


# ── Family 4: popular species in parks with a popular trail ─────────────


def popular_park_species(snapshot: Snapshot, min_trail_popularity: float) -> pd.DataFrame:
    """
    Species occurring in parks that have a trail at least this popular,
    one row per (park_name, scientific_name), carrying ``species_count``:
    how many distinct parks the scientific name is observed in overall.
    """
    species = snapshot.species.dropna(subset=["park_name", "scientific_name"])
    species_count = species.groupby("scientific_name")["park_name"].nunique().rename("species_count")

    trails = snapshot.trails
    popular = set(trails.loc[trails["popularity"] >= min_trail_popularity, "park_name"].dropna())

    rows = first_seen(species.loc[species["park_name"].isin(popular)], ["park_name", "scientific_name"])
    rows = rows[["park_name", "scientific_name", "common_names"]]
    return rows.join(species_count, on="scientific_name")


# ── Family 5: species near the most reviewed listings ───────────────────


def top_reviewed_listings(snapshot: Snapshot, top_listings: int) -> pd.DataFrame:
    return rank_partitioned(
        snapshot.listings, TOP_LISTING_ORDER, limit=top_listings, rank_column="review_rank"
    )


def photo_species_occurrences(
    snapshot: Snapshot,
    top_listings: int,
    radius: float,
    max_trail_popularity: float,
    earth_radius: float = EARTH_RADIUS_MILES,
) -> pd.DataFrame:
    """
    ``occurrence_count`` per species: the number of (listing, park, trail)
    paths from a top-reviewed listing, through a park within ``radius``
    miles, along a trail no more popular than ``max_trail_popularity``, to
    the species' park. One row per species_id with its first-seen names.
    """
    top = top_reviewed_listings(snapshot, top_listings)[["id", "latitude", "longitude"]]
    parks = anchor_parks(snapshot, key="park_code")
    pairs = cross_distances(
        top, parks, anchor_coords=LISTING_COORDS, candidate_coords=PARK_COORDS, earth_radius=earth_radius
    )
    near = first_seen(pairs.loc[pairs["distance"] <= radius, ["id", "park_code"]], ["id", "park_code"])
    paths_per_park = near.groupby("park_code").size().rename("paths")

    trails = snapshot.trails.loc[snapshot.trails["popularity"] <= max_trail_popularity]
    trails = trails.join(paths_per_park, on="park_code", how="inner")
    weight = trails.groupby("park_name")["paths"].sum()

    species = snapshot.species.join(weight.rename("weight"), on="park_name", how="inner")
    if species.empty:
        return pd.DataFrame(
            columns=["species_id", "scientific_name", "common_names", "occurrence_count"]
        )
    counts = species.groupby("species_id", sort=False)["weight"].sum().rename("occurrence_count")
    names = first_seen(species, "species_id")[["species_id", "scientific_name", "common_names"]]
    result = names.join(counts, on="species_id")
    result["occurrence_count"] = result["occurrence_count"].astype("int64")
    return result.reset_index(drop=True)


# ── Family 6: listings closest to one park ──────────────────────────────


def park_listing_pairs(
    snapshot: Snapshot, park_code: str | None = None, earth_radius: float = EARTH_RADIUS_MILES
) -> pd.DataFrame:
    parks = anchor_parks(snapshot, key="park_code")
    if park_code is not None:
        parks = parks.loc[parks["park_code"] == park_code]
    return cross_distances(parks, snapshot.listings, earth_radius=earth_radius)
