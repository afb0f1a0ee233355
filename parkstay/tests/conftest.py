"""Shared fixtures: a small synthetic park/species/trail/listing dataset.

Listings are placed due north of a park, where haversine distance is exactly
``R * dlat``, so tests can reason about distances in miles directly.
"""
from __future__ import annotations

import math

import pandas as pd
import pytest

from parkstay.analytics.store import clear_events
from parkstay.recommendations.config import DEFAULT_ENGINE_CONFIG
from parkstay.recommendations.data_store import DatasetStore, set_store
from parkstay.recommendations.retrieval import set_config

EARTH_RADIUS_MILES = 3958.8

PARK_COORDS = {
    "ACAD": (44.35, -68.21),
    "CHIS": (34.01, -119.42),
    "DEVA": (36.24, -116.82),
    "YELL": (44.60, -110.50),
}


def north_of(park_code: str, miles: float) -> tuple[float, float]:
    lat, lon = PARK_COORDS[park_code]
    return lat + math.degrees(miles / EARTH_RADIUS_MILES), lon


def make_parks() -> pd.DataFrame:
    rows = [
        ("ACAD", "Acadia National Park", "ME", 47390.0),
        ("CHIS", "Channel Islands National Park", "CA", 249561.0),
        ("DEVA", "Death Valley National Park", "CA, NV", 4740912.0),
        ("YELL", "Yellowstone National Park", "WY, MT, ID", 2219791.0),
    ]
    return pd.DataFrame(
        [
            {
                "park_code": code,
                "park_name": name,
                "state": state,
                "acres": acres,
                "latitude": PARK_COORDS[code][0],
                "longitude": PARK_COORDS[code][1],
            }
            for code, name, state, acres in rows
        ]
    )


def make_species() -> pd.DataFrame:
    rows = [
        ("ACAD-1", "Phoca vitulina", "Harbor Seal, Common Seal", "Mammal", "Acadia National Park"),
        ("ACAD-2", "Canis latrans", "Coyote", "Mammal", "Acadia National Park"),
        ("ACAD-3", "Alces alces", "Moose", "Mammal", "Acadia National Park"),
        ("CHIS-1", "Phoca vitulina", "Harbor Seal", "Mammal", "Channel Islands National Park"),
        ("CHIS-2", "Mirounga angustirostris", "Northern Elephant Seal", "Mammal", "Channel Islands National Park"),
        ("CHIS-3", "Canis latrans", "Coyote", "Mammal", "Channel Islands National Park"),
        ("CHIS-4", "Urocyon littoralis", "Island Fox", "Mammal", "Channel Islands National Park"),
        ("DEVA-1", "Canis latrans", "Coyote", "Mammal", "Death Valley National Park"),
        ("DEVA-2", "Gopherus agassizii", "Desert Tortoise", "Reptile", "Death Valley National Park"),
        ("YELL-1", "Canis latrans", "Coyote", "Mammal", "Yellowstone National Park"),
        ("YELL-2", "Ursus arctos", "Grizzly Bear, Brown Bear", "Mammal", "Yellowstone National Park"),
        ("YELL-3", "Bison bison", "American Bison", "Mammal", "Yellowstone National Park"),
        ("YELL-4", "Alces alces", "Moose", "Mammal", "Yellowstone National Park"),
    ]
    return pd.DataFrame(
        rows, columns=["species_id", "scientific_name", "common_names", "category", "park_name"]
    )


def make_trails() -> pd.DataFrame:
    rows = [
        ("ACAD", "Acadia National Park", "Ocean Path", 4.4, 4.6, 8.0),
        ("ACAD", "Acadia National Park", "Jordan Pond Path", 3.3, 4.5, 5.0),
        ("CHIS", "Channel Islands National Park", "Scorpion Canyon Loop", 4.5, 4.7, 3.0),
        ("DEVA", "Death Valley National Park", "Golden Canyon", 3.0, 4.4, 7.2),
        ("YELL", "Yellowstone National Park", "Fairy Falls", 5.4, 4.6, 9.1),
        ("YELL", "Yellowstone National Park", "Lone Star Geyser", 4.8, 4.5, 5.5),
    ]
    return pd.DataFrame(
        rows, columns=["park_code", "park_name", "name", "length", "avg_rating", "popularity"]
    )


def _listing(listing_id, park_code, miles, price, reviews, city, state, neighbourhood, **extra):
    lat, lon = north_of(park_code, miles)
    row = {
        "id": listing_id,
        "name": f"Listing {listing_id}",
        "latitude": lat,
        "longitude": lon,
        "price": price,
        "number_of_reviews": reviews,
        "city": city,
        "state": state,
        "neighbourhood": neighbourhood,
        "host_name": f"Host {listing_id}",
        "room_type": "Entire home/apt",
        "minimum_nights": 2,
        "availability_365": 200,
    }
    row.update(extra)
    return row


def make_listings() -> pd.DataFrame:
    rows = [
        # Bar Harbor, north of Acadia at 1.2 / 3.4 / 5.0 / 9.9 miles
        _listing(1, "ACAD", 1.2, 120.0, 200, "Bar Harbor", "ME", "Bar Harbor"),
        _listing(2, "ACAD", 3.4, 90.0, 300, "Bar Harbor", "ME", "Bar Harbor"),
        _listing(3, "ACAD", 5.0, 150.0, 180, "Bar Harbor", "ME", "Bar Harbor"),
        _listing(4, "ACAD", 9.9, 80.0, 400, "Bar Harbor", "ME", "Bar Harbor"),
        # Ventura, north of Channel Islands at the same distances
        _listing(11, "CHIS", 1.2, 110.0, 210, "Ventura", "CA", "Downtown"),
        _listing(12, "CHIS", 3.4, 95.0, 220, "Ventura", "CA", "Downtown"),
        _listing(13, "CHIS", 5.0, 140.0, 230, "Ventura", "CA", "Downtown"),
        _listing(14, "CHIS", 9.9, 60.0, 240, "Ventura", "CA", "Downtown"),
        # closest to Channel Islands but barely reviewed
        _listing(15, "CHIS", 0.5, 50.0, 20, "Ventura", "CA", "Downtown"),
        # Hollywood: near Channel Islands, near Death Valley, and far from everything
        _listing(21, "CHIS", 40.0, 200.0, 250, "Los Angeles", "CA", "Hollywood"),
        _listing(22, "DEVA", 30.0, 180.0, 180, "Los Angeles", "CA", "Hollywood"),
        _listing(23, "YELL", 900.0, 75.0, 90, "Los Angeles", "CA", "Hollywood"),
        _listing(24, "CHIS", 60.0, 130.0, 400, "Los Angeles", "CA", "Hollywood"),
    ]
    return pd.DataFrame(rows)


def make_frames() -> dict[str, pd.DataFrame]:
    return {
        "parks": make_parks(),
        "species": make_species(),
        "trails": make_trails(),
        "listings": make_listings(),
    }


@pytest.fixture()
def store():
    """A fresh dataset store installed as the process-wide store."""
    dataset = DatasetStore(make_frames())
    set_store(dataset)
    set_config(DEFAULT_ENGINE_CONFIG)
    clear_events()
    yield dataset
    set_store(None)
    set_config(DEFAULT_ENGINE_CONFIG)
