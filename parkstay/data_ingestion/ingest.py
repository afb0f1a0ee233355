from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from .config import DEFAULT_INGESTION_CONFIG, IngestionConfig

logger = logging.getLogger(__name__)


CANONICAL_COLUMNS: dict[str, list[str]] = {
    "parks": ["park_code", "park_name", "state", "acres", "latitude", "longitude"],
    "species": ["species_id", "scientific_name", "common_names", "category", "park_name"],
    "trails": ["park_code", "park_name", "name", "length", "avg_rating", "popularity"],
    "listings": [
        "id",
        "name",
        "latitude",
        "longitude",
        "price",
        "number_of_reviews",
        "city",
        "state",
        "neighbourhood",
        "host_name",
        "room_type",
        "minimum_nights",
        "availability_365",
    ],
}

KEY_COLUMNS: dict[str, list[str]] = {
    "parks": ["park_code", "park_name"],
    "species": ["species_id", "park_name"],
    "trails": ["park_code", "park_name"],
    "listings": ["id"],
}

NUMERIC_COLUMNS: dict[str, list[str]] = {
    "parks": ["acres", "latitude", "longitude"],
    "species": [],
    "trails": ["length", "avg_rating", "popularity"],
    "listings": [
        "latitude",
        "longitude",
        "price",
        "number_of_reviews",
        "minimum_nights",
        "availability_365",
    ],
}

# Alternative headings seen in the public exports, per canonical column.
_ALIASES: dict[str, dict[str, list[str]]] = {
    "parks": {
        "park_code": ["park_code", "Park Code", "code"],
        "park_name": ["park_name", "Park Name", "name"],
        "state": ["state", "State", "states"],
        "acres": ["acres", "Acres", "area"],
        "latitude": ["latitude", "Latitude", "lat"],
        "longitude": ["longitude", "Longitude", "lon", "lng"],
    },
    "species": {
        "species_id": ["species_id", "Species ID", "id"],
        "scientific_name": ["scientific_name", "Scientific Name"],
        "common_names": ["common_names", "Common Names", "common_name"],
        "category": ["category", "Category"],
        "park_name": ["park_name", "Park Name"],
    },
    "trails": {
        "park_code": ["park_code", "area_code"],
        "park_name": ["park_name", "area_name"],
        "name": ["name", "trail_name"],
        "length": ["length", "distance"],
        "avg_rating": ["avg_rating", "rating"],
        "popularity": ["popularity"],
    },
    "listings": {
        "id": ["id", "listing_id"],
        "name": ["name"],
        "latitude": ["latitude", "lat"],
        "longitude": ["longitude", "lon", "lng"],
        "price": ["price"],
        "number_of_reviews": ["number_of_reviews", "reviews"],
        "city": ["city"],
        "state": ["state"],
        "neighbourhood": ["neighbourhood", "neighborhood"],
        "host_name": ["host_name"],
        "room_type": ["room_type"],
        "minimum_nights": ["minimum_nights"],
        "availability_365": ["availability_365"],
    },
}


def _first_present(df: pd.DataFrame, columns: list[str]) -> str | None:
    for col in columns:
        if col in df.columns:
            return col
    return None


def _normalize_state(value: object) -> str | None:
    if value is None or pd.isna(value):
        return None
    codes = [part.strip().upper() for part in str(value).split(",") if part.strip()]
    return ", ".join(codes) if codes else None


def normalize_collection(collection: str, raw: pd.DataFrame) -> pd.DataFrame:
    """
    Map one raw export into its canonical schema.

    Missing optional columns are filled with NA, numeric columns are coerced
    (unparseable values become NaN), state codes are upper-cased and rows
    lacking a key column are dropped.
    """
    canonical = pd.DataFrame(index=raw.index)
    for column in CANONICAL_COLUMNS[collection]:
        source = _first_present(raw, _ALIASES[collection][column])
        canonical[column] = raw[source] if source else pd.NA

    for column in NUMERIC_COLUMNS[collection]:
        canonical[column] = pd.to_numeric(canonical[column], errors="coerce")

    if "state" in canonical.columns:
        canonical["state"] = canonical["state"].apply(_normalize_state)

    for column in ("park_name", "neighbourhood", "common_names", "scientific_name"):
        if column in canonical.columns:
            canonical[column] = canonical[column].astype("string").str.strip()

    before = len(canonical)
    canonical = canonical.dropna(subset=KEY_COLUMNS[collection]).reset_index(drop=True)
    dropped = before - len(canonical)
    if dropped:
        logger.info("Dropped %d %s rows without key columns", dropped, collection)

    return canonical[CANONICAL_COLUMNS[collection]]


def run_ingestion(config: IngestionConfig = DEFAULT_INGESTION_CONFIG) -> dict[str, Path]:
    """
    Execute the ingestion pipeline.

    Steps:
    - Read the raw CSV export of each collection.
    - Map raw fields into the canonical schema.
    - Persist cleaned tables as CSV for the dataset store.
    """
    config.processed_data_dir.mkdir(parents=True, exist_ok=True)

    outputs: dict[str, Path] = {}
    for collection in CANONICAL_COLUMNS:
        raw = pd.read_csv(config.raw_path(collection))
        canonical = normalize_collection(collection, raw)

        output_path = config.processed_path(collection)
        canonical.to_csv(output_path, index=False)
        logger.info("Wrote %d %s rows to %s", len(canonical), collection, output_path)
        outputs[collection] = output_path
    return outputs


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    paths = run_ingestion()
    print(f"Ingestion complete. Processed data saved to: {sorted(str(p) for p in paths.values())}")
