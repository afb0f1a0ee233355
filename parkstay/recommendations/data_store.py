from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

import pandas as pd

from ..data_ingestion.config import DEFAULT_INGESTION_CONFIG
from ..data_ingestion.ingest import CANONICAL_COLUMNS

logger = logging.getLogger(__name__)

COLLECTIONS = tuple(CANONICAL_COLUMNS)


@dataclass(frozen=True)
class Snapshot:
    """A consistent view of all four collections at one store version."""

    version: int
    parks: pd.DataFrame
    species: pd.DataFrame
    trails: pd.DataFrame
    listings: pd.DataFrame


class DatasetStore:
    """
    In-memory holder of the Park, Species, Trail and Listing collections.

    Every mutation bumps ``version`` and notifies subscribers, which is how
    the aggregate cache learns that its entries are stale.
    """

    def __init__(self, frames: dict[str, pd.DataFrame]) -> None:
        missing = [c for c in COLLECTIONS if c not in frames]
        if missing:
            raise KeyError(f"Missing collections: {missing}")
        self._lock = threading.Lock()
        self._frames = {name: self._conform(name, frames[name]) for name in COLLECTIONS}
        self._version = 0
        self._subscribers: list[Callable[[int], None]] = []

    @staticmethod
    def _conform(collection: str, frame: pd.DataFrame) -> pd.DataFrame:
        frame = frame.copy()
        for column in CANONICAL_COLUMNS[collection]:
            if column not in frame.columns:
                frame[column] = pd.NA
        return frame.reset_index(drop=True)

    @property
    def version(self) -> int:
        return self._version

    def subscribe(self, callback: Callable[[int], None]) -> None:
        """Register ``callback(new_version)`` to run after every mutation."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[int], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(
                version=self._version,
                parks=self._frames["parks"],
                species=self._frames["species"],
                trails=self._frames["trails"],
                listings=self._frames["listings"],
            )

    def scan(
        self,
        collection: str,
        where: dict[str, Any] | None = None,
        contains: dict[str, str] | None = None,
        columns: Iterable[str] | None = None,
        case: bool = True,
    ) -> pd.DataFrame:
        """
        Return a filtered, projected copy of one collection.

        ``where`` holds field equality predicates, ``contains`` literal
        substring predicates (case-sensitive unless ``case=False``).
        Unknown collections raise ``KeyError``.
        """
        frame = self._frames[collection]
        mask = pd.Series(True, index=frame.index)
        for field_name, value in (where or {}).items():
            mask &= frame[field_name] == value
        for field_name, term in (contains or {}).items():
            mask &= contains_term(frame[field_name], term, case=case)
        result = frame.loc[mask]
        if columns is not None:
            result = result[list(columns)]
        return result.copy()

    def replace(self, collection: str, frame: pd.DataFrame) -> int:
        """Swap in a new table for ``collection``; returns the new version."""
        if collection not in COLLECTIONS:
            raise KeyError(f"Unknown collection: {collection}")
        with self._lock:
            self._frames = {**self._frames, collection: self._conform(collection, frame)}
            self._version += 1
            version = self._version
        logger.info("Collection %s replaced (%d rows), store version %d", collection, len(frame), version)
        for callback in list(self._subscribers):
            callback(version)
        return version


def contains_term(series: pd.Series, term: str, case: bool = True) -> pd.Series:
    """Literal substring containment; missing values never match."""
    return series.astype("string").str.contains(term, case=case, regex=False, na=False).astype(bool)


def load_store(processed_dir: Path | None = None) -> DatasetStore:
    processed_dir = processed_dir or DEFAULT_INGESTION_CONFIG.processed_data_dir
    frames = {name: pd.read_csv(processed_dir / f"{name}.csv") for name in COLLECTIONS}
    logger.info("Loaded dataset store from %s", processed_dir)
    return DatasetStore(frames)


_store: DatasetStore | None = None


def get_store() -> DatasetStore:
    """Return the process-wide dataset store, loading it on first call."""
    global _store
    if _store is None:
        _store = load_store()
    return _store


def set_store(store: DatasetStore | None) -> None:
    global _store
    _store = store
