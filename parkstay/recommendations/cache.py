"""
Aggregate cache of precomputed family results.

One entry per query family holds the ranked output of the whole dataset
(unbounded ranks), built from one store snapshot. Lookups filter and slice
an entry without touching distances or per-group ranks. Entries are
replaced wholesale: writers build a fresh dict and swap it in under a lock,
readers only ever see a complete dict.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .data_store import DatasetStore
from .errors import CacheMiss, CacheStale, InvalidArgument
from .pipeline import FAMILIES, Family

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    family: str
    data: dict[str, pd.DataFrame]
    params: dict[str, Any]
    version: int
    built_at: float = field(default_factory=time.time)
    build_ms: float = 0.0

    @property
    def rows(self) -> int:
        return sum(len(frame) for frame in self.data.values())


def _family(name: str) -> Family:
    try:
        return FAMILIES[name]
    except KeyError:
        raise InvalidArgument(f"Unknown query family: {name}") from None


class AggregateCache:
    def __init__(self, store: DatasetStore, config: EngineConfig = DEFAULT_ENGINE_CONFIG) -> None:
        self.store = store
        self.config = config
        self._entries: dict[str, CacheEntry] = {}
        self._write_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._stale = 0
        store.subscribe(self._on_store_change)

    def close(self) -> None:
        """Detach from the store and drop every entry."""
        self.store.unsubscribe(self._on_store_change)
        self.invalidate_all()

    def _on_store_change(self, version: int) -> None:
        logger.info("Dataset store moved to version %d, dropping aggregate cache", version)
        self.invalidate_all()

    def _count(self, attr: str) -> None:
        with self._stats_lock:
            setattr(self, attr, getattr(self, attr) + 1)

    # ── Writers ──────────────────────────────────────────────────────────

    def build(self, family: str, cancel: threading.Event | None = None) -> CacheEntry:
        """
        Run the family's full pipeline once and swap the result in.

        Raises ``BuildCancelled`` if ``cancel`` is set between groups, and
        ``CacheStale`` if the store changed while building (the result is
        discarded rather than published).
        """
        spec = _family(family)
        snapshot = self.store.snapshot()
        start = time.time()
        data, params = spec.build(snapshot, self.config, cancel)
        elapsed_ms = round((time.time() - start) * 1000, 1)

        entry = CacheEntry(
            family=family, data=data, params=params, version=snapshot.version, build_ms=elapsed_ms
        )
        with self._write_lock:
            if self.store.version != snapshot.version:
                raise CacheStale(
                    f"{family} built from version {snapshot.version}, store is at {self.store.version}"
                )
            self._entries = {**self._entries, family: entry}

        logger.info("Built %s cache entry: %d rows in %.1f ms", family, entry.rows, elapsed_ms)
        return entry

    def build_all(self, cancel: threading.Event | None = None) -> dict[str, CacheEntry]:
        return {name: self.build(name, cancel=cancel) for name in FAMILIES}

    def invalidate(self, family: str) -> None:
        _family(family)
        with self._write_lock:
            if family in self._entries:
                self._entries = {k: v for k, v in self._entries.items() if k != family}

    def invalidate_all(self) -> None:
        with self._write_lock:
            self._entries = {}

    # ── Readers ──────────────────────────────────────────────────────────

    def entry(self, family: str) -> CacheEntry | None:
        return self._entries.get(family)

    def lookup(self, family: str, request: Any) -> pd.DataFrame:
        """
        Answer ``request`` from the cached entry for ``family``.

        Raises ``CacheMiss`` when there is no entry or the entry was built
        from an older store version, and ``CacheStale`` when the entry was
        built with different thresholds than the request needs or cannot
        answer its filter.
        """
        spec = _family(family)
        entry = self._entries.get(family)
        if entry is None:
            self._count("_misses")
            raise CacheMiss(f"{family} has not been built")
        if entry.version != self.store.version:
            self._count("_stale")
            raise CacheMiss(f"{family} built from version {entry.version}, store is at {self.store.version}")
        try:
            result = spec.lookup(entry, request, self.config)
        except CacheStale:
            self._count("_misses")
            raise
        self._count("_hits")
        return result

    def stats(self) -> dict:
        with self._stats_lock:
            hits, misses, stale = self._hits, self._misses, self._stale
        total = hits + misses + stale
        entries = self._entries
        return {
            "size": len(entries),
            "hits": hits,
            "misses": misses,
            "stale": stale,
            "hit_rate": round(hits / total * 100, 1) if total > 0 else 0.0,
            "entries": {
                name: {"rows": e.rows, "version": e.version, "build_ms": e.build_ms, "params": e.params}
                for name, e in entries.items()
            },
        }

    def clear_stats(self) -> None:
        with self._stats_lock:
            self._hits = 0
            self._misses = 0
            self._stale = 0
