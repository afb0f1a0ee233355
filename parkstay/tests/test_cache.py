from __future__ import annotations

import threading
from unittest.mock import patch

import pytest

from parkstay.recommendations.cache import AggregateCache
from parkstay.recommendations.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from parkstay.recommendations.errors import BuildCancelled, CacheMiss, CacheStale, InvalidArgument
from parkstay.recommendations.models import (
    BiodiverseListingsRequest,
    NearParkListingsRequest,
    PhotoSpeciesRequest,
    PopularSpeciesRequest,
    SpeciesListingsRequest,
    SpeciesStateListingsRequest,
)
from parkstay.recommendations.pipeline import FAMILIES
from parkstay.recommendations.planner import listing_park_distances
from parkstay.recommendations.retrieval import (
    get_cache,
    popular_species_per_park,
    recommended_listings_for_species,
    records,
    set_config,
)

REQUESTS = [
    ("species_listings", SpeciesListingsRequest(species="seal", num=3)),
    ("species_listings", SpeciesListingsRequest(species="coyote", num=2)),
    ("species_listings", SpeciesListingsRequest(species="unicorn", num=2)),
    ("species_state_listings", SpeciesStateListingsRequest(species="seal", num=3, state="CA")),
    ("species_state_listings", SpeciesStateListingsRequest(species="coyote", num=5, state="ME")),
    ("biodiverse_listings", BiodiverseListingsRequest(state="CA", neighbourhood="Hollywood", radius_miles=100, num=10)),
    ("biodiverse_listings", BiodiverseListingsRequest(state="CA", neighbourhood="Hollywood", radius_miles=5, num=10)),
    ("biodiverse_listings", BiodiverseListingsRequest(state="CA", neighbourhood="Downtown", radius_miles=50, num=2)),
    ("popular_species", PopularSpeciesRequest(num=2)),
    ("popular_species", PopularSpeciesRequest(num=50)),
    ("photo_species", PhotoSpeciesRequest(num=4)),
    ("photo_species", PhotoSpeciesRequest(num=1000)),
    ("near_park_listings", NearParkListingsRequest(park_code="CHIS", num=3)),
    ("near_park_listings", NearParkListingsRequest(park_code="NOPE", num=3)),
]


@pytest.mark.parametrize("family,request_model", REQUESTS)
def test_cached_answer_matches_exact_answer(store, family, request_model):
    config = DEFAULT_ENGINE_CONFIG
    exact = FAMILIES[family].exact(store.snapshot(), request_model, config)

    cache = AggregateCache(store, config)
    cache.build(family)
    cached = cache.lookup(family, request_model)

    assert records(cached) == records(exact)


def test_cached_answer_matches_with_parallel_ranking(store):
    config = EngineConfig(ranker_workers=4)
    request_model = SpeciesListingsRequest(species="coyote", num=3)
    exact = FAMILIES["species_listings"].exact(store.snapshot(), request_model, DEFAULT_ENGINE_CONFIG)

    cache = AggregateCache(store, config)
    cache.build("species_listings")
    assert records(cache.lookup("species_listings", request_model)) == records(exact)


def test_lookup_before_build_is_a_miss(store):
    cache = AggregateCache(store)
    with pytest.raises(CacheMiss):
        cache.lookup("popular_species", PopularSpeciesRequest(num=2))
    assert cache.stats()["misses"] == 1


def test_unknown_family_is_rejected(store):
    cache = AggregateCache(store)
    with pytest.raises(InvalidArgument):
        cache.build("campgrounds")


def test_store_change_invalidates_entries(store):
    cache = AggregateCache(store)
    cache.build_all()
    assert cache.stats()["size"] == len(FAMILIES)

    store.replace("trails", store.scan("trails"))

    assert cache.stats()["size"] == 0
    with pytest.raises(CacheStale):
        cache.lookup("near_park_listings", NearParkListingsRequest(park_code="CHIS", num=3))


def test_entry_from_older_version_is_stale(store):
    cache = AggregateCache(store)
    cache.build("photo_species")
    # version moves without a notification reaching the cache
    store._version += 1
    with pytest.raises(CacheMiss):
        cache.lookup("photo_species", PhotoSpeciesRequest(num=3))
    assert cache.stats()["stale"] == 1


def test_threshold_mismatch_is_stale(store):
    cache = AggregateCache(store)
    cache.build("popular_species")
    with pytest.raises(CacheStale) as excinfo:
        cache.lookup("popular_species", PopularSpeciesRequest(num=2, min_trail_popularity=9.0))
    assert not isinstance(excinfo.value, CacheMiss)


def test_state_spanning_partitions_is_stale(store):
    listings = store.scan("listings")
    listings.loc[listings["id"] == 12, "state"] = "CA, NV"
    store.replace("listings", listings)

    cache = AggregateCache(store)
    cache.build("species_state_listings")
    with pytest.raises(CacheStale):
        cache.lookup("species_state_listings", SpeciesStateListingsRequest(species="seal", num=3, state="CA"))


def test_cancelled_build_publishes_nothing(store):
    cache = AggregateCache(store)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(BuildCancelled):
        cache.build("near_park_listings", cancel=cancel)
    assert cache.entry("near_park_listings") is None


def test_invalidate_single_family(store):
    cache = AggregateCache(store)
    cache.build("popular_species")
    cache.build("photo_species")
    cache.invalidate("popular_species")
    assert cache.entry("popular_species") is None
    assert cache.entry("photo_species") is not None


def test_stats_track_hits(store):
    cache = AggregateCache(store)
    cache.build("popular_species")
    cache.lookup("popular_species", PopularSpeciesRequest(num=2))
    cache.lookup("popular_species", PopularSpeciesRequest(num=3))
    stats = cache.stats()
    assert stats["hits"] == 2
    assert stats["hit_rate"] == 100.0
    assert stats["entries"]["popular_species"]["version"] == store.version

    cache.clear_stats()
    assert cache.stats()["hits"] == 0


def test_facade_uses_cache_once_built(store):
    get_cache().build("species_listings")
    recommended_listings_for_species("seal", 3)
    assert get_cache().stats()["hits"] == 1


def test_facade_falls_back_after_store_change(store):
    get_cache().build("species_listings")
    listings = store.scan("listings")
    listings.loc[listings["id"] == 3, "number_of_reviews"] = 10
    store.replace("listings", listings)

    results = recommended_listings_for_species("seal", 3)
    acadia = sorted(r.id for r in results if r.park_name == "Acadia National Park")
    assert acadia == [1, 2, 4]
    assert get_cache().stats()["hits"] == 0


def test_facade_rebuilds_on_stale_when_configured(store):
    set_config(EngineConfig(rebuild_on_stale=True))
    recommended_listings_for_species("seal", 3)
    assert get_cache().entry("species_listings") is not None
    assert get_cache().stats()["hits"] == 1


def test_facade_with_cache_disabled_never_builds(store):
    set_config(EngineConfig(cache_enabled=False, rebuild_on_stale=True))
    recommended_listings_for_species("seal", 3)
    assert get_cache().stats()["size"] == 0


def test_lookups_during_rebuild_see_complete_answers(store):
    cache = AggregateCache(store)
    cache.build("species_listings")
    request_model = SpeciesListingsRequest(species="seal", num=3)
    expected = records(cache.lookup("species_listings", request_model))
    failures: list[object] = []
    stop = threading.Event()

    def reader() -> None:
        while not stop.is_set():
            try:
                got = records(cache.lookup("species_listings", request_model))
            except CacheStale:
                continue
            if got != expected:
                failures.append(got)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for _ in range(5):
        cache.build("species_listings")
    stop.set()
    for t in threads:
        t.join()

    assert failures == []


def test_cancelled_biodiversity_build_publishes_nothing(store):
    cache = AggregateCache(store)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(BuildCancelled):
        cache.build("biodiverse_listings", cancel=cancel)
    assert cache.entry("biodiverse_listings") is None


def test_batched_distances_match_single_batch(store):
    snapshot = store.snapshot()
    whole = listing_park_distances(snapshot.listings, snapshot)
    batched = listing_park_distances(snapshot.listings, snapshot, batch_size=2)
    assert records(batched) == records(whole)


def test_threshold_mismatch_answers_exactly_without_rebuilding(store):
    set_config(EngineConfig(rebuild_on_stale=True))
    with patch.object(AggregateCache, "build", autospec=True, side_effect=AggregateCache.build) as build:
        for _ in range(3):
            results = popular_species_per_park(1, min_trail_popularity=9.0)
            assert [r.park_name for r in results] == ["Yellowstone National Park"]
    assert [c.args[1] for c in build.call_args_list] == ["popular_species"]


def test_cached_answer_matches_with_custom_earth_radius(store):
    config = EngineConfig(earth_radius_miles=2 * DEFAULT_ENGINE_CONFIG.earth_radius_miles)
    request_model = NearParkListingsRequest(park_code="CHIS", num=3)
    exact = FAMILIES["near_park_listings"].exact(store.snapshot(), request_model, config)

    cache = AggregateCache(store, config)
    cache.build("near_park_listings")
    assert records(cache.lookup("near_park_listings", request_model)) == records(exact)


def test_closed_cache_detaches_from_store(store):
    cache = AggregateCache(store)
    cache.build("popular_species")
    cache.close()
    assert cache.entry("popular_species") is None
    assert cache._on_store_change not in store._subscribers


def test_replacing_config_does_not_leak_subscribers(store):
    get_cache()
    set_config(EngineConfig(ranker_workers=2))
    get_cache()
    set_config(DEFAULT_ENGINE_CONFIG)
    get_cache()
    assert len(store._subscribers) == 1
