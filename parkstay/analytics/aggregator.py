from __future__ import annotations

from collections import Counter, defaultdict
from typing import Any


def compute_analytics(events: list[dict[str, Any]]) -> dict[str, Any]:
    queries = [e for e in events if e["type"] == "query"]
    total = len(queries)

    # Average response time, overall and per family
    times = [q["response_time_ms"] for q in queries if "response_time_ms" in q]
    avg_time = round(sum(times) / len(times), 1) if times else 0.0

    family_times: dict[str, list[float]] = defaultdict(list)
    for q in queries:
        family_times[q.get("family", "unknown")].append(q.get("response_time_ms", 0.0))
    families = {
        name: {
            "count": len(ts),
            "avg_response_time_ms": round(sum(ts) / len(ts), 1),
        }
        for name, ts in sorted(family_times.items())
    }

    # Top species searched
    species_counter: Counter[str] = Counter()
    for q in queries:
        species = (q.get("params") or {}).get("species")
        if species:
            species_counter[species.lower()] += 1
    top_species = [{"name": n, "count": c} for n, c in species_counter.most_common(10)]

    # Empty answers are NotFound outcomes, not failures
    empty_results = sum(1 for q in queries if q.get("results_returned") == 0)

    # Cache stats
    cache_hits = sum(1 for q in queries if q.get("cache_hit"))
    cache_misses = total - cache_hits

    return {
        "total_queries": total,
        "avg_response_time_ms": avg_time,
        "families": families,
        "top_species": top_species,
        "empty_results": empty_results,
        "cache_stats": {
            "hits": cache_hits,
            "misses": cache_misses,
            "hit_rate": round(cache_hits / total * 100, 1) if total else 0.0,
        },
    }
