"""
Geospatial partitioned top-K ranking engine.

Responsibilities:
- Join parks, species, trails and listings for the fixed query families.
- Compute haversine distances between anchors and candidates.
- Rank candidates within groups and keep the top K per group.
- Serve the same answers from a precomputed aggregate cache.
"""
