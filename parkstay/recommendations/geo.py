"""Great-circle distance helpers."""
from __future__ import annotations

import numpy as np

from .config import DEFAULT_ENGINE_CONFIG

EARTH_RADIUS_MILES = DEFAULT_ENGINE_CONFIG.earth_radius_miles


def haversine_miles(lat1, lon1, lat2, lon2, radius: float = EARTH_RADIUS_MILES):
    """
    Haversine distance in miles between two (latitude, longitude) points.

    Accepts scalars, numpy arrays or pandas Series (broadcast elementwise).
    Coordinates are not range-checked: the haversine term is clipped to
    [0, 1] so out-of-range input still gives a finite distance, and NaN
    coordinates propagate to a NaN distance. Never raises.
    """
    with np.errstate(invalid="ignore"):
        phi1 = np.radians(lat1)
        phi2 = np.radians(lat2)
        dphi = phi2 - phi1
        dlambda = np.radians(lon2) - np.radians(lon1)

        a = np.sin(dphi / 2.0) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlambda / 2.0) ** 2
        a = np.clip(a, 0.0, 1.0)
        distance = radius * 2.0 * np.arcsin(np.sqrt(a))

    if np.ndim(distance) == 0:
        return float(distance)
    return distance


def distance_matrix(
    anchor_lat, anchor_lon, candidate_lat, candidate_lon, radius: float = EARTH_RADIUS_MILES
) -> np.ndarray:
    """Return an (n_anchors, n_candidates) matrix of haversine miles."""
    a_lat = np.asarray(anchor_lat, dtype=float)[:, None]
    a_lon = np.asarray(anchor_lon, dtype=float)[:, None]
    c_lat = np.asarray(candidate_lat, dtype=float)[None, :]
    c_lon = np.asarray(candidate_lon, dtype=float)[None, :]
    return haversine_miles(a_lat, a_lon, c_lat, c_lon, radius=radius)
