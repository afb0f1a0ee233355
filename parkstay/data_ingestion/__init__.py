"""
Data ingestion package for the park and stay ranking engine.

Responsibilities:
- Read the raw Park, Species, Trail and Airbnb CSV exports.
- Normalize them into the canonical collection schemas.
- Persist cleaned tables locally for the dataset store.
"""
