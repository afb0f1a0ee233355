"""
Query analytics.

Responsibilities:
- Record one event per answered query (family, parameters, latency, cache hit).
- Summarise events for the admin analytics endpoint.
"""
