"""Chat pipeline services: limits, filtering, deduplication and place lookups."""
