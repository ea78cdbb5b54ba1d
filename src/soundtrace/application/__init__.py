"""Application layer: services, workers and caches."""
