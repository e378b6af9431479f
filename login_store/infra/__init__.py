"""Infrastructure layer: Redis connections, locks, cache facade and jobs."""
