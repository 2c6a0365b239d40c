"""Infrastructure: cache storage tiers, Redis transport, metrics."""
