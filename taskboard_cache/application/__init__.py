"""Application layer: cache-aware data services."""
