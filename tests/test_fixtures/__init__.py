"""
Test Fixtures Package

Shared test utilities and helpers for consistent testing across all modules.
"""

from .cache_factory import CacheTestFactory, FakeClock, FlakyBackend, SlowBackend
from .gateway_factory import FakeGateway

__all__ = ["CacheTestFactory", "FakeClock", "FlakyBackend", "SlowBackend", "FakeGateway"]
