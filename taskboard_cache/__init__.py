"""
Taskboard Cache

Multi-tier cache and real-time listener layer for the task/attendance
dashboard: memory + Redis-backed durable tiers, coalesced read-through
fetching, write-triggered invalidation, and leak-free subscription lifecycle.
"""

__version__ = "1.0.0"
