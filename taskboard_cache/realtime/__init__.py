"""
Real-time Module

Lifecycle management for live push subscriptions.
"""

from .listener_manager import ListenerManager, ListenerRegistration, ListenerScope

__all__ = ["ListenerManager", "ListenerRegistration", "ListenerScope"]
