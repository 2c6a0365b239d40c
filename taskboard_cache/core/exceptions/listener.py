"""
Listener-Related Exceptions

Errors raised by the real-time listener manager.

Exceptions raised by a subscribe function itself are NOT wrapped; they
propagate unchanged from ListenerManager.register().
"""

from taskboard_cache.core.exceptions.base import TaskboardError


class ListenerError(TaskboardError):
    """Base exception for listener-related errors."""
    pass


class SubscriptionError(ListenerError):
    """
    Raised when a subscribe function does not return a callable unsubscribe.

    The manager calls the returned value on teardown, so anything else would
    leave a live subscription nobody can cancel.
    """
    pass


class ListenerScopeDisposedError(ListenerError):
    """Raised when registering into a ListenerScope that was already disposed."""
    pass
