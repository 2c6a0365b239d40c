#!/usr/bin/env python3
"""
Real-time Listener Manager

Registry for live push subscriptions (snapshot listeners of the document
database), keyed by a logical id.

Guarantees:
- One live subscription per id: registering an id again tears the previous
  subscription down before the new subscribe function runs.
- Cleanup handles are idempotent, and a handle for a replaced registration
  never tears down the one that replaced it.
- Throttled/debounced callback wrappers keep their timers on the running
  asyncio loop; unregistering an id cancels its pending timer.

Architecture:
    ListenerManager (registry + callback wrappers)
        ├── ListenerRegistration (one live subscription)
        └── ListenerScope (owner that disposes everything it registered)

Subscribe functions are synchronous: ``subscribe_fn() -> unsubscribe``.
"""

import asyncio
import functools
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from taskboard_cache.core.config.constants import ListenerState, Stage
from taskboard_cache.core.config.settings import Settings, get_settings
from taskboard_cache.core.exceptions import ListenerScopeDisposedError, SubscriptionError
from taskboard_cache.core.interfaces.data_source import CleanupFn, SubscribeFn, UnsubscribeFn
from taskboard_cache.core.logging.logger import get_logger, log_stage
from taskboard_cache.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)

logger = get_logger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class ListenerRegistration:
    """One live subscription."""

    id: str
    unsubscribe: UnsubscribeFn
    created_at: float
    last_update_at: float
    update_count: int = 0
    throttle_window_ms: int | None = None
    last_invoked_at: float | None = None
    state: ListenerState = ListenerState.ACTIVE

    @property
    def active(self) -> bool:
        return self.state is ListenerState.ACTIVE


@dataclass
class _CallbackState:
    """Per-id state of a throttled or debounced wrapper."""

    last_invoked_at: float | None = None
    pending: Any = None
    has_pending: bool = False
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    def cancel(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        self.pending = None
        self.has_pending = False


class ListenerManager:
    """
    Usage:
        manager = ListenerManager()

        cleanup = manager.register(
            "attendance-status",
            lambda: db.on_snapshot(query, manager.create_throttled_callback(
                "attendance-status", render, 1000,
            )),
        )
        ...
        cleanup()  # safe to call more than once

    ``clock`` returns monotonic milliseconds.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] | None = None,
        metrics: MetricsCollector | None = None,
    ):
        settings = settings or get_settings()
        self._default_throttle_ms = settings.listeners.LISTENER_DEFAULT_THROTTLE_MS
        self._default_debounce_ms = settings.listeners.LISTENER_DEFAULT_DEBOUNCE_MS
        self._clock = clock or monotonic_ms
        self._metrics = metrics or get_metrics_collector()
        self._listeners: dict[str, ListenerRegistration] = {}
        self._callbacks: dict[str, _CallbackState] = {}

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, listener_id: str, subscribe_fn: SubscribeFn) -> CleanupFn:
        """
        Subscribe under ``listener_id`` and return an idempotent cleanup.

        STAGE-RT.1: Listener registration

        Raises:
            SubscriptionError: ``subscribe_fn`` returned something not callable
            Exception: whatever ``subscribe_fn`` raised, unchanged; nothing
                is registered in that case
        """
        existing = self._listeners.get(listener_id)
        if existing is not None:
            log_stage(logger, Stage.LISTENER, "Replacing existing listener",
                      level="warning", listener_id=listener_id)
            self._teardown(existing)

        unsubscribe = subscribe_fn()
        if not callable(unsubscribe):
            raise SubscriptionError(
                message="Subscribe function did not return a callable unsubscribe",
                details={"listener_id": listener_id, "returned": type(unsubscribe).__name__},
            )

        now = self._clock()
        registration = ListenerRegistration(
            id=listener_id,
            unsubscribe=unsubscribe,
            created_at=now,
            last_update_at=now,
        )
        self._listeners[listener_id] = registration
        self._metrics.set_active_listeners(len(self._listeners))

        log_stage(logger, Stage.LISTENER, "Listener registered",
                  listener_id=listener_id, active_listeners=len(self._listeners))
        return functools.partial(self._release, registration)

    def _release(self, registration: ListenerRegistration) -> None:
        if registration.active:
            self._teardown(registration)

    def _teardown(self, registration: ListenerRegistration) -> None:
        """
        STAGE-RT.2: Listener teardown

        Unsubscribe errors are logged; the registration is gone either way.
        """
        registration.state = ListenerState.UNREGISTERED
        if self._listeners.get(registration.id) is registration:
            del self._listeners[registration.id]
            state = self._callbacks.pop(registration.id, None)
            if state is not None:
                state.cancel()
        self._metrics.set_active_listeners(len(self._listeners))

        try:
            registration.unsubscribe()
        except Exception as e:
            log_stage(
                logger,
                Stage.LISTENER,
                "Unsubscribe failed",
                level="error",
                listener_id=registration.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return

        log_stage(logger, Stage.LISTENER, "Listener unregistered",
                  listener_id=registration.id, active_listeners=len(self._listeners))

    def unregister(self, listener_id: str) -> bool:
        """Tear down ``listener_id``; False if it was not registered."""
        registration = self._listeners.get(listener_id)
        if registration is None:
            state = self._callbacks.pop(listener_id, None)
            if state is not None:
                state.cancel()
            return False
        self._teardown(registration)
        return True

    def unregister_all(self) -> int:
        """Tear down every registration and cancel every pending timer."""
        registrations = list(self._listeners.values())
        log_stage(logger, Stage.LISTENER, "Unregistering all listeners", count=len(registrations))
        for registration in registrations:
            self._teardown(registration)

        for state in self._callbacks.values():
            state.cancel()
        self._callbacks.clear()
        return len(registrations)

    def has(self, listener_id: str) -> bool:
        return listener_id in self._listeners

    def record_update(self, listener_id: str) -> None:
        registration = self._listeners.get(listener_id)
        if registration is not None:
            registration.last_update_at = self._clock()
            registration.update_count += 1

    # =========================================================================
    # Callback wrappers
    # =========================================================================

    def create_throttled_callback(
        self,
        listener_id: str,
        callback: Callable[[Any], Any],
        min_interval_ms: int | None = None,
    ) -> Callable[[Any], None]:
        """
        Throttle ``callback`` to at most one call per window.

        The first call outside a window is delivered immediately. Calls inside
        the window only replace the buffered argument; the most recent one is
        delivered once when the window ends.

        Must be called from inside a running event loop.
        """
        window_ms = self._default_throttle_ms if min_interval_ms is None else min_interval_ms

        def fire() -> None:
            state = self._callbacks.get(listener_id)
            if state is None or not state.has_pending:
                return
            value = state.pending
            state.timer = None
            state.pending = None
            state.has_pending = False
            state.last_invoked_at = self._clock()
            self._mark_invoked(listener_id, window_ms, state.last_invoked_at)
            self._metrics.record_listener_delivery("trailing")
            try:
                callback(value)
            except Exception as e:
                log_stage(logger, Stage.LISTENER, "Throttled callback failed", level="error",
                          listener_id=listener_id, error_type=type(e).__name__, error=str(e))

        def throttled(value: Any) -> None:
            self.record_update(listener_id)
            state = self._callbacks.setdefault(listener_id, _CallbackState())
            now = self._clock()

            idle = state.last_invoked_at is None or now - state.last_invoked_at >= window_ms
            if idle and state.timer is None:
                state.last_invoked_at = now
                self._mark_invoked(listener_id, window_ms, now)
                self._metrics.record_listener_delivery("leading")
                callback(value)
                return

            state.pending = value
            state.has_pending = True
            if state.timer is None:
                delay_ms = max(window_ms - (now - state.last_invoked_at), 0)
                state.timer = asyncio.get_running_loop().call_later(delay_ms / 1000, fire)

        return throttled

    def create_debounced_callback(
        self,
        listener_id: str,
        callback: Callable[[Any], Any],
        debounce_ms: int | None = None,
    ) -> Callable[[Any], None]:
        """
        Deliver only after ``debounce_ms`` without new calls, with the last
        argument. Must be called from inside a running event loop.
        """
        delay_ms = self._default_debounce_ms if debounce_ms is None else debounce_ms

        def fire() -> None:
            state = self._callbacks.get(listener_id)
            if state is None or not state.has_pending:
                return
            value = state.pending
            state.timer = None
            state.pending = None
            state.has_pending = False
            state.last_invoked_at = self._clock()
            self._metrics.record_listener_delivery("debounced")
            try:
                callback(value)
            except Exception as e:
                log_stage(logger, Stage.LISTENER, "Debounced callback failed", level="error",
                          listener_id=listener_id, error_type=type(e).__name__, error=str(e))

        def debounced(value: Any) -> None:
            self.record_update(listener_id)
            state = self._callbacks.setdefault(listener_id, _CallbackState())
            if state.timer is not None:
                state.timer.cancel()
            state.pending = value
            state.has_pending = True
            state.timer = asyncio.get_running_loop().call_later(delay_ms / 1000, fire)

        return debounced

    def _mark_invoked(self, listener_id: str, window_ms: int, at: float) -> None:
        registration = self._listeners.get(listener_id)
        if registration is not None:
            registration.throttle_window_ms = window_ms
            registration.last_invoked_at = at

    def conditional_listener(
        self,
        listener_id: str,
        condition: bool,
        subscribe_fn: SubscribeFn,
    ) -> CleanupFn | None:
        """
        Keep ``listener_id`` subscribed exactly while ``condition`` holds.

        Returns the cleanup when a new subscription was made, else None.
        """
        if condition:
            if not self.has(listener_id):
                return self.register(listener_id, subscribe_fn)
            return None
        self.unregister(listener_id)
        return None

    def scope(self) -> "ListenerScope":
        return ListenerScope(self)

    # =========================================================================
    # Stats
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Leak-detection view: what is subscribed, since when, how busy."""
        now = self._clock()
        return {
            "active_listener_count": len(self._listeners),
            "listener_ids": list(self._listeners),
            "pending_timers": sum(1 for state in self._callbacks.values() if state.timer is not None),
            "listeners": [
                {
                    "id": registration.id,
                    "age_ms": round(now - registration.created_at, 1),
                    "update_count": registration.update_count,
                    "since_last_update_ms": round(now - registration.last_update_at, 1),
                }
                for registration in self._listeners.values()
            ],
        }


class ListenerScope:
    """
    Owns the listeners registered through it; ``dispose()`` cleans them all.

    Usage:
        with manager.scope() as scope:
            scope.register("tasks-board", subscribe_tasks)
            scope.register("attendance-status", subscribe_attendance)
            ...
        # both unsubscribed here
    """

    def __init__(self, manager: ListenerManager):
        self._manager = manager
        self._cleanups: list[CleanupFn] = []
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def register(self, listener_id: str, subscribe_fn: SubscribeFn) -> CleanupFn:
        if self._disposed:
            raise ListenerScopeDisposedError(
                message="Cannot register into a disposed listener scope",
                details={"listener_id": listener_id},
            )
        cleanup = self._manager.register(listener_id, subscribe_fn)
        self._cleanups.append(cleanup)
        return cleanup

    def add(self, cleanup: CleanupFn) -> None:
        """Track an extra cleanup (e.g. one returned by conditional_listener)."""
        if self._disposed:
            raise ListenerScopeDisposedError(message="Cannot add to a disposed listener scope")
        self._cleanups.append(cleanup)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in reversed(cleanups):
            cleanup()

    def __enter__(self) -> "ListenerScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    async def __aenter__(self) -> "ListenerScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()
