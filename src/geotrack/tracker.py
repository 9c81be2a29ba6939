"""Position acquisition lifecycle and estimate publishing."""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from pubsub.core import Publisher

from .config import (
    WINDOW_CAPACITY,
    ACCURACY_FALLBACK,
    MIN_ACCURACY,
    PROMPT_DELAY_SECONDS,
    HIGH_ACCURACY,
    PROMPT_FIX_MAX_AGE_MS,
    PROMPT_FIX_TIMEOUT_MS,
    GRANTED_FIX_MAX_AGE_MS,
    WATCH_MAX_AGE_MS,
    WATCH_TIMEOUT_MS,
)
from .location_source import LocationSource
from .models import (
    ErrorKind,
    Fix,
    FixOptions,
    LocationError,
    PermissionState,
    PositionEstimate,
    TrackerState,
)
from .sample_window import SampleWindow, normalize, now_ms

logger = logging.getLogger(__name__)

TOPIC_ESTIMATE = "estimate"
TOPIC_ERROR = "error"

MSG_UNSUPPORTED = "Location services are not supported by this host"
MSG_PERMISSION_DENIED = "Location permission denied"
MSG_DENIED_DEFAULT = "Permission denied"
MSG_FETCH_FAILED = "Unable to get location"
MSG_WATCH_FAILED = "Location watch error"

# Allowed state transitions; DENIED is reachable from every state
_TRANSITIONS = {
    TrackerState.UNKNOWN: {TrackerState.PROMPTING, TrackerState.GRANTED, TrackerState.DENIED},
    TrackerState.PROMPTING: {TrackerState.PROMPTING, TrackerState.GRANTED, TrackerState.DENIED},
    TrackerState.GRANTED: {TrackerState.GRANTED, TrackerState.DENIED},
    TrackerState.DENIED: {TrackerState.GRANTED, TrackerState.DENIED},
}


def _estimate_listener_spec(estimate):
    """Message data for the estimate topic."""


def _error_listener_spec(kind, message):
    """Message data for the error topic."""


class PositionTracker:
    """
    Turns noisy fixes from a location source into a stream of estimates.

    Drives the permission lifecycle (unknown -> prompting -> granted, with
    denied reachable from anywhere), keeps at most one continuous watch open,
    and averages the most recent samples weighted by 1/accuracy. Every
    ingested sample publishes exactly one PositionEstimate.

    Attributes:
        source: Host location capability, or None if the host has none
        loop: Event loop used for delayed tasks (anything with call_later)
        window: Sliding window of recent samples

    Note:
        All callbacks are expected on the loop's thread. Callbacks that fire
        after stop(), or that belong to an earlier start/stop session, are
        ignored.
    """

    def __init__(
        self,
        source: Optional[LocationSource],
        loop=None,
        window_capacity: int = WINDOW_CAPACITY,
        accuracy_fallback: float = ACCURACY_FALLBACK,
        min_accuracy: float = MIN_ACCURACY,
        prompt_delay: float = PROMPT_DELAY_SECONDS,
        clock: Callable[[], int] = now_ms,
    ):
        self.source = source
        self.loop = loop
        self.window = SampleWindow(window_capacity)
        self.accuracy_fallback = accuracy_fallback
        self.min_accuracy = min_accuracy
        self.prompt_delay = prompt_delay
        self.clock = clock

        self._state = TrackerState.UNKNOWN
        self._permission = PermissionState.UNKNOWN
        self._estimate: Optional[PositionEstimate] = None
        self._running = False
        self._session = 0
        self._watch_handle: Optional[Any] = None
        self._permission_watch: Optional[Any] = None
        self._pending: List[Any] = []

        self._publisher = Publisher()
        topic_mgr = self._publisher.getTopicMgr()
        topic_mgr.getOrCreateTopic(TOPIC_ESTIMATE, _estimate_listener_spec)
        topic_mgr.getOrCreateTopic(TOPIC_ERROR, _error_listener_spec)
        # pypubsub only keeps weak references to listeners
        self._listeners: Dict[Tuple[str, Callable], Callable] = {}

        self.fetch_prompt_options = FixOptions(
            high_accuracy=HIGH_ACCURACY,
            max_cache_age_ms=PROMPT_FIX_MAX_AGE_MS,
            timeout_ms=PROMPT_FIX_TIMEOUT_MS,
        )
        self.fetch_granted_options = FixOptions(
            high_accuracy=HIGH_ACCURACY,
            max_cache_age_ms=GRANTED_FIX_MAX_AGE_MS,
        )
        self.watch_options = FixOptions(
            high_accuracy=HIGH_ACCURACY,
            max_cache_age_ms=WATCH_MAX_AGE_MS,
            timeout_ms=WATCH_TIMEOUT_MS,
        )

    # Subscription

    def subscribe(
        self,
        on_estimate: Optional[Callable[[PositionEstimate], None]] = None,
        on_error: Optional[Callable[[ErrorKind, str], None]] = None,
    ):
        """Register callbacks for estimates and/or errors."""
        if on_estimate is not None and (TOPIC_ESTIMATE, on_estimate) not in self._listeners:
            def deliver_estimate(estimate):
                on_estimate(estimate)
            self._listeners[(TOPIC_ESTIMATE, on_estimate)] = deliver_estimate
            self._publisher.subscribe(deliver_estimate, TOPIC_ESTIMATE)

        if on_error is not None and (TOPIC_ERROR, on_error) not in self._listeners:
            def deliver_error(kind, message):
                on_error(kind, message)
            self._listeners[(TOPIC_ERROR, on_error)] = deliver_error
            self._publisher.subscribe(deliver_error, TOPIC_ERROR)

    def unsubscribe(
        self,
        on_estimate: Optional[Callable[[PositionEstimate], None]] = None,
        on_error: Optional[Callable[[ErrorKind, str], None]] = None,
    ):
        """Remove callbacks registered with subscribe()."""
        for topic, callback in ((TOPIC_ESTIMATE, on_estimate), (TOPIC_ERROR, on_error)):
            if callback is None:
                continue
            listener = self._listeners.pop((topic, callback), None)
            if listener is not None:
                self._publisher.unsubscribe(listener, topic)

    # Public state

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def permission_state(self) -> PermissionState:
        return self._permission

    @property
    def estimate(self) -> Optional[PositionEstimate]:
        """Latest published estimate."""
        return self._estimate

    @property
    def running(self) -> bool:
        return self._running

    @property
    def watching(self) -> bool:
        """True while a continuous watch is open."""
        return self._watch_handle is not None

    # Lifecycle

    def start(
        self,
        on_estimate: Optional[Callable[[PositionEstimate], None]] = None,
        on_error: Optional[Callable[[ErrorKind, str], None]] = None,
    ):
        """
        Subscribe the given callbacks and begin acquisition.

        Calling start() while already started only adds the subscriptions.
        """
        self.subscribe(on_estimate, on_error)
        if self._running:
            return

        if self.loop is None:
            self.loop = asyncio.get_running_loop()

        self._running = True
        self._session += 1
        self._state = TrackerState.UNKNOWN
        self._permission = PermissionState.UNKNOWN
        self._estimate = None
        self.window.clear()
        logger.info("Position tracker started")

        if self.source is None:
            logger.warning("No location source available")
            self._state = TrackerState.DENIED
            self._permission = PermissionState.DENIED
            self._publish_error(ErrorKind.UNSUPPORTED, MSG_UNSUPPORTED)
            return

        handle = self.source.watch_permission(self._bind(self._on_permission_change))
        if handle is not None:
            self._permission_watch = handle

        if self.source.supports_permission_query:
            self.source.query_permission(
                self._bind(self._on_permission_result),
                self._bind(self._on_permission_query_failed),
            )
        else:
            self._transition(TrackerState.PROMPTING)
            self._schedule(self.prompt_delay, self._request_prompt_fix)

    def stop(self):
        """
        Stop acquisition and release every host resource.

        Safe to call repeatedly and before start().
        """
        was_running = self._running
        self._running = False
        self._session += 1

        for handle in self._pending:
            handle.cancel()
        self._pending.clear()

        try:
            self._release_watch()
        finally:
            permission_watch, self._permission_watch = self._permission_watch, None
            if permission_watch is not None and self.source is not None:
                try:
                    self.source.clear_permission_watch(permission_watch)
                except Exception as e:
                    logger.warning(f"Error releasing permission notifications: {e}")

        if was_running:
            logger.info("Position tracker stopped")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    # Internals

    def _bind(self, handler: Callable) -> Callable:
        """Wrap a host callback so it is dropped once its session ends."""
        session = self._session

        def callback(*args):
            if not self._running or session != self._session:
                logger.debug(f"Ignoring stale callback {handler.__name__}")
                return
            handler(*args)

        return callback

    def _schedule(self, delay: float, handler: Callable):
        handle = self.loop.call_later(delay, self._bind(handler))
        self._pending.append(handle)

    def _transition(self, new_state: TrackerState):
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid tracker transition {self._state.value} -> {new_state.value}")
        if new_state is not self._state:
            logger.info(f"Tracker state: {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _publish_error(self, kind: ErrorKind, message: str):
        self._publisher.sendMessage(TOPIC_ERROR, kind=kind, message=message)

    def _on_permission_result(self, state: PermissionState):
        logger.debug(f"Permission query returned {state.value}")
        if self._state is TrackerState.DENIED and state is not PermissionState.GRANTED:
            logger.debug("Permission already denied, not prompting")
            return
        self._permission = state
        if state is PermissionState.GRANTED:
            self._transition(TrackerState.GRANTED)
            self._request_fix(self.fetch_granted_options)
        elif state is PermissionState.DENIED:
            self._deny(MSG_PERMISSION_DENIED)
        elif state is PermissionState.PROMPT:
            self._schedule(self.prompt_delay, self._request_prompt_fix)
        else:
            self._request_prompt_fix()

    def _on_permission_query_failed(self, error: Exception):
        logger.warning(f"Permission query failed, requesting location directly: {error}")
        self._request_prompt_fix()

    def _on_permission_change(self, state: PermissionState):
        logger.info(f"Permission changed to {state.value}")
        self._permission = state
        if state is PermissionState.GRANTED:
            if self._state is not TrackerState.GRANTED:
                self._transition(TrackerState.GRANTED)
                self._request_fix(self.fetch_granted_options)
        elif state is PermissionState.DENIED and self._state is not TrackerState.DENIED:
            self._deny(MSG_PERMISSION_DENIED)

    def _request_prompt_fix(self):
        if self._state is TrackerState.DENIED:
            return
        if self._state is TrackerState.UNKNOWN:
            self._transition(TrackerState.PROMPTING)
        self._request_fix(self.fetch_prompt_options)

    def _request_fix(self, options: FixOptions):
        logger.debug(f"Requesting one-shot fix ({options})")
        self.source.get_current_fix(
            self._bind(self._on_fix_once),
            self._bind(self._on_fix_once_failed),
            options,
        )

    def _on_fix_once(self, fix: Fix):
        if self._state is TrackerState.DENIED:
            logger.debug("Dropping one-shot fix received while denied")
            return
        self._permission = PermissionState.GRANTED
        self._transition(TrackerState.GRANTED)
        self._ingest(fix)
        self._ensure_watch()

    def _on_fix_once_failed(self, error: LocationError):
        logger.warning(f"One-shot location request failed: {error.kind.value} {error.message}")
        if error.kind is ErrorKind.PERMISSION_DENIED:
            self._deny(error.message or MSG_DENIED_DEFAULT)
            return
        self._publish_error(error.kind, error.message or MSG_FETCH_FAILED)
        if self._state is TrackerState.GRANTED:
            self._ensure_watch()

    def _ensure_watch(self):
        if self._watch_handle is not None:
            return
        self._watch_handle = self.source.watch_fix(
            self._bind(self._on_watch_fix),
            self._bind(self._on_watch_failed),
            self.watch_options,
        )
        logger.info("Continuous location watch started")

    def _release_watch(self):
        if self._watch_handle is None:
            return
        handle = self._watch_handle
        self._watch_handle = None
        try:
            self.source.clear_watch(handle)
            logger.info("Continuous location watch released")
        except Exception as e:
            logger.warning(f"Error releasing location watch: {e}")

    def _on_watch_fix(self, fix: Fix):
        self._ingest(fix)

    def _on_watch_failed(self, error: LocationError):
        logger.warning(f"Location watch error: {error.kind.value} {error.message}")
        if error.kind is ErrorKind.PERMISSION_DENIED:
            self._deny(error.message or MSG_DENIED_DEFAULT)
        else:
            self._publish_error(error.kind, error.message or MSG_WATCH_FAILED)

    def _deny(self, message: str):
        self._permission = PermissionState.DENIED
        self._transition(TrackerState.DENIED)
        for handle in self._pending:
            handle.cancel()
        self._pending.clear()
        self._release_watch()
        self._publish_error(ErrorKind.PERMISSION_DENIED, message)

    def _ingest(self, fix: Fix):
        if self._state is not TrackerState.GRANTED:
            logger.debug(f"Dropping fix received in state {self._state.value}")
            return

        sample = normalize(
            fix,
            timestamp_ms=self.clock(),
            accuracy_fallback=self.accuracy_fallback,
            min_accuracy=self.min_accuracy,
        )
        if sample is None:
            return

        self.window.add(sample)
        estimate = self.window.estimate(timestamp_ms=self.clock())
        self._estimate = estimate
        logger.debug(
            f"Estimate from {len(self.window)} samples: "
            f"({estimate.lat:.6f}, {estimate.lng:.6f}) ±{estimate.accuracy:.1f} m"
        )
        self._publisher.sendMessage(TOPIC_ESTIMATE, estimate=estimate)
