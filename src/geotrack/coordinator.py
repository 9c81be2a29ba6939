"""Wires the position tracker to the map viewport and display collaborators."""

import logging
from datetime import datetime
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from pubsub.core import Publisher

from .config import (
    ZOOM_MODE,
    MAP_NORTH,
    MAP_SOUTH,
    MAP_EAST,
    MAP_WEST,
    MAP_WIDTH,
    MAP_HEIGHT,
)
from .models import (
    Bounds,
    ErrorKind,
    GeoPoint,
    MapProjection,
    Point,
    PositionEstimate,
    TrackerState,
    ViewState,
)
from .tracker import PositionTracker
from .viewport import ViewportTransform

logger = logging.getLogger(__name__)

TOPIC_DISPLAY = "display"

ZOOM_MODES = ("step", "focal")

MSG_ACCESS_DENIED = (
    "Location access denied. Allow location access for this application "
    "in your system settings, then restart tracking."
)


def default_projection() -> MapProjection:
    """Projection of the configured map asset."""
    return MapProjection(
        bounds=Bounds(north=MAP_NORTH, south=MAP_SOUTH, east=MAP_EAST, west=MAP_WEST),
        pixel_width=MAP_WIDTH,
        pixel_height=MAP_HEIGHT,
    )


@dataclass(frozen=True)
class DisplayState:
    """Everything a display needs to render the current position."""
    tracker_state: TrackerState
    view: ViewState
    location: Optional[GeoPoint] = None
    accuracy: Optional[float] = None
    last_update: Optional[datetime] = None
    marker: Optional[Point] = None
    marker_screen: Optional[Point] = None
    error: Optional[str] = None
    permission_error: Optional[str] = None


def _display_listener_spec(display_state):
    """Message data for the display topic."""


class Coordinator:
    """
    Places the tracked position on the map and feeds display collaborators.

    Subscribes to a PositionTracker, converts every estimate to a marker
    position through the ViewportTransform, and publishes a DisplayState
    snapshot whenever the position, an error or the view changes.

    Attributes:
        tracker: Position source for the marker
        viewport: View transform of the map surface
        projection: Geo to pixel mapping of the map asset
        zoom_mode: "step" for fixed-step zoom, "focal" for pointer-anchored zoom
    """

    def __init__(
        self,
        tracker: PositionTracker,
        viewport: Optional[ViewportTransform] = None,
        projection: Optional[MapProjection] = None,
        zoom_mode: str = ZOOM_MODE,
    ):
        if zoom_mode not in ZOOM_MODES:
            raise ValueError(f"zoom_mode must be one of {ZOOM_MODES}, got {zoom_mode!r}")
        self.tracker = tracker
        self.viewport = viewport or ViewportTransform()
        self.projection = projection or default_projection()
        self.zoom_mode = zoom_mode

        self.estimate: Optional[PositionEstimate] = None
        self.last_error: Optional[str] = None
        self.last_error_kind: Optional[ErrorKind] = None
        self.permission_error: Optional[str] = None

        self._publisher = Publisher()
        self._publisher.getTopicMgr().getOrCreateTopic(TOPIC_DISPLAY, _display_listener_spec)
        self._listeners: Dict[Callable, Callable] = {}

    def subscribe(self, callback: Callable[[DisplayState], None]):
        """Register a display collaborator."""
        if callback in self._listeners:
            return

        def deliver(display_state):
            callback(display_state)

        self._listeners[callback] = deliver
        self._publisher.subscribe(deliver, TOPIC_DISPLAY)

    def unsubscribe(self, callback: Callable[[DisplayState], None]):
        listener = self._listeners.pop(callback, None)
        if listener is not None:
            self._publisher.unsubscribe(listener, TOPIC_DISPLAY)

    def start(self):
        """Start tracking and publish the initial display state."""
        self.permission_error = None
        self.tracker.start(on_estimate=self._on_estimate, on_error=self._on_error)
        self.publish()

    def stop(self):
        self.tracker.stop()

    @property
    def display_state(self) -> DisplayState:
        marker = marker_screen = location = last_update = accuracy = None
        if self.estimate is not None:
            location = GeoPoint(lat=self.estimate.lat, lng=self.estimate.lng)
            accuracy = self.estimate.accuracy
            last_update = datetime.fromtimestamp(self.estimate.timestamp / 1000)
            marker = self.viewport.project(location, self.projection)
            marker_screen = self.viewport.to_screen(marker)
        return DisplayState(
            tracker_state=self.tracker.state,
            view=self.viewport.view_state,
            location=location,
            accuracy=accuracy,
            last_update=last_update,
            marker=marker,
            marker_screen=marker_screen,
            error=self.last_error,
            permission_error=self.permission_error,
        )

    def publish(self):
        """Send the current display state to every display collaborator."""
        self._publisher.sendMessage(TOPIC_DISPLAY, display_state=self.display_state)

    # View gestures

    def zoom_in(self, focal: Optional[Point] = None):
        if self.zoom_mode == "focal" and focal is not None:
            self.viewport.zoom_at(1 + self.viewport.zoom_step, focal)
        else:
            self.viewport.zoom_in()
        self.publish()

    def zoom_out(self, focal: Optional[Point] = None):
        if self.zoom_mode == "focal" and focal is not None:
            self.viewport.zoom_at(1 / (1 + self.viewport.zoom_step), focal)
        else:
            self.viewport.zoom_out()
        self.publish()

    def begin_pan(self, pointer: Point):
        self.viewport.begin_pan(pointer)
        self.publish()

    def update_pan(self, pointer: Point):
        if not self.viewport.panning:
            return
        self.viewport.update_pan(pointer)
        self.publish()

    def end_pan(self):
        self.viewport.end_pan()
        self.publish()

    def center_on(self, container_width: float, container_height: float):
        self.viewport.center_on(container_width, container_height, self.projection)
        self.publish()

    # Tracker events

    def _on_estimate(self, estimate: PositionEstimate):
        self.estimate = estimate
        self.last_error = None
        self.last_error_kind = None
        self.permission_error = None
        self.publish()

    def _on_error(self, kind: ErrorKind, message: str):
        logger.warning(f"Location error ({kind.value}): {message}")
        self.last_error = message
        self.last_error_kind = kind
        if kind is ErrorKind.PERMISSION_DENIED:
            self.permission_error = MSG_ACCESS_DENIED
        self.publish()
