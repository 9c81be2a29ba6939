"""Geo to pixel projection and interactive pan/zoom of the map surface."""

import logging
from typing import Optional

from .config import MIN_SCALE, MAX_SCALE, ZOOM_STEP
from .models import GeoPoint, MapProjection, Point, ViewState

logger = logging.getLogger(__name__)


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def project(geo: GeoPoint, projection: MapProjection) -> Point:
    """
    Convert a geographic coordinate to a pixel on the map surface.

    Linear interpolation inside the projection bounds, (north, west) being
    the top-left corner. The result is clamped to the map surface, so points
    outside the bounds land on the nearest edge.

    Examples:
        >>> p = MapProjection(Bounds(north=38, south=37, east=-122, west=-123), 800, 600)
        >>> project(GeoPoint(lat=37.5, lng=-122.5), p)
        Point(x=400.0, y=300.0)
    """
    b = projection.bounds
    x = (geo.lng - b.west) / (b.east - b.west) * projection.pixel_width
    y = (b.north - geo.lat) / (b.north - b.south) * projection.pixel_height
    return Point(
        x=_clamp(x, 0.0, projection.pixel_width),
        y=_clamp(y, 0.0, projection.pixel_height),
    )


class ViewportTransform:
    """
    Zoom and pan state of a map view.

    The map surface is drawn scaled from its top-left corner and then
    translated, so a map pixel ``p`` appears on screen at
    ``pan + scale * p``. Both zoom paths keep the scale within
    ``[min_scale, max_scale]``.

    Attributes:
        min_scale: Lowest allowed scale
        max_scale: Highest allowed scale
        zoom_step: Absolute scale increment of zoom_in/zoom_out
    """

    def __init__(
        self,
        min_scale: float = MIN_SCALE,
        max_scale: float = MAX_SCALE,
        zoom_step: float = ZOOM_STEP,
        scale: float = 1.0,
        pan: Point = Point(0.0, 0.0),
    ):
        if min_scale <= 0 or min_scale > max_scale:
            raise ValueError(f"invalid scale bounds [{min_scale}, {max_scale}]")
        self.min_scale = min_scale
        self.max_scale = max_scale
        self.zoom_step = zoom_step
        self._scale = _clamp(scale, min_scale, max_scale)
        self._pan = pan
        self._drag_offset: Optional[Point] = None

    @property
    def scale(self) -> float:
        return self._scale

    @property
    def pan(self) -> Point:
        return self._pan

    @property
    def view_state(self) -> ViewState:
        return ViewState(scale=self._scale, pan=self._pan)

    @property
    def panning(self) -> bool:
        return self._drag_offset is not None

    def project(self, geo: GeoPoint, projection: MapProjection) -> Point:
        """Map-surface pixel of a geographic coordinate (see project())."""
        return project(geo, projection)

    def to_screen(self, map_pixel: Point) -> Point:
        """Screen position of a map-surface pixel under the current view."""
        return Point(
            x=self._pan.x + self._scale * map_pixel.x,
            y=self._pan.y + self._scale * map_pixel.y,
        )

    def to_map(self, screen_point: Point) -> Point:
        """Map-surface pixel shown at a screen position."""
        return Point(
            x=(screen_point.x - self._pan.x) / self._scale,
            y=(screen_point.y - self._pan.y) / self._scale,
        )

    def zoom_in(self):
        """Increase scale by one step, up to max_scale."""
        self._set_scale(round(self._scale + self.zoom_step, 6))

    def zoom_out(self):
        """Decrease scale by one step, down to min_scale."""
        self._set_scale(round(self._scale - self.zoom_step, 6))

    def zoom_at(self, scale_factor: float, focal: Point):
        """
        Multiply scale by scale_factor keeping the map point under focal fixed.

        Args:
            scale_factor: Multiplier applied to the current scale
            focal: Screen position that must keep showing the same map point
        """
        if scale_factor <= 0:
            raise ValueError(f"scale_factor must be positive, got {scale_factor}")
        anchor = self.to_map(focal)
        self._set_scale(self._scale * scale_factor)
        self._pan = Point(
            x=focal.x - self._scale * anchor.x,
            y=focal.y - self._scale * anchor.y,
        )

    def begin_pan(self, pointer: Point):
        """Start a drag; later updates move the map relative to this pointer."""
        self._drag_offset = Point(x=pointer.x - self._pan.x, y=pointer.y - self._pan.y)

    def update_pan(self, pointer: Point):
        """Move the map with the pointer; no-op unless a drag is active."""
        if self._drag_offset is None:
            return
        self._pan = Point(
            x=pointer.x - self._drag_offset.x,
            y=pointer.y - self._drag_offset.y,
        )

    def end_pan(self):
        self._drag_offset = None

    def center_on(self, container_width: float, container_height: float, projection: MapProjection):
        """Pan so the map surface is centered in a container of the given size."""
        self._pan = Point(
            x=(container_width - projection.pixel_width * self._scale) / 2,
            y=(container_height - projection.pixel_height * self._scale) / 2,
        )

    def reset(self):
        """Back to scale 1 with no pan."""
        self._scale = _clamp(1.0, self.min_scale, self.max_scale)
        self._pan = Point(0.0, 0.0)
        self._drag_offset = None

    def _set_scale(self, scale: float):
        new_scale = _clamp(scale, self.min_scale, self.max_scale)
        if new_scale != self._scale:
            logger.debug(f"Scale {self._scale:.2f} -> {new_scale:.2f}")
        self._scale = new_scale
