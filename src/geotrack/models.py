"""Shared data types for position tracking and map projection."""

from enum import Enum
from typing import Optional
from dataclasses import dataclass


class PermissionState(Enum):
    """Host location permission as reported by the permission query."""
    UNKNOWN = "unknown"
    PROMPT = "prompt"
    GRANTED = "granted"
    DENIED = "denied"


class TrackerState(Enum):
    """Acquisition lifecycle state of a PositionTracker."""
    UNKNOWN = "unknown"
    PROMPTING = "prompting"
    GRANTED = "granted"
    DENIED = "denied"


class ErrorKind(Enum):
    """Kinds of location failures surfaced to subscribers."""
    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission_denied"
    TIMEOUT = "timeout"
    POSITION_UNAVAILABLE = "position_unavailable"
    UNKNOWN = "unknown"


class LocationError(Exception):
    """
    Failure reported by a location source.

    Attributes:
        kind: ErrorKind classifying the failure
        message: Human-readable message from the host, empty if none
    """

    def __init__(self, kind: ErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message


@dataclass(frozen=True)
class FixOptions:
    """Options for a one-shot fetch or a continuous watch."""
    high_accuracy: bool = True
    max_cache_age_ms: int = 0
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class Fix:
    """Raw reading as delivered by the host, before normalization."""
    lat: float
    lng: float
    accuracy: Optional[float] = None
    timestamp: Optional[int] = None


@dataclass(frozen=True)
class Sample:
    """Normalized sensor reading (accuracy in meters, timestamp in epoch ms)."""
    lat: float
    lng: float
    accuracy: float
    timestamp: int


@dataclass(frozen=True)
class PositionEstimate:
    """Weighted estimate computed from the sample window."""
    lat: float
    lng: float
    accuracy: float
    timestamp: int


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Bounds:
    north: float
    south: float
    east: float
    west: float


@dataclass(frozen=True)
class MapProjection:
    """
    Linear geo to pixel mapping for a fixed map asset.

    Raises:
        ValueError: If bounds are inverted or the pixel size is not positive
    """
    bounds: Bounds
    pixel_width: float
    pixel_height: float

    def __post_init__(self):
        if self.bounds.north <= self.bounds.south:
            raise ValueError(
                f"north ({self.bounds.north}) must be greater than south ({self.bounds.south})"
            )
        if self.bounds.east <= self.bounds.west:
            raise ValueError(
                f"east ({self.bounds.east}) must be greater than west ({self.bounds.west})"
            )
        if self.pixel_width <= 0 or self.pixel_height <= 0:
            raise ValueError(
                f"pixel size must be positive, got {self.pixel_width}x{self.pixel_height}"
            )


@dataclass(frozen=True)
class ViewState:
    """Snapshot of the viewport zoom and pan."""
    scale: float
    pan: Point
