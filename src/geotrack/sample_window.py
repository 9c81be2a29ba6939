"""Sliding window of location samples with inverse-accuracy averaging."""

import math
import time
import logging
from collections import deque
from typing import Optional, Iterator, Deque

from .config import WINDOW_CAPACITY, ACCURACY_FALLBACK, MIN_ACCURACY
from .models import Fix, Sample, PositionEstimate

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def normalize(
    fix: Fix,
    timestamp_ms: Optional[int] = None,
    accuracy_fallback: float = ACCURACY_FALLBACK,
    min_accuracy: float = MIN_ACCURACY,
) -> Optional[Sample]:
    """
    Turn a raw host fix into a Sample fit for averaging.

    Missing accuracy is replaced by ``accuracy_fallback`` and accuracy is
    floored at ``min_accuracy``. A missing timestamp becomes ``timestamp_ms``
    (or the current time).

    Args:
        fix: Raw reading from the location source
        timestamp_ms: Time to stamp the sample with if the fix has none
        accuracy_fallback: Accuracy assumed when the fix reports none
        min_accuracy: Smallest accuracy accepted

    Returns:
        Normalized Sample, or None if the fix is malformed (non-finite or
        out-of-range coordinates, non-finite accuracy). Rejections are logged
        at debug level only.
    """
    try:
        lat = float(fix.lat)
        lng = float(fix.lng)
    except (TypeError, ValueError):
        logger.debug(f"Rejected fix with non-numeric coordinates: {fix}")
        return None

    if not (math.isfinite(lat) and math.isfinite(lng)):
        logger.debug(f"Rejected fix with non-finite coordinates: {fix}")
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        logger.debug(f"Rejected fix with out-of-range coordinates: {fix}")
        return None

    raw_acc = fix.accuracy if isinstance(fix.accuracy, (int, float)) else accuracy_fallback
    if not math.isfinite(raw_acc):
        logger.debug(f"Rejected fix with non-finite accuracy: {fix}")
        return None
    accuracy = max(float(raw_acc), min_accuracy)
    if accuracy <= 0:
        logger.debug(f"Rejected fix with non-positive accuracy: {fix}")
        return None

    timestamp = fix.timestamp or timestamp_ms or now_ms()
    return Sample(lat=lat, lng=lng, accuracy=accuracy, timestamp=int(timestamp))


class SampleWindow:
    """
    Bounded FIFO of the most recent samples.

    Samples are kept in arrival order. When a sample is added to a full
    window the oldest one is evicted, whatever its accuracy.

    Attributes:
        capacity: Maximum number of samples kept
    """

    def __init__(self, capacity: int = WINDOW_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._samples: Deque[Sample] = deque()

    def add(self, sample: Sample):
        """Append a sample, evicting the oldest on overflow."""
        self._samples.append(sample)
        if len(self._samples) > self.capacity:
            evicted = self._samples.popleft()
            logger.debug(f"Evicted oldest sample: {evicted}")

    @property
    def latest(self) -> Optional[Sample]:
        """Most recently added sample."""
        return self._samples[-1] if self._samples else None

    def estimate(self, timestamp_ms: Optional[int] = None) -> Optional[PositionEstimate]:
        """
        Weighted average of the window, weights being 1/accuracy.

        The combined accuracy is 1/sum(weights) and the timestamp is the most
        recent sample time. If the total weight is not positive the latest
        sample is returned as is.

        Returns:
            PositionEstimate, or None if the window is empty
        """
        if not self._samples:
            return None

        sum_weight = 0.0
        sum_lat = 0.0
        sum_lng = 0.0
        latest_ts = 0
        for s in self._samples:
            w = 1.0 / s.accuracy
            sum_weight += w
            sum_lat += s.lat * w
            sum_lng += s.lng * w
            if s.timestamp > latest_ts:
                latest_ts = s.timestamp

        if sum_weight <= 0:
            last = self._samples[-1]
            return PositionEstimate(
                lat=last.lat,
                lng=last.lng,
                accuracy=last.accuracy,
                timestamp=last.timestamp,
            )

        return PositionEstimate(
            lat=sum_lat / sum_weight,
            lng=sum_lng / sum_weight,
            accuracy=1.0 / sum_weight,
            timestamp=latest_ts or timestamp_ms or now_ms(),
        )

    def clear(self):
        """Remove all samples."""
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)
