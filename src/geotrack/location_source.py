"""Host location capability consumed by PositionTracker."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from .models import Fix, FixOptions, LocationError, PermissionState

FixCallback = Callable[[Fix], None]
ErrorCallback = Callable[[LocationError], None]
PermissionCallback = Callable[[PermissionState], None]


class LocationSource(ABC):
    """
    Abstract location capability supplied by the host environment.

    Every result is delivered later through the given callbacks, never
    synchronously from the call that requested it. Failures are reported as
    LocationError instances passed to the error callback.

    Subclasses must implement get_current_fix, watch_fix and clear_watch.
    Permission queries and notifications are optional capabilities.

    Attributes:
        supports_permission_query: True if query_permission is available
    """

    supports_permission_query = False

    def query_permission(
        self,
        on_result: PermissionCallback,
        on_error: Callable[[Exception], None],
    ):
        """Report the current permission state through on_result (optional)."""
        raise NotImplementedError

    def watch_permission(self, callback: PermissionCallback) -> Optional[Any]:
        """
        Register for live permission-change notifications.

        Returns:
            Handle for clear_permission_watch, or None if the host cannot
            notify permission changes.
        """
        return None

    def clear_permission_watch(self, handle: Any):
        """Release a permission-change registration."""

    @abstractmethod
    def get_current_fix(self, on_fix: FixCallback, on_error: ErrorCallback, options: FixOptions):
        """Request a single fix."""
        raise NotImplementedError

    @abstractmethod
    def watch_fix(self, on_fix: FixCallback, on_error: ErrorCallback, options: FixOptions) -> Any:
        """Start delivering fixes continuously; returns a watch handle."""
        raise NotImplementedError

    @abstractmethod
    def clear_watch(self, handle: Any):
        """Stop a watch started by watch_fix."""
        raise NotImplementedError
