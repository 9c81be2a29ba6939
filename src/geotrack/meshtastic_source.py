"""Location source backed by a Meshtastic radio's GPS position packets."""

import time
import asyncio
import logging
import itertools
from typing import Any, Dict, List, Optional

from pubsub import pub

try:
    import meshtastic.serial_interface
    MESHTASTIC_AVAILABLE = True
except ImportError:
    MESHTASTIC_AVAILABLE = False

from .config import SERIAL_PORT, TRACKED_NODE
from .location_source import ErrorCallback, FixCallback, LocationSource
from .models import ErrorKind, Fix, FixOptions, LocationError

logger = logging.getLogger(__name__)

TOPIC_POSITION = "meshtastic.receive.position"
TOPIC_CONNECTION_LOST = "meshtastic.connection.lost"


def format_node_id(from_node) -> str:
    """Meshtastic node id in "!12345678" form."""
    if isinstance(from_node, int):
        return f"!{from_node:08x}"
    node_id = str(from_node)
    if not node_id.startswith("!") and len(node_id) > 0:
        node_id = f"!{node_id}"
    return node_id


def fix_from_position(position: Dict[str, Any]) -> Optional[Fix]:
    """
    Build a Fix from a decoded Meshtastic position.

    Coordinates come as integers in 1e-7 degrees, time in epoch seconds and
    gpsAccuracy in millimeters; when PDOP (hundredths) is present the
    accuracy is scaled by it.

    Returns:
        Fix, or None if the position has no coordinates
    """
    lat_i = position.get("latitudeI")
    lon_i = position.get("longitudeI")
    if lat_i is None or lon_i is None:
        return None

    accuracy = None
    gps_accuracy = position.get("gpsAccuracy")
    if gps_accuracy:
        accuracy = gps_accuracy / 1000
        pdop = position.get("PDOP")
        if pdop:
            accuracy *= pdop / 100

    timestamp = None
    if position.get("time"):
        timestamp = int(position["time"]) * 1000

    return Fix(lat=lat_i / 1e7, lng=lon_i / 1e7, accuracy=accuracy, timestamp=timestamp)


class _Request:
    """Pending one-shot fetch or open watch."""

    def __init__(self, on_fix: FixCallback, on_error: ErrorCallback, options: FixOptions):
        self.on_fix = on_fix
        self.on_error = on_error
        self.options = options
        self.timer = None

    def cancel_timer(self):
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class MeshtasticLocationSource(LocationSource):
    """
    Meshtastic radio used as a location source.

    Listens to position packets published by meshtastic-python on the
    radio's reader thread and hands them over to the asyncio loop, where
    pending fetches and open watches are served. The radio has no
    permission model, so permission queries are not supported.

    Attributes:
        port: Serial port path (e.g., "/dev/ttyACM0")
        node_id: Tracked node ("!12345678"); None tracks the local node
        interface: meshtastic SerialInterface object
        running: Flag indicating if the packet listener is active
        loop: Event loop callbacks are delivered on
    """

    supports_permission_query = False

    def __init__(
        self,
        port: str = SERIAL_PORT,
        node_id: Optional[str] = TRACKED_NODE or None,
        loop=None,
        interface=None,
    ):
        if not MESHTASTIC_AVAILABLE and interface is None:
            raise ImportError(
                "meshtastic library not available. Install with: pip install meshtastic"
            )

        self.port = port
        self.node_id = node_id
        self.loop = loop
        self.interface = interface
        self.running = False
        self._fetches: List[_Request] = []
        self._watches: Dict[int, _Request] = {}
        self._handles = itertools.count(1)

    def connect(self) -> bool:
        """Connect to the Meshtastic device."""
        if self.interface:
            return True
        try:
            logger.info(f"Connecting to Meshtastic device at {self.port}...")
            self.interface = meshtastic.serial_interface.SerialInterface(
                devPath=self.port,
                noProto=False,
                connectNow=True,
            )
            logger.info(f"Connected to Meshtastic device at {self.port}")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to {self.port}: {e}")
            self.interface = None
            return False

    def start(self) -> bool:
        """Connect and start listening for position packets."""
        if self.running:
            return True
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        if not self.connect():
            logger.error("Failed to connect, position packets unavailable")
            return False

        if self.node_id is None:
            self.node_id = self._local_node_id()
        self.running = True
        pub.subscribe(self._on_receive_position, TOPIC_POSITION)
        pub.subscribe(self._on_connection_lost, TOPIC_CONNECTION_LOST)
        logger.info(f"Meshtastic location source started (node {self.node_id})")
        return True

    def stop(self):
        """Stop listening, drop pending requests and close the interface."""
        if self.running:
            pub.unsubscribe(self._on_receive_position, TOPIC_POSITION)
            pub.unsubscribe(self._on_connection_lost, TOPIC_CONNECTION_LOST)
        self.running = False

        for request in self._fetches + list(self._watches.values()):
            request.cancel_timer()
        self._fetches.clear()
        self._watches.clear()

        if self.interface:
            try:
                self.interface.close()
                logger.info("Disconnected from Meshtastic device")
            except Exception as e:
                logger.debug(f"Error closing interface: {e}")
            finally:
                self.interface = None

    def _local_node_id(self) -> Optional[str]:
        try:
            node_info = self.interface.getMyNodeInfo()
            return format_node_id(node_info["num"])
        except Exception as e:
            logger.warning(f"Could not determine local node id: {e}")
            return None

    # LocationSource

    def get_current_fix(self, on_fix: FixCallback, on_error: ErrorCallback, options: FixOptions):
        if not self.running:
            error = LocationError(ErrorKind.POSITION_UNAVAILABLE, "Meshtastic device not connected")
            self.loop.call_soon(on_error, error)
            return

        cached = self._cached_fix(options.max_cache_age_ms)
        if cached is not None:
            self.loop.call_soon(on_fix, cached)
            return

        request = _Request(on_fix, on_error, options)
        if options.timeout_ms is not None:
            request.timer = self.loop.call_later(
                options.timeout_ms / 1000, self._expire_fetch, request
            )
        self._fetches.append(request)

    def watch_fix(self, on_fix: FixCallback, on_error: ErrorCallback, options: FixOptions) -> int:
        handle = next(self._handles)
        request = _Request(on_fix, on_error, options)
        self._watches[handle] = request
        if not self.running:
            error = LocationError(ErrorKind.POSITION_UNAVAILABLE, "Meshtastic device not connected")
            self.loop.call_soon(on_error, error)
        else:
            self._arm_watch_timer(request)
        logger.debug(f"Watch {handle} opened")
        return handle

    def clear_watch(self, handle: int):
        request = self._watches.pop(handle, None)
        if request is not None:
            request.cancel_timer()
            logger.debug(f"Watch {handle} cleared")

    # Internals

    def _cached_fix(self, max_age_ms: int) -> Optional[Fix]:
        """Position from the node database if it is younger than max_age_ms."""
        if max_age_ms <= 0 or not self.interface:
            return None
        try:
            node_info = self.interface.nodes.get(self.node_id) or {}
        except Exception as e:
            logger.debug(f"Could not read node database: {e}")
            return None

        fix = fix_from_position(node_info.get("position") or {})
        if fix is None or fix.timestamp is None:
            return None
        age_ms = time.time() * 1000 - fix.timestamp
        return fix if age_ms <= max_age_ms else None

    def _arm_watch_timer(self, request: _Request):
        request.cancel_timer()
        if request.options.timeout_ms is not None:
            request.timer = self.loop.call_later(
                request.options.timeout_ms / 1000, self._expire_watch, request
            )

    def _expire_fetch(self, request: _Request):
        request.timer = None
        if request not in self._fetches:
            return
        self._fetches.remove(request)
        request.on_error(LocationError(ErrorKind.TIMEOUT, "Timed out waiting for a GPS position"))

    def _expire_watch(self, request: _Request):
        request.timer = None
        if request not in self._watches.values():
            return
        # The watch stays open; the next packet re-arms the timer
        self._arm_watch_timer(request)
        request.on_error(LocationError(ErrorKind.TIMEOUT, "No GPS position received recently"))

    def _on_receive_position(self, packet, interface):
        """Handle a position packet (runs on the radio's reader thread)."""
        if not self.running:
            return

        try:
            decoded = packet.get("decoded", {})
            position_data = decoded.get("position", {})
            from_node = packet.get("from")

            if not from_node or not position_data:
                return

            node_id = format_node_id(from_node)
            if self.node_id is not None and node_id != self.node_id:
                return

            fix = fix_from_position(position_data)
            if fix is None:
                return

            logger.debug(f"Position from {node_id}: {fix.lat}, {fix.lng}")
            self.loop.call_soon_threadsafe(self._dispatch_fix, fix)

        except Exception as e:
            logger.error(f"Error processing position message: {e}")

    def _on_connection_lost(self, interface):
        """Report a lost radio link to every open watch."""
        if not self.running:
            return
        logger.warning("Meshtastic connection lost")
        self.loop.call_soon_threadsafe(
            self._dispatch_error,
            LocationError(ErrorKind.POSITION_UNAVAILABLE, "Meshtastic connection lost"),
        )

    def _dispatch_fix(self, fix: Fix):
        # Watches opened by a fetch callback start with the next packet
        watches = list(self._watches.items())
        fetches, self._fetches = self._fetches, []
        for request in fetches:
            request.cancel_timer()
            request.on_fix(fix)
        for handle, request in watches:
            if handle not in self._watches:
                continue
            self._arm_watch_timer(request)
            request.on_fix(fix)

    def _dispatch_error(self, error: LocationError):
        watches = list(self._watches.items())
        fetches, self._fetches = self._fetches, []
        for request in fetches:
            request.cancel_timer()
            request.on_error(error)
        for handle, request in watches:
            if handle in self._watches:
                request.on_error(error)
