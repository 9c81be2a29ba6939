"""Main tracking application."""

import signal
import asyncio
import logging

from .config import LOG_LEVEL, PROJECT_NAME, SERIAL_PORT, ZOOM_MODE
from .coordinator import Coordinator, DisplayState
from .meshtastic_source import MeshtasticLocationSource
from .tracker import PositionTracker
from .viewport import ViewportTransform

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# Set meshtastic loggers to WARNING to reduce noise (they use DEBUG by default)
meshtastic_log_level = getattr(logging, LOG_LEVEL.upper(), logging.INFO)
if meshtastic_log_level <= logging.INFO:
    meshtastic_log_level = logging.WARNING
logging.getLogger("meshtastic").setLevel(meshtastic_log_level)

logger = logging.getLogger(__name__)


def describe(state: DisplayState) -> str:
    """One-line summary of a display state."""
    if state.permission_error:
        return f"Error: {state.permission_error}"
    if state.location is None:
        return "Acquiring GPS signal..."
    accuracy = f"{state.accuracy:.1f} m" if state.accuracy else "--"
    last_update = state.last_update.strftime("%H:%M:%S") if state.last_update else "--"
    return (
        f"Lat: {state.location.lat:.6f}, Lng: {state.location.lng:.6f} | "
        f"Accuracy: {accuracy} | Last update: {last_update} | "
        f"Marker: ({state.marker.x:.0f}, {state.marker.y:.0f})"
    )


class GeoTrackApp:
    """
    Application composing all components on one asyncio loop.

    Components:
        - MeshtasticLocationSource: GPS fixes from the radio
        - PositionTracker: Permission lifecycle and sample averaging
        - ViewportTransform: Map zoom and pan
        - Coordinator: Marker placement and display updates

    Threads:
        - Main thread: Event loop, all tracker callbacks
        - Meshtastic reader thread: Position packets, handed to the loop
    """

    def __init__(self, port: str = SERIAL_PORT):
        self.running = False
        self.loop = asyncio.new_event_loop()
        self.source = MeshtasticLocationSource(port=port, loop=self.loop)
        self.tracker = PositionTracker(self.source, loop=self.loop)
        self.coordinator = Coordinator(self.tracker, ViewportTransform(), zoom_mode=ZOOM_MODE)
        self.coordinator.subscribe(self._on_display)

        # Signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.loop.call_soon_threadsafe(self.loop.stop)

    def _on_display(self, state: DisplayState):
        logger.info(describe(state))

    def start(self):
        """Start tracking and run the event loop until stopped."""
        logger.info(f"Starting {PROJECT_NAME} position tracker")
        self.running = True
        try:
            self.loop.call_soon(self._start_components)
            self.loop.run_forever()
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
        finally:
            self.stop()

    def _start_components(self):
        if not self.source.start():
            logger.warning("Location source unavailable, tracker will report errors")
        self.coordinator.start()

    def stop(self):
        """Stop tracking and release the radio."""
        if not self.running:
            return

        logger.info("Stopping position tracker...")
        self.running = False
        self.coordinator.stop()
        self.source.stop()
        self.loop.close()
        logger.info("Position tracker stopped")


def main():
    """Main entry point."""
    app = GeoTrackApp()
    app.start()


if __name__ == "__main__":
    main()
