"""Configuration management."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
# Try to load from standard locations
env_paths = [
    Path("/etc/geotrack/.env"),  # System location
    Path(".env"),  # Current directory
    Path(__file__).parent.parent.parent / ".env",  # Project root
]
for env_path in env_paths:
    if env_path.exists():
        load_dotenv(env_path)
        break
else:
    load_dotenv()

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Meshtastic radio used as location source
SERIAL_PORT = os.getenv("SERIAL_PORT", "/dev/ttyACM0")
# Node whose positions are tracked (e.g. "!9e7878a4"); empty means the local node
TRACKED_NODE = os.getenv("TRACKED_NODE", "")

# Sample averaging
# WINDOW_CAPACITY: number of most recent samples averaged together
# ACCURACY_FALLBACK: accuracy (meters) assumed when the host reports none
# MIN_ACCURACY: accuracy floor, keeps 1/accuracy weights finite
WINDOW_CAPACITY = int(os.getenv("WINDOW_CAPACITY", "8"))
ACCURACY_FALLBACK = float(os.getenv("ACCURACY_FALLBACK", "1000"))
MIN_ACCURACY = float(os.getenv("MIN_ACCURACY", "1"))

# Delay before the first fetch when the user still has to be prompted (seconds)
PROMPT_DELAY_SECONDS = float(os.getenv("PROMPT_DELAY_SECONDS", "0.08"))

# Fix request options (milliseconds)
# Prompt fetch: no cached positions, generous timeout for the permission dialog
PROMPT_FIX_MAX_AGE_MS = 0
PROMPT_FIX_TIMEOUT_MS = 20000
# Fetch when permission is already granted
GRANTED_FIX_MAX_AGE_MS = 2000
# Continuous watch: prefer fresh samples
WATCH_MAX_AGE_MS = 2000
WATCH_TIMEOUT_MS = 15000
HIGH_ACCURACY = os.getenv("HIGH_ACCURACY", "true").lower() == "true"

# Viewport
MIN_SCALE = float(os.getenv("MIN_SCALE", "0.5"))
MAX_SCALE = float(os.getenv("MAX_SCALE", "3.0"))
ZOOM_STEP = float(os.getenv("ZOOM_STEP", "0.2"))
# "step": fixed-step button zoom, "focal": zoom anchored at the pointer
ZOOM_MODE = os.getenv("ZOOM_MODE", "step").lower()

# Map asset projection (bounds of map.svg and its pixel size)
MAP_NORTH = float(os.getenv("MAP_NORTH", "38.0"))
MAP_SOUTH = float(os.getenv("MAP_SOUTH", "37.0"))
MAP_WEST = float(os.getenv("MAP_WEST", "-123.0"))
MAP_EAST = float(os.getenv("MAP_EAST", "-122.0"))
MAP_WIDTH = int(os.getenv("MAP_WIDTH", "800"))
MAP_HEIGHT = int(os.getenv("MAP_HEIGHT", "600"))

# Project information
PROJECT_NAME = "geotrack"
