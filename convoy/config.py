"""
Centralized configuration and tunables for the convoy sync engine.

All thresholds, paths and environment lookups should be defined here for
consistency.
"""

import os
from pathlib import Path
from typing import Optional

# Project root directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Directory paths
DEFAULT_CONFIG_DIR = PROJECT_ROOT / "config"


def get_config_dir() -> Path:
    """Get the per-device config directory from env or default."""
    return Path(os.getenv("CONVOY_CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))


def get_identity_file() -> Path:
    """Path of the JSON file holding this device's identity."""
    return get_config_dir() / "identity.json"


# Session limits
MAX_PARTICIPANTS = 10
SESSION_CODE_LENGTH = 4
SESSION_CODE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# Staleness
GHOST_AFTER_SECONDS = 5 * 60

# Upload throttling (GeoFilter)
EARTH_RADIUS_KM = 6371.0
FAST_SPEED_MPS = 8.0  # samples above this speed use the fast thresholds
FAST_MIN_INTERVAL_S = 5.0
FAST_MIN_DISTANCE_KM = 0.05
NORMAL_MIN_INTERVAL_S = 10.0
NORMAL_MIN_DISTANCE_KM = 0.03
HEARTBEAT_INTERVAL_S = 60.0
NO_PREVIOUS_DISTANCE_KM = 100.0  # distance assumed when nothing was uploaded yet

# Leader trail
TRAIL_MIN_STEP_KM = 0.03
TRAIL_MAX_ACCURACY_M = 20.0
TRAIL_GAP_KM = 1.0

# Simulation
SIM_TICK_SECONDS = 1.0
SIM_COMPANION_ID = "bot_viper"
SIM_COMPANION_NAME = "Viper (AI)"
SIM_COMPANION_COLOR = "#ec4899"
SIM_COMPANION_LAG = 15  # route points behind the host
DEFAULT_SIM_START = "Jaipur"
DEFAULT_SIM_END = "Sikar"

# Fallback starting position (Jaipur) before the first fix arrives
DEFAULT_POSITION = (26.9124, 75.7873)

# Camera
INITIAL_ZOOM = 15
LOCATE_ZOOM = 18

# External providers
DEFAULT_NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_OSRM_URL = "https://router.project-osrm.org/route/v1/driving"
USER_AGENT = "Convoy/1.0 (personal use)"
HTTP_TIMEOUT = 10  # seconds


def get_nominatim_url() -> str:
    """Get the geocoding search endpoint from env or default."""
    return os.getenv("CONVOY_NOMINATIM_URL", DEFAULT_NOMINATIM_URL)


def get_osrm_url() -> str:
    """Get the OSRM driving route endpoint from env or default."""
    return os.getenv("CONVOY_OSRM_URL", DEFAULT_OSRM_URL).rstrip("/")


# Shared store
DEFAULT_NATS_URL = "nats://localhost:4222"
DEFAULT_NATS_PREFIX = "convoy.sessions"


def get_db_url() -> Optional[str]:
    """Get the PostgreSQL URL from env, or None for the in-memory store."""
    return os.getenv("CONVOY_DB_URL") or None


def get_nats_url() -> str:
    """Get the NATS server URL from env or default."""
    return os.getenv("CONVOY_NATS_URL", DEFAULT_NATS_URL)


def get_nats_prefix() -> str:
    """Get the NATS subject prefix for change notifications."""
    return os.getenv("CONVOY_NATS_PREFIX", DEFAULT_NATS_PREFIX)


# HTTP API
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 8000


def get_api_host() -> str:
    """Get API bind host from env or default."""
    return os.getenv("CONVOY_API_HOST", DEFAULT_API_HOST)


def get_api_port() -> int:
    """Get API bind port from env or default."""
    return int(os.getenv("CONVOY_API_PORT", str(DEFAULT_API_PORT)))


def get_log_level() -> str:
    """Get log level name from env or default."""
    return os.getenv("CONVOY_LOG_LEVEL", "INFO").upper()
