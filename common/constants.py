"""
Application-wide constants for the SafeGuard core.

This module contains all shared constants used across the application.
"""

import os

# ========= Location Tracking =========
# Samples kept in the location history (newest-first)
LOCATION_HISTORY_LIMIT = 100

# Samples copied into an emergency snapshot
SNAPSHOT_HISTORY_LIMIT = 20

EARTH_RADIUS_KM = 6371.0

# Below this speed the device is considered stationary
STATIONARY_SPEED_KMH = 0.5

# A prior sample within this radius counts as a visit
FAMILIAR_RADIUS_KM = 0.1

# Fewer prior visits than this marks the area as unfamiliar
FAMILIAR_VISIT_THRESHOLD = 3

# ========= Threat Scoring =========
# Night is hour < NIGHT_END_HOUR or hour > NIGHT_START_HOUR
NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6

BASE_CONFIDENCE = 0.7
NIGHT_CONFIDENCE = 0.8
STATIONARY_CONFIDENCE = 0.75

# ========= Emergency Sessions =========
# Session TTL (24 hours in seconds)
SESSION_TTL = 24 * 3600

# Only the most recent sessions are retained
MAX_SESSIONS = 10

# Placeholder used when a snapshot field cannot be composed
UNKNOWN = "unknown"

ACCESS_URL_BASE = os.getenv(
    "SAFEGUARD_ACCESS_URL_BASE", "https://safeguard.app/emergency"
)

# Reserved number that is never auto-messaged
EMERGENCY_SERVICES_NUMBER = os.getenv("EMERGENCY_SERVICES_NUMBER", "911")

# ========= Trigger Reasons =========
PANIC_REASON = "PANIC BUTTON ACTIVATED - IMMEDIATE HELP NEEDED"
TIMER_EXPIRED_REASON = "Safety timer expired - no check-in received"
SHARE_LOCATION_REASON = "Current location shared"

MAPS_URL = "https://maps.google.com/?q={lat},{lng}"

# ========= Persistence Keys =========
CONTACTS_KEY = "contacts"
LOCATION_HISTORY_KEY = "location_history"
SESSIONS_KEY = "sessions"
SETTINGS_KEY = "settings"
PROFILE_KEY = "profile"
DEVICE_KEY = "device"
RECORDINGS_KEY = "recordings"
STORAGE_KEY_PREFIX = os.getenv("SAFEGUARD_STORAGE_PREFIX", "safeguard:")

# ========= Redis Configuration =========
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
# Note: REDIS_PASSWORD is read from env in redis_client, not here

# ========= Audit =========
AUDIT_TRAIL_LIMIT = 500

# ========= Retention =========
# Recording metadata kept (newest-first)
RECORDINGS_LIMIT = 50

# Messages kept by the logging sender
OUTBOX_LIMIT = 200
