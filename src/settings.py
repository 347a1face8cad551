"""Static configuration for switchboard.

All user-editable settings (storage paths, dedup, matching, notifications,
logging) live in a single JSON file for quick edits without touching Python.
Accounts, keywords and the target chat are runtime data kept in SQLite.
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# SWITCHBOARD_CONFIG lets tests and deployments point at another file.
CONFIG_PATH = os.getenv("SWITCHBOARD_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _project_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database and the per-account session files.
_storage = _CONFIG.get("storage", {})
DB_PATH = _project_path(_storage.get("db_path", "switchboard.db"))
SESSIONS_DIR = _project_path(_storage.get("sessions_dir", "sessions"))

# Deduplication window shared by every account.
# - DEDUP_RETENTION_HOURS: how long a fingerprint suppresses repeats
# - DEDUP_SWEEP_INTERVAL_SECONDS: how often expired fingerprints are purged
_dedup = _CONFIG.get("dedup", {})
DEDUP_RETENTION_HOURS = int(_dedup.get("retention_hours", 24))
DEDUP_SWEEP_INTERVAL_SECONDS = float(_dedup.get("sweep_interval_seconds", 3600))

# Similarity ratio a fuzzy keyword needs to count as a hit.
_matching = _CONFIG.get("matching", {})
FUZZY_THRESHOLD = float(_matching.get("fuzzy_threshold", 0.8))

# How often a running monitor rereads accounts, keywords, the target chat and
# start/stop requests written by administrative commands.
_control = _CONFIG.get("control", {})
SYNC_INTERVAL_SECONDS = float(_control.get("sync_interval_seconds", 5))

# Forward payload rendering ("html" or "markdown").
_notifications = _CONFIG.get("notifications", {})
NOTIFICATION_FORMAT = _notifications.get("format", "html")
MAX_CONTENT_CHARS = int(_notifications.get("max_content_chars", 3500))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
