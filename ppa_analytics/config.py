"""
Configuration for ppa_analytics.

Settings are read once at import time from ``PPA_*`` environment variables.
Time-window constants used by the eligibility gate and the exposure window
deduplicator live here so integrators can see every threshold in one place.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger("ppa_analytics")


def env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Paths
BASE_DIR = Path(os.path.expanduser(os.getenv("PPA_BASE_DIR", "~/.ppa_analytics")))
STORE_FILE = Path(os.path.expanduser(os.getenv("PPA_STORE_FILE", str(BASE_DIR / "store.json"))))

# Collaborator endpoints
SUBMISSION_ENDPOINT = os.getenv("PPA_SUBMISSION_ENDPOINT", "")
CONFIGURATION_URL = os.getenv("PPA_CONFIGURATION_URL", "")
REQUEST_TIMEOUT = float(os.getenv("PPA_REQUEST_TIMEOUT", "10.0"))

# Diagnostics
DEBUG = env_bool("PPA_DEBUG")
LOG_LEVEL = os.getenv("PPA_LOG_LEVEL", "DEBUG" if DEBUG else "WARNING").upper()

# Eligibility windows
SUBMISSION_COOLDOWN_HOURS = 23
ONBOARDING_GRACE_HOURS = 24
APP_RESET_GRACE_HOURS = 24

# Exposure windows older than this are dropped from the reported queue
EXPOSURE_WINDOW_RETENTION_DAYS = 15

# Reported for hoursSinceHighRiskWarningAtTestRegistration when risk is low
LOW_RISK_HOURS_SENTINEL = -1

# Header asking the backend to accept the API token without device attestation
FORCE_API_TOKEN_HEADER = "cwa-ppac-ios-accept-api-token"


def is_force_api_token_header_enabled() -> bool:
    """Whether submissions should ask the backend to skip device attestation.

    Re-read from the environment on each call so a diagnostic toggle takes
    effect without restarting the host application.
    """
    return env_bool("PPA_FORCE_API_TOKEN_HEADER")


def setup_logging() -> logging.Logger:
    """Attach a stream handler to the library logger if none is configured."""
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.WARNING))
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(handler)
    return logger
