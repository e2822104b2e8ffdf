"""
Metadata store for privacy-preserving analytics.

The host application owns the real persistence (typically an encrypted
on-device key-value store). This module defines the small key-value
interface the analytics pipeline needs, two reference backends, and
``MetadataStore``, a typed view over a backend that (de)serializes each
analytics record.

Backends:
- MemoryStore: dict-backed, used in tests and by hosts that persist elsewhere
- JsonFileStore: a single JSON file with restrictive permissions
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from . import config
from .models import (
    ClientMetadata,
    ExposureWindowsMetadata,
    KeySubmissionMetadata,
    RiskCalculationResult,
    RiskExposureMetadata,
    TestResultMetadata,
    UserMetadata,
    datetime_to_str,
    parse_datetime,
)

logger = logging.getLogger("ppa_analytics")


class StoreKey:
    """Names under which values are persisted."""

    # Analytics records and bookkeeping
    LAST_SUBMISSION_ANALYTICS = "lastSubmissionAnalytics"
    LAST_APP_RESET = "lastAppReset"
    LAST_SUBMITTED_PPA_DATA = "lastSubmittedPPAData"
    CURRENT_RISK_EXPOSURE_METADATA = "currentRiskExposureMetadata"
    PREVIOUS_RISK_EXPOSURE_METADATA = "previousRiskExposureMetadata"
    USER_METADATA = "userMetadata"
    CLIENT_METADATA = "clientMetadata"
    TEST_RESULT_METADATA = "testResultMetadata"
    KEY_SUBMISSION_METADATA = "keySubmissionMetadata"
    EXPOSURE_WINDOWS_METADATA = "exposureWindowsMetadata"

    # Context written by the rest of the app
    CONSENT_ACCEPTED = "privacyPreservingAnalyticsConsentAccept"
    ONBOARDED_DATE = "onboardedDate"
    RISK_CALCULATION_RESULT = "riskCalculationResult"
    DATE_OF_CONVERSION_TO_HIGH_RISK = "dateOfConversionToHighRisk"
    TEST_RESULT_RECEIVED_AT = "testResultReceivedTimeStamp"
    TEST_REGISTRATION_DATE = "testRegistrationDate"
    LAST_APP_CONFIG_ETAG = "lastAppConfigETag"
    PPAC_API_TOKEN = "ppacApiToken"


# Keys removed by a full analytics reset
ANALYTICS_KEYS = (
    StoreKey.CURRENT_RISK_EXPOSURE_METADATA,
    StoreKey.PREVIOUS_RISK_EXPOSURE_METADATA,
    StoreKey.USER_METADATA,
    StoreKey.LAST_SUBMITTED_PPA_DATA,
    StoreKey.LAST_APP_RESET,
    StoreKey.LAST_SUBMISSION_ANALYTICS,
    StoreKey.CLIENT_METADATA,
    StoreKey.TEST_RESULT_METADATA,
    StoreKey.KEY_SUBMISSION_METADATA,
    StoreKey.EXPOSURE_WINDOWS_METADATA,
)


class KeyValueStore(ABC):
    """Abstract base class for analytics persistence.

    Values are JSON-compatible (dicts, lists, strings, numbers, bools, None).
    """

    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the stored value, or None if the key is not set."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a value. Storing None removes the key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""

    def clear_keys(self, keys: Iterable[str]) -> int:
        """Remove several keys. Returns the number that existed."""
        return sum(1 for key in keys if self.delete(key))

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of the store backend."""


class MemoryStore(KeyValueStore):
    """Keep values in a dict. Nothing survives the process."""

    def __init__(self, initial: Optional[dict] = None):
        self._data = dict(initial or {})

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def snapshot(self) -> dict:
        return dict(self._data)

    @property
    def name(self) -> str:
        return "memory"


class JsonFileStore(KeyValueStore):
    """Store values as one JSON document on disk with restrictive permissions.

    Every write rewrites the whole file. A lock serializes read-modify-write
    cycles between threads of the same process.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else config.STORE_FILE
        self._lock = threading.Lock()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Analytics store at {self.path} is unreadable, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Any:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
            self._write(data)

    def delete(self, key: str) -> bool:
        with self._lock:
            data = self._read()
            if key not in data:
                return False
            del data[key]
            self._write(data)
            return True

    def clear_keys(self, keys: Iterable[str]) -> int:
        with self._lock:
            data = self._read()
            removed = [key for key in keys if data.pop(key, None) is not None]
            if removed:
                self._write(data)
            return len(removed)

    @property
    def name(self) -> str:
        return "json-file"


def _record_property(key: str, record_cls):
    """Typed property that (de)serializes a record under ``key``.

    A value that no longer parses is reported as absent rather than raising,
    so a schema change never breaks the host application.
    """

    def getter(self):
        raw = self.backend.get(key)
        if raw is None:
            return None
        try:
            return record_cls.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable {key} record: {e}")
            return None

    def setter(self, value):
        self.backend.set(key, value.to_dict() if value is not None else None)

    return property(getter, setter)


def _timestamp_property(key: str):
    def getter(self) -> Optional[datetime]:
        return parse_datetime(self.backend.get(key))

    def setter(self, value: Optional[datetime]):
        self.backend.set(key, datetime_to_str(value))

    return property(getter, setter)


def _plain_property(key: str):
    def getter(self):
        return self.backend.get(key)

    def setter(self, value):
        self.backend.set(key, value)

    return property(getter, setter)


class MetadataStore:
    """Typed access to every value the analytics pipeline reads or writes."""

    def __init__(self, backend: KeyValueStore):
        self.backend = backend

    # Analytics records
    user_metadata = _record_property(StoreKey.USER_METADATA, UserMetadata)
    current_risk_exposure_metadata = _record_property(
        StoreKey.CURRENT_RISK_EXPOSURE_METADATA, RiskExposureMetadata
    )
    previous_risk_exposure_metadata = _record_property(
        StoreKey.PREVIOUS_RISK_EXPOSURE_METADATA, RiskExposureMetadata
    )
    client_metadata = _record_property(StoreKey.CLIENT_METADATA, ClientMetadata)
    test_result_metadata = _record_property(StoreKey.TEST_RESULT_METADATA, TestResultMetadata)
    key_submission_metadata = _record_property(
        StoreKey.KEY_SUBMISSION_METADATA, KeySubmissionMetadata
    )
    exposure_windows_metadata = _record_property(
        StoreKey.EXPOSURE_WINDOWS_METADATA, ExposureWindowsMetadata
    )

    # Submission bookkeeping
    last_submission_analytics = _timestamp_property(StoreKey.LAST_SUBMISSION_ANALYTICS)
    last_app_reset = _timestamp_property(StoreKey.LAST_APP_RESET)
    last_submitted_ppa_data = _plain_property(StoreKey.LAST_SUBMITTED_PPA_DATA)

    # Context
    onboarded_date = _timestamp_property(StoreKey.ONBOARDED_DATE)
    risk_calculation_result = _record_property(
        StoreKey.RISK_CALCULATION_RESULT, RiskCalculationResult
    )
    date_of_conversion_to_high_risk = _timestamp_property(StoreKey.DATE_OF_CONVERSION_TO_HIGH_RISK)
    test_result_received_at = _timestamp_property(StoreKey.TEST_RESULT_RECEIVED_AT)
    test_registration_date = _timestamp_property(StoreKey.TEST_REGISTRATION_DATE)
    last_app_config_etag = _plain_property(StoreKey.LAST_APP_CONFIG_ETAG)
    ppac_api_token = _plain_property(StoreKey.PPAC_API_TOKEN)

    @property
    def consent_given(self) -> bool:
        return self.backend.get(StoreKey.CONSENT_ACCEPTED) is True

    @consent_given.setter
    def consent_given(self, value: bool) -> None:
        self.backend.set(StoreKey.CONSENT_ACCEPTED, bool(value))

    def delete_analytics_data(self) -> int:
        """Remove every analytics key. Context written by the app is kept."""
        return self.backend.clear_keys(ANALYTICS_KEYS)


def get_default_store() -> MetadataStore:
    """Metadata store backed by the JSON file at ``config.STORE_FILE``."""
    return MetadataStore(JsonFileStore())
