"""
Unit tests for ppa_analytics.store.

Tests the key-value backends and the typed MetadataStore view over them.
"""

import json
from datetime import date, datetime, timezone

import pytest

from ppa_analytics.models import (
    AgeGroup,
    FederalState,
    RiskExposureMetadata,
    RiskLevel,
    UserMetadata,
)
from ppa_analytics.store import (
    ANALYTICS_KEYS,
    JsonFileStore,
    MemoryStore,
    MetadataStore,
    StoreKey,
    get_default_store,
)


USER = UserMetadata(FederalState.HAMBURG, 2000000, AgeGroup.AGE_BELOW_29)


# ──────────────────────────────────────────────────────────────────
# Backends
# ──────────────────────────────────────────────────────────────────


class TestMemoryStore:

    def test_set_none_removes_key(self):
        backend = MemoryStore({"a": 1})
        backend.set("a", None)
        assert backend.get("a") is None
        assert backend.snapshot() == {}

    def test_delete_reports_existence(self):
        backend = MemoryStore({"a": 1})
        assert backend.delete("a") is True
        assert backend.delete("a") is False

    def test_clear_keys_counts_removed(self):
        backend = MemoryStore({"a": 1, "b": 2, "c": 3})
        assert backend.clear_keys(["a", "b", "missing"]) == 2
        assert backend.snapshot() == {"c": 3}


class TestJsonFileStore:

    def test_set_creates_file_with_restrictive_permissions(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        backend = JsonFileStore(path)
        backend.set("key", {"value": 1})
        assert json.loads(path.read_text()) == {"key": {"value": 1}}
        assert oct(path.stat().st_mode & 0o777) == "0o600"

    def test_values_survive_a_new_instance(self, tmp_path):
        path = tmp_path / "store.json"
        JsonFileStore(path).set("key", "value")
        assert JsonFileStore(path).get("key") == "value"

    def test_unreadable_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("not-json{{{")
        backend = JsonFileStore(path)
        assert backend.get("key") is None
        backend.set("key", 1)
        assert backend.get("key") == 1

    def test_clear_keys_rewrites_once(self, tmp_path):
        path = tmp_path / "store.json"
        backend = JsonFileStore(path)
        backend.set("a", 1)
        backend.set("b", 2)
        assert backend.clear_keys(["a", "missing"]) == 1
        assert json.loads(path.read_text()) == {"b": 2}

    def test_default_store_uses_json_file(self):
        store = get_default_store()
        assert isinstance(store.backend, JsonFileStore)
        assert store.backend.name == "json-file"


# ──────────────────────────────────────────────────────────────────
# MetadataStore
# ──────────────────────────────────────────────────────────────────


class TestMetadataStore:

    def test_records_are_stored_as_dicts(self, backend):
        store = MetadataStore(backend)
        store.user_metadata = USER
        assert backend.get(StoreKey.USER_METADATA) == USER.to_dict()
        assert store.user_metadata == USER

    def test_assigning_none_removes_record(self, backend):
        store = MetadataStore(backend)
        store.user_metadata = USER
        store.user_metadata = None
        assert backend.get(StoreKey.USER_METADATA) is None

    def test_unreadable_record_reads_as_absent(self, backend):
        backend.set(StoreKey.CURRENT_RISK_EXPOSURE_METADATA, {"riskLevel": "extreme"})
        assert MetadataStore(backend).current_risk_exposure_metadata is None

    def test_timestamps_roundtrip(self, backend):
        store = MetadataStore(backend)
        moment = datetime(2021, 6, 15, 12, 0, tzinfo=timezone.utc)
        store.last_submission_analytics = moment
        assert store.last_submission_analytics == moment
        assert isinstance(backend.get(StoreKey.LAST_SUBMISSION_ANALYTICS), str)

    def test_consent_requires_literal_true(self, backend):
        store = MetadataStore(backend)
        assert store.consent_given is False
        backend.set(StoreKey.CONSENT_ACCEPTED, "yes")
        assert store.consent_given is False
        store.consent_given = True
        assert store.consent_given is True

    def test_delete_analytics_data_keeps_context(self, backend):
        store = MetadataStore(backend)
        store.consent_given = True
        store.onboarded_date = datetime(2021, 6, 1, tzinfo=timezone.utc)
        store.user_metadata = USER
        store.current_risk_exposure_metadata = RiskExposureMetadata(
            risk_level=RiskLevel.HIGH, most_recent_date_at_risk_level=date(2021, 6, 10)
        )
        store.last_submitted_ppa_data = "{}"

        removed = store.delete_analytics_data()

        assert removed == 3
        for key in ANALYTICS_KEYS:
            assert backend.get(key) is None
        assert store.consent_given is True
        assert store.onboarded_date is not None

    @pytest.mark.parametrize("key", ANALYTICS_KEYS)
    def test_every_analytics_key_is_cleared(self, backend, key):
        backend.set(key, {"stale": True})
        MetadataStore(backend).delete_analytics_data()
        assert backend.get(key) is None
