"""Shared test fixtures and configuration for ppa_analytics tests."""

import os
import random
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add ppa_analytics to path for testing
sys.path.insert(0, str(Path(__file__).parent.parent))

from ppa_analytics.models import ExposureWindow, RiskCalculationExposureWindow, ScanInstance
from ppa_analytics.store import MemoryStore, MetadataStore


NOW = datetime(2021, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolate_home_directory(tmp_path, monkeypatch):
    """
    Redirect Path.home() and os.path.expanduser() to a temporary directory.

    Keeps JsonFileStore and anything else resolving ``~`` away from the
    developer's real analytics store.
    """
    fake_home = tmp_path / "home"
    (fake_home / ".ppa_analytics").mkdir(parents=True)

    monkeypatch.setattr("pathlib.Path.home", lambda: fake_home)

    original_expanduser = os.path.expanduser

    def mock_expanduser(path):
        if path.startswith("~"):
            return str(fake_home) + path[1:]
        return original_expanduser(path)

    monkeypatch.setattr("os.path.expanduser", mock_expanduser)
    monkeypatch.delenv("PPA_FORCE_API_TOKEN_HEADER", raising=False)

    yield fake_home


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    """A clock frozen at NOW."""
    return lambda: NOW


@pytest.fixture
def backend():
    return MemoryStore()


@pytest.fixture
def store(backend):
    """Metadata store over memory with analytics consent given."""
    metadata_store = MetadataStore(backend)
    metadata_store.consent_given = True
    return metadata_store


class FixedRandom(random.Random):
    """Random source whose draw is always ``value``."""

    def __init__(self, value: float):
        super().__init__()
        self.value = value

    def random(self):
        return self.value


def make_window(day, infectiousness=1, attenuation=50, transmission_risk_level=3):
    """Build a risk calculation exposure window observed on ``day``."""
    return RiskCalculationExposureWindow(
        exposure_window=ExposureWindow(
            calibration_confidence=1,
            infectiousness=infectiousness,
            report_type=1,
            date=day,
            scan_instances=(ScanInstance(attenuation, attenuation - 5, 300),),
        ),
        transmission_risk_level=transmission_risk_level,
        normalized_time=1.5,
    )
