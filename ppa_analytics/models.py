"""
Data models for privacy-preserving analytics.

Every record persisted in the metadata store is a dataclass with a
``to_dict``/``from_dict`` pair. The dict form uses camelCase keys and ISO
8601 strings for dates so the store content stays readable when inspected
on disk.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional


class RiskLevel(str, Enum):
    """Binary exposure risk classification."""
    LOW = "low"
    HIGH = "high"


class AgeGroup(str, Enum):
    """Age group reported with the user metadata."""
    AGE_BELOW_29 = "ageBelow29"
    AGE_BETWEEN_30_AND_59 = "ageBetween30And59"
    AGE_60_OR_ABOVE = "age60OrAbove"


class FederalState(str, Enum):
    """German federal states, coded by display name."""
    BADEN_WUERTTEMBERG = "Baden-Württemberg"
    BAYERN = "Bayern"
    BERLIN = "Berlin"
    BRANDENBURG = "Brandenburg"
    BREMEN = "Bremen"
    HAMBURG = "Hamburg"
    HESSEN = "Hessen"
    MECKLENBURG_VORPOMMERN = "Mecklenburg-Vorpommern"
    NIEDERSACHSEN = "Niedersachsen"
    NORDRHEIN_WESTFALEN = "Nordrhein-Westfalen"
    RHEINLAND_PFALZ = "Rheinland-Pfalz"
    SAARLAND = "Saarland"
    SACHSEN = "Sachsen"
    SACHSEN_ANHALT = "Sachsen-Anhalt"
    SCHLESWIG_HOLSTEIN = "Schleswig-Holstein"
    THUERINGEN = "Thüringen"


class TestResult(str, Enum):
    """Result of a registered diagnostic test."""
    __test__ = False  # not a pytest test class

    PENDING = "pending"
    POSITIVE = "positive"
    NEGATIVE = "negative"
    INVALID = "invalid"
    EXPIRED = "expired"


# Results that update the stored test result metadata
ACTIONABLE_TEST_RESULTS = frozenset({TestResult.PENDING, TestResult.POSITIVE, TestResult.NEGATIVE})


class LastSubmissionFlowScreen(str, Enum):
    """Last screen reached in the diagnosis key submission flow."""
    UNKNOWN = "submissionFlowScreenUnknown"
    OTHER = "submissionFlowScreenOther"
    TEST_RESULT = "submissionFlowScreenTestResult"
    WARN_OTHERS = "submissionFlowScreenWarnOthers"
    SYMPTOMS = "submissionFlowScreenSymptoms"
    SYMPTOM_ONSET = "submissionFlowScreenSymptomOnset"


# ──────────────────────────────────────────────────────────────────
# Serialization helpers
# ──────────────────────────────────────────────────────────────────


def as_utc(value: datetime) -> datetime:
    """Treat a naive datetime as UTC. Aware datetimes are returned unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def datetime_to_str(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_utc(value).isoformat()


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp, returning None for anything unparseable.

    Naive timestamps are assumed to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    return as_utc(parsed)


def date_to_str(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO date (YYYY-MM-DD), returning None for anything unparseable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _enum_or_none(enum_cls, value):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _enum_value(value: Optional[Enum]) -> Optional[str]:
    return value.value if value is not None else None


# ──────────────────────────────────────────────────────────────────
# Metadata records
# ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class UserMetadata:
    """Coarse demographic data, replaced wholesale on every update."""

    federal_state: FederalState
    administrative_unit: int  # district reference
    age_group: AgeGroup

    def to_dict(self) -> dict:
        return {
            "federalState": self.federal_state.value,
            "administrativeUnit": self.administrative_unit,
            "ageGroup": self.age_group.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserMetadata":
        return cls(
            federal_state=FederalState(data["federalState"]),
            administrative_unit=int(data["administrativeUnit"]),
            age_group=AgeGroup(data["ageGroup"]),
        )


@dataclass(frozen=True)
class RiskExposureMetadata:
    """Risk level snapshot with change flags relative to the last submission."""

    risk_level: RiskLevel
    risk_level_changed_compared_to_previous_submission: bool = False
    most_recent_date_at_risk_level: Optional[date] = None
    date_changed_compared_to_previous_submission: bool = False

    def to_dict(self) -> dict:
        data = {
            "riskLevel": self.risk_level.value,
            "riskLevelChangedComparedToPreviousSubmission": self.risk_level_changed_compared_to_previous_submission,
            "dateChangedComparedToPreviousSubmission": self.date_changed_compared_to_previous_submission,
        }
        if self.most_recent_date_at_risk_level is not None:
            data["mostRecentDateAtRiskLevel"] = date_to_str(self.most_recent_date_at_risk_level)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RiskExposureMetadata":
        return cls(
            risk_level=RiskLevel(data["riskLevel"]),
            risk_level_changed_compared_to_previous_submission=bool(
                data.get("riskLevelChangedComparedToPreviousSubmission", False)
            ),
            most_recent_date_at_risk_level=parse_date(data.get("mostRecentDateAtRiskLevel")),
            date_changed_compared_to_previous_submission=bool(
                data.get("dateChangedComparedToPreviousSubmission", False)
            ),
        )


@dataclass(frozen=True)
class ClientMetadata:
    """App configuration fingerprint at submission time."""

    etag: Optional[str] = None

    def to_dict(self) -> dict:
        return {"eTag": self.etag}

    @classmethod
    def from_dict(cls, data: dict) -> "ClientMetadata":
        return cls(etag=data.get("eTag"))


@dataclass(frozen=True)
class TestResultMetadata:
    """Metadata about the registered test and how its result evolved."""
    __test__ = False

    registration_token: str
    test_registration_date: Optional[datetime] = None
    test_result: Optional[TestResult] = None
    risk_level_at_test_registration: Optional[RiskLevel] = None
    days_since_most_recent_date_at_risk_level_at_test_registration: Optional[int] = None
    hours_since_test_registration: Optional[int] = 0
    hours_since_high_risk_warning_at_test_registration: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "registrationToken": self.registration_token,
            "testRegistrationDate": datetime_to_str(self.test_registration_date),
            "testResult": _enum_value(self.test_result),
            "riskLevelAtTestRegistration": _enum_value(self.risk_level_at_test_registration),
            "daysSinceMostRecentDateAtRiskLevelAtTestRegistration": (
                self.days_since_most_recent_date_at_risk_level_at_test_registration
            ),
            "hoursSinceTestRegistration": self.hours_since_test_registration,
            "hoursSinceHighRiskWarningAtTestRegistration": (
                self.hours_since_high_risk_warning_at_test_registration
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TestResultMetadata":
        return cls(
            registration_token=data.get("registrationToken", ""),
            test_registration_date=parse_datetime(data.get("testRegistrationDate")),
            test_result=_enum_or_none(TestResult, data.get("testResult")),
            risk_level_at_test_registration=_enum_or_none(
                RiskLevel, data.get("riskLevelAtTestRegistration")
            ),
            days_since_most_recent_date_at_risk_level_at_test_registration=data.get(
                "daysSinceMostRecentDateAtRiskLevelAtTestRegistration"
            ),
            hours_since_test_registration=data.get("hoursSinceTestRegistration", 0),
            hours_since_high_risk_warning_at_test_registration=data.get(
                "hoursSinceHighRiskWarningAtTestRegistration"
            ),
        )


@dataclass(frozen=True)
class KeySubmissionMetadata:
    """Sparse record describing one diagnosis key submission.

    Fields are filled in independently as the user moves through the
    submission flow, so every field is optional.
    """

    submitted: Optional[bool] = None
    submitted_in_background: Optional[bool] = None
    submitted_after_cancel: Optional[bool] = None
    submitted_after_symptom_flow: Optional[bool] = None
    submitted_with_tele_tan: Optional[bool] = None
    advanced_consent_given: Optional[bool] = None
    last_submission_flow_screen: Optional[LastSubmissionFlowScreen] = None
    hours_since_test_result: Optional[int] = None
    hours_since_test_registration: Optional[int] = None
    days_since_most_recent_date_at_risk_level_at_test_registration: Optional[int] = None
    hours_since_high_risk_warning_at_test_registration: Optional[int] = None

    _KEYS = {
        "submitted": "submitted",
        "submitted_in_background": "submittedInBackground",
        "submitted_after_cancel": "submittedAfterCancel",
        "submitted_after_symptom_flow": "submittedAfterSymptomFlow",
        "submitted_with_tele_tan": "submittedWithTeleTAN",
        "advanced_consent_given": "advancedConsentGiven",
        "last_submission_flow_screen": "lastSubmissionFlowScreen",
        "hours_since_test_result": "hoursSinceTestResult",
        "hours_since_test_registration": "hoursSinceTestRegistration",
        "days_since_most_recent_date_at_risk_level_at_test_registration": (
            "daysSinceMostRecentDateAtRiskLevelAtTestRegistration"
        ),
        "hours_since_high_risk_warning_at_test_registration": (
            "hoursSinceHighRiskWarningAtTestRegistration"
        ),
    }

    def with_field(self, name: str, value: Any) -> "KeySubmissionMetadata":
        return replace(self, **{name: value})

    def to_dict(self) -> dict:
        data = {}
        for attr, key in self._KEYS.items():
            value = getattr(self, attr)
            data[key] = value.value if isinstance(value, Enum) else value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "KeySubmissionMetadata":
        kwargs = {attr: data.get(key) for attr, key in cls._KEYS.items()}
        kwargs["last_submission_flow_screen"] = _enum_or_none(
            LastSubmissionFlowScreen, kwargs["last_submission_flow_screen"]
        )
        return cls(**kwargs)


# ──────────────────────────────────────────────────────────────────
# Exposure windows
# ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ScanInstance:
    """A single Bluetooth scan aggregated into an exposure window."""

    typical_attenuation: int
    min_attenuation: int
    seconds_since_last_scan: int

    def to_dict(self) -> dict:
        return {
            "typicalAttenuation": self.typical_attenuation,
            "minAttenuation": self.min_attenuation,
            "secondsSinceLastScan": self.seconds_since_last_scan,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScanInstance":
        return cls(
            typical_attenuation=data["typicalAttenuation"],
            min_attenuation=data["minAttenuation"],
            seconds_since_last_scan=data["secondsSinceLastScan"],
        )


@dataclass(frozen=True)
class ExposureWindow:
    """Scan data for one exposure, as reported by the exposure notification framework."""

    calibration_confidence: int
    infectiousness: int
    report_type: int
    date: Optional[date]
    scan_instances: tuple = ()

    def to_dict(self) -> dict:
        return {
            "calibrationConfidence": self.calibration_confidence,
            "infectiousness": self.infectiousness,
            "reportType": self.report_type,
            "date": date_to_str(self.date),
            "scanInstances": [scan.to_dict() for scan in self.scan_instances],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExposureWindow":
        return cls(
            calibration_confidence=data["calibrationConfidence"],
            infectiousness=data["infectiousness"],
            report_type=data["reportType"],
            date=parse_date(data.get("date")),
            scan_instances=tuple(ScanInstance.from_dict(s) for s in data.get("scanInstances", [])),
        )


@dataclass(frozen=True)
class RiskCalculationExposureWindow:
    """An exposure window enriched by the risk calculation."""

    exposure_window: ExposureWindow
    transmission_risk_level: int
    normalized_time: float

    @property
    def date(self) -> Optional[date]:
        return self.exposure_window.date


@dataclass(frozen=True)
class SubmissionExposureWindow:
    """An exposure window staged for submission, identified by its content hash."""

    exposure_window: ExposureWindow
    transmission_risk_level: int
    normalized_time: float
    hash: Optional[str]
    date: Optional[date]

    def to_dict(self) -> dict:
        return {
            "exposureWindow": self.exposure_window.to_dict(),
            "transmissionRiskLevel": self.transmission_risk_level,
            "normalizedTime": self.normalized_time,
            "hash": self.hash,
            "date": date_to_str(self.date),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SubmissionExposureWindow":
        return cls(
            exposure_window=ExposureWindow.from_dict(data["exposureWindow"]),
            transmission_risk_level=data["transmissionRiskLevel"],
            normalized_time=data["normalizedTime"],
            hash=data.get("hash"),
            date=parse_date(data.get("date")),
        )


@dataclass(frozen=True)
class ExposureWindowsMetadata:
    """Exposure windows pending submission plus the dedup history."""

    new_exposure_windows_queue: tuple = ()
    reported_exposure_windows_queue: tuple = ()

    def to_dict(self) -> dict:
        return {
            "newExposureWindowsQueue": [w.to_dict() for w in self.new_exposure_windows_queue],
            "reportedExposureWindowsQueue": [
                w.to_dict() for w in self.reported_exposure_windows_queue
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExposureWindowsMetadata":
        return cls(
            new_exposure_windows_queue=tuple(
                SubmissionExposureWindow.from_dict(w) for w in data.get("newExposureWindowsQueue", [])
            ),
            reported_exposure_windows_queue=tuple(
                SubmissionExposureWindow.from_dict(w)
                for w in data.get("reportedExposureWindowsQueue", [])
            ),
        )


# ──────────────────────────────────────────────────────────────────
# Context written by the risk engine
# ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RiskCalculationResult:
    """Output of the most recent risk calculation."""

    risk_level: RiskLevel
    most_recent_date_with_current_risk_level: Optional[date] = None
    number_of_days_with_current_risk_level: int = 0
    calculation_date: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "riskLevel": self.risk_level.value,
            "mostRecentDateWithCurrentRiskLevel": date_to_str(
                self.most_recent_date_with_current_risk_level
            ),
            "numberOfDaysWithCurrentRiskLevel": self.number_of_days_with_current_risk_level,
            "calculationDate": datetime_to_str(self.calculation_date),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RiskCalculationResult":
        return cls(
            risk_level=RiskLevel(data["riskLevel"]),
            most_recent_date_with_current_risk_level=parse_date(
                data.get("mostRecentDateWithCurrentRiskLevel")
            ),
            number_of_days_with_current_risk_level=data.get("numberOfDaysWithCurrentRiskLevel", 0),
            calculation_date=parse_datetime(data.get("calculationDate")),
        )
