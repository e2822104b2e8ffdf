"""
Analytics events accepted by ``AnalyticsCollector.log``.

Each event is a small frozen dataclass describing one update to one
metadata category. The collector routes an event by its ``category`` and the
category's merge function handles every event type of that category,
raising ``TypeError`` for anything it does not know.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .models import (
    ClientMetadata,
    ExposureWindowsMetadata,
    KeySubmissionMetadata,
    LastSubmissionFlowScreen,
    RiskCalculationExposureWindow,
    RiskCalculationResult,
    RiskExposureMetadata,
    TestResult,
    TestResultMetadata,
    UserMetadata,
    as_utc,
)


class Category(str, Enum):
    """Metadata category an event belongs to."""
    USER = "userMetadata"
    RISK_EXPOSURE = "riskExposureMetadata"
    CLIENT = "clientMetadata"
    TEST_RESULT = "testResultMetadata"
    KEY_SUBMISSION = "keySubmissionMetadata"
    EXPOSURE_WINDOWS = "exposureWindowsMetadata"
    SUBMISSION = "submissionMetadata"


class AnalyticsEvent:
    """Base class for all analytics events."""

    category: Category


# User metadata


@dataclass(frozen=True)
class UserMetadataComplete(AnalyticsEvent):
    metadata: UserMetadata
    category = Category.USER


# Risk exposure metadata


@dataclass(frozen=True)
class RiskExposureMetadataComplete(AnalyticsEvent):
    metadata: RiskExposureMetadata
    category = Category.RISK_EXPOSURE


@dataclass(frozen=True)
class UpdateRiskExposureMetadata(AnalyticsEvent):
    """Derive the current risk exposure record from a fresh risk calculation."""

    result: RiskCalculationResult
    category = Category.RISK_EXPOSURE


# Client metadata


@dataclass(frozen=True)
class ClientMetadataComplete(AnalyticsEvent):
    metadata: ClientMetadata
    category = Category.CLIENT


@dataclass(frozen=True)
class SetClientMetadata(AnalyticsEvent):
    """Capture the ETag of the app configuration currently in use."""

    category = Category.CLIENT


# Test result metadata


@dataclass(frozen=True)
class TestResultMetadataComplete(AnalyticsEvent):
    __test__ = False

    metadata: TestResultMetadata
    category = Category.TEST_RESULT


@dataclass(frozen=True)
class SetTestResult(AnalyticsEvent):
    result: Optional[TestResult]
    category = Category.TEST_RESULT


@dataclass(frozen=True)
class SetHoursSinceTestRegistration(AnalyticsEvent):
    hours: Optional[int]
    category = Category.TEST_RESULT


@dataclass(frozen=True)
class UpdateTestResult(AnalyticsEvent):
    """A test result was received for the test registered with ``token``."""

    result: TestResult
    token: str
    category = Category.TEST_RESULT


@dataclass(frozen=True)
class RegisterNewTestMetadata(AnalyticsEvent):
    """A new test was registered at ``date`` with registration ``token``."""

    date: datetime
    token: str
    category = Category.TEST_RESULT

    def __post_init__(self):
        object.__setattr__(self, "date", as_utc(self.date))


# Key submission metadata


class KeySubmissionField(str, Enum):
    """Fields of ``KeySubmissionMetadata`` that can be set one at a time."""
    SUBMITTED = "submitted"
    SUBMITTED_IN_BACKGROUND = "submitted_in_background"
    SUBMITTED_AFTER_CANCEL = "submitted_after_cancel"
    SUBMITTED_AFTER_SYMPTOM_FLOW = "submitted_after_symptom_flow"
    SUBMITTED_WITH_TELE_TAN = "submitted_with_tele_tan"
    ADVANCED_CONSENT_GIVEN = "advanced_consent_given"
    LAST_SUBMISSION_FLOW_SCREEN = "last_submission_flow_screen"
    HOURS_SINCE_TEST_RESULT = "hours_since_test_result"
    HOURS_SINCE_TEST_REGISTRATION = "hours_since_test_registration"
    DAYS_SINCE_MOST_RECENT_DATE_AT_RISK_LEVEL_AT_TEST_REGISTRATION = (
        "days_since_most_recent_date_at_risk_level_at_test_registration"
    )
    HOURS_SINCE_HIGH_RISK_WARNING_AT_TEST_REGISTRATION = (
        "hours_since_high_risk_warning_at_test_registration"
    )


_BOOL_FIELDS = {
    KeySubmissionField.SUBMITTED,
    KeySubmissionField.SUBMITTED_IN_BACKGROUND,
    KeySubmissionField.SUBMITTED_AFTER_CANCEL,
    KeySubmissionField.SUBMITTED_AFTER_SYMPTOM_FLOW,
    KeySubmissionField.SUBMITTED_WITH_TELE_TAN,
    KeySubmissionField.ADVANCED_CONSENT_GIVEN,
}


@dataclass(frozen=True)
class KeySubmissionComplete(AnalyticsEvent):
    metadata: KeySubmissionMetadata
    category = Category.KEY_SUBMISSION


@dataclass(frozen=True)
class SetKeySubmissionField(AnalyticsEvent):
    """Set a single key submission field, leaving the others as they are."""

    field: KeySubmissionField
    value: Any
    category = Category.KEY_SUBMISSION

    def __post_init__(self):
        if not isinstance(self.field, KeySubmissionField):
            raise TypeError(f"Unknown key submission field: {self.field!r}")
        if self.value is None:
            return
        if self.field in _BOOL_FIELDS and not isinstance(self.value, bool):
            raise TypeError(f"{self.field.value} expects a bool, got {self.value!r}")
        if self.field is KeySubmissionField.LAST_SUBMISSION_FLOW_SCREEN:
            if not isinstance(self.value, LastSubmissionFlowScreen):
                raise TypeError(f"{self.field.value} expects a LastSubmissionFlowScreen")
        elif self.field not in _BOOL_FIELDS and (
            isinstance(self.value, bool) or not isinstance(self.value, int)
        ):
            raise TypeError(f"{self.field.value} expects an int, got {self.value!r}")


@dataclass(frozen=True)
class SetHoursSinceTestResult(AnalyticsEvent):
    """Compute hours elapsed since the test result was received."""

    category = Category.KEY_SUBMISSION


@dataclass(frozen=True)
class SetKeySubmissionHoursSinceTestRegistration(AnalyticsEvent):
    """Compute hours elapsed since the test was registered."""

    category = Category.KEY_SUBMISSION


@dataclass(frozen=True)
class SetDaysSinceMostRecentDateAtRiskLevel(AnalyticsEvent):
    """Copy the number of days at the current risk level from the risk calculation."""

    category = Category.KEY_SUBMISSION


@dataclass(frozen=True)
class SetHoursSinceHighRiskWarning(AnalyticsEvent):
    """Compute hours between the high risk warning and the test registration."""

    category = Category.KEY_SUBMISSION


# Exposure windows metadata


@dataclass(frozen=True)
class ExposureWindowsComplete(AnalyticsEvent):
    metadata: ExposureWindowsMetadata
    category = Category.EXPOSURE_WINDOWS


@dataclass(frozen=True)
class CollectExposureWindows(AnalyticsEvent):
    """Queue the exposure windows of a risk calculation for submission."""

    windows: tuple[RiskCalculationExposureWindow, ...]
    category = Category.EXPOSURE_WINDOWS


# Submission metadata


@dataclass(frozen=True)
class LastAppReset(AnalyticsEvent):
    date: datetime
    category = Category.SUBMISSION

    def __post_init__(self):
        object.__setattr__(self, "date", as_utc(self.date))
