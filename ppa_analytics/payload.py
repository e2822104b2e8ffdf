"""
Wire payload assembly.

Builds the analytics payload from the stored records. The payload is a
JSON-compatible dict whose keys mirror the backend's protocol message;
enum values are translated to the protocol's constant names and dates to
UTC-midnight epoch seconds. Categories with nothing stored contribute an
empty list or an empty message, never an error.
"""

import calendar
import json
from datetime import date, datetime
from typing import Iterable, Optional

from .errors import EncodingError
from .events import Category
from .models import (
    AgeGroup,
    FederalState,
    KeySubmissionMetadata,
    LastSubmissionFlowScreen,
    RiskLevel,
    SubmissionExposureWindow,
    TestResult,
)


RISK_LEVELS = {
    RiskLevel.LOW: "RISK_LEVEL_LOW",
    RiskLevel.HIGH: "RISK_LEVEL_HIGH",
}

AGE_GROUPS = {
    AgeGroup.AGE_BELOW_29: "AGE_GROUP_0_TO_29",
    AgeGroup.AGE_BETWEEN_30_AND_59: "AGE_GROUP_30_TO_59",
    AgeGroup.AGE_60_OR_ABOVE: "AGE_GROUP_FROM_60",
}

FEDERAL_STATES = {
    FederalState.BADEN_WUERTTEMBERG: "FEDERAL_STATE_BW",
    FederalState.BAYERN: "FEDERAL_STATE_BY",
    FederalState.BERLIN: "FEDERAL_STATE_BE",
    FederalState.BRANDENBURG: "FEDERAL_STATE_BB",
    FederalState.BREMEN: "FEDERAL_STATE_HB",
    FederalState.HAMBURG: "FEDERAL_STATE_HH",
    FederalState.HESSEN: "FEDERAL_STATE_HE",
    FederalState.MECKLENBURG_VORPOMMERN: "FEDERAL_STATE_MV",
    FederalState.NIEDERSACHSEN: "FEDERAL_STATE_NI",
    FederalState.NORDRHEIN_WESTFALEN: "FEDERAL_STATE_NRW",
    FederalState.RHEINLAND_PFALZ: "FEDERAL_STATE_RP",
    FederalState.SAARLAND: "FEDERAL_STATE_SL",
    FederalState.SACHSEN: "FEDERAL_STATE_SN",
    FederalState.SACHSEN_ANHALT: "FEDERAL_STATE_ST",
    FederalState.SCHLESWIG_HOLSTEIN: "FEDERAL_STATE_SH",
    FederalState.THUERINGEN: "FEDERAL_STATE_TH",
}

TEST_RESULTS = {
    TestResult.PENDING: "TEST_RESULT_PENDING",
    TestResult.POSITIVE: "TEST_RESULT_POSITIVE",
    TestResult.NEGATIVE: "TEST_RESULT_NEGATIVE",
    TestResult.INVALID: "TEST_RESULT_INVALID",
    TestResult.EXPIRED: "TEST_RESULT_EXPIRED",
}

FLOW_SCREENS = {
    LastSubmissionFlowScreen.UNKNOWN: "SUBMISSION_FLOW_SCREEN_UNKNOWN",
    LastSubmissionFlowScreen.OTHER: "SUBMISSION_FLOW_SCREEN_OTHER",
    LastSubmissionFlowScreen.TEST_RESULT: "SUBMISSION_FLOW_SCREEN_TEST_RESULT",
    LastSubmissionFlowScreen.WARN_OTHERS: "SUBMISSION_FLOW_SCREEN_WARN_OTHERS",
    LastSubmissionFlowScreen.SYMPTOMS: "SUBMISSION_FLOW_SCREEN_SYMPTOMS",
    LastSubmissionFlowScreen.SYMPTOM_ONSET: "SUBMISSION_FLOW_SCREEN_SYMPTOM_ONSET",
}


def utc_midnight_epoch(value) -> Optional[int]:
    """Seconds since the epoch at UTC midnight of the given day."""
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return calendar.timegm(date(value.year, value.month, value.day).timetuple())


class PayloadBuilder:
    """Assembles the wire payload from a ``MetadataStore``.

    Args:
        deferred_categories: Categories left out of the payload, e.g. while the
            backend does not accept them yet.
    """

    def __init__(self, deferred_categories: Iterable[Category] = ()):
        self.deferred_categories = frozenset(deferred_categories)

    def _included(self, category: Category) -> bool:
        return category not in self.deferred_categories

    def build(self, store) -> dict:
        payload = {}
        if self._included(Category.RISK_EXPOSURE):
            payload["exposureRiskMetadataSet"] = self.exposure_risk_metadata(store)
        if self._included(Category.EXPOSURE_WINDOWS):
            payload["newExposureWindows"] = self.new_exposure_windows(store)
        if self._included(Category.TEST_RESULT):
            payload["testResultMetadataSet"] = self.test_result_metadata(store)
        if self._included(Category.KEY_SUBMISSION):
            payload["keySubmissionMetadataSet"] = self.key_submission_metadata(store)
        if self._included(Category.CLIENT):
            payload["clientMetadata"] = self.client_metadata(store)
        if self._included(Category.USER):
            payload["userMetadata"] = self.user_metadata(store)
        return payload

    def exposure_risk_metadata(self, store) -> list:
        stored = store.current_risk_exposure_metadata
        if stored is None:
            return []
        return [{
            "riskLevel": RISK_LEVELS[stored.risk_level],
            "riskLevelChangedComparedToPreviousSubmission": (
                stored.risk_level_changed_compared_to_previous_submission
            ),
            "mostRecentDateAtRiskLevel": utc_midnight_epoch(stored.most_recent_date_at_risk_level),
            "dateChangedComparedToPreviousSubmission": stored.date_changed_compared_to_previous_submission,
        }]

    @staticmethod
    def _exposure_window(window: SubmissionExposureWindow) -> dict:
        exposure = window.exposure_window
        return {
            "exposureWindow": {
                "date": utc_midnight_epoch(exposure.date),
                "reportType": exposure.report_type,
                "infectiousness": exposure.infectiousness,
                "calibrationConfidence": exposure.calibration_confidence,
                "scanInstances": [
                    {
                        "typicalAttenuation": scan.typical_attenuation,
                        "minAttenuation": scan.min_attenuation,
                        "secondsSinceLastScan": scan.seconds_since_last_scan,
                    }
                    for scan in exposure.scan_instances
                ],
            },
            "transmissionRiskLevel": window.transmission_risk_level,
            "normalizedTime": window.normalized_time,
        }

    def new_exposure_windows(self, store) -> list:
        stored = store.exposure_windows_metadata
        if stored is None:
            return []
        return [self._exposure_window(w) for w in stored.new_exposure_windows_queue]

    def test_result_metadata(self, store) -> list:
        stored = store.test_result_metadata
        if stored is None:
            return []
        message = {
            "testResult": TEST_RESULTS.get(stored.test_result, "TEST_RESULT_UNKNOWN"),
            "hoursSinceTestRegistration": stored.hours_since_test_registration,
            "riskLevelAtTestRegistration": RISK_LEVELS.get(
                stored.risk_level_at_test_registration, "RISK_LEVEL_UNKNOWN"
            ),
            "daysSinceMostRecentDateAtRiskLevelAtTestRegistration": (
                stored.days_since_most_recent_date_at_risk_level_at_test_registration
            ),
            "hoursSinceHighRiskWarningAtTestRegistration": (
                stored.hours_since_high_risk_warning_at_test_registration
            ),
        }
        return [message]

    def key_submission_metadata(self, store) -> list:
        stored: Optional[KeySubmissionMetadata] = store.key_submission_metadata
        if stored is None:
            return []
        message = stored.to_dict()
        message["lastSubmissionFlowScreen"] = FLOW_SCREENS.get(
            stored.last_submission_flow_screen, "SUBMISSION_FLOW_SCREEN_UNKNOWN"
        )
        return [message]

    def client_metadata(self, store) -> dict:
        stored = store.client_metadata
        if stored is None or stored.etag is None:
            return {}
        return {"appConfigETag": stored.etag}

    def user_metadata(self, store) -> dict:
        stored = store.user_metadata
        if stored is None:
            return {}
        return {
            "federalState": FEDERAL_STATES[stored.federal_state],
            "administrativeUnit": stored.administrative_unit,
            "ageGroup": AGE_GROUPS[stored.age_group],
        }


def serialize_payload(payload: dict) -> str:
    """Serialize a payload to JSON for transmission or diagnostics."""
    try:
        return json.dumps(payload, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Analytics payload cannot be serialized: {e}") from e
