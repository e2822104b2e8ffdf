"""
Record merging for analytics events.

Each metadata category has one merge function that folds an event into the
stored record and returns a ``MergeResult``. Merges never raise when context
is missing: analytics is best-effort and must not break the flows that
report it. A merge that cannot run returns ``MergeResult.skipped`` with the
reason, and the caller decides how loudly to log it.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Optional

from . import config
from .errors import MissingPreconditionError
from .events import (
    ClientMetadataComplete,
    KeySubmissionComplete,
    RegisterNewTestMetadata,
    RiskExposureMetadataComplete,
    SetClientMetadata,
    SetDaysSinceMostRecentDateAtRiskLevel,
    SetHoursSinceHighRiskWarning,
    SetHoursSinceTestRegistration,
    SetHoursSinceTestResult,
    SetKeySubmissionField,
    SetKeySubmissionHoursSinceTestRegistration,
    SetTestResult,
    TestResultMetadataComplete,
    UpdateRiskExposureMetadata,
    UpdateTestResult,
    UserMetadataComplete,
)
from .models import (
    ACTIONABLE_TEST_RESULTS,
    ClientMetadata,
    KeySubmissionMetadata,
    RiskCalculationResult,
    RiskExposureMetadata,
    RiskLevel,
    TestResultMetadata,
    UserMetadata,
    as_utc,
)


@dataclass(frozen=True)
class MergeContext:
    """Snapshot of the store values merges may depend on."""

    now: datetime
    previous_risk_exposure_metadata: Optional[RiskExposureMetadata] = None
    risk_calculation_result: Optional[RiskCalculationResult] = None
    date_of_conversion_to_high_risk: Optional[datetime] = None
    test_result_received_at: Optional[datetime] = None
    test_registration_date: Optional[datetime] = None
    app_config_etag: Optional[str] = None

    @classmethod
    def from_store(cls, store, now: Optional[datetime] = None) -> "MergeContext":
        return cls(
            now=now or datetime.now(timezone.utc),
            previous_risk_exposure_metadata=store.previous_risk_exposure_metadata,
            risk_calculation_result=store.risk_calculation_result,
            date_of_conversion_to_high_risk=store.date_of_conversion_to_high_risk,
            test_result_received_at=store.test_result_received_at,
            test_registration_date=store.test_registration_date,
            app_config_etag=store.last_app_config_etag,
        )


@dataclass(frozen=True)
class MergeResult:
    """Outcome of folding an event into a stored record.

    Attributes:
        applied: Whether the stored record should be replaced by ``value``.
        value: The new record when applied, otherwise the unchanged record.
        reason: Why the merge was skipped, None when applied.
    """

    applied: bool
    value: Any = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: Any) -> "MergeResult":
        return cls(applied=True, value=value)

    @classmethod
    def skipped(cls, reason: str, value: Any = None) -> "MergeResult":
        return cls(applied=False, value=value, reason=reason)


def hours_between(start: datetime, end: datetime) -> int:
    """Whole hours from ``start`` to ``end``, truncated toward zero.

    Naive datetimes are taken as UTC.
    """
    return int((as_utc(end) - as_utc(start)).total_seconds() / 3600)


def _require(value, message: str):
    if value is None:
        raise MissingPreconditionError(message)
    return value


def _unknown(event) -> TypeError:
    return TypeError(f"Unsupported event for this category: {type(event).__name__}")


# ──────────────────────────────────────────────────────────────────
# User, client, risk exposure
# ──────────────────────────────────────────────────────────────────


def merge_user_metadata(stored: Optional[UserMetadata], event, context: MergeContext) -> MergeResult:
    if isinstance(event, UserMetadataComplete):
        return MergeResult.ok(event.metadata)
    raise _unknown(event)


def merge_client_metadata(stored: Optional[ClientMetadata], event, context: MergeContext) -> MergeResult:
    if isinstance(event, ClientMetadataComplete):
        return MergeResult.ok(event.metadata)
    if isinstance(event, SetClientMetadata):
        return MergeResult.ok(ClientMetadata(etag=context.app_config_etag))
    raise _unknown(event)


def merge_risk_exposure_metadata(
    stored: Optional[RiskExposureMetadata], event, context: MergeContext
) -> MergeResult:
    """Merge into the *current* risk exposure record.

    Change flags compare against the snapshot taken at the last successful
    submission. Without such a snapshot both flags are False.
    """
    if isinstance(event, RiskExposureMetadataComplete):
        return MergeResult.ok(event.metadata)
    if not isinstance(event, UpdateRiskExposureMetadata):
        raise _unknown(event)

    result = event.result
    previous = context.previous_risk_exposure_metadata
    if previous is None:
        risk_level_changed = False
        date_changed = False
    else:
        risk_level_changed = result.risk_level != previous.risk_level
        date_changed = (
            result.most_recent_date_with_current_risk_level != previous.most_recent_date_at_risk_level
        )

    # No exposure means no most recent date; leave the field out
    return MergeResult.ok(
        RiskExposureMetadata(
            risk_level=result.risk_level,
            risk_level_changed_compared_to_previous_submission=risk_level_changed,
            most_recent_date_at_risk_level=result.most_recent_date_with_current_risk_level,
            date_changed_compared_to_previous_submission=date_changed,
        )
    )


# ──────────────────────────────────────────────────────────────────
# Test result
# ──────────────────────────────────────────────────────────────────


def _register_new_test(event: RegisterNewTestMetadata, context: MergeContext) -> MergeResult:
    try:
        calculation = _require(
            context.risk_calculation_result, "no risk calculation result to register the test against"
        )
    except MissingPreconditionError as e:
        return MergeResult.skipped(str(e))

    metadata = TestResultMetadata(
        registration_token=event.token,
        test_registration_date=event.date,
        risk_level_at_test_registration=calculation.risk_level,
        days_since_most_recent_date_at_risk_level_at_test_registration=(
            calculation.number_of_days_with_current_risk_level
        ),
    )

    if calculation.risk_level == RiskLevel.LOW:
        return MergeResult.ok(
            replace(metadata, hours_since_high_risk_warning_at_test_registration=config.LOW_RISK_HOURS_SENTINEL)
        )

    converted_at = context.date_of_conversion_to_high_risk
    if converted_at is None:
        # The registration itself is still recorded
        return MergeResult(
            applied=True,
            value=metadata,
            reason="no date of conversion to high risk, hours since warning left empty",
        )
    return MergeResult.ok(
        replace(
            metadata,
            hours_since_high_risk_warning_at_test_registration=hours_between(converted_at, event.date),
        )
    )


def _update_test_result(
    stored: Optional[TestResultMetadata], event: UpdateTestResult, context: MergeContext
) -> MergeResult:
    if stored is None or stored.registration_token != event.token:
        return MergeResult.skipped("no test registered with this token", stored)
    if stored.test_registration_date is None:
        return MergeResult.skipped("registered test has no registration date", stored)
    if stored.test_result == event.result:
        return MergeResult.skipped("test result unchanged", stored)
    if event.result not in ACTIONABLE_TEST_RESULTS:
        return MergeResult.skipped(f"test result {event.result.value} is not recorded", stored)

    return MergeResult.ok(
        replace(
            stored,
            test_result=event.result,
            hours_since_test_registration=hours_between(stored.test_registration_date, context.now),
        )
    )


def merge_test_result_metadata(
    stored: Optional[TestResultMetadata], event, context: MergeContext
) -> MergeResult:
    if isinstance(event, TestResultMetadataComplete):
        return MergeResult.ok(event.metadata)
    if isinstance(event, RegisterNewTestMetadata):
        return _register_new_test(event, context)
    if isinstance(event, UpdateTestResult):
        return _update_test_result(stored, event, context)
    if isinstance(event, SetTestResult):
        if stored is None:
            return MergeResult.skipped("no test result metadata to update")
        return MergeResult.ok(replace(stored, test_result=event.result))
    if isinstance(event, SetHoursSinceTestRegistration):
        if stored is None:
            return MergeResult.skipped("no test result metadata to update")
        return MergeResult.ok(replace(stored, hours_since_test_registration=event.hours))
    raise _unknown(event)


# ──────────────────────────────────────────────────────────────────
# Key submission
# ──────────────────────────────────────────────────────────────────


def _hours_since_high_risk_warning(context: MergeContext) -> MergeResult:
    try:
        calculation = _require(context.risk_calculation_result, "no risk calculation result")
        if calculation.risk_level == RiskLevel.LOW:
            return MergeResult.ok(config.LOW_RISK_HOURS_SENTINEL)
        converted_at = _require(
            context.date_of_conversion_to_high_risk, "no date of conversion to high risk"
        )
        registered_at = _require(context.test_registration_date, "no test registration date")
    except MissingPreconditionError as e:
        return MergeResult.skipped(str(e))
    return MergeResult.ok(hours_between(converted_at, registered_at))


def _derived_key_submission_value(event, context: MergeContext) -> Optional[tuple]:
    """Return (field name, MergeResult) for derived events, None for other events."""
    if isinstance(event, SetHoursSinceTestResult):
        if context.test_result_received_at is None:
            return "hours_since_test_result", MergeResult.skipped("no test result received timestamp")
        return "hours_since_test_result", MergeResult.ok(
            hours_between(context.test_result_received_at, context.now)
        )
    if isinstance(event, SetKeySubmissionHoursSinceTestRegistration):
        if context.test_registration_date is None:
            return "hours_since_test_registration", MergeResult.skipped("no test registration date")
        return "hours_since_test_registration", MergeResult.ok(
            hours_between(context.test_registration_date, context.now)
        )
    if isinstance(event, SetDaysSinceMostRecentDateAtRiskLevel):
        field_name = "days_since_most_recent_date_at_risk_level_at_test_registration"
        if context.risk_calculation_result is None:
            return field_name, MergeResult.skipped("no risk calculation result")
        return field_name, MergeResult.ok(
            context.risk_calculation_result.number_of_days_with_current_risk_level
        )
    if isinstance(event, SetHoursSinceHighRiskWarning):
        return "hours_since_high_risk_warning_at_test_registration", _hours_since_high_risk_warning(context)
    return None


def merge_key_submission_metadata(
    stored: Optional[KeySubmissionMetadata], event, context: MergeContext
) -> MergeResult:
    """Merge a key submission event, creating the record on first use."""
    if isinstance(event, KeySubmissionComplete):
        return MergeResult.ok(event.metadata)

    base = stored if stored is not None else KeySubmissionMetadata()

    if isinstance(event, SetKeySubmissionField):
        return MergeResult.ok(base.with_field(event.field.value, event.value))

    derived = _derived_key_submission_value(event, context)
    if derived is None:
        raise _unknown(event)
    field_name, outcome = derived
    if not outcome.applied:
        return MergeResult.skipped(outcome.reason, stored)
    return MergeResult.ok(base.with_field(field_name, outcome.value))
