"""
ppa-analytics - Privacy-preserving analytics for exposure notification apps

This package collects coarse usage metadata on the device and submits it at
most once a day, only with user consent:
- Event-driven record merging into a persistent metadata store
- Exposure window deduplication across risk calculations
- Probabilistic, rate-limited submission over HTTPS
"""

from .version import __version__

from .auth import ApiTokenProvider
from .client import HttpConfigurationProvider, HttpTransport
from .collector import AnalyticsCollector
from .eligibility import EligibilityGate, GateDecision, SkipReason
from .errors import (
    AnalyticsError,
    AuthenticationError,
    ConfigUnavailableError,
    EncodingError,
    MissingPreconditionError,
    StoreBindingError,
    TransportError,
)
from .events import (
    AnalyticsEvent,
    Category,
    ClientMetadataComplete,
    CollectExposureWindows,
    ExposureWindowsComplete,
    KeySubmissionComplete,
    KeySubmissionField,
    LastAppReset,
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
from .exposure_windows import ExposureWindowDeduplicator, window_digest
from .merger import MergeContext, MergeResult
from .models import (
    AgeGroup,
    ClientMetadata,
    ExposureWindow,
    ExposureWindowsMetadata,
    FederalState,
    KeySubmissionMetadata,
    LastSubmissionFlowScreen,
    RiskCalculationExposureWindow,
    RiskCalculationResult,
    RiskExposureMetadata,
    RiskLevel,
    ScanInstance,
    SubmissionExposureWindow,
    TestResult,
    TestResultMetadata,
    UserMetadata,
)
from .payload import PayloadBuilder, serialize_payload
from .providers import (
    AnalyticsConfiguration,
    PPACToken,
    StaticConfigurationProvider,
    StaticTokenProvider,
)
from .store import (
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
    MetadataStore,
    get_default_store,
)
from .submitter import AnalyticsSubmitter, SubmissionOutcome, SubmissionStatus

__all__ = [
    "__version__",
    # Entry points
    "AnalyticsCollector",
    "AnalyticsSubmitter",
    "SubmissionOutcome",
    "SubmissionStatus",
    # Store
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "MetadataStore",
    "get_default_store",
    # Events
    "AnalyticsEvent",
    "Category",
    "UserMetadataComplete",
    "RiskExposureMetadataComplete",
    "UpdateRiskExposureMetadata",
    "ClientMetadataComplete",
    "SetClientMetadata",
    "TestResultMetadataComplete",
    "SetTestResult",
    "SetHoursSinceTestRegistration",
    "UpdateTestResult",
    "RegisterNewTestMetadata",
    "KeySubmissionField",
    "KeySubmissionComplete",
    "SetKeySubmissionField",
    "SetHoursSinceTestResult",
    "SetKeySubmissionHoursSinceTestRegistration",
    "SetDaysSinceMostRecentDateAtRiskLevel",
    "SetHoursSinceHighRiskWarning",
    "ExposureWindowsComplete",
    "CollectExposureWindows",
    "LastAppReset",
    # Models
    "RiskLevel",
    "AgeGroup",
    "FederalState",
    "TestResult",
    "LastSubmissionFlowScreen",
    "UserMetadata",
    "RiskExposureMetadata",
    "ClientMetadata",
    "TestResultMetadata",
    "KeySubmissionMetadata",
    "ScanInstance",
    "ExposureWindow",
    "RiskCalculationExposureWindow",
    "SubmissionExposureWindow",
    "ExposureWindowsMetadata",
    "RiskCalculationResult",
    # Pipeline pieces
    "MergeContext",
    "MergeResult",
    "ExposureWindowDeduplicator",
    "window_digest",
    "EligibilityGate",
    "GateDecision",
    "SkipReason",
    "PayloadBuilder",
    "serialize_payload",
    # Collaborators
    "AnalyticsConfiguration",
    "PPACToken",
    "StaticConfigurationProvider",
    "StaticTokenProvider",
    "ApiTokenProvider",
    "HttpTransport",
    "HttpConfigurationProvider",
    # Errors
    "AnalyticsError",
    "ConfigUnavailableError",
    "AuthenticationError",
    "TransportError",
    "EncodingError",
    "MissingPreconditionError",
    "StoreBindingError",
]
