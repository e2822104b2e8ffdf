"""
Analytics collector.

The single entry point the app uses to report analytics. ``log`` merges an
event into the stored metadata and then triggers a submission attempt in the
background. Nothing is recorded unless the user consented to analytics.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import StoreBindingError
from .events import (
    AnalyticsEvent,
    Category,
    CollectExposureWindows,
    ExposureWindowsComplete,
    LastAppReset,
)
from .exposure_windows import ExposureWindowDeduplicator
from .merger import (
    MergeContext,
    MergeResult,
    merge_client_metadata,
    merge_key_submission_metadata,
    merge_risk_exposure_metadata,
    merge_test_result_metadata,
    merge_user_metadata,
)
from .store import MemoryStore, MetadataStore
from .submitter import AnalyticsSubmitter, SubmissionOutcome, SubmissionStatus

logger = logging.getLogger("ppa_analytics")


# category -> (store attribute, merge function)
_MERGERS = {
    Category.USER: ("user_metadata", merge_user_metadata),
    Category.RISK_EXPOSURE: ("current_risk_exposure_metadata", merge_risk_exposure_metadata),
    Category.CLIENT: ("client_metadata", merge_client_metadata),
    Category.TEST_RESULT: ("test_result_metadata", merge_test_result_metadata),
    Category.KEY_SUBMISSION: ("key_submission_metadata", merge_key_submission_metadata),
}


class AnalyticsCollector:
    """Collects analytics events into the store and triggers submission.

    Build one per store at startup and pass it to the code that reports
    events. Without a submitter events are still recorded but nothing is
    ever sent, which is what tests and previews usually want.
    """

    def __init__(
        self,
        store: MetadataStore,
        submitter: Optional[AnalyticsSubmitter] = None,
        deduplicator: Optional[ExposureWindowDeduplicator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not isinstance(store, MetadataStore):
            raise StoreBindingError(
                f"AnalyticsCollector needs a MetadataStore, got {type(store).__name__}"
            )
        self.store = store
        self.submitter = submitter
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.deduplicator = deduplicator or ExposureWindowDeduplicator(clock=self.clock)

    @classmethod
    def for_testing(
        cls,
        store: Optional[MetadataStore] = None,
        submitter: Optional[AnalyticsSubmitter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "AnalyticsCollector":
        """Collector over an in-memory store with consent already given."""
        if store is None:
            store = MetadataStore(MemoryStore())
            store.consent_given = True
        return cls(store, submitter=submitter, clock=clock)

    def log(self, event: AnalyticsEvent) -> MergeResult:
        """Record an analytics event and trigger a submission attempt.

        Args:
            event: Any event from ``ppa_analytics.events``

        Returns:
            MergeResult telling whether the stored data changed
        """
        if not self.store.consent_given:
            logger.info("Forbidden to log any analytics data due to missing user consent")
            return MergeResult.skipped("missing user consent")

        logger.debug(f"Logging analytics data: {type(event).__name__}")
        result = self._apply(event)

        if result.reason:
            logger.warning(f"Analytics {type(event).__name__}: {result.reason}")

        self.trigger_submission()
        return result

    def _apply(self, event: AnalyticsEvent) -> MergeResult:
        category = getattr(event, "category", None)

        if category == Category.EXPOSURE_WINDOWS:
            return self._apply_exposure_windows(event)

        if category == Category.SUBMISSION:
            if not isinstance(event, LastAppReset):
                raise TypeError(f"Unsupported submission event: {type(event).__name__}")
            self.store.last_app_reset = event.date
            return MergeResult.ok(event.date)

        if category not in _MERGERS:
            raise TypeError(f"Unsupported analytics event: {type(event).__name__}")

        attribute, merge = _MERGERS[category]
        context = MergeContext.from_store(self.store, now=self.clock())
        result = merge(getattr(self.store, attribute), event, context)
        if result.applied:
            setattr(self.store, attribute, result.value)
        return result

    def _apply_exposure_windows(self, event) -> MergeResult:
        if isinstance(event, ExposureWindowsComplete):
            self.store.exposure_windows_metadata = event.metadata
            return MergeResult.ok(event.metadata)
        if isinstance(event, CollectExposureWindows):
            return MergeResult.ok(self.deduplicator.collect(self.store, event.windows))
        raise TypeError(f"Unsupported exposure windows event: {type(event).__name__}")

    def delete_analytics_data(self) -> None:
        """Remove all collected analytics data and submission history."""
        self.store.delete_analytics_data()
        logger.info("Deleted all analytics data in the store")

    def trigger_submission(self) -> None:
        """Start a submission attempt in the background, if a submitter is wired."""
        if self.submitter is None:
            logger.debug("No analytics submitter configured, nothing will be submitted")
            return
        self.submitter.trigger_submission()

    # Diagnostics

    def most_recent_analytics_data(self) -> Optional[str]:
        """The JSON payload of the last successful submission."""
        return self.store.last_submitted_ppa_data

    def current_payload(self) -> Optional[dict]:
        """The payload that would be submitted right now."""
        if self.submitter is None:
            logger.warning("No analytics submitter configured, cannot build payload")
            return None
        return self.submitter.current_payload()

    async def forced_submission(self) -> SubmissionOutcome:
        """Submit without eligibility checks. Meant for developer tooling only."""
        if self.submitter is None:
            logger.warning("No analytics submitter configured, cannot force a submission")
            return SubmissionOutcome(SubmissionStatus.SKIPPED, error="no submitter configured")
        return await self.submitter.forced_submission()
