"""
Analytics submission.

One attempt runs these stages in order and stops at the first that fails:

    configuration -> eligibility -> token -> payload -> transport

Attempts are one-shot. A failed or skipped attempt leaves the analytics data as
it was, so the next trigger submits the same accumulated data. Only a
confirmed submission rotates the risk exposure snapshot and dequeues the
exposure windows, and only those the payload actually carried.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from . import config
from .eligibility import EligibilityGate, SkipReason
from .errors import EncodingError
from .payload import PayloadBuilder, serialize_payload
from .providers import AuthenticationProvider, ConfigurationProvider, Transport

logger = logging.getLogger("ppa_analytics")


class SubmissionStatus(str, Enum):
    """Terminal state of a submission attempt."""
    SUBMITTED = "submitted"
    SKIPPED = "skipped"
    CONFIG_UNAVAILABLE = "config_unavailable"
    AUTHENTICATION_FAILED = "authentication_failed"
    ENCODING_FAILED = "encoding_failed"
    TRANSPORT_FAILED = "transport_failed"


@dataclass
class SubmissionOutcome:
    """Result of a submission attempt.

    Attributes:
        status: Where the attempt ended.
        reason: Why it was skipped, only set for SKIPPED.
        error: Error message for failed attempts.
        payload: The payload that was sent, only set for SUBMITTED.
    """

    status: SubmissionStatus
    reason: Optional[SkipReason] = None
    error: Optional[str] = None
    payload: Optional[dict] = None

    @property
    def success(self) -> bool:
        return self.status == SubmissionStatus.SUBMITTED


class AnalyticsSubmitter:
    """Runs submission attempts against the injected collaborators."""

    def __init__(
        self,
        store,
        configuration_provider: ConfigurationProvider,
        authentication_provider: AuthenticationProvider,
        transport: Transport,
        gate: Optional[EligibilityGate] = None,
        payload_builder: Optional[PayloadBuilder] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.configuration_provider = configuration_provider
        self.authentication_provider = authentication_provider
        self.transport = transport
        self.gate = gate or EligibilityGate()
        self.payload_builder = payload_builder or PayloadBuilder()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._in_flight = threading.Lock()
        self._tasks: set = set()

    async def submit_data(self, force: bool = False) -> SubmissionOutcome:
        """Run one submission attempt.

        Args:
            force: Skip the eligibility checks (diagnostics only)

        Returns:
            SubmissionOutcome describing where the attempt ended
        """
        if not force and not self.store.consent_given:
            logger.info("Analytics submission skipped: user has not given consent")
            return SubmissionOutcome(SubmissionStatus.SKIPPED, reason=SkipReason.CONSENT_DENIED)

        try:
            configuration = await self.configuration_provider.current_configuration()
        except Exception as e:
            logger.error(f"Analytics submission aborted, app configuration unavailable: {e}")
            return SubmissionOutcome(SubmissionStatus.CONFIG_UNAVAILABLE, error=str(e))

        if configuration.etag is not None:
            self.store.last_app_config_etag = configuration.etag

        decision = self.gate.evaluate(
            now=self.clock(),
            consent_given=self.store.consent_given,
            last_submission=self.store.last_submission_analytics,
            onboarded=self.store.onboarded_date,
            app_reset=self.store.last_app_reset,
            probability_to_submit=configuration.probability_to_submit,
            force=force,
        )
        if not decision.allowed:
            return SubmissionOutcome(SubmissionStatus.SKIPPED, reason=decision.reason)

        try:
            token = await self.authentication_provider.acquire_token()
        except Exception as e:
            logger.error(f"Analytics submission aborted, PPAC authorization failed: {e}")
            return SubmissionOutcome(SubmissionStatus.AUTHENTICATION_FAILED, error=str(e))

        sent_risk = self.store.current_risk_exposure_metadata
        windows = self.store.exposure_windows_metadata
        sent_windows = windows.new_exposure_windows_queue if windows is not None else ()
        try:
            payload = self.payload_builder.build(self.store)
            serialized = serialize_payload(payload)
        except (EncodingError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Analytics submission aborted, payload could not be assembled: {e}")
            return SubmissionOutcome(SubmissionStatus.ENCODING_FAILED, error=str(e))

        try:
            await self.transport.submit(
                payload,
                token,
                force_api_token_header=config.is_force_api_token_header_enabled(),
            )
        except Exception as e:
            logger.error(f"Analytics data were not submitted: {e}")
            return SubmissionOutcome(SubmissionStatus.TRANSPORT_FAILED, error=str(e))

        self._record_successful_submission(serialized, sent_risk, sent_windows)
        logger.info("Analytics data successfully submitted")
        return SubmissionOutcome(SubmissionStatus.SUBMITTED, payload=payload)

    def _record_successful_submission(self, serialized: str, sent_risk, sent_windows: tuple) -> None:
        """Rotate and dequeue only what the payload carried.

        Events logged while the request was in flight stay pending for the
        next submission.
        """
        # The next risk exposure update compares against what was just sent
        self.store.previous_risk_exposure_metadata = sent_risk
        self.store.last_submission_analytics = self.clock()
        self.store.last_submitted_ppa_data = serialized

        windows = self.store.exposure_windows_metadata
        if windows is None or not sent_windows:
            return
        to_dequeue = list(sent_windows)
        remaining = []
        for window in windows.new_exposure_windows_queue:
            if window in to_dequeue:
                to_dequeue.remove(window)
            else:
                remaining.append(window)
        self.store.exposure_windows_metadata = replace(
            windows, new_exposure_windows_queue=tuple(remaining)
        )

    async def _submit_guarded(self, force: bool = False) -> Optional[SubmissionOutcome]:
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Analytics submission already in progress, trigger coalesced")
            return None
        try:
            return await self.submit_data(force=force)
        finally:
            self._in_flight.release()

    def trigger_submission(self) -> None:
        """Start a submission attempt without waiting for it.

        Inside a running event loop the attempt is scheduled as a task;
        otherwise it runs on a daemon thread so the caller never blocks.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self._submit_guarded())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return

        def _submit_in_background():
            try:
                asyncio.run(self._submit_guarded())
            except Exception as e:
                logger.error(f"Background analytics submission failed: {e}")

        thread = threading.Thread(target=_submit_in_background, daemon=True)
        thread.start()
        logger.debug("Analytics submission started in background thread")

    async def forced_submission(self) -> SubmissionOutcome:
        """Submit immediately, bypassing every eligibility check."""
        outcome = await self._submit_guarded(force=True)
        if outcome is None:
            return SubmissionOutcome(
                SubmissionStatus.SKIPPED, error="submission already in progress"
            )
        return outcome

    def current_payload(self) -> dict:
        """The payload a submission would send right now."""
        return self.payload_builder.build(self.store)
