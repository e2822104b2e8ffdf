"""
Exposure window deduplication.

Every risk calculation reports all exposure windows the framework still
knows about, so the same window shows up again day after day. Windows are
identified by a SHA-256 digest of their canonical JSON encoding; the digests
of already reported windows are kept for ``EXPOSURE_WINDOW_RETENTION_DAYS``
so a window is only ever queued for submission once.
"""

import hashlib
import json
import logging
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional

from . import config
from .errors import EncodingError
from .models import (
    ExposureWindow,
    ExposureWindowsMetadata,
    RiskCalculationExposureWindow,
    SubmissionExposureWindow,
)

logger = logging.getLogger("ppa_analytics")

WindowDigest = Callable[[ExposureWindow], str]


def canonical_encoding(window: ExposureWindow) -> bytes:
    """Encode a window so equal content always yields equal bytes.

    Keys are sorted, so the encoding does not depend on field order.
    """
    try:
        return json.dumps(
            window.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")
    except (TypeError, ValueError, AttributeError) as e:
        raise EncodingError(f"Exposure window cannot be encoded: {e}") from e


def window_digest(window: ExposureWindow) -> str:
    """SHA-256 hex digest of the window's canonical encoding."""
    return hashlib.sha256(canonical_encoding(window)).hexdigest()


def is_expired(window: SubmissionExposureWindow, today: date,
               retention_days: int = config.EXPOSURE_WINDOW_RETENTION_DAYS) -> bool:
    """Whether a reported window has aged out of the dedup history.

    Windows without a usable date count as expired.
    """
    if not isinstance(window.date, date):
        return True
    return (today - window.date).days >= retention_days


class ExposureWindowDeduplicator:
    """Decides which observed exposure windows are new and queues them."""

    def __init__(
        self,
        digest: WindowDigest = window_digest,
        clock: Optional[Callable[[], datetime]] = None,
        retention_days: int = config.EXPOSURE_WINDOW_RETENTION_DAYS,
    ):
        self.digest = digest
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.retention_days = retention_days

    def _hash(self, window: ExposureWindow) -> Optional[str]:
        try:
            return self.digest(window)
        except Exception as e:
            logger.error(f"Exposure window encoding error, window kept without hash: {e}")
            return None

    def to_submission_windows(
        self, observed: Iterable[RiskCalculationExposureWindow]
    ) -> list[SubmissionExposureWindow]:
        return [
            SubmissionExposureWindow(
                exposure_window=w.exposure_window,
                transmission_risk_level=w.transmission_risk_level,
                normalized_time=w.normalized_time,
                hash=self._hash(w.exposure_window),
                date=w.date,
            )
            for w in observed
        ]

    def purge(self, reported: Iterable[SubmissionExposureWindow]) -> tuple:
        """Drop reported windows older than the retention horizon."""
        today = self.clock().date()
        kept = []
        for window in reported:
            if is_expired(window, today, self.retention_days):
                logger.debug(f"Exposure window {window.hash} removed from reported queue")
                continue
            kept.append(window)
        return tuple(kept)

    def process(
        self,
        metadata: Optional[ExposureWindowsMetadata],
        observed: Iterable[RiskCalculationExposureWindow],
    ) -> ExposureWindowsMetadata:
        """Fold newly observed windows into the stored queues.

        Args:
            metadata: Stored exposure windows metadata, None before the first run
            observed: Windows reported by the latest risk calculation

        Returns:
            Updated metadata. Windows whose hash was already reported are dropped;
            windows without a hash are queued for submission but never
            remembered, since they cannot be matched later.
        """
        mapped = self.to_submission_windows(observed)

        if metadata is None:
            new_queue: list = []
            reported: list = []
        else:
            new_queue = list(metadata.new_exposure_windows_queue)
            reported = list(self.purge(metadata.reported_exposure_windows_queue))

        known_hashes = {w.hash for w in reported if w.hash is not None}
        added = 0
        for window in mapped:
            if window.hash is None:
                new_queue.append(window)
                added += 1
                continue
            if window.hash in known_hashes:
                continue
            known_hashes.add(window.hash)
            new_queue.append(window)
            reported.append(window)
            added += 1

        logger.debug(
            f"Collected {added} new of {len(mapped)} observed exposure windows "
            f"({len(reported)} in reported queue)"
        )
        return ExposureWindowsMetadata(
            new_exposure_windows_queue=tuple(new_queue),
            reported_exposure_windows_queue=tuple(reported),
        )

    def collect(self, store, observed: Iterable[RiskCalculationExposureWindow]) -> ExposureWindowsMetadata:
        """Process observed windows against the store and persist the result."""
        updated = self.process(store.exposure_windows_metadata, observed)
        store.exposure_windows_metadata = updated
        return updated
