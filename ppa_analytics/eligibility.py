"""
Submission eligibility checks.

A submission may only be attempted when the user consented, the sampling
draw succeeds, and none of the recent-activity windows are open. The checks
run in a fixed order and the first failing one decides the reason.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from . import config
from .models import as_utc

logger = logging.getLogger("ppa_analytics")


class SkipReason(str, Enum):
    """Why a submission attempt was skipped."""
    CONSENT_DENIED = "consent_denied"
    PROBABILITY = "probability"
    RATE_LIMITED = "rate_limited"
    RECENTLY_ONBOARDED = "recently_onboarded"
    RECENTLY_RESET = "recently_reset"


@dataclass(frozen=True)
class GateDecision:
    """Result of an eligibility check."""

    allowed: bool
    reason: Optional[SkipReason] = None

    def __bool__(self) -> bool:
        return self.allowed


def within_last(timestamp: Optional[datetime], now: datetime, hours: int) -> bool:
    """Whether ``timestamp`` lies in the closed interval [now - hours, now]."""
    if timestamp is None:
        return False
    now = as_utc(now)
    return now - timedelta(hours=hours) <= as_utc(timestamp) <= now


class EligibilityGate:
    """Decides whether a submission attempt may proceed now."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def evaluate(
        self,
        now: datetime,
        consent_given: bool,
        last_submission: Optional[datetime],
        onboarded: Optional[datetime],
        app_reset: Optional[datetime],
        probability_to_submit: float,
        force: bool = False,
    ) -> GateDecision:
        if force:
            logger.info("Forced analytics submission, skipping eligibility checks")
            return GateDecision(allowed=True)

        if not consent_given:
            logger.info("Analytics submission skipped: user has not given consent")
            return GateDecision(False, SkipReason.CONSENT_DENIED)

        draw = self.rng.random()
        if draw > probability_to_submit:
            logger.info(
                f"Analytics submission skipped by sampling "
                f"(draw {draw:.3f} > probability {probability_to_submit:.3f})"
            )
            return GateDecision(False, SkipReason.PROBABILITY)

        if within_last(last_submission, now, config.SUBMISSION_COOLDOWN_HOURS):
            logger.info(
                f"Analytics submission skipped: last submission within "
                f"{config.SUBMISSION_COOLDOWN_HOURS} hours"
            )
            return GateDecision(False, SkipReason.RATE_LIMITED)

        if within_last(onboarded, now, config.ONBOARDING_GRACE_HOURS):
            logger.info(
                f"Analytics submission skipped: onboarding completed within "
                f"{config.ONBOARDING_GRACE_HOURS} hours"
            )
            return GateDecision(False, SkipReason.RECENTLY_ONBOARDED)

        if within_last(app_reset, now, config.APP_RESET_GRACE_HOURS):
            logger.info(
                f"Analytics submission skipped: app reset within "
                f"{config.APP_RESET_GRACE_HOURS} hours"
            )
            return GateDecision(False, SkipReason.RECENTLY_RESET)

        return GateDecision(allowed=True)

    def may_attempt_submission(self, *args, **kwargs) -> bool:
        """Boolean shorthand for ``evaluate``."""
        return self.evaluate(*args, **kwargs).allowed
