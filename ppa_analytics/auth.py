"""
PPAC token acquisition.

The API token is a random identifier generated on the device and rotated
every calendar month; the backend uses it to enforce its own submission rate
limit per install. The device token proves the app runs on a genuine device
and comes from the platform's attestation service, which the host provides.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .errors import AuthenticationError
from .models import datetime_to_str, parse_datetime
from .providers import PPACToken

logger = logging.getLogger("ppa_analytics")


class ApiTokenProvider:
    """Build PPAC tokens from a persisted API token and a device attestation."""

    def __init__(
        self,
        store,
        device_token_factory: Callable[[], Awaitable[str]],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.device_token_factory = device_token_factory
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def api_token(self) -> str:
        """Return the API token for the current month, generating one if needed."""
        now = self.clock()
        stored = self.store.ppac_api_token or {}
        created = parse_datetime(stored.get("timestamp"))
        token = stored.get("token")
        if token and created and (created.year, created.month) == (now.year, now.month):
            return token

        token = str(uuid.uuid4())
        self.store.ppac_api_token = {"token": token, "timestamp": datetime_to_str(now)}
        logger.debug("Generated new PPAC API token")
        return token

    async def acquire_token(self) -> PPACToken:
        try:
            device_token = await self.device_token_factory()
        except AuthenticationError:
            raise
        except Exception as e:
            raise AuthenticationError(f"Device token could not be obtained: {e}") from e
        if not device_token:
            raise AuthenticationError("Device attestation returned an empty token")
        return PPACToken(api_token=self.api_token(), device_token=device_token)
