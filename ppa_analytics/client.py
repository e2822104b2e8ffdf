"""
HTTP collaborators for analytics submission.

HttpTransport posts the payload to the analytics backend and
HttpConfigurationProvider fetches the submission parameters from the app
configuration endpoint. Neither retries: a failed attempt is abandoned and
the next natural trigger starts a fresh one with the same stored data.
"""

import logging
from typing import Optional

import httpx

from . import config
from .errors import ConfigUnavailableError, TransportError
from .providers import AnalyticsConfiguration, PPACToken
from .version import __version__

logger = logging.getLogger("ppa_analytics")


def _default_headers() -> dict:
    return {
        "Content-Type": "application/json",
        "User-Agent": f"ppa-analytics/{__version__}",
    }


class HttpTransport:
    """
    Submit analytics payloads to the backend over HTTPS.

    The body carries the payload next to the PPAC credentials. When
    ``force_api_token_header`` is set the backend is asked to accept the API
    token without device attestation, which is only honoured by test
    environments.
    """

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        timeout: float = config.REQUEST_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            endpoint_url: Submission URL (defaults to PPA_SUBMISSION_ENDPOINT)
            timeout: Request timeout in seconds
            http_client: Client to reuse, mainly for tests; one is created per
                submission otherwise
        """
        self.endpoint_url = endpoint_url or config.SUBMISSION_ENDPOINT
        self.timeout = timeout
        self._http_client = http_client

    def _build_body(self, payload: dict, token: PPACToken) -> dict:
        return {
            "ppacIos": {
                "apiToken": token.api_token,
                "deviceToken": token.device_token,
            },
            "payload": payload,
        }

    async def _post(self, client: httpx.AsyncClient, body: dict, headers: dict) -> httpx.Response:
        return await client.post(self.endpoint_url, json=body, headers=headers, timeout=self.timeout)

    async def submit(self, payload: dict, token: PPACToken, force_api_token_header: bool = False) -> None:
        if not self.endpoint_url:
            raise TransportError("No analytics submission endpoint configured")

        headers = _default_headers()
        if force_api_token_header:
            headers[config.FORCE_API_TOKEN_HEADER] = "true"
        body = self._build_body(payload, token)

        try:
            if self._http_client is not None:
                response = await self._post(self._http_client, body, headers)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, body, headers)
        except httpx.TimeoutException as e:
            raise TransportError(f"Analytics submission timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Analytics endpoint not reachable: {e}") from e

        if response.is_success:
            logger.debug(f"Analytics payload accepted with status {response.status_code}")
            return

        raise TransportError(
            f"Analytics submission failed with status {response.status_code}: {response.text}",
            status_code=response.status_code,
        )


class HttpConfigurationProvider:
    """Read the submission probability from the app configuration endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: float = config.REQUEST_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url or config.CONFIGURATION_URL
        self.timeout = timeout
        self._http_client = http_client

    async def _get(self, client: httpx.AsyncClient) -> httpx.Response:
        return await client.get(self.url, headers=_default_headers(), timeout=self.timeout)

    async def current_configuration(self) -> AnalyticsConfiguration:
        if not self.url:
            raise ConfigUnavailableError("No app configuration URL configured")

        try:
            if self._http_client is not None:
                response = await self._get(self._http_client)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._get(client)
            response.raise_for_status()
            document = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ConfigUnavailableError(f"App configuration could not be fetched: {e}") from e

        try:
            probability = (
                document["privacyPreservingAnalyticsParameters"]["common"]["probabilityToSubmit"]
            )
            return AnalyticsConfiguration(
                probability_to_submit=float(probability),
                etag=response.headers.get("ETag"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigUnavailableError(f"App configuration has no analytics parameters: {e}") from e
