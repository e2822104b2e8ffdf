"""Interfaces for the collaborators a submission depends on."""

from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import ConfigUnavailableError


@dataclass(frozen=True)
class AnalyticsConfiguration:
    """The part of the app configuration that governs analytics submission."""

    probability_to_submit: float
    etag: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.probability_to_submit <= 1.0:
            raise ConfigUnavailableError(
                f"probability_to_submit must be within [0, 1], got {self.probability_to_submit}"
            )


@dataclass(frozen=True)
class PPACToken:
    """Credentials proving the submission comes from a legitimate app install."""

    api_token: str
    device_token: str


class ConfigurationProvider(Protocol):
    async def current_configuration(self) -> AnalyticsConfiguration:
        """Return the current configuration or raise ``ConfigUnavailableError``."""
        ...


class AuthenticationProvider(Protocol):
    async def acquire_token(self) -> PPACToken:
        """Return a token or raise ``AuthenticationError``."""
        ...


class Transport(Protocol):
    async def submit(self, payload: dict, token: PPACToken, force_api_token_header: bool = False) -> None:
        """Deliver the payload or raise ``TransportError``."""
        ...


class StaticConfigurationProvider:
    """Serves a fixed configuration."""

    def __init__(self, configuration: AnalyticsConfiguration):
        self.configuration = configuration

    async def current_configuration(self) -> AnalyticsConfiguration:
        return self.configuration


class StaticTokenProvider:
    """Hands out the same token on every call."""

    def __init__(self, token: PPACToken):
        self.token = token

    async def acquire_token(self) -> PPACToken:
        return self.token
