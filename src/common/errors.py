"""
Exception hierarchy for the generation pipeline.

Parsing layers never raise these; they are reserved for transport, routing,
session and persistence failures that the gateway maps to HTTP responses.
"""

from typing import Optional


class Prompt2WebError(Exception):
    """Base class for all application errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ProviderError(Prompt2WebError):
    """Transport-level failure talking to an upstream provider."""

    status_code = 502


class MissingCredentialError(ProviderError):
    """The provider's API key is not configured."""

    status_code = 500


class ProviderHTTPError(ProviderError):
    """Upstream answered with a non-2xx status before streaming started."""

    def __init__(self, provider: str, status_code: int, details: Optional[str] = None):
        super().__init__(f"{provider} API error", details)
        self.provider = provider
        self.status_code = status_code


class ProviderStreamError(ProviderError):
    """The connection broke while the stream was being read."""


class StreamIdleTimeout(ProviderError):
    """No bytes arrived from the provider within the idle window."""

    status_code = 504


class UnknownModelError(Prompt2WebError):
    """The requested model id is not in the catalog."""

    status_code = 400


class SessionBusyError(Prompt2WebError):
    """A generation is already in flight for this session."""

    status_code = 409


class PersistenceError(Prompt2WebError):
    """The project store could not complete an operation."""
