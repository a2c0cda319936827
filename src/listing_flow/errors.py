"""Error taxonomy shared by the generator, the OAuth flow and the Etsy publisher.

Every error carries the HTTP status it is reported with and renders to the
JSON body returned by the web layer.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ListingFlowError(Exception):
    """Base class for errors surfaced to the caller as JSON."""

    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ListingFlowError):
    """Missing or malformed required input (e.g. no image)."""

    status_code = 400


class ConfigurationError(ListingFlowError):
    """A required setting (API key, placeholder id) is not configured."""

    status_code = 500


class AuthError(ListingFlowError):
    """Missing or invalid Etsy credentials."""

    status_code = 401


class InvalidState(AuthError):
    """OAuth callback state mismatch or missing code/verifier."""

    status_code = 400


class ProviderError(ListingFlowError):
    """The generative API or Etsy reported an application-level failure."""

    status_code = 502


class TokenExchangeFailed(ProviderError):
    """Authorization code could not be exchanged for tokens."""


class ShopNotFound(ProviderError):
    """The authenticated Etsy user has no shop."""

    status_code = 404


class UpstreamUnavailable(ListingFlowError):
    """No upstream backend could serve the request."""

    status_code = 503


class GenerationFailed(UpstreamUnavailable):
    """Every model candidate rejected the request.

    ``attempts`` lists the models tried, in order; ``last_error`` is the
    exception raised by the final candidate.
    """

    def __init__(self, message: str, attempts: list[str], last_error: Optional[BaseException] = None):
        details = str(last_error) if last_error is not None else None
        super().__init__(message, details=details)
        self.attempts = attempts
        self.last_error = last_error


class ParseFailed(ListingFlowError):
    """Structured content could not be extracted from the model output."""

    status_code = 502

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message, details=raw_text or None)
        self.raw_text = raw_text


__all__ = [
    "ListingFlowError",
    "ValidationError",
    "ConfigurationError",
    "AuthError",
    "InvalidState",
    "ProviderError",
    "TokenExchangeFailed",
    "ShopNotFound",
    "UpstreamUnavailable",
    "GenerationFailed",
    "ParseFailed",
]
