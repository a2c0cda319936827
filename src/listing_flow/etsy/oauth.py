"""Etsy OAuth 2.0 authorization code flow with PKCE.

States: unauthenticated -> awaiting callback (verifier/state stored for five
minutes) -> authenticated (token pair stored). Any callback outcome removes
the transient verifier/state entry. There is no refresh-token redemption;
once the access token expires the user authorizes again.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import requests

from ..config import AppSettings
from ..errors import ConfigurationError, InvalidState, ProviderError, TokenExchangeFailed
from ..session_store import ScopedStore

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://www.etsy.com/oauth/connect"
TOKEN_URL = "https://api.etsy.com/v3/public/oauth/token"

# Store keys
VERIFIER_KEY = "etsy_code_verifier"
STATE_KEY = "etsy_state"
ACCESS_TOKEN_KEY = "etsy_access_token"
REFRESH_TOKEN_KEY = "etsy_refresh_token"
CONNECTED_KEY = "etsy_connected"

# Lifetimes in seconds
PENDING_TTL = 300
ACCESS_TOKEN_TTL = 3600
REFRESH_TOKEN_TTL = 86400 * 90

VERIFIER_BYTES = 32


def generate_code_verifier() -> str:
    """Random URL-safe verifier from 32 bytes of entropy (43 chars)."""
    return secrets.token_urlsafe(VERIFIER_BYTES)


def code_challenge(verifier: str) -> str:
    """S256 challenge: base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state() -> str:
    return secrets.token_urlsafe(16)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int = ACCESS_TOKEN_TTL


class PKCEFlow:
    """Builds the consent redirect and redeems the callback for tokens."""

    def __init__(
        self,
        settings: AppSettings,
        store: ScopedStore,
        *,
        session: Optional[requests.Session] = None,
    ):
        if not settings.etsy_api_key:
            raise ConfigurationError("ETSY_API_KEY not configured")
        self.settings = settings
        self.store = store
        self.session = session or requests.Session()

    def authorize(self) -> str:
        """Store a fresh verifier/state pair and return the consent page URL."""

        verifier = generate_code_verifier()
        state = generate_state()
        self.store.set(VERIFIER_KEY, verifier, PENDING_TTL)
        self.store.set(STATE_KEY, state, PENDING_TTL)

        params = {
            "response_type": "code",
            "client_id": self.settings.etsy_api_key,
            "redirect_uri": self.settings.redirect_uri,
            "scope": " ".join(self.settings.scopes),
            "state": state,
            "code_challenge": code_challenge(verifier),
            "code_challenge_method": "S256",
        }
        logger.info("Redirecting to Etsy consent page (scopes: %s)", params["scope"])
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    def callback(self, code: Optional[str], state: Optional[str], error: Optional[str] = None) -> TokenPair:
        """Validate the callback and exchange ``code`` for tokens.

        Raises:
            ProviderError: Etsy reported an ``error`` parameter.
            InvalidState: Missing code/state/verifier or state mismatch.
            TokenExchangeFailed: The token endpoint failed or returned no token.
        """

        stored_state = self.store.get(STATE_KEY)
        verifier = self.store.get(VERIFIER_KEY)
        try:
            if error:
                raise ProviderError(f"Etsy Error: {error}", status_code=400)
            if not code or not state or not verifier or not stored_state:
                raise InvalidState("Invalid state or missing code")
            if not hmac.compare_digest(state.encode("utf-8"), stored_state.encode("utf-8")):
                logger.warning("OAuth state mismatch; refusing to exchange code")
                raise InvalidState("Invalid state or missing code")

            tokens = self._exchange(code, verifier)
        finally:
            self.store.delete(VERIFIER_KEY)
            self.store.delete(STATE_KEY)

        self.store.set(ACCESS_TOKEN_KEY, tokens.access_token, ACCESS_TOKEN_TTL)
        if tokens.refresh_token:
            self.store.set(REFRESH_TOKEN_KEY, tokens.refresh_token, REFRESH_TOKEN_TTL)
        self.store.set(CONNECTED_KEY, "true", ACCESS_TOKEN_TTL, http_only=False)
        logger.info("Etsy connected (access token valid for %ss)", tokens.expires_in)
        return tokens

    def _exchange(self, code: str, verifier: str) -> TokenPair:
        token_data = {
            "grant_type": "authorization_code",
            "client_id": self.settings.etsy_api_key,
            "redirect_uri": self.settings.redirect_uri,
            "code": code,
            "code_verifier": verifier,
        }
        try:
            response = self.session.post(TOKEN_URL, data=token_data, timeout=self.settings.http_timeout)
        except requests.RequestException as exc:
            logger.error("Token exchange failed: %s", exc)
            raise TokenExchangeFailed("Failed to exchange token", details=str(exc)) from exc

        if not response.ok:
            logger.error("Token exchange failed (status %s): %s", response.status_code, response.text)
            raise TokenExchangeFailed("Failed to exchange token", details=response.text)

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenExchangeFailed("Token endpoint returned invalid JSON", details=response.text) from exc

        access_token = payload.get("access_token")
        if not access_token:
            raise TokenExchangeFailed("No access token received", details=response.text)

        return TokenPair(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=int(payload.get("expires_in") or ACCESS_TOKEN_TTL),
        )


def access_token_from(store: ScopedStore) -> Optional[str]:
    return store.get(ACCESS_TOKEN_KEY)


__all__ = [
    "PKCEFlow",
    "TokenPair",
    "generate_code_verifier",
    "code_challenge",
    "access_token_from",
]
