from __future__ import annotations

import base64
import hashlib
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from conftest import FakeResponse, FakeSession
from listing_flow.config import AppSettings
from listing_flow.errors import ConfigurationError, InvalidState, ProviderError, TokenExchangeFailed
from listing_flow.etsy import oauth
from listing_flow.etsy.oauth import PKCEFlow, code_challenge, generate_code_verifier
from listing_flow.session_store import MemoryStore

TOKEN_BODY = {"access_token": "42.access", "refresh_token": "42.refresh", "expires_in": 3600, "token_type": "Bearer"}


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def settings():
    return AppSettings(etsy_api_key="keystring", redirect_uri="http://localhost:3000/api/etsy/callback")


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


def authorize(settings, store, session=None):
    flow = PKCEFlow(settings, store, session=session or FakeSession())
    url = flow.authorize()
    params = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
    return flow, url, params


def test_verifier_and_challenge():
    verifier = generate_code_verifier()
    assert len(verifier) >= 43

    challenge = code_challenge(verifier)
    expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")
    assert challenge == expected
    assert "=" not in challenge
    assert generate_code_verifier() != verifier


def test_authorize_redirect_and_pending_entry(settings, store):
    _, url, params = authorize(settings, store)

    assert url.startswith("https://www.etsy.com/oauth/connect?")
    assert params["response_type"] == "code"
    assert params["client_id"] == "keystring"
    assert params["redirect_uri"] == "http://localhost:3000/api/etsy/callback"
    assert params["scope"] == "listings_w listings_r shops_r"
    assert params["code_challenge_method"] == "S256"
    assert params["state"] == store.get(oauth.STATE_KEY)
    assert params["code_challenge"] == code_challenge(store.get(oauth.VERIFIER_KEY))


def test_state_mismatch_never_exchanges(settings, store):
    session = FakeSession(FakeResponse(200, TOKEN_BODY))
    flow, _, _ = authorize(settings, store, session)

    with pytest.raises(InvalidState):
        flow.callback(code="auth-code", state="forged-state")

    assert session.posts == []
    assert oauth.VERIFIER_KEY not in store
    assert oauth.STATE_KEY not in store
    assert store.get(oauth.ACCESS_TOKEN_KEY) is None


@pytest.mark.parametrize("code,state_ok", [(None, True), ("auth-code", False)])
def test_missing_code_or_state(settings, store, code, state_ok):
    session = FakeSession(FakeResponse(200, TOKEN_BODY))
    flow, _, params = authorize(settings, store, session)

    with pytest.raises(InvalidState):
        flow.callback(code=code, state=params["state"] if state_ok else None)
    assert session.posts == []


def test_successful_callback_stores_tokens_and_cleans_up(settings, store):
    session = FakeSession(FakeResponse(200, TOKEN_BODY))
    flow, _, params = authorize(settings, store, session)
    verifier = store.get(oauth.VERIFIER_KEY)

    tokens = flow.callback(code="auth-code", state=params["state"])

    assert tokens.access_token == "42.access"
    assert tokens.refresh_token == "42.refresh"
    assert session.posts[0]["url"] == oauth.TOKEN_URL
    assert session.posts[0]["data"] == {
        "grant_type": "authorization_code",
        "client_id": "keystring",
        "redirect_uri": "http://localhost:3000/api/etsy/callback",
        "code": "auth-code",
        "code_verifier": verifier,
    }
    assert store.get(oauth.ACCESS_TOKEN_KEY) == "42.access"
    assert store.get(oauth.REFRESH_TOKEN_KEY) == "42.refresh"
    assert store.get(oauth.CONNECTED_KEY) == "true"
    assert oauth.VERIFIER_KEY not in store
    assert oauth.STATE_KEY not in store


def test_token_lifetimes(settings, store, clock):
    flow, _, params = authorize(settings, store, FakeSession(FakeResponse(200, TOKEN_BODY)))
    flow.callback(code="auth-code", state=params["state"])

    clock.now += 3601
    assert store.get(oauth.ACCESS_TOKEN_KEY) is None
    assert store.get(oauth.REFRESH_TOKEN_KEY) == "42.refresh"

    clock.now += 86400 * 90
    assert store.get(oauth.REFRESH_TOKEN_KEY) is None


def test_pending_entry_expires_after_five_minutes(settings, store, clock):
    session = FakeSession(FakeResponse(200, TOKEN_BODY))
    flow, _, params = authorize(settings, store, session)

    clock.now += 301
    with pytest.raises(InvalidState):
        flow.callback(code="auth-code", state=params["state"])
    assert session.posts == []


def test_provider_error_is_surfaced(settings, store):
    session = FakeSession(FakeResponse(200, TOKEN_BODY))
    flow, _, params = authorize(settings, store, session)

    with pytest.raises(ProviderError) as excinfo:
        flow.callback(code=None, state=params["state"], error="access_denied")

    assert excinfo.value.message == "Etsy Error: access_denied"
    assert excinfo.value.status_code == 400
    assert session.posts == []
    assert oauth.STATE_KEY not in store


def test_non_2xx_exchange_attaches_body(settings, store):
    session = FakeSession(FakeResponse(400, None, text='{"error": "invalid_grant"}'))
    flow, _, params = authorize(settings, store, session)

    with pytest.raises(TokenExchangeFailed) as excinfo:
        flow.callback(code="auth-code", state=params["state"])

    assert excinfo.value.details == '{"error": "invalid_grant"}'
    assert oauth.VERIFIER_KEY not in store
    assert store.get(oauth.ACCESS_TOKEN_KEY) is None


def test_network_failure_is_exchange_failure(settings, store):
    session = FakeSession(requests.ConnectionError("connection refused"))
    flow, _, params = authorize(settings, store, session)

    with pytest.raises(TokenExchangeFailed):
        flow.callback(code="auth-code", state=params["state"])
    assert oauth.STATE_KEY not in store


def test_missing_access_token(settings, store):
    session = FakeSession(FakeResponse(200, {"refresh_token": "r"}))
    flow, _, params = authorize(settings, store, session)

    with pytest.raises(TokenExchangeFailed) as excinfo:
        flow.callback(code="auth-code", state=params["state"])
    assert excinfo.value.message == "No access token received"


def test_api_key_required(store):
    with pytest.raises(ConfigurationError):
        PKCEFlow(AppSettings(etsy_api_key=None), store)
