"""Tests for the OAuth login routes and health endpoints."""
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from agendify.errors import ExchangeError
from agendify.main import app
from agendify.pkce import generate_challenge
from agendify.token_store import TokenPair

CALLBACK = "/api/auth/twitter/callback2"


@pytest.fixture
def client():
    app.state.token_store.clear()
    yield TestClient(app)
    app.state.token_store.clear()


def _start(client) -> dict:
    r = client.get("/auth/twitter", follow_redirects=False)
    assert r.status_code == 302
    return {k: v[0] for k, v in parse_qs(urlparse(r.headers["location"]).query).items()}


def test_health():
    client = TestClient(app)
    assert client.get("/").text == "OK"
    assert client.get("/healthz").json() == {"ok": True}


def test_start_redirects_to_provider(client):
    r = client.get("/auth/twitter", follow_redirects=False)
    assert r.status_code == 302
    location = r.headers["location"]
    assert location.startswith("https://twitter.com/i/oauth2/authorize?")
    params = {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}
    assert params["response_type"] == "code"
    assert params["client_id"]
    assert params["redirect_uri"].endswith("/api/auth/twitter/callback2")
    assert params["scope"] == "tweet.read tweet.write users.read"
    assert params["state"]
    assert len(params["code_challenge"]) == 43
    assert params["code_challenge_method"] == "S256"
    assert "agendify_session" in r.cookies


def test_callback_success_stores_tokens(client):
    params = _start(client)
    exchange = AsyncMock(return_value=TokenPair(access_token="AT1", refresh_token="RT1"))
    with patch("agendify.auth.exchange_code", new=exchange):
        r = client.get(CALLBACK, params={"code": "abc", "state": params["state"]})
    assert r.status_code == 200
    assert "Twitter Connected!" in r.text
    tokens = app.state.token_store.get_tokens()
    assert (tokens.access_token, tokens.refresh_token) == ("AT1", "RT1")

    code, verifier = exchange.await_args.args
    assert code == "abc"
    # the verifier sent to the token endpoint is the one the challenge was derived from
    assert generate_challenge(verifier) == params["code_challenge"]


def test_callback_forged_state_rejected(client):
    _start(client)
    exchange = AsyncMock()
    with patch("agendify.auth.exchange_code", new=exchange):
        r = client.get(CALLBACK, params={"code": "abc", "state": "forged"})
    assert r.status_code == 400
    assert "Invalid OAuth callback." in r.text
    exchange.assert_not_awaited()
    assert app.state.token_store.get_tokens() is None


def test_callback_forged_state_clears_pending_flow(client):
    params = _start(client)
    client.get(CALLBACK, params={"code": "abc", "state": "forged"})
    # the genuine state no longer works either: the session was consumed
    with patch("agendify.auth.exchange_code", new=AsyncMock()) as exchange:
        r = client.get(CALLBACK, params={"code": "abc", "state": params["state"]})
    assert r.status_code == 400
    exchange.assert_not_awaited()


def test_callback_missing_code_rejected(client):
    params = _start(client)
    r = client.get(CALLBACK, params={"state": params["state"]})
    assert r.status_code == 400
    assert "Invalid OAuth callback." in r.text


def test_callback_without_session_rejected():
    fresh = TestClient(app)
    r = fresh.get(CALLBACK, params={"code": "abc", "state": "whatever"})
    assert r.status_code == 400
    assert "Invalid OAuth callback." in r.text


def test_rejections_are_indistinguishable(client):
    params = _start(client)
    forged = client.get(CALLBACK, params={"code": "abc", "state": "forged"})
    no_session = TestClient(app).get(CALLBACK, params={"code": "abc", "state": params["state"]})
    assert forged.status_code == no_session.status_code == 400
    assert forged.text == no_session.text


def test_callback_replay_succeeds_only_once(client):
    params = _start(client)
    exchange = AsyncMock(return_value=TokenPair(access_token="AT1", refresh_token="RT1"))
    with patch("agendify.auth.exchange_code", new=exchange):
        first = client.get(CALLBACK, params={"code": "abc", "state": params["state"]})
        second = client.get(CALLBACK, params={"code": "abc", "state": params["state"]})
    assert first.status_code == 200
    assert second.status_code == 400
    assert exchange.await_count == 1


def test_callback_exchange_failure_returns_500(client):
    params = _start(client)
    app.state.token_store.set_tokens(TokenPair(access_token="OLD", refresh_token="OLD-RT"))
    err = ExchangeError("Token endpoint returned 401", status_code=401, body='{"error":"unauthorized_client"}')
    with patch("agendify.auth.exchange_code", new=AsyncMock(side_effect=err)):
        r = client.get(CALLBACK, params={"code": "abc", "state": params["state"]})
    assert r.status_code == 500
    assert "OAuth token exchange failed." in r.text
    assert app.state.token_store.get_tokens().access_token == "OLD"
    # session already cleared: retrying the same callback is a validation failure
    r = client.get(CALLBACK, params={"code": "abc", "state": params["state"]})
    assert r.status_code == 400


def test_restart_flow_invalidates_previous_state(client):
    first = _start(client)
    second = _start(client)
    with patch("agendify.auth.exchange_code", new=AsyncMock()) as exchange:
        r = client.get(CALLBACK, params={"code": "abc", "state": first["state"]})
    assert r.status_code == 400
    exchange.assert_not_awaited()
    assert first["state"] != second["state"]


def test_start_with_garbled_session_cookie_issues_new_session():
    garbled = TestClient(app)
    r = garbled.get(
        "/auth/twitter",
        headers={"cookie": "agendify_session=é.abc".encode("latin-1")},
        follow_redirects=False,
    )
    assert r.status_code == 302
    assert r.cookies["agendify_session"].isascii()


def test_callback_with_garbled_session_cookie_rejected():
    garbled = TestClient(app)
    r = garbled.get(
        CALLBACK,
        params={"code": "abc", "state": "s"},
        headers={"cookie": "agendify_session=abc.éé".encode("latin-1")},
    )
    assert r.status_code == 400
    assert "Invalid OAuth callback." in r.text
