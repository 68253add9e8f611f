"""
Authorization code exchange against the provider token endpoint (RFC 6749 §4.1.3 + PKCE).
Confidential client: credentials go in Authorization: Basic base64(client_id:client_secret).
"""
import logging

import httpx

from agendify.config import CLIENT_ID, CLIENT_SECRET, HTTP_TIMEOUT, REDIRECT_URI, TOKEN_URL
from agendify.errors import ExchangeError
from agendify.token_store import TokenPair

logger = logging.getLogger(__name__)


async def exchange_code(
    code: str,
    code_verifier: str,
    *,
    client_id: str = CLIENT_ID,
    client_secret: str = CLIENT_SECRET,
    redirect_uri: str = REDIRECT_URI,
    token_url: str = TOKEN_URL,
    timeout: float = HTTP_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TokenPair:
    """
    POST grant_type=authorization_code to the token endpoint and return the new TokenPair.
    Raises ExchangeError on network error, timeout, non-2xx, or a body without access_token.
    """
    form = {
        "grant_type": "authorization_code",
        "code": code,
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "code_verifier": code_verifier,
    }
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            r = await client.post(
                token_url,
                data=form,
                auth=httpx.BasicAuth(client_id, client_secret),
                headers={"Accept": "application/json"},
            )
    except httpx.HTTPError as e:
        raise ExchangeError(f"Token request failed: {e!r}") from e

    if not r.is_success:
        raise ExchangeError(
            f"Token endpoint returned {r.status_code}", status_code=r.status_code, body=r.text
        )
    try:
        data = r.json()
    except ValueError as e:
        raise ExchangeError("Token endpoint returned non-JSON body", status_code=r.status_code, body=r.text) from e

    access_token = data.get("access_token") if isinstance(data, dict) else None
    if not access_token:
        raise ExchangeError("Token response has no access_token", status_code=r.status_code, body=r.text)

    logger.info("authorization_code exchanged; scope=%s", data.get("scope", ""))
    return TokenPair(
        access_token=access_token,
        refresh_token=data.get("refresh_token", ""),
        scope=data.get("scope", ""),
        expires_in=data.get("expires_in"),
    )
