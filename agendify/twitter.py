"""
X/Twitter API v2 client for authenticated calls made by jobs.
Uses the access token from the TokenStore. No automatic refresh: a missing token or a
401 means an operator has to run /auth/twitter again.
"""
import logging

import httpx

from agendify.config import API_BASE_URL, HTTP_TIMEOUT
from agendify.errors import PlatformAPIError, ReauthorizationRequired
from agendify.token_store import TokenStore

logger = logging.getLogger(__name__)


class TwitterClient:
    def __init__(
        self,
        tokens: TokenStore,
        *,
        base_url: str = API_BASE_URL,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._tokens = tokens
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        tokens = self._tokens.require_tokens()
        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        ) as client:
            r = await client.request(
                method, path, headers={"Authorization": f"Bearer {tokens.access_token}"}, **kwargs
            )
        if r.status_code == 401:
            # Only drop the pair if nobody stored a newer one meanwhile
            if self._tokens.get_tokens() is tokens:
                self._tokens.clear()
            logger.warning("%s %s returned 401; re-authorization required", method, path)
            raise ReauthorizationRequired("Access token rejected by the platform; visit /auth/twitter")
        if not r.is_success:
            raise PlatformAPIError(f"{method} {path} returned {r.status_code}", r.status_code, r.text)
        return r.json()

    async def create_tweet(self, text: str) -> dict:
        """POST /2/tweets. Returns the created tweet's data ({"id": ..., "text": ...})."""
        body = await self._request("POST", "/2/tweets", json={"text": text})
        return body.get("data", {})
