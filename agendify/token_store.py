"""
Single-slot store for the account's OAuth tokens after a successful exchange.
One TokenStore is created at startup and handed to routes and jobs; a new exchange
replaces the stored pair, never merges it.
"""
import time
from dataclasses import dataclass, field

from agendify.errors import ReauthorizationRequired


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    scope: str = ""
    # As reported by the provider; informational, no expiry timer is kept
    expires_in: int | None = None
    obtained_at: float = field(default_factory=time.time)


class TokenStore:
    def __init__(self) -> None:
        self._tokens: TokenPair | None = None

    def set_tokens(self, pair: TokenPair) -> None:
        self._tokens = pair

    def get_tokens(self) -> TokenPair | None:
        """Current pair, or None when no exchange has completed yet."""
        return self._tokens

    def require_tokens(self) -> TokenPair:
        tokens = self._tokens
        if tokens is None:
            raise ReauthorizationRequired("Not authorized yet; visit /auth/twitter")
        return tokens

    def clear(self) -> None:
        self._tokens = None
