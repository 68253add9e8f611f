"""
Pending authorization flows, one per browser session (session id -> state, code_verifier).
Used between GET /auth/twitter and the callback. Entries are single use: the callback
pops the entry whatever the outcome. TTL to avoid unbounded growth.

The session id travels in a cookie signed with SESSION_SECRET.
"""
import hashlib
import hmac
import secrets
import time
from base64 import urlsafe_b64encode
from dataclasses import dataclass

# TTL seconds for a pending flow (user has 10 min to approve at the provider)
FLOW_TTL = 600

SESSION_COOKIE = "agendify_session"


@dataclass
class AuthorizationSession:
    state: str
    code_verifier: str
    created_at: float

    def expired(self) -> bool:
        return (time.monotonic() - self.created_at) > FLOW_TTL


class FlowStore:
    """In-memory pending flows keyed by session id."""

    def __init__(self) -> None:
        self._pending: dict[str, AuthorizationSession] = {}

    def begin(self, session_id: str, state: str, code_verifier: str) -> None:
        """Record a new pending flow; replaces any earlier attempt from the same session."""
        self._clean_expired()
        self._pending[session_id] = AuthorizationSession(
            state=state, code_verifier=code_verifier, created_at=time.monotonic()
        )

    def consume(self, session_id: str | None) -> AuthorizationSession | None:
        """Remove and return the pending flow. Expired or unknown -> None."""
        if not session_id:
            return None
        flow = self._pending.pop(session_id, None)
        if flow is None or flow.expired():
            return None
        return flow

    def __len__(self) -> int:
        return len(self._pending)

    def _clean_expired(self) -> None:
        expired = [sid for sid, f in self._pending.items() if f.expired()]
        for sid in expired:
            del self._pending[sid]


def _signature(session_id: str, secret: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), session_id.encode("ascii"), hashlib.sha256).digest()
    return urlsafe_b64encode(mac).rstrip(b"=").decode("ascii")


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def sign_session_id(session_id: str, secret: str) -> str:
    """Cookie value: '<session_id>.<hmac>'."""
    return f"{session_id}.{_signature(session_id, secret)}"


def read_session_id(cookie_value: str | None, secret: str) -> str | None:
    """Session id from a signed cookie value, or None if missing or tampered with."""
    if not cookie_value or not cookie_value.isascii() or "." not in cookie_value:
        return None
    session_id, _, sig = cookie_value.rpartition(".")
    if not session_id or not hmac.compare_digest(sig, _signature(session_id, secret)):
        return None
    return session_id
