"""
PKCE (RFC 7636) helpers and authorize URL building for the X/Twitter login redirect.
S256 only.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from urllib.parse import urlencode


def generate_state() -> str:
    """Opaque CSRF nonce; must come back unchanged on the callback."""
    return secrets.token_urlsafe(32)


def generate_verifier() -> str:
    """PKCE code_verifier: 32 random bytes -> 43 chars base64url."""
    return secrets.token_urlsafe(32)


def generate_challenge(verifier: str) -> str:
    """S256 code_challenge: base64url(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_authorize_url(
    *,
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str,
) -> str:
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{authorize_url}?{urlencode(params)}"
