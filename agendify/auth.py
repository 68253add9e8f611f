"""
X/Twitter OAuth2 login (authorization code + PKCE).
GET /auth/twitter starts the flow; GET /api/auth/twitter/callback2 validates state and
exchanges the code. Operator-facing: responses are HTML, not an API.
"""
import hmac
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from agendify.config import AUTHORIZE_URL, CLIENT_ID, REDIRECT_URI, SCOPE, SESSION_SECRET
from agendify.errors import ExchangeError, ValidationError
from agendify.flow_store import (
    FLOW_TTL,
    SESSION_COOKIE,
    AuthorizationSession,
    FlowStore,
    new_session_id,
    read_session_id,
    sign_session_id,
)
from agendify.oauth import exchange_code
from agendify.pkce import build_authorize_url, generate_challenge, generate_state, generate_verifier
from agendify.token_store import TokenStore

logger = logging.getLogger(__name__)
router = APIRouter()


def get_flow_store(request: Request) -> FlowStore:
    return request.app.state.flow_store


def get_token_store(request: Request) -> TokenStore:
    return request.app.state.token_store


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
  <h1>{title}</h1>
  <p>{body}</p>
</body>
</html>""",
        status_code=status_code,
    )


def validate_callback(flow: AuthorizationSession | None, code: str | None, state: str | None) -> str:
    """
    Return the pending code_verifier if the callback may proceed to exchange.
    Every failure raises the same ValidationError message towards the caller.
    """
    if not code:
        raise ValidationError("missing code")
    if flow is None:
        raise ValidationError("no pending authorization for this session")
    if not state or not hmac.compare_digest(state.encode("utf-8"), flow.state.encode("utf-8")):
        raise ValidationError("state mismatch")
    if not flow.code_verifier:
        raise ValidationError("missing code_verifier")
    return flow.code_verifier


@router.get("/auth/twitter")
def start_login(request: Request, flows: FlowStore = Depends(get_flow_store)):
    """
    Generate state and PKCE verifier, keep them for this browser session, redirect to the provider.
    """
    session_id = read_session_id(request.cookies.get(SESSION_COOKIE), SESSION_SECRET) or new_session_id()
    state = generate_state()
    code_verifier = generate_verifier()
    flows.begin(session_id, state=state, code_verifier=code_verifier)

    url = build_authorize_url(
        authorize_url=AUTHORIZE_URL,
        client_id=CLIENT_ID,
        redirect_uri=REDIRECT_URI,
        scope=SCOPE,
        state=state,
        code_challenge=generate_challenge(code_verifier),
    )
    response = RedirectResponse(url=url, status_code=302)
    response.set_cookie(
        SESSION_COOKIE,
        sign_session_id(session_id, SESSION_SECRET),
        max_age=FLOW_TTL,
        httponly=True,
        samesite="lax",
    )
    return response


@router.get("/api/auth/twitter/callback2", response_class=HTMLResponse)
async def callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    flows: FlowStore = Depends(get_flow_store),
    tokens: TokenStore = Depends(get_token_store),
):
    """
    Handle the provider redirect. The pending flow is consumed before anything else,
    so a replayed callback URL always fails validation.
    """
    session_id = read_session_id(request.cookies.get(SESSION_COOKIE), SESSION_SECRET)
    flow = flows.consume(session_id)
    try:
        code_verifier = validate_callback(flow, code, state)
    except ValidationError as e:
        logger.warning("OAuth callback rejected: %s", e)
        return _page("Error", "Invalid OAuth callback.", status_code=400)

    try:
        pair = await exchange_code(code, code_verifier)
    except ExchangeError as e:
        logger.error("Error exchanging token: %s; provider body: %s", e, e.body)
        return _page("Error", "OAuth token exchange failed.", status_code=500)

    tokens.set_tokens(pair)
    return _page("Twitter Connected!", "You can now close this window and start promoting.")
