"""
PKCE helpers for the OAuth authorization-code flow (RFC 7636).

Generates verifier/challenge/state triples, builds the authorization URL
and validates the redirect that comes back from the browser.
"""

import base64
import hashlib
import secrets
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from core.constants import (
    OAUTH_AUTHORIZE_PATH,
    OAUTH_REDIRECT_URI,
    OAUTH_SCOPES,
    PKCE_STATE_BYTES,
    PKCE_VERIFIER_BYTES,
)
from core.errors import (
    InvalidCallbackURLError,
    MissingAuthorizationCodeError,
    OAuthCallbackError,
    StateMismatchError,
)
from core.models import PKCEChallenge


def base64url_encode(data: bytes) -> str:
    """Base64url without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier(num_bytes: int = PKCE_VERIFIER_BYTES) -> str:
    return base64url_encode(secrets.token_bytes(num_bytes))


def generate_code_challenge(verifier: str) -> str:
    """S256 challenge: base64url(SHA256(verifier))."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64url_encode(digest)


def generate_state(num_bytes: int = PKCE_STATE_BYTES) -> str:
    return base64url_encode(secrets.token_bytes(num_bytes))


def generate_pkce_challenge() -> PKCEChallenge:
    """Create fresh PKCE parameters for one sign-in attempt."""
    verifier = generate_code_verifier()
    return PKCEChallenge(
        verifier=verifier,
        challenge=generate_code_challenge(verifier),
        state=generate_state(),
    )


def build_authorization_url(
    base_url: str,
    client_id: str,
    pkce: PKCEChallenge,
    redirect_uri: str = OAUTH_REDIRECT_URI,
    scopes: str = OAUTH_SCOPES,
) -> str:
    """Build the /oauth/authorize URL for the given PKCE parameters."""
    query = urlencode({
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": scopes,
        "code_challenge": pkce.challenge,
        "code_challenge_method": "S256",
        "state": pkce.state,
    })
    return f"{base_url.rstrip('/')}/{OAUTH_AUTHORIZE_PATH}?{query}"


def extract_authorization_code(
    callback_url: str,
    expected_state: str,
    expected_scheme: Optional[str] = None,
) -> str:
    """
    Validate a redirect callback and return its authorization code.

    The state parameter is checked before the code is looked at, so a
    callback from another sign-in attempt fails even if it carries a code.

    Raises:
        InvalidCallbackURLError: URL cannot be parsed or has no query
        OAuthCallbackError: The server redirected with error/error_description
        StateMismatchError: state does not match the one sent for this attempt
        MissingAuthorizationCodeError: No code parameter
    """
    try:
        parts = urlsplit(callback_url)
    except ValueError as exc:
        raise InvalidCallbackURLError(str(exc)) from exc

    if expected_scheme and parts.scheme != expected_scheme:
        raise InvalidCallbackURLError(f"unexpected scheme '{parts.scheme}'")
    if not parts.query:
        raise InvalidCallbackURLError()

    params = parse_qs(parts.query, keep_blank_values=True)

    def first(name: str) -> Optional[str]:
        values = params.get(name)
        return values[0] if values else None

    error = first("error")
    if error:
        description = first("error_description") or "Unknown error"
        raise OAuthCallbackError(f"{error}: {description}")

    returned_state = first("state")
    if returned_state is None or not secrets.compare_digest(
        returned_state.encode("utf-8"), expected_state.encode("utf-8")
    ):
        raise StateMismatchError()

    code = first("code")
    if not code:
        raise MissingAuthorizationCodeError()
    return code
