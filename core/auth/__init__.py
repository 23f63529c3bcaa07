"""OAuth + PKCE sign-in building blocks."""

from .authorizer import BrowserAuthorizer
from .oauth_client import OAuthClient
from .pkce import (
    build_authorization_url,
    extract_authorization_code,
    generate_pkce_challenge,
)

__all__ = [
    "BrowserAuthorizer",
    "OAuthClient",
    "build_authorization_url",
    "extract_authorization_code",
    "generate_pkce_challenge",
]
