"""HTTP client for the GitLab OAuth token endpoint."""

import json
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from core.constants import (
    HTTP_TIMEOUT_SECONDS,
    OAUTH_REDIRECT_URI,
    OAUTH_TOKEN_PATH,
    USER_AGENT,
)
from core.errors import (
    AuthNetworkError,
    InvalidTokenResponseError,
    TokenExchangeError,
    TokenRefreshError,
    TokenRequestEncodingError,
)
from core.types import TokenErrorResponse, TokenResponse

logger = logging.getLogger(__name__)


class OAuthClient:
    """
    Performs the authorization-code and refresh-token grants.

    Both grants POST a JSON body to `{base}/oauth/token`. A non-200 status
    becomes TokenExchangeError / TokenRefreshError carrying the server's
    error description when one is present.
    """

    def __init__(
        self,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport

    async def exchange_code(
        self,
        base_url: str,
        client_id: str,
        code: str,
        verifier: str,
        redirect_uri: str = OAUTH_REDIRECT_URI,
    ) -> TokenResponse:
        body = {
            "client_id": client_id,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
            "code_verifier": verifier,
        }
        return await self._request_token(base_url, body, TokenExchangeError)

    async def refresh(
        self,
        base_url: str,
        client_id: str,
        refresh_token: str,
    ) -> TokenResponse:
        body = {
            "client_id": client_id,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        return await self._request_token(base_url, body, TokenRefreshError)

    async def _request_token(
        self,
        base_url: str,
        body: dict[str, Any],
        failure: type,
    ) -> TokenResponse:
        url = f"{base_url.rstrip('/')}/{OAUTH_TOKEN_PATH}"
        try:
            content = json.dumps(body)
        except (TypeError, ValueError) as exc:
            raise TokenRequestEncodingError(str(exc)) from exc

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

        logger.info("Requesting token (%s) from %s", body["grant_type"], url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(url, content=content, headers=headers)
        except httpx.HTTPError as exc:
            raise AuthNetworkError(str(exc)) from exc

        if response.status_code != 200:
            logger.warning("Token endpoint returned HTTP %d", response.status_code)
            raise failure(self._describe_error(response))

        try:
            return TokenResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise InvalidTokenResponseError(str(exc)) from exc

    @staticmethod
    def _describe_error(response: httpx.Response) -> str:
        try:
            return TokenErrorResponse.model_validate_json(response.content).message
        except ValidationError:
            return f"HTTP {response.status_code}"
