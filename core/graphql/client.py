"""
GraphQL client for the GitLab API.

Executes one query or mutation per call against `{base}/api/graphql`
with the session's bearer token, and normalizes every failure into a
ChatServiceError subclass.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from core.constants import (
    AUTH_ERROR_KEYWORDS,
    GRAPHQL_PATH,
    HTTP_TIMEOUT_SECONDS,
    USER_AGENT,
)
from core.errors import (
    AuthenticationExpiredError,
    DecodingError,
    GraphQLError,
    HTTPStatusError,
    NetworkError,
    NotAuthenticatedError,
    RequestEncodingError,
)
from core.types import GraphQLResponse

if TYPE_CHECKING:
    from core.services.auth_session import AuthSession

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class GraphQLClient:
    """
    Thin GraphQL-over-HTTP client.

    Holds a non-owning reference to the AuthSession: it only reads the
    current token and base URL, and asks for a refresh on HTTP 401.
    """

    def __init__(
        self,
        auth_session: "AuthSession",
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.auth_session = auth_session
        self.timeout = timeout
        self._transport = transport

    async def execute(
        self,
        document: str,
        variables: Optional[dict[str, Any]] = None,
        response_model: Optional[Type[ModelT]] = None,
    ) -> Any:
        """
        Execute a query or mutation.

        Args:
            document: GraphQL query or mutation text
            variables: Operation variables
            response_model: Pydantic model the `data` object is validated into

        Returns:
            The validated model, or the raw `data` dict without a model
        """
        access_token = self.auth_session.current_access_token
        base_url = self.auth_session.current_base_url
        if not access_token or not base_url:
            raise NotAuthenticatedError()

        try:
            content = json.dumps({"query": document, "variables": variables or {}})
        except (TypeError, ValueError) as exc:
            raise RequestEncodingError(str(exc)) from exc

        url = f"{base_url.rstrip('/')}/{GRAPHQL_PATH}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

        logger.debug("GraphQL request: %s", " ".join(document.split())[:100])
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(url, content=content, headers=headers)
        except httpx.HTTPError as exc:
            raise NetworkError(str(exc)) from exc

        logger.debug("GraphQL response status: %d", response.status_code)

        if response.status_code == 401:
            await self.auth_session.refresh_if_needed()
            raise AuthenticationExpiredError()

        if response.status_code != 200:
            raise HTTPStatusError(response.status_code, response.text)

        try:
            envelope = GraphQLResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise DecodingError(str(exc)) from exc

        if envelope.errors:
            messages = [error.message for error in envelope.errors]
            if _mentions_authorization(messages):
                raise AuthenticationExpiredError()
            raise GraphQLError(messages)

        if envelope.data is None:
            raise DecodingError("response contained no data")

        if response_model is None:
            return envelope.data

        try:
            return response_model.model_validate(envelope.data)
        except ValidationError as exc:
            raise DecodingError(str(exc)) from exc


def _mentions_authorization(messages: list[str]) -> bool:
    for message in messages:
        lowered = message.lower()
        if any(keyword in lowered for keyword in AUTH_ERROR_KEYWORDS):
            return True
    return False
