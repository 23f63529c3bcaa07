"""
Error types for Duo Desk.

Two families: AuthenticationError for the OAuth session and
ChatServiceError for GraphQL, realtime and conversation operations.
`str(error)` is the human-readable message shown to the user.
"""

from typing import Optional


# ----- Authentication -----

class AuthenticationError(Exception):
    """Base class for sign-in, token and session failures."""

    default_message = "Authentication failed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        message = self.default_message
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class InvalidConfigurationError(AuthenticationError):
    default_message = "Invalid GitLab URL or configuration"


class AuthenticationInProgressError(AuthenticationError):
    default_message = "Authentication is already in progress"


class PKCEGenerationError(AuthenticationError):
    default_message = "Failed to generate PKCE parameters"


class UserCancelledError(AuthenticationError):
    default_message = "Authentication was cancelled by user"


class AuthSessionError(AuthenticationError):
    default_message = "Authentication session failed"


class AuthSessionStartError(AuthenticationError):
    default_message = "Failed to start authentication session"


class NoCallbackURLError(AuthenticationError):
    default_message = "No callback URL received"


class InvalidCallbackURLError(AuthenticationError):
    default_message = "Invalid callback URL format"


class StateMismatchError(AuthenticationError):
    default_message = "Security state mismatch detected"


class OAuthCallbackError(AuthenticationError):
    default_message = "OAuth error"


class MissingAuthorizationCodeError(AuthenticationError):
    default_message = "No authorization code received"


class TokenRequestEncodingError(AuthenticationError):
    default_message = "Failed to encode token request"


class InvalidTokenResponseError(AuthenticationError):
    default_message = "Invalid response from server"


class TokenExchangeError(AuthenticationError):
    default_message = "Token exchange failed"


class TokenRefreshError(AuthenticationError):
    default_message = "Token refresh failed"


class AuthNetworkError(AuthenticationError):
    default_message = "Network error"


# ----- Chat Service -----

class ChatServiceError(Exception):
    """Base class for GraphQL, realtime and conversation failures."""

    default_message = "Chat service error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        message = self.default_message
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NotAuthenticatedError(ChatServiceError):
    default_message = "Not authenticated. Please sign in again."


class AuthenticationExpiredError(ChatServiceError):
    default_message = "Authentication expired. Please sign in again."


class UserNotFoundError(ChatServiceError):
    default_message = "User information not found."


class FeatureDisabledError(ChatServiceError):
    default_message = "Duo Chat is not enabled for your account."


class RequestEncodingError(ChatServiceError):
    default_message = "Failed to encode request data"


class NetworkError(ChatServiceError):
    default_message = "Network error"


class HTTPStatusError(ChatServiceError):
    default_message = "HTTP error"

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"{status_code}")


class GraphQLError(ChatServiceError):
    default_message = "GraphQL error"

    def __init__(self, messages: list[str]):
        self.messages = list(messages)
        super().__init__(", ".join(self.messages))


class DecodingError(ChatServiceError):
    default_message = "Failed to decode response"


class SendMessageError(ChatServiceError):
    default_message = "Failed to send message"


class DeleteThreadError(ChatServiceError):
    default_message = "Failed to delete conversation"


class RealtimeConnectionError(ChatServiceError):
    default_message = "WebSocket connection failed"


class ResponseTimeoutError(ChatServiceError):
    default_message = "No response received from Duo Chat"
