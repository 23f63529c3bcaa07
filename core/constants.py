"""
Constants for Duo Desk.
Protocol values shared by the auth, GraphQL and realtime layers.
"""


# ----- Application -----

APP_NAME = "Duo Desk"
APP_DATA_DIRNAME = ".duo_desk"
USER_AGENT = "DuoDesk/1.0"

DEFAULT_GITLAB_URL = "https://gitlab.com"


# ----- OAuth -----

OAUTH_CALLBACK_SCHEME = "com.gitlabduochat"
OAUTH_REDIRECT_URI = f"{OAUTH_CALLBACK_SCHEME}://oauth/callback"
OAUTH_SCOPES = "api read_user"

OAUTH_AUTHORIZE_PATH = "oauth/authorize"
OAUTH_TOKEN_PATH = "oauth/token"

# PKCE entropy, in random bytes before base64url encoding
PKCE_VERIFIER_BYTES = 32
PKCE_STATE_BYTES = 16

# Used when the token endpoint omits expires_in (2 hours)
DEFAULT_TOKEN_LIFETIME_SECONDS = 7200


# ----- Token Monitoring -----

TOKEN_MONITOR_INTERVAL_MS = 60_000
TOKEN_EXPIRY_WARNING_SECONDS = 300
TOKEN_PROACTIVE_REFRESH_SECONDS = 60


# ----- Credential / Settings Keys -----

ACCESS_TOKEN_KEY = "gitlab_access_token"
REFRESH_TOKEN_KEY = "gitlab_refresh_token"

SETTINGS_CATEGORY_AUTH = "auth"
GITLAB_URL_SETTING = "gitlab_url"
CLIENT_ID_SETTING = "gitlab_client_id"
TOKEN_EXPIRY_SETTING = "gitlab_token_expiry"


# ----- GraphQL -----

GRAPHQL_PATH = "api/graphql"
HTTP_TIMEOUT_SECONDS = 30.0

# Error message fragments that mean the bearer token is no longer accepted
AUTH_ERROR_KEYWORDS = ("token", "unauthorized", "authorization")

CONVERSATION_TYPE_DUO_CHAT = "DUO_CHAT"
AI_ACTION_CHAT = "CHAT"
CONTEXT_PRESET_QUESTION_COUNT = 4

THREAD_TITLE_MAX_LENGTH = 50
TEMP_THREAD_PREFIX = "temp-"


# ----- Realtime (ActionCable) -----

CABLE_PATH = "/-/cable"
CABLE_CHANNEL = "GraphqlChannel"
CABLE_SUBPROTOCOLS = ["actioncable-v1-json", "actioncable-unsupported"]

RECONNECT_DELAY_SECONDS = 5.0

COMPLETION_OPERATION_NAME = "aiCompletionResponse"

# Wire spellings of "no value" seen in realtime payloads
NULL_SENTINELS = frozenset({"<null>", "null"})


# ----- URL Context -----

GITLAB_SYSTEM_PATHS = frozenset({
    "admin",
    "help",
    "explore",
    "dashboard",
    "profile",
    "users",
    "groups",
    "api",
    "assets",
})
