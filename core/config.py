"""
Configuration loader for Duo Desk.

Resolves the GitLab instance and OAuth application using a priority chain:
1. Persisted settings (last successful sign-in)
2. Environment variables (CI/CD and first-run support)
3. Built-in defaults
"""

import logging
import os
from typing import Optional
from urllib.parse import urlsplit

from core.constants import (
    CLIENT_ID_SETTING,
    DEFAULT_GITLAB_URL,
    GITLAB_URL_SETTING,
)
from core.errors import InvalidConfigurationError
from core.persistence import SettingsRepository

logger = logging.getLogger(__name__)

GITLAB_URL_ENV = "DUO_DESK_GITLAB_URL"
CLIENT_ID_ENV = "DUO_DESK_CLIENT_ID"


def normalize_gitlab_url(url: str) -> str:
    """
    Validate and normalize a GitLab base URL.

    Strips whitespace and trailing slashes.

    Raises:
        InvalidConfigurationError: If the URL is not an absolute http(s) URL
    """
    candidate = (url or "").strip().rstrip("/")
    parts = urlsplit(candidate)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidConfigurationError(f"'{url}' is not a valid GitLab URL")
    if parts.query or parts.fragment:
        raise InvalidConfigurationError("GitLab URL must not contain a query or fragment")
    return candidate


def normalize_client_id(client_id: str) -> str:
    """
    Validate an OAuth application ID.

    Raises:
        InvalidConfigurationError: If the client ID is empty
    """
    candidate = (client_id or "").strip()
    if not candidate:
        raise InvalidConfigurationError("OAuth application ID is required")
    return candidate


def get_gitlab_url(settings: Optional[SettingsRepository] = None) -> str:
    """
    Get the GitLab base URL.

    Priority: settings → DUO_DESK_GITLAB_URL → https://gitlab.com
    """
    if settings is not None:
        value = settings.get_value(GITLAB_URL_SETTING)
        if value:
            return value

    env_value = os.environ.get(GITLAB_URL_ENV)
    if env_value:
        try:
            return normalize_gitlab_url(env_value)
        except InvalidConfigurationError:
            logger.warning("Ignoring invalid %s: %s", GITLAB_URL_ENV, env_value)

    return DEFAULT_GITLAB_URL


def get_client_id(settings: Optional[SettingsRepository] = None) -> Optional[str]:
    """
    Get the OAuth application ID.

    Priority: settings → DUO_DESK_CLIENT_ID

    Returns:
        The client ID, or None if not configured
    """
    if settings is not None:
        value = settings.get_value(CLIENT_ID_SETTING)
        if value:
            return value

    env_value = os.environ.get(CLIENT_ID_ENV, "").strip()
    return env_value or None
