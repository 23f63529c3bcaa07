"""
Page context for Duo Chat suggestions.

Analyses a GitLab page URL (project, issue, merge request, ...) and loads
the context-preset questions and slash commands offered for it. Loading is
best-effort: failures are logged and yield empty lists.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional
from urllib.parse import unquote

from PySide6.QtCore import Property, QObject, Signal

from core.constants import (
    CONTEXT_PRESET_QUESTION_COUNT,
    DEFAULT_GITLAB_URL,
    GITLAB_SYSTEM_PATHS,
)
from core.errors import ChatServiceError
from core.graphql import documents
from core.graphql.client import GraphQLClient
from core.models import ContextPreset, SlashCommand, URLContext, URLContextType
from core.types import ContextPresetsPayload, ProjectPayload, SlashCommandsPayload

if TYPE_CHECKING:
    from core.services.auth_session import AuthSession

logger = logging.getLogger(__name__)

_ISSUE_RE = re.compile(r"/-/issues/(\d+)")
_MERGE_REQUEST_RE = re.compile(r"/-/merge_requests/(\d+)")
_PIPELINE_RE = re.compile(r"/-/pipelines(?:/(\d+))?(?:/|$)")
_REPOSITORY_MARKERS = ("/-/tree/", "/-/blob/", "/-/commits/")


def _segments(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def extract_project_path(path: str) -> Optional[str]:
    """Return `namespace/project` for a path below the instance root."""
    segments = _segments(path)
    if len(segments) < 2:
        return None
    namespace, project = segments[0], segments[1]
    if namespace.lower() in GITLAB_SYSTEM_PATHS or namespace == "-" or project == "-":
        return None
    return f"{unquote(namespace)}/{unquote(project)}"


def detect_url_type(path: str) -> tuple[URLContextType, Optional[str]]:
    """
    Classify a path and derive the resource global id where there is one.

    Returns:
        (context type, resource gid or None)
    """
    segments = _segments(path)
    if not segments or segments == ["dashboard"]:
        return URLContextType.HOMEPAGE, None

    match = _ISSUE_RE.search(path)
    if match:
        return URLContextType.ISSUE, f"gid://gitlab/Issue/{match.group(1)}"

    match = _MERGE_REQUEST_RE.search(path)
    if match:
        return URLContextType.MERGE_REQUEST, f"gid://gitlab/MergeRequest/{match.group(1)}"

    match = _PIPELINE_RE.search(path)
    if match:
        number = match.group(1)
        return URLContextType.PIPELINE, f"gid://gitlab/Pipeline/{number}" if number else None

    if any(marker in path for marker in _REPOSITORY_MARKERS):
        return URLContextType.REPOSITORY, None
    if "/-/wikis/" in path:
        return URLContextType.WIKI, None
    if len(segments) >= 2 and "/-/" not in path:
        return URLContextType.PROJECT, None

    return URLContextType.UNKNOWN, None


class ContextService(QObject):
    """Tracks the page context and the suggestions loaded for it."""

    context_changed = Signal()
    context_presets_changed = Signal()
    slash_commands_changed = Signal()

    def __init__(
        self,
        graphql_client: GraphQLClient,
        auth_session: "AuthSession",
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._client = graphql_client
        self.auth_session = auth_session

        self._custom_context_url = ""
        self._context = URLContext()
        self._context_presets: list[ContextPreset] = []
        self._slash_commands: list[SlashCommand] = []

    @Property(list, notify=context_presets_changed)
    def context_presets(self) -> list[ContextPreset]:
        return list(self._context_presets)

    @Property(list, notify=slash_commands_changed)
    def slash_commands(self) -> list[SlashCommand]:
        return list(self._slash_commands)

    @property
    def context(self) -> URLContext:
        return self._context

    @property
    def custom_context_url(self) -> str:
        return self._custom_context_url

    @property
    def current_page_url(self) -> str:
        if self._custom_context_url:
            return self._custom_context_url
        return self.auth_session.current_base_url or DEFAULT_GITLAB_URL

    # ----- URL context -----

    def analyze_url_context(self, url: str) -> URLContext:
        """Classify a page URL relative to the signed-in instance."""
        base_url = self.auth_session.current_base_url
        if not base_url or not url:
            return URLContext()

        base_url = base_url.rstrip("/")
        if url.startswith("http"):
            full_url = url
        elif url.startswith("/"):
            full_url = base_url + url
        else:
            full_url = f"{base_url}/{url}"

        if not full_url.startswith(base_url):
            return URLContext(context_type=URLContextType.UNKNOWN)

        path = full_url[len(base_url):].split("?", 1)[0].split("#", 1)[0]
        context_type, resource_id = detect_url_type(path)
        return URLContext(
            context_type=context_type,
            project_path=extract_project_path(path),
            resource_id=resource_id,
        )

    def set_custom_context_url(self, url: str) -> URLContext:
        self._custom_context_url = url.strip()
        self._context = self.analyze_url_context(self._custom_context_url)
        self.context_changed.emit()
        logger.info(
            "Context: %s (project=%s, resource=%s)",
            self._context.context_type.value,
            self._context.project_path,
            self._context.resource_id,
        )
        return self._context

    def initialize_default_context(self) -> None:
        """Use the instance homepage when no custom URL is set."""
        base_url = self.auth_session.current_base_url
        if not self._custom_context_url and base_url:
            self._context = self.analyze_url_context(base_url)
            self.context_changed.emit()

    # ----- Suggestions -----

    async def resolve_project_id(self, project_path: str) -> Optional[str]:
        """Resolve `namespace/project` to its global id, or None."""
        try:
            payload = await self._client.execute(
                documents.PROJECT_QUERY,
                {"fullPath": project_path},
                response_model=ProjectPayload,
            )
        except ChatServiceError as exc:
            logger.warning("Failed to resolve project path %s: %s", project_path, exc)
            return None
        return payload.project.id if payload.project else None

    async def load_context_presets(self) -> list[ContextPreset]:
        variables = {
            "url": self.current_page_url,
            "questionCount": CONTEXT_PRESET_QUESTION_COUNT,
        }
        if self._context.project_path:
            project_id = await self.resolve_project_id(self._context.project_path)
            if project_id:
                variables["projectId"] = project_id
        if self._context.resource_id:
            variables["resourceId"] = self._context.resource_id

        try:
            payload = await self._client.execute(
                documents.CONTEXT_PRESETS_QUERY,
                variables,
                response_model=ContextPresetsPayload,
            )
        except ChatServiceError as exc:
            logger.warning("Failed to load context presets: %s", exc)
            presets: list[ContextPreset] = []
        else:
            result = payload.ai_chat_context_presets
            questions = result.questions if result and result.questions else []
            presets = [ContextPreset(prompt=question) for question in questions]
            logger.info("Loaded %d context presets", len(presets))

        self._context_presets = presets
        self.context_presets_changed.emit()
        return self.context_presets

    async def load_slash_commands(self) -> list[SlashCommand]:
        try:
            payload = await self._client.execute(
                documents.SLASH_COMMANDS_QUERY,
                {"url": self.current_page_url},
                response_model=SlashCommandsPayload,
            )
        except ChatServiceError as exc:
            logger.warning("Failed to load slash commands: %s", exc)
            commands: list[SlashCommand] = []
        else:
            commands = [
                SlashCommand(name=node.name, description=node.description)
                for node in payload.ai_slash_commands or []
            ]
            logger.info("Loaded %d slash commands", len(commands))

        self._slash_commands = commands
        self.slash_commands_changed.emit()
        return self.slash_commands

    def clear(self) -> None:
        self._custom_context_url = ""
        self._context = URLContext()
        self._context_presets = []
        self._slash_commands = []
        self.context_changed.emit()
        self.context_presets_changed.emit()
        self.slash_commands_changed.emit()
