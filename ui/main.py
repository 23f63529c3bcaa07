"""
Main entry point for the Duo Desk application.
"""

import logging
import sys
from dataclasses import dataclass
from typing import Optional

from PySide6 import QtAsyncio
from PySide6.QtCore import QUrl
from PySide6.QtGui import QDesktopServices
from PySide6.QtWidgets import QApplication

from core.auth.authorizer import BrowserAuthorizer
from core.config import get_client_id, get_gitlab_url
from core.constants import APP_NAME, OAUTH_CALLBACK_SCHEME
from core.infrastructure.keyring_service import get_keyring_service
from core.infrastructure.logging_config import configure_logging
from core.persistence import Database, SettingsRepository
from core.services.auth_session import AuthSession
from core.services.chat_service import ChatService
from ui.viewmodels.main_viewmodel import MainViewModel

logger = logging.getLogger(__name__)


@dataclass
class ApplicationContext:
    """The wired object graph of a running application."""

    settings: SettingsRepository
    authorizer: BrowserAuthorizer
    auth_session: AuthSession
    chat_service: ChatService
    viewmodel: MainViewModel


def _open_in_browser(url: str) -> bool:
    return QDesktopServices.openUrl(QUrl(url))


def create_application_context(database: Optional[Database] = None) -> ApplicationContext:
    settings = SettingsRepository(database or Database())
    authorizer = BrowserAuthorizer(open_url=_open_in_browser)
    auth_session = AuthSession(
        credential_store=get_keyring_service(),
        settings_repository=settings,
        authorizer=authorizer,
    )
    chat_service = ChatService(auth_session)
    viewmodel = MainViewModel(auth_session, chat_service, authorizer)
    return ApplicationContext(
        settings=settings,
        authorizer=authorizer,
        auth_session=auth_session,
        chat_service=chat_service,
        viewmodel=viewmodel,
    )


async def _bootstrap(context: ApplicationContext) -> None:
    if context.auth_session.restore_session():
        logger.info("Session restored")
        return

    client_id = get_client_id(context.settings)
    if client_id:
        context.viewmodel.sign_in(get_gitlab_url(context.settings), client_id)
    else:
        logger.info("No OAuth application configured; waiting for sign-in")


def main():
    """Main entry point for the application."""
    log_file = configure_logging()
    logger.info("Logging to %s", log_file)

    app = QApplication(sys.argv)
    app.setApplicationName(APP_NAME)
    app.setOrganizationName("DuoDesk")

    context = create_application_context()

    # Redirects to com.gitlabduochat:// are routed to the view model
    QDesktopServices.setUrlHandler(
        OAUTH_CALLBACK_SCHEME,
        context.viewmodel,
        "handle_callback_url",
    )

    try:
        QtAsyncio.run(_bootstrap(context), keep_running=True, quit_qapp=True)
    finally:
        QDesktopServices.unsetUrlHandler(OAUTH_CALLBACK_SCHEME)


if __name__ == "__main__":
    main()
