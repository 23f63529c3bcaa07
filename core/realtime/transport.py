"""
ActionCable WebSocket transport.

One persistent connection to `{base}/-/cable` multiplexes GraphQL
subscriptions. Subscriptions requested before the server's `welcome`
frame are queued and flushed once the connection is ready.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional
from urllib.parse import urlsplit, urlunsplit

from PySide6.QtCore import QObject, Signal
from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from core.constants import (
    CABLE_CHANNEL,
    CABLE_PATH,
    CABLE_SUBPROTOCOLS,
    RECONNECT_DELAY_SECONDS,
    USER_AGENT,
)
from core.errors import RealtimeConnectionError

if TYPE_CHECKING:
    from core.services.auth_session import AuthSession

logger = logging.getLogger(__name__)

PENDING_SUFFIX = "_pending"

SubscriptionHandler = Callable[[dict[str, Any]], Any]


@dataclass
class Subscription:
    """A subscription sent to the server."""

    subscription_id: str
    identifier: str
    nonce: str
    operation_name: str
    handler: SubscriptionHandler


@dataclass
class PendingSubscription:
    """A subscription queued until the connection is ready."""

    placeholder_id: str
    query: str
    variables: dict[str, Any]
    operation_name: str
    handler: SubscriptionHandler


def build_cable_url(base_url: str) -> str:
    """Map an http(s) GitLab base URL to its ws(s) cable endpoint."""
    parts = urlsplit(base_url)
    scheme = "ws" if parts.scheme == "http" else "wss"
    path = parts.path.rstrip("/") + CABLE_PATH
    return urlunsplit((scheme, parts.netloc, path, "", ""))


def _origin_of(base_url: str) -> str:
    parts = urlsplit(base_url)
    return f"{parts.scheme}://{parts.netloc}"


class RealtimeTransport(QObject):
    """
    ActionCable client for GraphQL subscriptions.

    Signals:
        connection_ready: `welcome` received and pending subscriptions flushed
        subscription_confirmed: Server confirmed a subscription (id or identifier)
        subscription_rejected: Server rejected a subscription (id or identifier)
        disconnected: The connection was closed or lost

    The transport does not re-send subscriptions after a reconnect; owners
    re-subscribe when `connection_ready` fires.
    """

    connection_ready = Signal()
    subscription_confirmed = Signal(str)
    subscription_rejected = Signal(str)
    disconnected = Signal()

    def __init__(
        self,
        auth_session: "AuthSession",
        connect_factory: Optional[Callable[..., Any]] = None,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.auth_session = auth_session
        self.reconnect_delay = reconnect_delay
        self._connect_factory = connect_factory or websocket_connect

        self._ws: Any = None
        self._connected = False
        self._ready = False
        self._listener_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self._subscriptions: dict[str, Subscription] = {}
        self._pending: list[PendingSubscription] = []
        self._aliases: dict[str, list[str]] = {}

    # ----- State -----

    @property
    def is_connected(self) -> bool:
        return self._connected and self._ws is not None

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def subscription_ids(self) -> list[str]:
        return list(self._subscriptions)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ----- Connection -----

    async def connect(self) -> bool:
        """
        Open the cable connection and start the receive loop.

        Returns:
            False if the session has no token or base URL

        Raises:
            RealtimeConnectionError: If the handshake fails
        """
        access_token = self.auth_session.current_access_token
        base_url = self.auth_session.current_base_url
        if not access_token or not base_url:
            logger.warning("Cannot connect realtime transport: not authenticated")
            return False

        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
            self._reconnect_task = None

        await self._close_socket()

        url = build_cable_url(base_url)
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }

        logger.info("Connecting to %s", url)
        try:
            ws = await self._connect_factory(
                url,
                additional_headers=headers,
                subprotocols=list(CABLE_SUBPROTOCOLS),
                origin=_origin_of(base_url),
                user_agent_header=USER_AGENT,
            )
        except (OSError, WebSocketException) as exc:
            raise RealtimeConnectionError(str(exc)) from exc

        self._ws = ws
        self._connected = True
        self._ready = False
        self._listener_task = asyncio.create_task(self._listen(ws))
        return True

    async def disconnect(self) -> None:
        """Close the connection and drop all subscription state. Idempotent."""
        was_connected = self._connected or self._ws is not None
        self._connected = False
        self._ready = False

        if self._reconnect_task is not None:
            if self._reconnect_task is not asyncio.current_task():
                self._reconnect_task.cancel()
            self._reconnect_task = None

        await self._close_socket()

        self._subscriptions.clear()
        self._pending.clear()
        self._aliases.clear()

        if was_connected:
            logger.info("Realtime transport disconnected")
            self.disconnected.emit()

    async def _close_socket(self) -> None:
        task = self._listener_task
        self._listener_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        ws = self._ws
        self._ws = None
        if ws is not None:
            with contextlib.suppress(ConnectionClosed, OSError):
                await ws.close()

    async def _listen(self, ws: Any) -> None:
        try:
            while True:
                raw = await ws.recv()
                await self._handle_frame(raw)
        except (ConnectionClosed, OSError) as exc:
            if self._ws is not ws or not self._connected:
                return
            logger.warning("Realtime connection lost: %s", exc)
            self._ws = None
            self._ready = False
            # Identifiers carry the old nonces; owners subscribe again on connection_ready
            self._subscriptions.clear()
            self._aliases.clear()
            self.disconnected.emit()
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        logger.info("Reconnecting in %.0f seconds", self.reconnect_delay)
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        if not self._connected:
            return
        try:
            connected = await self.connect()
        except RealtimeConnectionError as exc:
            logger.error("Reconnect failed: %s", exc)
            connected = False
        if not connected:
            self._connected = False

    # ----- Subscriptions -----

    async def subscribe(
        self,
        query: str,
        variables: dict[str, Any],
        operation_name: str,
        handler: SubscriptionHandler,
    ) -> str:
        """
        Subscribe to a GraphQL subscription.

        Before the connection is ready the request is queued and the
        placeholder id `{operation_name}_pending` is returned.

        Returns:
            The local subscription id `{operation_name}_{nonce}`
        """
        if not self._ready:
            placeholder_id = f"{operation_name}{PENDING_SUFFIX}"
            self._pending.append(
                PendingSubscription(
                    placeholder_id=placeholder_id,
                    query=query,
                    variables=dict(variables),
                    operation_name=operation_name,
                    handler=handler,
                )
            )
            logger.debug("Queued %s until the connection is ready", operation_name)
            return placeholder_id

        return await self._send_subscribe(query, variables, operation_name, handler)

    async def unsubscribe(self, subscription_id: str) -> None:
        """
        Unsubscribe by local id.

        A pending placeholder drops queued requests that have not been sent
        yet and unsubscribes those already flushed under that placeholder.
        """
        for real_id in self._aliases.pop(subscription_id, []):
            await self._unsubscribe_one(real_id)

        if subscription_id.endswith(PENDING_SUFFIX):
            self._pending = [
                pending for pending in self._pending
                if pending.placeholder_id != subscription_id
            ]
            return

        await self._unsubscribe_one(subscription_id)

    async def _unsubscribe_one(self, subscription_id: str) -> None:
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            logger.debug("Unknown subscription %s", subscription_id)
            return
        await self._send({"command": "unsubscribe", "identifier": subscription.identifier})

    async def _send_subscribe(
        self,
        query: str,
        variables: dict[str, Any],
        operation_name: str,
        handler: SubscriptionHandler,
    ) -> str:
        nonce = str(uuid.uuid4())
        identifier = json.dumps({
            "channel": CABLE_CHANNEL,
            "query": query,
            "variables": variables,
            "operationName": operation_name,
            "nonce": nonce,
        })
        subscription_id = f"{operation_name}_{nonce}"
        self._subscriptions[subscription_id] = Subscription(
            subscription_id=subscription_id,
            identifier=identifier,
            nonce=nonce,
            operation_name=operation_name,
            handler=handler,
        )
        await self._send({"command": "subscribe", "identifier": identifier})
        logger.info("Subscribed %s", subscription_id)
        return subscription_id

    async def _flush_pending(self) -> None:
        pending, self._pending = self._pending, []
        for entry in pending:
            real_id = await self._send_subscribe(
                entry.query,
                entry.variables,
                entry.operation_name,
                entry.handler,
            )
            self._aliases.setdefault(entry.placeholder_id, []).append(real_id)

    # ----- Frames -----

    async def _send(self, message: dict[str, Any]) -> bool:
        if self._ws is None:
            logger.warning("Dropping %s: not connected", message.get("command") or message.get("type"))
            return False
        try:
            await self._ws.send(json.dumps(message))
            return True
        except ConnectionClosed as exc:
            logger.warning("Send failed: %s", exc)
            return False

    async def _handle_frame(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring undecodable frame")
            return
        if not isinstance(frame, dict):
            return

        frame_type = frame.get("type")
        if frame_type == "welcome":
            logger.info("Realtime connection ready")
            self._ready = True
            await self._flush_pending()
            self.connection_ready.emit()
        elif frame_type == "ping":
            await self._send({"type": "pong"})
        elif frame_type == "confirm_subscription":
            name = self._name_for(frame.get("identifier"))
            logger.info("Subscription confirmed: %s", name)
            self.subscription_confirmed.emit(name)
        elif frame_type == "reject_subscription":
            name = self._name_for(frame.get("identifier"))
            logger.warning("Subscription rejected: %s", name)
            self.subscription_rejected.emit(name)
        elif frame_type == "disconnect":
            logger.info("Server requested disconnect: %s", frame.get("reason"))

        identifier = frame.get("identifier")
        if isinstance(identifier, str) and isinstance(frame.get("message"), dict):
            await self._dispatch(identifier, frame)

    def _name_for(self, identifier: Any) -> str:
        for subscription in self._subscriptions.values():
            if subscription.identifier == identifier:
                return subscription.subscription_id
        return identifier if isinstance(identifier, str) else ""

    async def _dispatch(self, identifier: str, frame: dict[str, Any]) -> None:
        for subscription in list(self._subscriptions.values()):
            if subscription.identifier != identifier:
                continue
            try:
                result = subscription.handler(frame)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Subscription handler failed for %s", subscription.subscription_id)
            return
        logger.debug("No handler for pushed identifier")
