"""
Twitch EventSub session manager

Drives the EventSub websocket protocol on top of EventSubSocket: waits for the
welcome handshake, follows server-requested reconnects, treats revocations as
fatal and dispatches notifications to one handler per subscription type.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from plustwo.config import settings
from plustwo.ingest.errors import EventSubProtocolError, SubscriptionRevokedError
from plustwo.ingest.socket import EventSubSocket
from plustwo.schemas.events import (
    EventSubSession,
    Frame,
    FrameDecodeError,
    KeepaliveFrame,
    NotificationFrame,
    ReconnectFrame,
    RevocationFrame,
    WelcomeFrame,
    parse_frame,
)
from plustwo.utils.logging import get_logger

logger = get_logger(__name__, category="eventsub")

NotificationHandler = Callable[[Dict[str, Any], datetime], Awaitable[None]]
WelcomeCallback = Callable[[EventSubSession], Awaitable[None]]


class SessionState(str, enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


class EventSubClient:
    """EventSub session state machine for one long-lived websocket."""

    def __init__(
        self,
        socket: Optional[EventSubSocket] = None,
        url: Optional[str] = None,
        on_welcome: Optional[WelcomeCallback] = None,
        handlers: Optional[Dict[str, NotificationHandler]] = None,
    ):
        """
        Args:
            socket: Channel to read frames from
            url: Default EventSub endpoint
            on_welcome: Awaited with the new session after every welcome
            handlers: Notification handlers keyed by subscription type
        """
        self.socket = socket or EventSubSocket()
        self.default_url = url or settings.eventsub_url
        self.on_welcome = on_welcome
        self.handlers: Dict[str, NotificationHandler] = dict(handlers or {})

        self.state = SessionState.CONNECTING
        self.session: Optional[EventSubSession] = None

        # Socket generation that has completed its welcome handshake
        self._welcomed_generation = 0
        # Socket generation opened because of a session_reconnect
        self._migration_generation: Optional[int] = None

    def register_handler(self, event_type: str, handler: NotificationHandler) -> None:
        self.handlers[event_type] = handler

    async def connect(self, url: Optional[str] = None) -> None:
        self.state = SessionState.CONNECTING
        await self.socket.connect(url or self.default_url)

    async def close(self) -> None:
        self.state = SessionState.TERMINATED
        await self.socket.close()

    async def process_next(self) -> Frame:
        """
        Read one frame and handle it completely.

        Returns:
            The frame that was handled

        Raises:
            EventSubError: On fatal protocol or connection faults
        """
        try:
            raw = await self.socket.next_message()
            try:
                frame = parse_frame(raw)
            except FrameDecodeError as exc:
                raise EventSubProtocolError(str(exc)) from exc
            await self._handle_frame(frame)
        except Exception:
            self.state = SessionState.TERMINATED
            raise
        return frame

    async def _handle_frame(self, frame: Frame) -> None:
        if (
            self.socket.generation != self._welcomed_generation
            and not isinstance(frame, WelcomeFrame)
        ):
            raise EventSubProtocolError(
                "Expected session_welcome as the first message, "
                f"got {frame.metadata.message_type}"
            )

        if isinstance(frame, WelcomeFrame):
            await self._handle_session_welcome(frame)
        elif isinstance(frame, KeepaliveFrame):
            # Sent when no event has occurred within the keepalive window
            pass
        elif isinstance(frame, ReconnectFrame):
            await self._handle_session_reconnect(frame)
        elif isinstance(frame, RevocationFrame):
            subscription = frame.subscription
            logger.error(
                "EventSub subscription revoked: %s (%s) status=%s",
                subscription.type,
                subscription.id,
                subscription.status,
            )
            raise SubscriptionRevokedError(
                subscription.type,
                subscription.id,
                subscription.status,
                subscription.condition,
            )
        elif isinstance(frame, NotificationFrame):
            await self._handle_notification(frame)
        else:
            logger.warning(
                "Received unexpected EventSub message: %s", frame.metadata.message_type
            )

    async def _handle_session_welcome(self, frame: WelcomeFrame) -> None:
        migrated = self._migration_generation == self.socket.generation
        self.session = EventSubSession(
            id=frame.session.id,
            endpoint=self.socket.url or self.default_url,
            keepalive_timeout_seconds=frame.session.keepalive_timeout_seconds,
            migrated=migrated,
            created_at=frame.session.connected_at or frame.metadata.message_timestamp,
        )
        self._welcomed_generation = self.socket.generation
        self._migration_generation = None
        self.state = SessionState.ACTIVE

        logger.info(
            "EventSub session established: %s (migrated=%s)", self.session.id, migrated
        )

        if self.on_welcome is not None:
            await self.on_welcome(self.session)

    async def _handle_session_reconnect(self, frame: ReconnectFrame) -> None:
        url = frame.session.reconnect_url or self.default_url
        logger.warning("EventSub session reconnect requested, moving to %s", url)

        self.state = SessionState.RECONNECTING
        await self.socket.connect(url)
        self._migration_generation = self.socket.generation

    async def _handle_notification(self, frame: NotificationFrame) -> None:
        handler = self.handlers.get(frame.event_type)
        if handler is None:
            logger.warning("No handler for EventSub notification: %s", frame.event_type)
            return

        await handler(frame.event, frame.message_timestamp)
