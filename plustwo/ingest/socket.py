"""
EventSub websocket channel

Owns the single duplex connection to EventSub. A peer reset (the connection
dropping without a close handshake) is recovered by reconnecting to the same
endpoint; every other close or failure is raised.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    WebSocketException,
)

from plustwo.config import settings
from plustwo.ingest.errors import EventSubConnectionError
from plustwo.utils.logging import get_logger

logger = get_logger(__name__, category="eventsub")

Connector = Callable[..., Awaitable[Any]]


class EventSubSocket:
    def __init__(
        self,
        connector: Optional[Connector] = None,
        max_message_bytes: Optional[int] = None,
    ):
        """
        Args:
            connector: Coroutine function opening a connection, called as
                connector(url, max_size=...). Defaults to websockets.connect.
            max_message_bytes: Largest accepted message
        """
        self._connector = connector or websockets.connect
        self.max_message_bytes = max_message_bytes or settings.eventsub_max_message_bytes
        self.ws: Optional[Any] = None
        self.url: Optional[str] = None
        # Bumped on every successful connect, including peer-reset recovery
        self.generation = 0

    async def connect(self, url: str) -> None:
        """Open a connection to url and replace the current one."""
        try:
            ws = await self._connector(url, max_size=self.max_message_bytes)
        except (OSError, WebSocketException) as exc:
            raise EventSubConnectionError(
                f"Failed to connect to EventSub websocket at {url}: {exc}"
            ) from exc

        previous = self.ws
        self.ws = ws
        self.url = url
        self.generation += 1
        logger.info("Connected to EventSub WebSocket at %s", url)

        if previous is not None:
            await self._close_quietly(previous)

    async def close(self) -> None:
        if self.ws is not None:
            await self._close_quietly(self.ws)
            self.ws = None

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except (OSError, WebSocketException) as exc:
            logger.warning("Error closing EventSub WebSocket: %s", exc)

    async def next_message(self) -> str:
        """Wait for the next text message, reconnecting after a peer reset."""
        while True:
            if self.ws is None or self.url is None:
                raise EventSubConnectionError("EventSub websocket is not connected")

            try:
                message = await self.ws.recv()
            except ConnectionClosedError as exc:
                if exc.rcvd is not None:
                    raise EventSubConnectionError(
                        f"EventSub websocket closed: {exc}"
                    ) from exc
                logger.warning("Connection reset, reconnecting to %s", self.url)
                await self.connect(self.url)
                continue
            except ConnectionClosed as exc:
                raise EventSubConnectionError(f"EventSub websocket closed: {exc}") from exc

            if isinstance(message, bytes):
                continue
            return message
