"""
Watcher

Single cooperative loop tying the EventSub session, the broadcaster registry
and the notification handlers together. Each iteration first refreshes the
registry when due, then reads and fully handles one frame, so refreshes and
notifications never interleave.
"""

from __future__ import annotations

from typing import Optional

from plustwo.ingest.catchup import CatchupReconciler
from plustwo.ingest.event_handler import EventHandler
from plustwo.ingest.registry import BroadcasterRegistry
from plustwo.ingest.socket import EventSubSocket
from plustwo.ingest.twitch import EventSubClient
from plustwo.memory.vote_store import VoteStore
from plustwo.schemas.events import Frame
from plustwo.utils.logging import get_logger
from plustwo.utils.twitch_api import HelixClient
from plustwo.utils.twitch_gql import TwitchGqlClient

logger = get_logger(__name__, category="system")


class Watcher:
    def __init__(
        self,
        store: VoteStore,
        gql: TwitchGqlClient,
        helix: HelixClient,
        watcher_id: str,
        socket: Optional[EventSubSocket] = None,
        url: Optional[str] = None,
    ):
        self.catchup = CatchupReconciler(store, gql)
        self.registry = BroadcasterRegistry(
            store, gql, helix, self.catchup, watcher_id
        )
        self.events = EventHandler(self.registry, store, gql)
        self.client = EventSubClient(
            socket=socket,
            url=url,
            on_welcome=self.registry.on_session,
            handlers=self.events.handlers(),
        )

    async def start(self) -> None:
        """Catch up live broadcasters, then open the EventSub socket."""
        await self.registry.prime()
        await self.client.connect()

    async def run_once(self) -> Frame:
        if self.registry.should_refresh():
            await self.registry.refresh()
        return await self.client.process_next()

    async def run(self) -> None:
        await self.start()
        logger.info("Watcher started")
        try:
            while True:
                await self.run_once()
        finally:
            await self.client.close()
