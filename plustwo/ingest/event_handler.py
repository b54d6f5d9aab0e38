"""
Event Handler for Twitch EventSub Events

Processes stream.online, stream.offline and channel.chat.message notifications:
opens and closes broadcasts and stores chat votes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from plustwo.config import settings
from plustwo.ingest.errors import StreamLookupError
from plustwo.ingest.registry import BroadcasterRegistry
from plustwo.ingest.twitch import NotificationHandler
from plustwo.memory.vote_store import MessageRecord, VoteStore
from plustwo.schemas.events import (
    ChannelChatMessageEvent,
    StreamOfflineEvent,
    StreamOnlineEvent,
)
from plustwo.utils.classifier import classify_fragments
from plustwo.utils.logging import get_logger
from plustwo.utils.twitch_gql import TwitchGqlClient

logger = get_logger(__name__, category="eventsub")
chat_logger = get_logger(f"{__name__}.chat", category="chat")


class EventHandler:
    """Handles EventSub notifications for watched broadcasters."""

    def __init__(
        self,
        registry: BroadcasterRegistry,
        store: VoteStore,
        gql: TwitchGqlClient,
        close_mode: Optional[str] = None,
    ):
        """
        Args:
            registry: Watch state of tracked broadcasters
            store: Persistence facade
            gql: Used to find the archive video of a broadcast that just started
            close_mode: "explicit" closes the broadcast the registry knows is
                live (falling back to the most recent open one), "latest_open"
                always closes the most recent open broadcast
        """
        self.registry = registry
        self.store = store
        self.gql = gql
        self.close_mode = close_mode or settings.broadcast_close_mode

        if self.close_mode not in ("explicit", "latest_open"):
            raise ValueError(f"Unknown broadcast close mode: {self.close_mode}")

    def handlers(self) -> Dict[str, NotificationHandler]:
        return {
            "stream.online": self.handle_stream_online,
            "stream.offline": self.handle_stream_offline,
            "channel.chat.message": self.handle_chat_message,
        }

    async def handle_stream_online(
        self, event_data: Dict[str, Any], timestamp: datetime
    ) -> None:
        event = StreamOnlineEvent.model_validate(event_data)
        broadcaster_id = int(event.broadcaster_user_id)
        logger.info("Stream went online: %s", event.broadcaster_user_login)

        if not self.registry.is_tracked(broadcaster_id):
            logger.warning(
                "Received stream.online for untracked broadcaster %s",
                event.broadcaster_user_login,
            )
            return

        user = await self.gql.get_stream_by_user(event.broadcaster_user_login)
        video = user.live_video
        if video is None:
            raise StreamLookupError(
                f"Failed to find broadcast after stream.online for "
                f"{event.broadcaster_user_login}"
            )

        await self.store.start_broadcast(
            video.broadcast_id,
            broadcaster_id,
            video.title or "",
            event.started_at,
        )
        self.registry.mark_live(broadcaster_id, video)

    async def handle_stream_offline(
        self, event_data: Dict[str, Any], timestamp: datetime
    ) -> None:
        event = StreamOfflineEvent.model_validate(event_data)
        broadcaster_id = int(event.broadcaster_user_id)
        logger.info("Stream went offline: %s", event.broadcaster_user_login)

        if not self.registry.is_tracked(broadcaster_id):
            logger.warning(
                "Received stream.offline for untracked broadcaster %s",
                event.broadcaster_user_login,
            )
            return

        broadcast_id = None
        if self.close_mode == "explicit":
            broadcast_id = self.registry.current_broadcast_id(broadcaster_id)

        closed = await self.store.end_broadcast(
            broadcaster_id, timestamp, broadcast_id=broadcast_id
        )
        self.registry.mark_offline(broadcaster_id)

        logger.info(
            "Ended broadcast %s of %s at %s",
            closed,
            event.broadcaster_user_login,
            timestamp,
        )

    async def handle_chat_message(
        self, event_data: Dict[str, Any], timestamp: datetime
    ) -> None:
        event = ChannelChatMessageEvent.model_validate(event_data)
        broadcaster_id = int(event.broadcaster_user_id)

        if not self.registry.is_tracked(broadcaster_id):
            logger.warning(
                "Received a message for untracked broadcaster %s",
                event.broadcaster_user_login,
            )
            return

        # Chat is open while offline, those messages belong to no broadcast
        broadcast_id = self.registry.current_broadcast_id(broadcaster_id)
        if broadcast_id is None:
            return

        fragments = event.message.fragments or [event.message.text]
        message_kind = classify_fragments(fragments)
        if message_kind is None:
            return

        chat_logger.info(
            "Chat vote: broadcaster=%s chatter=%s kind=%s",
            event.broadcaster_user_name,
            event.chatter_user_name,
            message_kind.value,
        )

        chatter_id = int(event.chatter_user_id)
        await self.store.upsert_chatter(chatter_id, event.chatter_user_name)
        await self.store.insert_message(
            MessageRecord(
                id=event.message_id,
                broadcast_id=broadcast_id,
                chatter_id=chatter_id,
                sent_at=timestamp,
                message_kind=message_kind,
            )
        )
