"""
Catch-up Reconciler

Backfills the chat of a broadcast that is already in progress when tracking
begins. Comments come from the paginated archive; every message id is stable
and inserts skip duplicates, so overlap with the live feed is harmless.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from plustwo.memory.vote_store import ChatterRecord, MessageRecord, VoteStore
from plustwo.schemas.gql import Comment, TwitchVideo
from plustwo.utils.classifier import classify_fragments
from plustwo.utils.logging import get_logger
from plustwo.utils.pagination import Page, collect_from_cursor
from plustwo.utils.twitch_gql import TwitchGqlClient

logger = get_logger(__name__, category="catchup")


@dataclass
class CatchupResult:
    broadcast_id: int
    comments: int
    chatters: int
    messages: int
    inserted: int


def stage_comments(
    comments: Iterable[Comment], broadcast_id: int
) -> Tuple[List[ChatterRecord], List[MessageRecord]]:
    """
    Turn archive comments into chatter and message rows.

    Comments without a commenter (deleted or banned accounts) and comments that
    are not votes are dropped.

    Returns:
        (chatters deduplicated by id, messages in comment order)
    """
    chatters: Dict[int, ChatterRecord] = {}
    messages: List[MessageRecord] = []

    for comment in comments:
        if comment.commenter is None:
            continue

        message_kind = classify_fragments(comment.message.fragments)
        if message_kind is None:
            continue

        chatter = ChatterRecord(
            id=int(comment.commenter.id),
            display_name=comment.commenter.display_name,
        )
        chatters[chatter.id] = chatter
        messages.append(
            MessageRecord(
                id=comment.id,
                broadcast_id=broadcast_id,
                chatter_id=chatter.id,
                sent_at=comment.created_at,
                message_kind=message_kind,
            )
        )

    return list(chatters.values()), messages


class CatchupReconciler:
    def __init__(self, store: VoteStore, gql: TwitchGqlClient):
        self.store = store
        self.gql = gql

    async def fetch_comments(
        self, video: TwitchVideo, label: Optional[str] = None
    ) -> List[Comment]:
        """Collect every comment of an archive video."""

        async def fetch(cursor: Optional[str], comments: List[Comment]) -> Page[Comment]:
            logger.debug(
                "Catch-up progress: %s video=%s comments=%s cursor=%s",
                label or "",
                video.id,
                len(comments),
                cursor,
            )
            connection = await self.gql.get_comments_by_video_and_cursor(video.id, cursor)
            return connection.page()

        return await collect_from_cursor(fetch)

    async def store_comments(self, comments: List[Comment], broadcast_id: int) -> CatchupResult:
        chatters, messages = stage_comments(comments, broadcast_id)

        # Chatters first, messages reference them
        await self.store.bulk_upsert_chatters(chatters)
        inserted = await self.store.bulk_insert_messages(messages)

        return CatchupResult(
            broadcast_id=broadcast_id,
            comments=len(comments),
            chatters=len(chatters),
            messages=len(messages),
            inserted=inserted,
        )

    async def catch_up(
        self,
        broadcaster_id: int,
        video: TwitchVideo,
        display_name: Optional[str] = None,
    ) -> CatchupResult:
        """
        Record everything said so far in an in-progress broadcast.

        Opens the broadcast at the archive video's start time unless it is
        already stored (stream.online reports a more exact start), then stores all
        vote comments. The broadcast is left open; ending it is the job of the
        stream.offline handler.
        """
        await self.store.start_broadcast(
            video.broadcast_id,
            broadcaster_id,
            video.title or "",
            video.created_at,
            replace_start=False,
        )

        comments = await self.fetch_comments(video, label=display_name)
        result = await self.store_comments(comments, video.broadcast_id)

        logger.info(
            "Catch-up complete: broadcaster=%s broadcast=%s comments=%s chatters=%s "
            "messages=%s new=%s",
            display_name or broadcaster_id,
            video.broadcast_id,
            result.comments,
            result.chatters,
            result.messages,
            result.inserted,
        )
        return result
