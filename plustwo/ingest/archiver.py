"""
Historical Archiver

Backfills every completed archive video of one broadcaster: each video becomes
a closed broadcast, ended at its declared length, with its vote comments.
The video that is currently live is left to the watcher.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from plustwo.ingest.catchup import CatchupReconciler
from plustwo.memory.vote_store import VoteStore
from plustwo.schemas.gql import TwitchVideo
from plustwo.utils.logging import get_logger
from plustwo.utils.pagination import Page, collect_from_cursor
from plustwo.utils.twitch_gql import TwitchGqlClient

logger = get_logger(__name__, category="archiver")


@dataclass
class ArchiveSummary:
    broadcaster_id: int
    videos: int = 0
    messages: int = 0
    skipped_live_video: Optional[str] = None


class Archiver:
    def __init__(self, store: VoteStore, gql: TwitchGqlClient):
        self.store = store
        self.gql = gql
        self.catchup = CatchupReconciler(store, gql)

    async def fetch_videos(self, login: str) -> List[TwitchVideo]:
        async def fetch(cursor: Optional[str], videos: List[TwitchVideo]) -> Page[TwitchVideo]:
            connection = await self.gql.get_videos_by_user_and_cursor(login, cursor)
            page = connection.page()
            logger.debug(
                "Video listing progress: %s %s/%s",
                login,
                len(videos) + len(page.items),
                page.total_count,
            )
            return page

        return await collect_from_cursor(fetch)

    async def archive(self, login: str) -> ArchiveSummary:
        """Archive all completed broadcasts of a user."""
        user = await self.gql.get_stream_by_user(login)
        await self.store.upsert_broadcaster(
            user.broadcaster_id, user.display_name or login, user.profile_image_url
        )

        live_video = user.live_video
        summary = ArchiveSummary(
            broadcaster_id=user.broadcaster_id,
            skipped_live_video=live_video.id if live_video is not None else None,
        )

        videos = [
            video
            for video in await self.fetch_videos(login)
            if live_video is None or video.id != live_video.id
        ]
        logger.info("Archiving %s videos of %s", len(videos), login)

        for index, video in enumerate(videos, start=1):
            summary.messages += await self.archive_video(user.broadcaster_id, video)
            summary.videos += 1
            logger.info(
                "Archived video %s (%s/%s): %s",
                video.id,
                index,
                len(videos),
                video.title,
            )

        return summary

    async def archive_video(self, broadcaster_id: int, video: TwitchVideo) -> int:
        """Store one completed video and return the number of new messages."""
        await self.store.start_broadcast(
            video.broadcast_id,
            broadcaster_id,
            video.title or "",
            video.created_at,
            replace_start=False,
        )

        comments = await self.catchup.fetch_comments(video)
        result = await self.catchup.store_comments(comments, video.broadcast_id)

        # An end time reported by stream.offline wins over the inferred one
        await self.store.end_broadcast(
            broadcaster_id,
            video.ended_at,
            broadcast_id=video.broadcast_id,
            only_if_open=True,
        )
        return result.inserted
