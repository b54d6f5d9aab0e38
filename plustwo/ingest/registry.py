"""
Broadcaster Watch Registry

Keeps the in-memory watch state of every tracked broadcaster and the EventSub
subscriptions that go with it. Broadcasters are read from the database on a
fixed interval; new ones are caught up (if live) and then subscribed.
Broadcasters are never dropped once added.

The registry is the only writer of watch state. Notification handlers go
through mark_live / mark_offline and read through get / current_broadcast_id.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Callable, Dict, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from plustwo.config import settings
from plustwo.database.models import Broadcaster
from plustwo.ingest.catchup import CatchupReconciler
from plustwo.memory.vote_store import VoteStore
from plustwo.schemas.events import EventSubSession
from plustwo.schemas.gql import TwitchVideo
from plustwo.utils.logging import get_logger
from plustwo.utils.pagination import PaginationError
from plustwo.utils.twitch_api import HelixClient, TwitchApiError
from plustwo.utils.twitch_gql import TwitchGqlClient

logger = get_logger(__name__, category="registry")

# Failures that abort one broadcaster's onboarding until the next refresh.
# pydantic's ValidationError is a ValueError.
ONBOARDING_ERRORS = (
    httpx.HTTPError,
    TwitchApiError,
    PaginationError,
    SQLAlchemyError,
    ValueError,
)


@dataclass
class WatchedBroadcaster:
    broadcaster_id: int
    display_name: str
    # Archive video of the broadcast in progress
    live_video: Optional[TwitchVideo] = None
    is_watching: bool = False
    caught_up_broadcast_id: Optional[int] = None

    @property
    def current_broadcast_id(self) -> Optional[int]:
        if self.live_video is None:
            return None
        return self.live_video.broadcast_id


class BroadcasterRegistry:
    def __init__(
        self,
        store: VoteStore,
        gql: TwitchGqlClient,
        helix: HelixClient,
        catchup: CatchupReconciler,
        watcher_id: str,
        refresh_interval: Optional[timedelta] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            store: Persistence facade
            gql: Live status and archive lookups
            helix: Subscription creation
            catchup: Backfill for broadcasters found live
            watcher_id: User id of the account reading chat
            refresh_interval: How often the broadcaster list is re-read
            clock: Monotonic clock in seconds
        """
        self.store = store
        self.gql = gql
        self.helix = helix
        self.catchup = catchup
        self.watcher_id = watcher_id
        self.refresh_interval = refresh_interval or timedelta(
            minutes=settings.broadcaster_refresh_minutes
        )
        self._clock = clock

        self._broadcasters: Dict[int, WatchedBroadcaster] = {}
        self._last_refresh: Optional[float] = None
        self.session_id: Optional[str] = None

    # Read access

    def is_tracked(self, broadcaster_id: int) -> bool:
        return broadcaster_id in self._broadcasters

    def get(self, broadcaster_id: int) -> Optional[WatchedBroadcaster]:
        """Snapshot of a broadcaster's watch state."""
        watched = self._broadcasters.get(broadcaster_id)
        return replace(watched) if watched is not None else None

    def current_broadcast_id(self, broadcaster_id: int) -> Optional[int]:
        watched = self._broadcasters.get(broadcaster_id)
        return watched.current_broadcast_id if watched is not None else None

    def watched_ids(self) -> List[int]:
        return [
            broadcaster_id
            for broadcaster_id, watched in self._broadcasters.items()
            if watched.is_watching
        ]

    # Live state transitions

    def mark_live(self, broadcaster_id: int, video: TwitchVideo) -> None:
        """Record a broadcast that started while subscribed.

        Chat is delivered live from the start, so no catch-up is needed for it.
        """
        watched = self._broadcasters[broadcaster_id]
        watched.live_video = video
        watched.caught_up_broadcast_id = video.broadcast_id

    def mark_offline(self, broadcaster_id: int) -> Optional[int]:
        """Clear the live broadcast, returning its id if one was known."""
        watched = self._broadcasters[broadcaster_id]
        broadcast_id = watched.current_broadcast_id
        watched.live_video = None
        return broadcast_id

    # Refresh

    def should_refresh(self) -> bool:
        if self.session_id is None:
            return False
        if self._last_refresh is None:
            return True
        elapsed = self._clock() - self._last_refresh
        return elapsed > self.refresh_interval.total_seconds()

    async def on_session(self, session: EventSubSession) -> None:
        """Bind to a newly welcomed EventSub session and refresh.

        Subscriptions only survive a server-requested reconnect. After any
        other new session, broadcasters that were watched must be subscribed
        again, and their chat since the old session died is backfilled again.
        """
        self.session_id = session.id

        if not session.migrated:
            for watched in self._broadcasters.values():
                if watched.is_watching:
                    watched.is_watching = False
                    watched.caught_up_broadcast_id = None

        await self.refresh()

    async def prime(self) -> None:
        """Catch up broadcasters that are live before the socket connects."""
        for broadcaster in await self.store.list_broadcasters():
            watched = self._track(broadcaster)
            try:
                await self._sync_live_status(watched)
            except ONBOARDING_ERRORS as exc:
                logger.error(
                    "Startup catch-up failed for %s, retrying on onboarding: %s",
                    watched.display_name,
                    exc,
                )

    async def refresh(self) -> None:
        """Onboard every stored broadcaster that is not watched yet."""
        if self.session_id is None:
            logger.warning("Skipping broadcaster refresh, no EventSub session yet")
            return

        self._last_refresh = self._clock()
        broadcasters = await self.store.list_broadcasters()

        for broadcaster in broadcasters:
            watched = self._track(broadcaster)
            if watched.is_watching:
                continue

            try:
                await self._onboard(watched)
            except ONBOARDING_ERRORS as exc:
                logger.error(
                    "Onboarding %s failed, retrying on next refresh: %s",
                    watched.display_name,
                    exc,
                )

        logger.info(
            "Broadcaster refresh complete: %s tracked, %s watched",
            len(self._broadcasters),
            len(self.watched_ids()),
        )

    def _track(self, broadcaster: Broadcaster) -> WatchedBroadcaster:
        watched = self._broadcasters.get(broadcaster.id)
        if watched is None:
            watched = WatchedBroadcaster(
                broadcaster_id=broadcaster.id,
                display_name=broadcaster.display_name,
            )
            self._broadcasters[broadcaster.id] = watched
        return watched

    async def _onboard(self, watched: WatchedBroadcaster) -> None:
        logger.info("Subscription start: %s", watched.display_name)

        # Catch-up completes right before subscribing, so chat for this
        # broadcaster cannot be handled until its history is stored. A catch-up
        # done by prime() is repeated: chat posted since then is not delivered
        # live until the subscription exists.
        await self._sync_live_status(watched, repeat_catch_up=True)
        await self._subscribe(watched)
        watched.is_watching = True

        logger.info("Subscription complete: %s", watched.display_name)

    async def _sync_live_status(
        self, watched: WatchedBroadcaster, repeat_catch_up: bool = False
    ) -> None:
        user = await self.gql.get_stream_by_user(watched.display_name)
        if user.display_name:
            watched.display_name = user.display_name
        await self.store.upsert_broadcaster(
            watched.broadcaster_id, watched.display_name, user.profile_image_url
        )

        video = user.live_video
        if user.stream is not None and video is None:
            logger.warning(
                "%s is live without an archive video, votes cannot be attributed",
                watched.display_name,
            )

        await self._close_stale_broadcasts(watched, video)
        watched.live_video = video

        if video is None:
            return
        if repeat_catch_up or watched.caught_up_broadcast_id != video.broadcast_id:
            await self.catchup.catch_up(
                watched.broadcaster_id, video, display_name=watched.display_name
            )
            watched.caught_up_broadcast_id = video.broadcast_id

    async def _close_stale_broadcasts(
        self, watched: WatchedBroadcaster, live_video: Optional[TwitchVideo]
    ) -> None:
        """End broadcasts left open while nobody was subscribed.

        The end time is inferred from the archive video's declared length.
        """
        live_id = live_video.broadcast_id if live_video is not None else None

        for broadcast in await self.store.list_open_broadcasts(watched.broadcaster_id):
            if broadcast.id == live_id:
                continue

            video = await self.gql.get_video(str(broadcast.id))
            if video is None:
                logger.warning(
                    "Broadcast %s of %s is open but its video is gone, leaving it open",
                    broadcast.id,
                    watched.display_name,
                )
                continue

            await self.store.end_broadcast(
                watched.broadcaster_id,
                video.ended_at,
                broadcast_id=broadcast.id,
                only_if_open=True,
            )
            logger.info(
                "Closed stale broadcast %s of %s at %s",
                broadcast.id,
                watched.display_name,
                video.ended_at,
            )

    async def _subscribe(self, watched: WatchedBroadcaster) -> None:
        broadcaster_id = str(watched.broadcaster_id)
        subscriptions = {
            "stream.online": {"broadcaster_user_id": broadcaster_id},
            "stream.offline": {"broadcaster_user_id": broadcaster_id},
            "channel.chat.message": {
                "broadcaster_user_id": broadcaster_id,
                "user_id": self.watcher_id,
            },
        }

        for event_type, condition in subscriptions.items():
            await self.helix.subscribe(event_type, condition, self.session_id)
