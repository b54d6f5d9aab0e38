"""
Twitch GQL Schemas

Pydantic models for the GQL resources used for backfill: archive videos,
video comments and the live-status lookup. Both paginated resources share the
same connection/edge/pageInfo envelope.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from plustwo.schemas.common import TwitchTimestamp
from plustwo.utils.pagination import Page

T = TypeVar("T")


class GqlModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TwitchVideo(GqlModel):
    id: str
    title: Optional[str] = None
    created_at: TwitchTimestamp = Field(alias="createdAt")
    length_seconds: int = Field(default=0, alias="lengthSeconds")

    @property
    def broadcast_id(self) -> int:
        return int(self.id)

    @property
    def ended_at(self) -> datetime:
        """End time inferred from the declared video length."""
        return self.created_at + timedelta(seconds=self.length_seconds)


class Commenter(GqlModel):
    id: str
    display_name: str = Field(alias="displayName")


class CommentFragment(GqlModel):
    text: Optional[str] = None


class CommentMessage(GqlModel):
    fragments: List[CommentFragment] = Field(default_factory=list)


class Comment(GqlModel):
    id: uuid.UUID
    created_at: TwitchTimestamp = Field(alias="createdAt")
    # Missing for deleted or banned accounts
    commenter: Optional[Commenter] = None
    message: CommentMessage = Field(default_factory=CommentMessage)


class PageInfo(GqlModel):
    has_next_page: bool = Field(alias="hasNextPage")


class Edge(GqlModel, Generic[T]):
    cursor: Optional[str] = None
    node: T


class Connection(GqlModel, Generic[T]):
    edges: List[Edge[T]] = Field(default_factory=list)
    page_info: PageInfo = Field(alias="pageInfo")
    total_count: Optional[int] = Field(default=None, alias="totalCount")

    def page(self) -> Page[T]:
        return Page(
            items=[edge.node for edge in self.edges],
            next_cursor=self.edges[-1].cursor if self.edges else None,
            has_more=self.page_info.has_next_page,
            total_count=self.total_count,
        )


class BroadcastSettings(GqlModel):
    title: Optional[str] = None


class LiveStream(GqlModel):
    id: str
    # Missing when the broadcaster has archiving disabled
    archive_video: Optional[TwitchVideo] = Field(default=None, alias="archiveVideo")


class UserAndStream(GqlModel):
    id: str
    login: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")
    profile_image_url: Optional[str] = Field(default=None, alias="profileImageURL")
    broadcast_settings: Optional[BroadcastSettings] = Field(
        default=None, alias="broadcastSettings"
    )
    stream: Optional[LiveStream] = None

    @property
    def broadcaster_id(self) -> int:
        return int(self.id)

    @property
    def live_video(self) -> Optional[TwitchVideo]:
        """Archive video of the in-progress broadcast, if live and archived."""
        if self.stream is None:
            return None
        return self.stream.archive_video
