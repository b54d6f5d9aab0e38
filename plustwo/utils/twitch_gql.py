"""
Twitch GQL client

Read-only access to the resources used for backfill: the live-status lookup,
a user's archive videos and a video's comments. Transient HTTP failures are
retried per request; pagination itself never retries.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import httpx

from plustwo.config import settings
from plustwo.schemas.gql import Comment, Connection, TwitchVideo, UserAndStream
from plustwo.utils.logging import get_logger
from plustwo.utils.twitch_api import TwitchApiError

logger = get_logger(__name__, category="twitch_api")

RETRYABLE_STATUS = {429, 500, 502, 503, 504}

USER_AND_STREAM_QUERY = """
query UserAndStream($login: String!) {
    user(login: $login) {
        id
        login
        displayName
        profileImageURL(width: 300)
        broadcastSettings {
            title
        }
        stream {
            id
            archiveVideo {
                id
                title
                createdAt
                lengthSeconds
            }
        }
    }
}
"""

VIDEOS_BY_USER_QUERY = """
query VideosByUser($login: String!, $cursor: Cursor) {
    user(login: $login) {
        videos(type: ARCHIVE, after: $cursor) {
            pageInfo {
                hasNextPage
            }
            totalCount
            edges {
                cursor
                node {
                    id
                    title
                    createdAt
                    lengthSeconds
                }
            }
        }
    }
}
"""

COMMENTS_BY_VIDEO_QUERY = """
query CommentsByVideo($videoId: ID!, $cursor: Cursor) {
    video(id: $videoId) {
        comments(after: $cursor) {
            pageInfo {
                hasNextPage
            }
            edges {
                cursor
                node {
                    id
                    createdAt
                    commenter {
                        id
                        displayName
                    }
                    message {
                        fragments {
                            text
                        }
                    }
                }
            }
        }
    }
}
"""

VIDEO_QUERY = """
query Video($videoId: ID!) {
    video(id: $videoId) {
        id
        title
        createdAt
        lengthSeconds
    }
}
"""


class TwitchGqlError(TwitchApiError):
    """GQL returned errors or an unexpected shape."""


class TwitchGqlClient:
    def __init__(
        self,
        client_id: Optional[str] = None,
        url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: Optional[int] = None,
        retry_backoff: float = 0.5,
    ):
        self.client_id = client_id or settings.twitch_gql_client_id
        self.url = url or settings.twitch_gql_url
        self.max_attempts = max_attempts or settings.http_max_attempts
        self.retry_backoff = retry_backoff
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_seconds, connect=10.0)
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()

    async def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        backoff = self.retry_backoff
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.http_client.post(
                    self.url,
                    json={"query": query, "variables": variables},
                    headers={"Client-ID": self.client_id},
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status not in RETRYABLE_STATUS or attempt == self.max_attempts:
                    raise
                logger.warning(
                    "GQL request failed with %s (attempt %s/%s), retrying",
                    status,
                    attempt,
                    self.max_attempts,
                )
            except httpx.TransportError as exc:
                if attempt == self.max_attempts:
                    raise
                logger.warning(
                    "Transient GQL error (attempt %s/%s): %s",
                    attempt,
                    self.max_attempts,
                    exc,
                )
            else:
                body = response.json()
                if body.get("errors"):
                    raise TwitchGqlError(f"GQL query failed: {body['errors']}")
                data = body.get("data")
                if data is None:
                    raise TwitchGqlError("GQL response has no data")
                return data

            await asyncio.sleep(backoff)
            backoff *= 2

        # Only reached when max_attempts < 1
        raise TwitchGqlError("GQL request was not attempted")

    async def get_stream_by_user(self, login: str) -> UserAndStream:
        """Look up a user's identity, avatar and in-progress broadcast."""
        data = await self._query(USER_AND_STREAM_QUERY, {"login": login.lower()})
        user = data.get("user")
        if user is None:
            raise TwitchGqlError(f"Twitch user not found: {login}")
        return UserAndStream.model_validate(user)

    async def get_videos_by_user_and_cursor(
        self, login: str, cursor: Optional[str] = None
    ) -> Connection[TwitchVideo]:
        data = await self._query(
            VIDEOS_BY_USER_QUERY, {"login": login.lower(), "cursor": cursor}
        )
        user = data.get("user")
        if user is None:
            raise TwitchGqlError(f"Twitch user not found: {login}")
        return Connection[TwitchVideo].model_validate(user["videos"])

    async def get_comments_by_video_and_cursor(
        self, video_id: str, cursor: Optional[str] = None
    ) -> Connection[Comment]:
        data = await self._query(
            COMMENTS_BY_VIDEO_QUERY, {"videoId": video_id, "cursor": cursor}
        )
        video = data.get("video")
        if video is None:
            raise TwitchGqlError(f"Video not found: {video_id}")
        return Connection[Comment].model_validate(video["comments"])

    async def get_video(self, video_id: str) -> Optional[TwitchVideo]:
        data = await self._query(VIDEO_QUERY, {"videoId": video_id})
        video = data.get("video")
        if video is None:
            return None
        return TwitchVideo.model_validate(video)
