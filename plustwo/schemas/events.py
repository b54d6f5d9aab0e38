"""
EventSub WebSocket Event Schemas

Pydantic models for the frames received on the Twitch EventSub WebSocket and
for the notification payloads the watcher handles.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from plustwo.schemas.common import TwitchTimestamp


class FrameDecodeError(ValueError):
    """Raised when a websocket message is not a well-formed EventSub frame."""


# Frame envelope


class FrameMetadata(BaseModel):
    message_id: str
    message_type: str
    message_timestamp: TwitchTimestamp
    subscription_type: Optional[str] = None
    subscription_version: Optional[str] = None


class SessionInfo(BaseModel):
    """Session object carried by session_welcome and session_reconnect."""

    id: str
    status: Optional[str] = None
    keepalive_timeout_seconds: Optional[int] = None
    reconnect_url: Optional[str] = None
    connected_at: Optional[TwitchTimestamp] = None


class SubscriptionInfo(BaseModel):
    id: str
    type: str
    version: Optional[str] = None
    status: Optional[str] = None
    condition: Dict[str, Any] = Field(default_factory=dict)


class WelcomeFrame(BaseModel):
    metadata: FrameMetadata
    session: SessionInfo


class KeepaliveFrame(BaseModel):
    metadata: FrameMetadata


class ReconnectFrame(BaseModel):
    metadata: FrameMetadata
    session: SessionInfo


class RevocationFrame(BaseModel):
    metadata: FrameMetadata
    subscription: SubscriptionInfo


class NotificationFrame(BaseModel):
    metadata: FrameMetadata
    subscription: SubscriptionInfo
    event: Dict[str, Any] = Field(default_factory=dict)

    @property
    def event_type(self) -> str:
        return self.metadata.subscription_type or self.subscription.type

    @property
    def message_timestamp(self) -> datetime:
        return self.metadata.message_timestamp


class UnknownFrame(BaseModel):
    metadata: FrameMetadata
    payload: Dict[str, Any] = Field(default_factory=dict)


Frame = Union[
    WelcomeFrame,
    KeepaliveFrame,
    ReconnectFrame,
    RevocationFrame,
    NotificationFrame,
    UnknownFrame,
]


def parse_frame(raw: Union[str, bytes]) -> Frame:
    """
    Decode one EventSub websocket message.

    Args:
        raw: Text of the websocket message

    Returns:
        The typed frame. Message types this client does not know are returned
        as UnknownFrame rather than rejected.

    Raises:
        FrameDecodeError: If the message is not JSON or lacks required fields
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise FrameDecodeError(f"EventSub message is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise FrameDecodeError("EventSub message is not a JSON object")

    payload = data.get("payload") or {}

    try:
        metadata = FrameMetadata.model_validate(data.get("metadata"))
        message_type = metadata.message_type

        if message_type == "session_welcome":
            return WelcomeFrame(metadata=metadata, session=payload.get("session"))
        if message_type == "session_keepalive":
            return KeepaliveFrame(metadata=metadata)
        if message_type == "session_reconnect":
            return ReconnectFrame(metadata=metadata, session=payload.get("session"))
        if message_type == "revocation":
            return RevocationFrame(
                metadata=metadata, subscription=payload.get("subscription")
            )
        if message_type == "notification":
            return NotificationFrame(
                metadata=metadata,
                subscription=payload.get("subscription"),
                event=payload.get("event") or {},
            )
        return UnknownFrame(metadata=metadata, payload=payload)
    except ValidationError as exc:
        raise FrameDecodeError(f"Malformed EventSub message: {exc}") from exc


# Notification payloads


class StreamOnlineEvent(BaseModel):
    """Event when a stream goes live."""

    broadcaster_user_id: str
    broadcaster_user_login: str
    broadcaster_user_name: str
    type: str = Field(default="live")
    started_at: TwitchTimestamp


class StreamOfflineEvent(BaseModel):
    """Event when a stream ends."""

    broadcaster_user_id: str
    broadcaster_user_login: str
    broadcaster_user_name: str


class ChatMessageFragment(BaseModel):
    type: str = "text"
    text: Optional[str] = None


class ChatMessageBody(BaseModel):
    text: str = ""
    fragments: List[ChatMessageFragment] = Field(default_factory=list)


class ChannelChatMessageEvent(BaseModel):
    """Event for every message sent in a broadcaster's chat."""

    broadcaster_user_id: str
    broadcaster_user_login: str
    broadcaster_user_name: str
    chatter_user_id: str
    chatter_user_login: str
    chatter_user_name: str
    message_id: uuid.UUID
    message: ChatMessageBody


class EventSubSession(BaseModel):
    """EventSub WebSocket session currently bound to the watcher."""

    id: str = Field(description="Session ID from session_welcome")
    endpoint: str = Field(description="Socket URL the session was welcomed on")
    keepalive_timeout_seconds: Optional[int] = None
    migrated: bool = Field(
        default=False,
        description="True when reached through session_reconnect, so subscriptions carried over",
    )
    created_at: datetime
