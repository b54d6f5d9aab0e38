from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import TIMESTAMP


class Base(DeclarativeBase):
    pass


class MessageKind(str, enum.Enum):
    PLUS_TWO = "plus_two"
    MINUS_TWO = "minus_two"


class Broadcaster(Base):
    __tablename__ = "broadcasters"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    profile_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Broadcast(Base):
    __tablename__ = "broadcasts"

    # Archive video id of the broadcast
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    broadcaster_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("broadcasters.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_broadcasts_broadcaster_ended", "broadcaster_id", "ended_at"),
    )


class Chatter(Base):
    __tablename__ = "chatters"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)


class Message(Base):
    __tablename__ = "messages"

    # GQL comment id for backfilled messages, EventSub message_id for live ones
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True)
    broadcast_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("broadcasts.id"), nullable=False
    )
    chatter_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chatters.id"), nullable=False
    )
    sent_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    message_kind: Mapped[MessageKind] = mapped_column(
        Enum(
            MessageKind,
            name="message_kind",
            values_callable=lambda kinds: [kind.value for kind in kinds],
        ),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_messages_broadcast_sent", "broadcast_id", "sent_at"),
        Index("idx_messages_chatter", "chatter_id"),
    )
