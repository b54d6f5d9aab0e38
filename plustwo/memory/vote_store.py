"""
Vote Store

Persistence facade for the archiver. Every write is idempotent and keyed by
stable platform identifiers: broadcasters and chatters are upserted, messages
are inserted with "skip on duplicate" semantics so the same chat message can
arrive through both the comment archive and the live feed and still be stored
once.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plustwo.config import settings
from plustwo.database.connection import SessionLocal
from plustwo.database.models import (
    Broadcast,
    Broadcaster,
    Chatter,
    Message,
    MessageKind,
)
from plustwo.utils.logging import get_logger

logger = get_logger(__name__, category="database")

T = TypeVar("T")


@dataclass(frozen=True)
class ChatterRecord:
    id: int
    display_name: str


@dataclass(frozen=True)
class MessageRecord:
    id: uuid.UUID
    broadcast_id: int
    chatter_id: int
    sent_at: datetime
    message_kind: MessageKind


def _chunks(rows: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


class VoteStore:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        chunk_size: Optional[int] = None,
    ) -> None:
        """Initialize VoteStore.

        Args:
            session_factory: Database session factory (defaults to SessionLocal)
            chunk_size: Rows per bulk INSERT statement (defaults to settings)
        """
        self.session_factory: async_sessionmaker[AsyncSession] = (
            session_factory or SessionLocal
        )
        self.chunk_size = chunk_size or settings.db_insert_chunk_size

    # Broadcasters

    async def upsert_broadcaster(
        self,
        broadcaster_id: int,
        display_name: str,
        profile_image_url: Optional[str] = None,
    ) -> None:
        """Insert a broadcaster, refreshing display name and avatar if it exists."""
        stmt = insert(Broadcaster).values(
            id=broadcaster_id,
            display_name=display_name,
            profile_image_url=profile_image_url,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Broadcaster.id],
            set_={
                "display_name": stmt.excluded.display_name,
                "profile_image_url": stmt.excluded.profile_image_url,
            },
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def list_broadcasters(self) -> List[Broadcaster]:
        async with self.session_factory() as session:
            result = await session.execute(select(Broadcaster).order_by(Broadcaster.id))
            return list(result.scalars().all())

    # Chatters

    async def upsert_chatter(self, chatter_id: int, display_name: str) -> None:
        await self.bulk_upsert_chatters([ChatterRecord(chatter_id, display_name)])

    async def bulk_upsert_chatters(self, chatters: Iterable[ChatterRecord]) -> int:
        """Upsert chatters, updating display names of existing rows.

        Duplicate ids within one call collapse to the last record, since
        PostgreSQL rejects a single ON CONFLICT DO UPDATE touching a row twice.

        Returns:
            Number of distinct chatters written
        """
        by_id = {chatter.id: chatter for chatter in chatters}
        rows = [asdict(chatter) for chatter in by_id.values()]
        if not rows:
            return 0

        async with self.session_factory() as session:
            for chunk in _chunks(rows, self.chunk_size):
                stmt = insert(Chatter).values(list(chunk))
                stmt = stmt.on_conflict_do_update(
                    index_elements=[Chatter.id],
                    set_={"display_name": stmt.excluded.display_name},
                )
                await session.execute(stmt)
            await session.commit()
        return len(rows)

    # Broadcasts

    async def start_broadcast(
        self,
        broadcast_id: int,
        broadcaster_id: int,
        title: str,
        started_at: datetime,
        replace_start: bool = True,
    ) -> None:
        """Open a broadcast.

        Args:
            replace_start: Move the start time of an existing broadcast. When
                False an existing row is left untouched, so an inferred start
                never replaces the one reported by stream.online.
        """
        stmt = insert(Broadcast).values(
            id=broadcast_id,
            broadcaster_id=broadcaster_id,
            title=title,
            started_at=started_at,
        )
        if replace_start:
            stmt = stmt.on_conflict_do_update(
                index_elements=[Broadcast.id],
                set_={"started_at": stmt.excluded.started_at},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=[Broadcast.id])
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def end_broadcast(
        self,
        broadcaster_id: int,
        ended_at: datetime,
        broadcast_id: Optional[int] = None,
        only_if_open: bool = False,
    ) -> Optional[int]:
        """
        Close a broadcast.

        Args:
            broadcaster_id: Owner of the broadcast
            ended_at: End timestamp to record
            broadcast_id: Broadcast to close. When None, the most recently
                started broadcast of this broadcaster that is still open is used.
            only_if_open: Keep the end time of a broadcast that is already
                closed. Used for end times inferred from the video length.

        Returns:
            Id of the closed broadcast, or None if nothing matched
        """
        async with self.session_factory() as session:
            if broadcast_id is not None:
                broadcast = await session.get(Broadcast, broadcast_id)
            else:
                result = await session.execute(
                    select(Broadcast)
                    .where(
                        Broadcast.broadcaster_id == broadcaster_id,
                        Broadcast.ended_at.is_(None),
                    )
                    .order_by(Broadcast.started_at.desc())
                    .limit(1)
                )
                broadcast = result.scalar_one_or_none()

            if broadcast is None:
                logger.warning(
                    "No broadcast to end for broadcaster %s (broadcast_id=%s)",
                    broadcaster_id,
                    broadcast_id,
                )
                return None

            if only_if_open and broadcast.ended_at is not None:
                logger.debug(
                    "Broadcast %s already ended at %s, keeping it",
                    broadcast.id,
                    broadcast.ended_at,
                )
                return None

            broadcast.ended_at = ended_at
            await session.commit()
            return broadcast.id

    async def get_broadcast(self, broadcast_id: int) -> Optional[Broadcast]:
        async with self.session_factory() as session:
            return await session.get(Broadcast, broadcast_id)

    async def list_open_broadcasts(self, broadcaster_id: int) -> List[Broadcast]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Broadcast)
                .where(
                    Broadcast.broadcaster_id == broadcaster_id,
                    Broadcast.ended_at.is_(None),
                )
                .order_by(Broadcast.started_at.desc())
            )
            return list(result.scalars().all())

    # Messages

    async def insert_message(self, message: MessageRecord) -> bool:
        """Insert one message, skipping it if its id is already stored.

        Returns:
            True if a new row was written
        """
        return await self.bulk_insert_messages([message]) == 1

    async def bulk_insert_messages(self, messages: Sequence[MessageRecord]) -> int:
        """Insert messages, skipping ids that are already stored.

        Returns:
            Number of rows actually inserted
        """
        rows = [asdict(message) for message in messages]
        if not rows:
            return 0

        inserted = 0
        async with self.session_factory() as session:
            for chunk in _chunks(rows, self.chunk_size):
                stmt = (
                    insert(Message)
                    .values(list(chunk))
                    .on_conflict_do_nothing(index_elements=[Message.id])
                    .returning(Message.id)
                )
                result = await session.execute(stmt)
                inserted += len(result.scalars().all())
            await session.commit()

        logger.debug(
            "Inserted %s of %s messages (%s duplicates skipped)",
            inserted,
            len(rows),
            len(rows) - inserted,
        )
        return inserted

    async def count_messages(self, broadcast_id: Optional[int] = None) -> int:
        stmt = select(func.count()).select_from(Message)
        if broadcast_id is not None:
            stmt = stmt.where(Message.broadcast_id == broadcast_id)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())
