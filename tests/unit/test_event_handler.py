"""Tests for stream and chat notification handling."""
import uuid
from datetime import datetime, timezone

import pytest

from plustwo.database.models import MessageKind
from plustwo.ingest.catchup import CatchupReconciler
from plustwo.ingest.errors import StreamLookupError
from plustwo.ingest.event_handler import EventHandler
from plustwo.ingest.registry import BroadcasterRegistry
from plustwo.schemas.events import EventSubSession
from tests.fakes import (
    FakeGql,
    FakeHelix,
    FakeStore,
    broadcaster_fields,
    chat_event,
    iso,
    ts,
    video_node,
)


async def build(close_mode="explicit", live_video=None):
    store, gql, helix = FakeStore(), FakeGql(), FakeHelix()
    await store.upsert_broadcaster(42, "streamer")
    gql.add_user("42", "streamer", live_video)
    registry = BroadcasterRegistry(
        store, gql, helix, CatchupReconciler(store, gql), watcher_id="777"
    )
    await registry.on_session(
        EventSubSession(
            id="s1",
            endpoint="wss://eventsub.test/ws",
            created_at=datetime.now(timezone.utc),
        )
    )
    handler = EventHandler(registry, store, gql, close_mode=close_mode)
    return handler, registry, store, gql


def online_event(seconds=100):
    return {**broadcaster_fields(), "type": "live", "started_at": iso(ts(seconds))}


@pytest.mark.unit
class TestStreamOnline:
    async def test_opens_broadcast_and_marks_live(self):
        handler, registry, store, gql = await build()
        gql.add_user("42", "streamer", video_node("9001", seconds=95))

        await handler.handle_stream_online(online_event(100), ts(101))

        assert store.broadcasts[9001].started_at == ts(100)
        assert store.broadcasts[9001].ended_at is None
        assert registry.current_broadcast_id(42) == 9001

    async def test_missing_archive_video_is_fatal(self):
        handler, registry, store, gql = await build()
        gql.add_user("42", "streamer", live=True)

        with pytest.raises(StreamLookupError):
            await handler.handle_stream_online(online_event(), ts(101))
        assert store.broadcasts == {}

    async def test_untracked_broadcaster_ignored(self):
        handler, registry, store, gql = await build()
        event = {**online_event(), **broadcaster_fields("99", "stranger")}

        await handler.handle_stream_online(event, ts(101))

        assert store.broadcasts == {}
        assert ("user", "stranger") not in gql.calls


@pytest.mark.unit
class TestStreamOffline:
    async def test_explicit_mode_closes_known_broadcast(self):
        handler, registry, store, gql = await build(live_video=video_node("9001"))
        # A later open broadcast the registry does not consider live
        await store.start_broadcast(9500, 42, "other", ts(500))

        await handler.handle_stream_offline(broadcaster_fields(), ts(3600))

        assert store.broadcasts[9001].ended_at == ts(3600)
        assert store.broadcasts[9500].ended_at is None
        assert registry.current_broadcast_id(42) is None

    async def test_explicit_mode_falls_back_to_latest_open(self):
        handler, registry, store, gql = await build()
        await store.start_broadcast(9001, 42, "stream", ts(0))

        await handler.handle_stream_offline(broadcaster_fields(), ts(3600))

        assert store.broadcasts[9001].ended_at == ts(3600)

    async def test_latest_open_mode(self):
        handler, registry, store, gql = await build(
            close_mode="latest_open", live_video=video_node("9001")
        )
        await store.start_broadcast(9500, 42, "other", ts(500))

        await handler.handle_stream_offline(broadcaster_fields(), ts(3600))

        assert store.broadcasts[9500].ended_at == ts(3600)
        assert store.broadcasts[9001].ended_at is None

    async def test_nothing_open(self):
        handler, registry, store, gql = await build()

        await handler.handle_stream_offline(broadcaster_fields(), ts(3600))

        assert store.broadcasts == {}

    async def test_unknown_close_mode(self):
        handler, registry, store, gql = await build()

        with pytest.raises(ValueError):
            EventHandler(registry, store, gql, close_mode="newest")


@pytest.mark.unit
class TestChatMessage:
    async def test_vote_stored_at_notification_time(self):
        handler, registry, store, gql = await build(live_video=video_node("9001"))
        message_id = uuid.uuid4()

        await handler.handle_chat_message(
            chat_event("+2 great", chatter_id="55", message_id=message_id), ts(200)
        )

        stored = store.messages[message_id]
        assert stored.broadcast_id == 9001
        assert stored.chatter_id == 55
        assert stored.sent_at == ts(200)
        assert stored.message_kind == MessageKind.PLUS_TWO
        assert store.chatters[55] == "Viewer55"

    async def test_non_vote_ignored(self):
        handler, registry, store, gql = await build(live_video=video_node("9001"))

        await handler.handle_chat_message(chat_event("hello chat"), ts(200))

        assert store.messages == {}
        assert store.chatters == {}

    async def test_offline_chat_ignored(self):
        handler, registry, store, gql = await build()

        await handler.handle_chat_message(chat_event("+2"), ts(200))

        assert store.messages == {}

    async def test_untracked_broadcaster_ignored(self):
        handler, registry, store, gql = await build(live_video=video_node("9001"))

        await handler.handle_chat_message(chat_event("+2", broadcaster_id="99"), ts(200))

        assert store.messages == {}

    async def test_fragments_used_for_classification(self):
        handler, registry, store, gql = await build(live_video=video_node("9001"))
        fragments = [
            {"type": "text", "text": "that was "},
            {"type": "emote", "text": "Kappa"},
            {"type": "text", "text": " -2"},
        ]

        await handler.handle_chat_message(
            chat_event("that was Kappa -2", fragments=fragments), ts(200)
        )

        assert [m.message_kind for m in store.messages.values()] == [MessageKind.MINUS_TWO]

    async def test_text_used_without_fragments(self):
        handler, registry, store, gql = await build(live_video=video_node("9001"))

        await handler.handle_chat_message(chat_event("-2", fragments=[]), ts(200))

        assert [m.message_kind for m in store.messages.values()] == [MessageKind.MINUS_TWO]

    async def test_duplicate_delivery_stored_once(self):
        handler, registry, store, gql = await build(live_video=video_node("9001"))
        event = chat_event("+2")

        await handler.handle_chat_message(event, ts(200))
        await handler.handle_chat_message(event, ts(201))

        assert await store.count_messages(9001) == 1
