"""Tests for the historical archiver."""
import pytest

from plustwo.ingest.archiver import Archiver
from plustwo.utils.twitch_gql import TwitchGqlError
from tests.fakes import FakeGql, FakeStore, comment_node, paged, ts, video_node


@pytest.mark.unit
class TestArchiver:
    async def test_archives_completed_videos(self):
        store, gql = FakeStore(), FakeGql()
        gql.add_user("42", "streamer")
        gql.video_pages["streamer"] = paged(
            [
                video_node("300", seconds=20000, length=600),
                video_node("200", seconds=10000, length=1200),
                video_node("100", seconds=0, length=3600),
            ],
            page_size=2,
            total=3,
        )
        gql.comment_pages["300"] = paged([comment_node("+2", "1"), comment_node("lol", "2")], 5)
        gql.comment_pages["100"] = paged([comment_node("-2", "3"), comment_node("x -2", "4")], 1)

        summary = await Archiver(store, gql).archive("streamer")

        assert summary.videos == 3
        assert summary.messages == 3
        assert summary.skipped_live_video is None
        assert store.broadcasters[42].display_name == "Streamer"
        assert store.broadcasts[100].started_at == ts(0)
        assert store.broadcasts[100].ended_at == ts(3600)
        assert store.broadcasts[200].ended_at == ts(11200)
        assert await store.count_messages(100) == 2
        assert await store.count_messages(300) == 1

    async def test_live_video_skipped(self):
        store, gql = FakeStore(), FakeGql()
        gql.add_user("42", "streamer", video_node("300", seconds=20000))
        gql.video_pages["streamer"] = paged(
            [video_node("300", seconds=20000), video_node("200", seconds=10000)], 5
        )

        summary = await Archiver(store, gql).archive("streamer")

        assert summary.videos == 1
        assert summary.skipped_live_video == "300"
        assert 300 not in store.broadcasts
        assert store.broadcasts[200].ended_at is not None

    async def test_rerun_stores_nothing_new(self):
        store, gql = FakeStore(), FakeGql()
        gql.add_user("42", "streamer")
        gql.video_pages["streamer"] = paged([video_node("100")], 5)
        gql.comment_pages["100"] = paged([comment_node("+2")], 5)
        archiver = Archiver(store, gql)

        await archiver.archive("streamer")
        summary = await archiver.archive("streamer")

        assert summary.messages == 0
        assert await store.count_messages() == 1

    async def test_unknown_user(self):
        with pytest.raises(TwitchGqlError):
            await Archiver(FakeStore(), FakeGql()).archive("nobody")

    async def test_times_reported_live_are_kept(self):
        store, gql = FakeStore(), FakeGql()
        gql.add_user("42", "streamer")
        gql.video_pages["streamer"] = paged([video_node("100", seconds=0, length=3600)], 5)
        # Recorded by stream.online and stream.offline while watching
        await store.upsert_broadcaster(42, "streamer")
        await store.start_broadcast(100, 42, "Stream", ts(5))
        await store.end_broadcast(42, ts(3550), broadcast_id=100)

        await Archiver(store, gql).archive("streamer")

        assert store.broadcasts[100].started_at == ts(5)
        assert store.broadcasts[100].ended_at == ts(3550)
