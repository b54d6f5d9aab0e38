"""
plustwo entry points

plustwo-watcher tails EventSub for every stored broadcaster and backfills
broadcasts already in progress. plustwo-archiver backfills the completed
broadcasts of TWITCH_BROADCASTER. Both are configured through the environment
(see plustwo.config).
"""

import asyncio
import sys

from plustwo.config import settings
from plustwo.database.connection import engine, init_models
from plustwo.ingest.archiver import Archiver
from plustwo.ingest.errors import EventSubError
from plustwo.ingest.watcher import Watcher
from plustwo.memory.vote_store import VoteStore
from plustwo.utils.logging import configure_logging, get_logger
from plustwo.utils.twitch_api import HelixClient
from plustwo.utils.twitch_gql import TwitchGqlClient

logger = get_logger(__name__, category="system")


async def resolve_watcher_id(gql: TwitchGqlClient, helix: HelixClient) -> str:
    """User id that reads chat: TWITCH_USER if set, else the token owner."""
    if settings.twitch_user:
        return (await gql.get_stream_by_user(settings.twitch_user)).id
    return (await helix.validate_token())["user_id"]


async def run_watcher() -> None:
    await init_models()

    gql = TwitchGqlClient()
    helix = HelixClient()
    try:
        watcher_id = await resolve_watcher_id(gql, helix)
        watcher = Watcher(VoteStore(), gql, helix, watcher_id)
        await watcher.run()
    finally:
        await gql.aclose()
        await helix.aclose()
        await engine.dispose()


async def run_archiver(login: str) -> None:
    await init_models()

    gql = TwitchGqlClient()
    try:
        summary = await Archiver(VoteStore(), gql).archive(login)
        logger.info(
            "Archive complete: %s videos, %s new messages",
            summary.videos,
            summary.messages,
        )
    finally:
        await gql.aclose()
        await engine.dispose()


def watch() -> None:
    configure_logging()
    try:
        asyncio.run(run_watcher())
    except EventSubError as exc:
        logger.critical("Watcher terminated: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Watcher stopped")


def archive() -> None:
    configure_logging()
    if not settings.twitch_broadcaster:
        logger.error("TWITCH_BROADCASTER is required")
        sys.exit(2)
    asyncio.run(run_archiver(settings.twitch_broadcaster))


if __name__ == "__main__":
    watch()
