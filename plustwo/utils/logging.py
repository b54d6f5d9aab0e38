"""
Category-aware logging for plustwo

Every module logs through get_logger(__name__, category=...). Setting
LOG_CATEGORIES (comma separated) silences all categories not listed; LOG_LEVEL
sets the level of every plustwo logger.

Categories:
    eventsub    websocket session, frames and stream notifications
    registry    broadcaster onboarding and subscriptions
    catchup     backfill of broadcasts already in progress
    chat        individual votes seen live
    archiver    historical backfill of completed broadcasts
    twitch_api  Helix and GQL requests
    database    vote store writes
    system      process lifecycle (default)
"""

import logging
from typing import FrozenSet, Optional

from plustwo.config import settings

LOG_CATEGORIES = (
    "eventsub",
    "registry",
    "catchup",
    "chat",
    "archiver",
    "twitch_api",
    "database",
    "system",
)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def parse_level(value: str) -> int:
    name = value.strip().upper()
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def parse_categories(value: Optional[str]) -> Optional[FrozenSet[str]]:
    """Allowed categories, or None when every category is shown."""
    if not value:
        return None
    categories = frozenset(
        part.strip().lower() for part in value.split(",") if part.strip()
    )
    return categories or None


_allowed_categories = parse_categories(settings.log_categories)


class CategoryFilter(logging.Filter):
    """Drops records whose logger category is not in LOG_CATEGORIES."""

    def __init__(self, category: Optional[str] = None):
        super().__init__()
        self.category = category.lower() if category else "system"

    def filter(self, record: logging.LogRecord) -> bool:
        return _allowed_categories is None or self.category in _allowed_categories


def configure_logging() -> None:
    """Install the root handler. Called once by the command line entry points."""
    logging.basicConfig(level=parse_level(settings.log_level), format=LOG_FORMAT)


def get_logger(name: str, category: Optional[str] = None) -> logging.Logger:
    """
    Get a logger tagged with a category.

    Args:
        name: Logger name (typically __name__)
        category: One of LOG_CATEGORIES, 'system' if omitted

    Returns:
        Logger with the configured level and exactly one category filter
    """
    logger = logging.getLogger(name)
    logger.setLevel(parse_level(settings.log_level))

    for existing in [f for f in logger.filters if isinstance(f, CategoryFilter)]:
        logger.removeFilter(existing)
    logger.addFilter(CategoryFilter(category))

    return logger
