"""
Ingest layer: EventSub session, broadcaster registry, catch-up and archiving
"""

from .archiver import Archiver
from .catchup import CatchupReconciler
from .registry import BroadcasterRegistry
from .twitch import EventSubClient
from .watcher import Watcher

__all__ = [
    "Archiver",
    "CatchupReconciler",
    "BroadcasterRegistry",
    "EventSubClient",
    "Watcher",
]
