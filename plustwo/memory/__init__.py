"""
Storage layer: idempotent persistence of broadcasters, broadcasts, chatters and votes
"""

from .vote_store import ChatterRecord, MessageRecord, VoteStore

__all__ = ["ChatterRecord", "MessageRecord", "VoteStore"]
