"""
Vote classifier

A chat message counts as a vote when its first fragment starts with the token
or its last fragment ends with it. +2 is checked before -2, so a message that
matches both is a +2.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional, Sequence

from plustwo.database.models import MessageKind

PLUS_TWO_TOKEN = "+2"
MINUS_TWO_TOKEN = "-2"


def _fragment_text(fragment: Any) -> str:
    if isinstance(fragment, str):
        return fragment
    if isinstance(fragment, Mapping):
        text = fragment.get("text")
    else:
        text = getattr(fragment, "text", None)
    return text if isinstance(text, str) else ""


def classify_fragments(fragments: Sequence[Any]) -> Optional[MessageKind]:
    """
    Classify a message by its fragments.

    Args:
        fragments: Ordered message fragments. Each may be a string, a mapping
            with a "text" key, or an object with a text attribute. Fragments
            without text (emotes, mentions with no text) count as empty.

    Returns:
        MessageKind.PLUS_TWO, MessageKind.MINUS_TWO, or None when the message
        is not a vote
    """
    if not fragments:
        return None

    first = _fragment_text(fragments[0])
    last = _fragment_text(fragments[-1])

    if first.startswith(PLUS_TWO_TOKEN) or last.endswith(PLUS_TWO_TOKEN):
        return MessageKind.PLUS_TWO
    if first.startswith(MINUS_TWO_TOKEN) or last.endswith(MINUS_TWO_TOKEN):
        return MessageKind.MINUS_TWO
    return None


def classify_text(text: str) -> Optional[MessageKind]:
    """Classify a message given as a single string."""
    return classify_fragments([text])
