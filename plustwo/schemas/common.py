"""Field types shared by the EventSub and GQL schemas."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Any

from pydantic import BeforeValidator

# Twitch sends up to nanosecond precision; datetime keeps microseconds.
_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


def normalize_timestamp(value: Any) -> Any:
    if isinstance(value, str):
        return _EXTRA_FRACTION.sub(r"\1", value)
    return value


TwitchTimestamp = Annotated[datetime, BeforeValidator(normalize_timestamp)]
