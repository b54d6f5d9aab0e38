"""Errors that end the watcher. The process is restarted and catch-up heals the gap."""

from typing import Any, Dict, Optional


class EventSubError(RuntimeError):
    pass


class EventSubConnectionError(EventSubError):
    """The websocket closed or failed in a way that is not a plain peer reset."""


class EventSubProtocolError(EventSubError):
    """The server sent something that breaks the EventSub session protocol."""


class SubscriptionRevokedError(EventSubError):
    def __init__(
        self,
        subscription_type: str,
        subscription_id: str,
        status: Optional[str] = None,
        condition: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            f"Subscription {subscription_type} ({subscription_id}) revoked: "
            f"{status or 'unknown reason'} {condition or {}}"
        )
        self.subscription_type = subscription_type
        self.subscription_id = subscription_id
        self.status = status
        self.condition = condition or {}


class StreamLookupError(EventSubError):
    """A broadcaster went live but its archive video could not be found."""
