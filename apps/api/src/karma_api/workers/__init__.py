"""Background workers supporting the live event stream."""

from .eventsub_session import ConnectionState, EventSubSessionManager, SessionState

__all__ = ["ConnectionState", "EventSubSessionManager", "SessionState"]
