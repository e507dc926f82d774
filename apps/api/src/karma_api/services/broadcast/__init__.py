"""Broadcast exports."""

from .publisher import KARMA_UPDATE_EVENT, BroadcastPublisher, KarmaUpdateEvent  # noqa: F401
