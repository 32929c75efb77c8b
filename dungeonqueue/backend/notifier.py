"""Broadcast notifier contract and helpers for live client updates."""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

logger = logging.getLogger(__name__)

PARTICIPANT_QUEUED = "participant_queued"
PARTICIPANT_LEFT_QUEUE = "participant_left_queue"
GROUP_FORMED = "group_formed"
INSTANCE_CREATED = "instance_created"


class BroadcastNotifier(Protocol):
    def notify(self, channel_id: str, event: dict[str, Any]) -> None:
        """Deliver an event to clients listening on a channel."""


def queue_channel(content_type: str) -> str:
    return f"queue:{content_type}"


def participant_channel(participant_id: str) -> str:
    return f"participant:{participant_id}"


def notify_safely(notifier: BroadcastNotifier | None, channel_id: str, event: dict[str, Any]) -> None:
    """Send a notification; delivery failures are logged and never raised."""
    if notifier is None:
        return
    try:
        notifier.notify(channel_id, event)
    except Exception:
        logger.exception("Failed to notify %s of %s", channel_id, event.get("type"))


class InMemoryNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def notify(self, channel_id: str, event: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((channel_id, event))

    def events_of_type(self, event_type: str) -> list[tuple[str, dict[str, Any]]]:
        with self._lock:
            return [(channel, event) for channel, event in self.events if event.get("type") == event_type]
