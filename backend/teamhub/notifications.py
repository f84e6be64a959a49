"""Notification dispatcher for realtime events.

Services describe state changes as logical events and hand them to a
`NotificationDispatcher` after their transaction commits. Delivery
(websockets, a message broker) belongs to the transport behind the
dispatcher; this module provides an in-process hub that fans events out
to subscribed callbacks and keeps a bounded history.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Callable

_LOGGER = logging.getLogger("teamhub.notifications")

BROADCAST = "broadcast"

LEADER_CHOSEN = "leader_chosen"
MENTOR_RESPONSE = "mentor_response"
MENTORSHIP_REQUESTED = "mentorship_requested"
TEAM_CREATED = "team_created"
TEAM_UPDATED = "team_updated"
TEAM_DELETED = "team_deleted"
POST_CREATED = "post_created"
POST_UPDATED = "post_updated"
POST_DELETED = "post_deleted"
COMMENT_CREATED = "comment_created"
COMMENT_DELETED = "comment_deleted"


def principal_channel(principal_id: str) -> str:
    return f"principal_{principal_id}"


class NotificationDispatcher:
    """Interface the services publish through."""

    def notify_broadcast(self, event: str, payload: dict) -> None:
        raise NotImplementedError

    def notify_principal(self, principal_id: str, event: str, payload: dict) -> None:
        raise NotImplementedError


class LoggingDispatcher(NotificationDispatcher):
    """Dispatcher that only writes events to the log."""

    def notify_broadcast(self, event: str, payload: dict) -> None:
        _LOGGER.info("notify %s", json.dumps({"channel": BROADCAST, "event": event, "payload": payload}, default=str, ensure_ascii=True))

    def notify_principal(self, principal_id: str, event: str, payload: dict) -> None:
        channel = principal_channel(principal_id)
        _LOGGER.info("notify %s", json.dumps({"channel": channel, "event": event, "payload": payload}, default=str, ensure_ascii=True))


class InMemoryDispatcher(NotificationDispatcher):
    """Thread-safe in-process hub with per-channel subscribers."""

    def __init__(self, history_size: int = 500):
        self._subscribers: dict[str, list[Callable[[dict], None]]] = defaultdict(list)
        self._history: deque = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(self, channel: str, callback: Callable[[dict], None]) -> Callable[[], None]:
        """Register `callback` for `channel`; returns an unsubscribe function."""
        with self._lock:
            self._subscribers[channel].append(callback)

        def _unsubscribe():
            with self._lock:
                if callback in self._subscribers.get(channel, []):
                    self._subscribers[channel].remove(callback)

        return _unsubscribe

    def notify_broadcast(self, event: str, payload: dict) -> None:
        self._publish(BROADCAST, event, payload)

    def notify_principal(self, principal_id: str, event: str, payload: dict) -> None:
        self._publish(principal_channel(principal_id), event, payload)

    def events(self, channel: str | None = None, event: str | None = None) -> list[dict]:
        """Return recorded envelopes, optionally filtered."""
        with self._lock:
            items = list(self._history)
        return [
            e for e in items
            if (channel is None or e["channel"] == channel) and (event is None or e["event"] == event)
        ]

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def _publish(self, channel: str, event: str, payload: dict) -> None:
        envelope = {
            "channel": channel,
            "event": event,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._history.append(envelope)
            callbacks = list(self._subscribers.get(channel, []))
        _LOGGER.info("notify %s", json.dumps({"channel": channel, "event": event}, ensure_ascii=True))
        for callback in callbacks:
            try:
                callback(envelope)
            except Exception:
                # events are emitted after commit; a broken subscriber must not fail the request
                _LOGGER.exception("subscriber_failed %s", json.dumps({"channel": channel, "event": event}, ensure_ascii=True))
