"""Live trace of one voice session for the admin debug WebSocket.

The controller emits an event on every state change, finished turn, tool
execution and error.  Each connected admin socket owns an asyncio.Queue;
a slow reader loses its oldest events rather than stalling the session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import TypedDict

log = logging.getLogger("caregiver.debug_events")

SUBSCRIBER_QUEUE_SIZE = 200
EVENT_LOG_SIZE = 1000


class SessionEvent(TypedDict):
    type: str          # state | turn | tool_call | interrupted | error
    timestamp: float
    session_id: str
    state: str
    data: dict


class DebugBroadcaster:
    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._subscribers: list[asyncio.Queue[SessionEvent]] = []
        self._event_log: deque[SessionEvent] = deque(maxlen=EVENT_LOG_SIZE)

    @property
    def session_id(self) -> str:
        return self._session_id

    def subscribe(self) -> asyncio.Queue[SessionEvent]:
        q: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.append(q)
        log.info("Debug subscriber added for session %s (total: %d)",
                 self._session_id, len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue[SessionEvent]) -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)
        log.info("Debug subscriber removed for session %s (total: %d)",
                 self._session_id, len(self._subscribers))

    def emit(self, event_type: str, state: str, data: dict) -> None:
        """Record the event and fan it out to every subscriber."""
        event: SessionEvent = {
            "type": event_type,
            "timestamp": time.time(),
            "session_id": self._session_id,
            "state": state,
            "data": data,
        }
        self._event_log.append(event)

        for q in self._subscribers:
            if q.full():
                q.get_nowait()
            q.put_nowait(event)

    @property
    def event_log(self) -> list[SessionEvent]:
        return list(self._event_log)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
