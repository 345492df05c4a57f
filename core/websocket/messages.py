"""
BLOOMFIT WebSocket Messages

Message envelope shared by every WebSocket endpoint, plus a single-writer
outbox so synchronous callbacks can queue messages without awaiting.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """WebSocket message types."""
    # Client -> server
    PING = "ping"
    LANDMARKS = "landmarks"
    STOP = "stop"

    # Server -> client
    PONG = "pong"
    SESSION_STARTED = "session_started"
    POSTURE_UPDATE = "posture_update"
    REP_COUNT = "rep_count"
    SESSION_STOPPED = "session_stopped"
    ERROR = "error"


@dataclass
class WebSocketMessage:
    """Structured WebSocket message."""
    type: MessageType
    payload: Any = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_json(self) -> str:
        return json.dumps({
            "type": self.type.value if isinstance(self.type, MessageType) else self.type,
            "payload": self.payload,
            "timestamp": self.timestamp
        })

    @classmethod
    def from_json(cls, data: str) -> "WebSocketMessage":
        """
        Parse a client message.

        Raises:
            ValueError: not JSON, not an object, or missing "type"
        """
        parsed = json.loads(data)
        if not isinstance(parsed, dict) or "type" not in parsed:
            raise ValueError("Message must be a JSON object with a 'type' field")
        return cls(
            type=parsed["type"],
            payload=parsed.get("payload"),
            timestamp=parsed.get("timestamp", datetime.now(timezone.utc).isoformat())
        )


class MessageOutbox:
    """
    Queue drained by one sender task.

    `put()` is synchronous so it can be called from frame callbacks;
    `close()` flushes what is queued and stops the sender.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def put(self, message: WebSocketMessage) -> None:
        self._queue.put_nowait(message)

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            if message is None:
                break
            if self.websocket.client_state != WebSocketState.CONNECTED:
                continue
            await self.websocket.send_text(message.to_json())

    async def close(self) -> None:
        """Send everything already queued, then stop the sender task."""
        if self._task is None:
            return
        self._queue.put_nowait(None)
        try:
            await self._task
        except Exception as e:
            logger.debug(f"Outbox sender ended with {type(e).__name__}: {e}")
        self._task = None
