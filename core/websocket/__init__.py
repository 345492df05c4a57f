"""
BLOOMFIT WebSocket Module
"""

from .messages import (
    MessageType,
    WebSocketMessage,
    MessageOutbox,
)

__all__ = [
    'MessageType',
    'WebSocketMessage',
    'MessageOutbox',
]
