"""
WebSocket Package

Real-time communication with dashboard clients over Socket.IO.

Components:
- events: Event names and data models
- emitter: Server->Client event emission
- handlers: Client->Server event handling

Usage:
    from sosmap.websocket import MapEventEmitter, MapSocketHandlers

    emitter = MapEventEmitter(sio)
    handlers = MapSocketHandlers(sio, emitter)
"""

from .events import ServerEvent, ClientEvent
from .emitter import MapEventEmitter, get_emitter, set_emitter
from .handlers import MapSocketHandlers, get_handlers, set_handlers

__all__ = [
    "ServerEvent",
    "ClientEvent",
    "MapEventEmitter",
    "MapSocketHandlers",
    "get_emitter",
    "set_emitter",
    "get_handlers",
    "set_handlers",
]
