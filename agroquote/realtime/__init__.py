"""
Realtime push уведомлений в браузер (WebSocket).

Содержит:
- EventBroadcaster: множество подписчиков и best-effort fan-out
- WebSocketListener: отдельный uvicorn-сервер на своём порту
"""

from agroquote.realtime.broadcaster import (
    EventBroadcaster,
    WebSocketListener,
    create_websocket_app,
)

__all__ = [
    "EventBroadcaster",
    "WebSocketListener",
    "create_websocket_app",
]
