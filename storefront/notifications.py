"""Push channel: connected buyers and delivery of notifications to them."""
import logging
import threading
import uuid
from typing import Any, Dict, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)

ORDER_COMPLETE_EVENT = "OrderCompleteNotification"


class ConnectionDirectory:
    """Maps a buyer identity to their current push-channel connection id.

    One connection per identity; a newer connection replaces the older one.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Dict[str, str] = {}

    def register(self, identity: str, connection_id: str) -> None:
        with self._lock:
            self._connections[identity] = connection_id

    def unregister(self, connection_id: str) -> None:
        with self._lock:
            for identity, current in list(self._connections.items()):
                if current == connection_id:
                    del self._connections[identity]

    def lookup(self, identity: str) -> Optional[str]:
        with self._lock:
            return self._connections.get(identity)

    def __len__(self):
        with self._lock:
            return len(self._connections)


class UnknownConnectionError(Exception):
    pass


class NotificationHub:
    """Owns the open WebSockets and sends named events to one of them."""

    def __init__(self, directory: ConnectionDirectory):
        self.directory = directory
        self._sockets: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket, identity: str) -> str:
        connection_id = str(uuid.uuid4())
        self._sockets[connection_id] = websocket
        # Registered before accept so the client never sees an unroutable socket
        self.directory.register(identity, connection_id)
        try:
            await websocket.accept()
        except Exception:
            self.disconnect(connection_id)
            raise
        logger.info("Push channel connected: %s (%s)", identity, connection_id)
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)
        self.directory.unregister(connection_id)
        logger.info("Push channel disconnected: %s", connection_id)

    async def send_to_connection(self, connection_id: str, event_name: str, payload: Any) -> None:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            raise UnknownConnectionError(connection_id)
        await websocket.send_json({"event": event_name, "data": payload})


class NotificationDispatcher:
    def __init__(self, directory: ConnectionDirectory, hub: NotificationHub):
        self.directory = directory
        self.hub = hub

    async def notify(self, identity: str, payload: Any, event_name: str = ORDER_COMPLETE_EVENT) -> None:
        """Push ``payload`` to ``identity`` if connected. Never raises."""
        try:
            connection_id = self.directory.lookup(identity)
            if not connection_id:
                logger.debug("No push connection for %s, skipping %s", identity, event_name)
                return
            await self.hub.send_to_connection(connection_id, event_name, payload)
            logger.info("Sent %s to %s", event_name, identity)
        except Exception:
            logger.exception("Failed to send %s to %s", event_name, identity)
