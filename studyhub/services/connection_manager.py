from typing import Dict, List, Optional, Tuple
from fastapi import WebSocket
import logging

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self):
        # Map room_id -> list of WebSockets
        self.active_connections: Dict[str, List[WebSocket]] = {}
        # Map (room_id, email) -> WebSocket (for direct messaging)
        self.user_connections: Dict[Tuple[str, str], WebSocket] = {}

    async def connect(self, websocket: WebSocket, room_id: str, email: str):
        # Already accepted in the endpoint
        self.active_connections.setdefault(room_id, []).append(websocket)

        previous = self.user_connections.get((room_id, email))
        if previous is not None and previous is not websocket:
            logger.warning(f"User {email} opened a second connection to room {room_id}; replacing the first")
        self.user_connections[(room_id, email)] = websocket

        logger.info(f"User {email} connected to room {room_id}")

    def disconnect(self, websocket: WebSocket, room_id: str, email: str):
        if room_id in self.active_connections:
            if websocket in self.active_connections[room_id]:
                self.active_connections[room_id].remove(websocket)
            if not self.active_connections[room_id]:
                del self.active_connections[room_id]

        if self.user_connections.get((room_id, email)) is websocket:
            del self.user_connections[(room_id, email)]

        logger.info(f"User {email} disconnected from room {room_id}")

    async def send_personal_message(self, message: dict, websocket: Optional[WebSocket] = None, room_id: str = None, email: str = None):
        """Send message to a specific user. Can use either websocket directly or room_id + email"""
        if websocket is None:
            websocket = self.user_connections.get((room_id, email))
            if websocket is None:
                logger.warning(f"Cannot send personal message: user {email} not connected to room {room_id}")
                return

        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.error(f"Error sending personal message: {e}")

    async def broadcast_except(self, message: dict, room_id: str, exclude_email: str):
        exclude_ws = self.user_connections.get((room_id, exclude_email))
        for connection in list(self.active_connections.get(room_id, [])):
            if connection is not exclude_ws:
                try:
                    await connection.send_json(message)
                except Exception as e:
                    logger.error(f"Error broadcasting (except) to room {room_id}: {e}")


manager = ConnectionManager()
