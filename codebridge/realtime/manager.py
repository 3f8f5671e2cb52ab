"""
Realtime connection manager
Tracks WebSocket connections per room and fans out {"event", "data"} frames
"""

import asyncio
import logging
from typing import Dict, List, Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


def user_room(user_id: str) -> str:
    """Personal room every connection of a user joins"""
    return f"user:{user_id}"


class ConnectionManager:
    def __init__(self):
        # room_id -> {id(websocket): websocket}
        self.rooms: Dict[str, Dict[int, WebSocket]] = {}
        # id(websocket) -> (websocket, user_id)
        self.connections: Dict[int, tuple] = {}
        self.lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: str):
        await websocket.accept()
        async with self.lock:
            self.connections[id(websocket)] = (websocket, user_id)
        await self.join(user_room(user_id), websocket)
        logger.info("User %s connected", user_id)

    async def disconnect(self, websocket: WebSocket) -> Optional[str]:
        key = id(websocket)
        async with self.lock:
            entry = self.connections.pop(key, None)
            for room_id in list(self.rooms):
                members = self.rooms[room_id]
                members.pop(key, None)
                # Drop empty rooms
                if not members:
                    del self.rooms[room_id]
        user_id = entry[1] if entry else None
        if user_id:
            logger.info("User %s disconnected", user_id)
        return user_id

    async def join(self, room_id: str, websocket: WebSocket):
        async with self.lock:
            self.rooms.setdefault(room_id, {})[id(websocket)] = websocket

    async def leave(self, room_id: str, websocket: WebSocket):
        async with self.lock:
            members = self.rooms.get(room_id)
            if members is not None:
                members.pop(id(websocket), None)
                if not members:
                    del self.rooms[room_id]

    def in_room(self, room_id: str, websocket: WebSocket) -> bool:
        return id(websocket) in self.rooms.get(room_id, {})

    def is_online(self, user_id: str) -> bool:
        return bool(self.rooms.get(user_room(user_id)))

    def online_users(self) -> List[str]:
        return sorted({user_id for _, user_id in self.connections.values()})

    async def send(self, websocket: WebSocket, event: str, data: dict):
        await websocket.send_json({"event": event, "data": jsonable_encoder(data)})

    async def emit(self, room_id: str, event: str, data: dict, exclude: Optional[WebSocket] = None):
        """Send an event to every connection in a room"""
        async with self.lock:
            targets = [ws for ws in self.rooms.get(room_id, {}).values() if ws is not exclude]
        await self._deliver(targets, {"event": event, "data": jsonable_encoder(data)})

    async def emit_to_user(self, user_id: str, event: str, data: dict):
        await self.emit(user_room(user_id), event, data)

    async def broadcast(self, event: str, data: dict):
        """Send an event to every connected client"""
        async with self.lock:
            targets = [ws for ws, _ in self.connections.values()]
        await self._deliver(targets, {"event": event, "data": jsonable_encoder(data)})

    async def _deliver(self, targets: List[WebSocket], payload: dict):
        dead = []
        for connection in targets:
            try:
                await connection.send_json(payload)
            except Exception as e:
                logger.debug("Dropping dead connection: %s", e)
                dead.append(connection)
        for connection in dead:
            await self.disconnect(connection)


manager = ConnectionManager()
