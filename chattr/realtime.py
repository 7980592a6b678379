import asyncio
import logging
import uuid
from typing import Dict, List, Set

from fastapi import WebSocket

logger = logging.getLogger("chattr.realtime")


def room_channel(room_id: str) -> str:
    return f"room:{room_id}"


def dm_channel(room_id: str) -> str:
    return f"dm:{room_id}"


def friends_channel(user_id: str) -> str:
    return f"friends:{user_id}"


# ---------------------
# Connection manager (WebSockets)
# ---------------------
class ConnectionManager:
    """Tracks open sockets, their owners and the channels each one listens on."""

    def __init__(self):
        self.sockets: Dict[str, WebSocket] = {}
        self.owners: Dict[str, str] = {}
        self.channels: Dict[str, Set[str]] = {}
        self.lock = asyncio.Lock()

    async def connect(self, user_id: str, websocket: WebSocket) -> str:
        await websocket.accept()
        conn_id = uuid.uuid4().hex
        async with self.lock:
            self.sockets[conn_id] = websocket
            self.owners[conn_id] = user_id
        return conn_id

    async def disconnect(self, conn_id: str) -> List[str]:
        """Drop a socket; returns the channels it was subscribed to."""
        async with self.lock:
            self.sockets.pop(conn_id, None)
            self.owners.pop(conn_id, None)
            left = []
            for channel, members in list(self.channels.items()):
                if conn_id in members:
                    members.discard(conn_id)
                    left.append(channel)
                if not members:
                    self.channels.pop(channel, None)
        return left

    async def subscribe(self, conn_id: str, channel: str):
        async with self.lock:
            self.channels.setdefault(channel, set()).add(conn_id)

    async def unsubscribe(self, conn_id: str, channel: str):
        async with self.lock:
            members = self.channels.get(channel)
            if members is not None:
                members.discard(conn_id)
                if not members:
                    self.channels.pop(channel, None)

    def online_count(self, channel: str) -> int:
        return len({self.owners[c] for c in self.channels.get(channel, ()) if c in self.owners})

    def online_users(self) -> Set[str]:
        return set(self.owners.values())

    async def publish(self, channel: str, data: dict):
        async with self.lock:
            sockets = [self.sockets[c] for c in self.channels.get(channel, ()) if c in self.sockets]
        await self._fan_out(sockets, data)

    async def sync_presence(self, channel: str):
        await self.publish(channel, {"type": "presence", "channel": channel, "online": self.online_count(channel)})

    async def _fan_out(self, sockets: List[WebSocket], data: dict):
        for ws in sockets:
            try:
                await ws.send_json(data)
            except Exception as e:
                # the receive loop of that socket cleans it up
                logger.debug(f"push failed: {e}")


manager = ConnectionManager()
