import bisect
import logging
from datetime import datetime
from typing import Dict, List, Optional

import pytz

logger = logging.getLogger("chattr.feed")


def created_key(message: Dict) -> datetime:
    raw = message.get("created_at")
    if not raw:
        return datetime.max.replace(tzinfo=pytz.UTC)
    dt = datetime.fromisoformat(raw)
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=pytz.UTC)


class MessageFeed:
    """In-memory feed behind a chat room or DM view.

    Messages stay in ascending created_at order no matter when they arrive,
    and an id seen once (from history or a push) is never shown twice, so a
    push that lands before the initial load finishes is harmless.
    """

    def __init__(self, client, kind: str, room_id: str):
        if kind not in ("room", "dm"):
            raise ValueError(f"unknown feed kind: {kind}")
        self.client = client
        self.kind = kind
        self.room_id = room_id
        self.channel = f"{kind}:{room_id}"
        self._messages: List[Dict] = []
        self._keys: List[datetime] = []
        self._ids = set()

    @property
    def messages(self) -> List[Dict]:
        return list(self._messages)

    def __len__(self):
        return len(self._messages)

    def add(self, message: Dict) -> bool:
        msg_id = message.get("id")
        if msg_id in self._ids:
            return False
        key = created_key(message)
        at = bisect.bisect_right(self._keys, key)
        self._keys.insert(at, key)
        self._messages.insert(at, message)
        self._ids.add(msg_id)
        return True

    async def load(self) -> List[Dict]:
        if self.kind == "room":
            history = await self.client.room_messages(self.room_id)
        else:
            history = await self.client.dm_messages(self.room_id)
        for m in history:
            self.add(m)
        return self.messages

    async def apply(self, event: Dict) -> Optional[Dict]:
        """Fold a pushed insert frame into the feed; returns the message if it was new."""
        if event.get("type") != "insert" or event.get("channel") != self.channel:
            return None
        record = event.get("record")
        if record is None:
            # frame only carries the id, fetch the joined row
            if self.kind == "room":
                record = await self.client.room_message(self.room_id, event["id"])
            else:
                record = await self.client.dm_message(self.room_id, event["id"])
        if record is None:
            logger.debug(f"pushed message {event.get('id')} vanished before re-fetch")
            return None
        return record if self.add(record) else None
