from typing import Dict, List, Optional

from .db import get_db, new_id, public, utcnow
from .profiles import display_fields
from .realtime import dm_channel, manager, room_channel

# newest first, _id breaks created_at ties in insertion order
NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


def clean_content(content: Optional[str]) -> str:
    return (content or "").strip()


async def _with_authors(rows: List[Dict], id_field: str, as_field: str) -> List[Dict]:
    people = await display_fields(r.get(id_field) for r in rows)
    out = []
    for r in rows:
        item = public(r)
        item[as_field] = people.get(r.get(id_field)) if r.get(id_field) else None
        out.append(item)
    return out


# ---------------------
# Room messages
# ---------------------
async def room_history(room_id: str, limit: int) -> List[Dict]:
    db = await get_db()
    rows = await db.messages.find({"room_id": room_id}, sort=NEWEST_FIRST, limit=limit).to_list(length=None)
    rows.reverse()
    return await _with_authors(rows, "user_id", "author")


async def room_message(room_id: str, message_id: str) -> Optional[Dict]:
    db = await get_db()
    row = await db.messages.find_one({"room_id": room_id, "id": message_id})
    if not row:
        return None
    return (await _with_authors([row], "user_id", "author"))[0]


async def last_room_message(room_id: str) -> Optional[Dict]:
    db = await get_db()
    rows = await db.messages.find({"room_id": room_id}, sort=NEWEST_FIRST, limit=1).to_list(length=None)
    if not rows:
        return None
    last = public(rows[0])
    return {"content": last["content"], "created_at": last["created_at"]}


async def insert_room_message(room_id: str, user_id: Optional[str], content: str, is_bot: bool = False) -> Dict:
    db = await get_db()
    doc = {
        "id": new_id(),
        "room_id": room_id,
        "user_id": user_id,
        "content": content,
        "is_bot": is_bot,
        "created_at": utcnow()
    }
    await db.messages.insert_one(doc)
    record = (await _with_authors([doc], "user_id", "author"))[0]
    channel = room_channel(room_id)
    await manager.publish(channel, {"type": "insert", "table": "messages", "channel": channel, "id": doc["id"], "record": record})
    return record


# ---------------------
# Direct messages
# ---------------------
async def dm_history(room_id: str, limit: int) -> List[Dict]:
    db = await get_db()
    rows = await db.dm_messages.find({"room_id": room_id}, sort=NEWEST_FIRST, limit=limit).to_list(length=None)
    rows.reverse()
    return await _with_authors(rows, "sender_id", "sender")


async def dm_message(room_id: str, message_id: str) -> Optional[Dict]:
    db = await get_db()
    row = await db.dm_messages.find_one({"room_id": room_id, "id": message_id})
    if not row:
        return None
    return (await _with_authors([row], "sender_id", "sender"))[0]


async def insert_dm_message(room_id: str, sender_id: str, content: str) -> Dict:
    db = await get_db()
    doc = {
        "id": new_id(),
        "room_id": room_id,
        "sender_id": sender_id,
        "content": content,
        "created_at": utcnow()
    }
    await db.dm_messages.insert_one(doc)
    record = (await _with_authors([doc], "sender_id", "sender"))[0]
    channel = dm_channel(room_id)
    await manager.publish(channel, {"type": "insert", "table": "dm_messages", "channel": channel, "id": doc["id"], "record": record})
    return record
