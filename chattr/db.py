import uuid
import asyncio
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional

import pytz
from motor.motor_asyncio import AsyncIOMotorClient

from . import config

logger = logging.getLogger("chattr.db")

# ---------------------
# Globals (thread-safe)
# ---------------------
client: Optional[AsyncIOMotorClient] = None
db = None
indexes_ready = False

mongo_lock = threading.Lock()
index_lock = asyncio.Lock()


def as_utc_aware(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=pytz.UTC)


def utcnow() -> datetime:
    # BSON dates hold milliseconds; pushed rows must match what a re-fetch returns
    now = datetime.now(pytz.UTC)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    dt = as_utc_aware(dt)
    return dt.isoformat() if dt else None


def new_id() -> str:
    return uuid.uuid4().hex


def pair_key(user_a: str, user_b: str) -> str:
    """Key shared by both orderings of an unordered user pair."""
    return ":".join(sorted([user_a, user_b]))


# ---------------------
# Lazy init
# ---------------------
def use_client(mongo_client, db_name: Optional[str] = None):
    """Bind an already constructed client (tests, scripts)."""
    global client, db, indexes_ready
    with mongo_lock:
        client = mongo_client
        db = mongo_client[db_name or config.MONGODB_DB]
        indexes_ready = False


async def get_db():
    global client, db
    with mongo_lock:
        if client is None:
            client = AsyncIOMotorClient(
                config.MONGODB_URI,
                maxPoolSize=50,
                minPoolSize=5,
                maxIdleTimeMS=30000,
                tz_aware=True
            )
            db = client[config.MONGODB_DB]
    if not indexes_ready:
        await ensure_indexes()
    return db


async def ensure_indexes():
    global indexes_ready
    async with index_lock:
        if indexes_ready:
            return
        await db.users.create_index("email", unique=True)
        await db.users.create_index("id", unique=True)
        await db.profiles.create_index("id", unique=True)
        await db.profiles.create_index("username_lower", unique=True)
        await db.interests.create_index("id", unique=True)
        await db.user_interests.create_index([("user_id", 1), ("interest_id", 1)], unique=True)
        await db.chat_rooms.create_index("id", unique=True)
        await db.chat_rooms.create_index("interest_id")
        await db.messages.create_index("id", unique=True)
        await db.messages.create_index([("room_id", 1), ("created_at", -1)])
        await db.room_members.create_index([("room_id", 1), ("user_id", 1)], unique=True)
        await db.friends.create_index("id", unique=True)
        await db.friends.create_index("pair_key", unique=True)
        await db.friends.create_index([("receiver_id", 1), ("status", 1)])
        await db.friends.create_index([("sender_id", 1), ("status", 1)])
        await db.dm_rooms.create_index("id", unique=True)
        await db.dm_rooms.create_index("pair_key", unique=True)
        await db.dm_messages.create_index("id", unique=True)
        await db.dm_messages.create_index([("room_id", 1), ("created_at", -1)])
        await db.sessions.create_index("token", unique=True)
        await db.sessions.create_index("expires_at", expireAfterSeconds=0)
        await db.errors.create_index([("timestamp", -1)])
        indexes_ready = True


def close():
    global client, db, indexes_ready
    with mongo_lock:
        if client is not None:
            client.close()
        client = None
        db = None
        indexes_ready = False


def public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Strip the storage _id and render datetimes for the API."""
    if doc is None:
        return None
    out = {}
    for k, v in doc.items():
        if k == "_id":
            continue
        out[k] = isoformat(v) if isinstance(v, datetime) else v
    return out


async def record_error(error: str, **context):
    logger.error(f"{error} {context or ''}".strip())
    try:
        database = await get_db()
        await database.errors.insert_one({"error": error, "context": context, "timestamp": utcnow()})
    except Exception as e:
        logger.warning(f"could not persist error record: {e}")
