import logging
from typing import Dict, List

from cachetools import TTLCache

from .db import get_db, public, utcnow

logger = logging.getLogger("chattr.catalog")

# (id, name, icon, color, description)
DEFAULT_INTERESTS = [
    ("gaming", "Gaming", "gamepad-2", "#8b5cf6", "Consoles, PC, speedruns and everything in between"),
    ("music", "Music", "music", "#ec4899", "New releases, old favourites, playlists and gigs"),
    ("coding", "Coding", "code", "#22c55e", "Languages, side projects and debugging war stories"),
    ("movies", "Movies", "film", "#f97316", "Films, series and what to watch next"),
    ("sports", "Sports", "trophy", "#0ea5e9", "Match talk, leagues and training"),
    ("art", "Art", "palette", "#eab308", "Drawing, painting, design and photography"),
    ("books", "Books", "book-open", "#a855f7", "What you are reading and what you should read"),
    ("travel", "Travel", "plane", "#14b8a6", "Trips, tips and places worth seeing"),
]

interest_cache = TTLCache(maxsize=1, ttl=300)


async def list_interests() -> List[Dict]:
    cached = interest_cache.get("all")
    if cached is not None:
        return cached
    db = await get_db()
    rows = [public(i) async for i in db.interests.find({}, sort=[("name", 1)])]
    interest_cache["all"] = rows
    return rows


async def interest_map() -> Dict[str, Dict]:
    return {i["id"]: i for i in await list_interests()}


async def seed_catalog():
    """Upsert the interest catalog and one chat room per interest."""
    db = await get_db()
    now = utcnow()
    for interest_id, name, icon, color, description in DEFAULT_INTERESTS:
        await db.interests.update_one(
            {"id": interest_id},
            {"$set": {"name": name, "icon": icon, "color": color, "description": description}},
            upsert=True
        )
        await db.chat_rooms.update_one(
            {"interest_id": interest_id},
            {
                "$setOnInsert": {
                    "id": f"room-{interest_id}",
                    "name": name,
                    "description": description,
                    "created_at": now,
                }
            },
            upsert=True
        )
    interest_cache.clear()
    logger.info(f"catalog ready: {len(DEFAULT_INTERESTS)} interests")
