import logging
from typing import Dict, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.errors import DuplicateKeyError

from . import config
from .db import get_db, new_id, pair_key, public, utcnow
from .messages import clean_content, dm_history, dm_message, insert_dm_message
from .profiles import display_fields
from .schemas import DirectRoomOpenRequest, MessageCreateRequest
from .security import current_user_id

logger = logging.getLogger("chattr.direct")

router = APIRouter()


async def find_or_create_dm_room(user_id: str, other_id: str) -> Tuple[Dict, bool]:
    """Return (room, created) for the unordered pair; unique pair_key guards the race."""
    db = await get_db()
    key = pair_key(user_id, other_id)
    room = await db.dm_rooms.find_one({"pair_key": key})
    if room:
        return room, False
    doc = {
        "id": new_id(),
        "user_a_id": user_id,
        "user_b_id": other_id,
        "pair_key": key,
        "created_at": utcnow()
    }
    try:
        await db.dm_rooms.insert_one(doc)
    except DuplicateKeyError:
        return await db.dm_rooms.find_one({"pair_key": key}), False
    logger.info(f"dm room {doc['id']} opened for {key}")
    return doc, True


def is_participant(room: dict, user_id: str) -> bool:
    return user_id in (room.get("user_a_id"), room.get("user_b_id"))


async def get_dm_room_for(room_id: str, user_id: str) -> dict:
    db = await get_db()
    room = await db.dm_rooms.find_one({"id": room_id})
    if not room:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if not is_participant(room, user_id):
        raise HTTPException(status_code=403, detail="Not a participant")
    return room


async def present_room(room: dict, user_id: str, people: Dict[str, Dict]) -> dict:
    out = public(room)
    out.pop("pair_key", None)
    out["user_a"] = people.get(room["user_a_id"])
    out["user_b"] = people.get(room["user_b_id"])
    other_id = room["user_b_id"] if room["user_a_id"] == user_id else room["user_a_id"]
    out["other_user"] = people.get(other_id)
    return out


@router.post("/dm/open")
async def dm_open(req: DirectRoomOpenRequest, user_id: str = Depends(current_user_id)):
    if req.user_id == user_id:
        raise HTTPException(status_code=400, detail="You cannot message yourself")
    db = await get_db()
    if not await db.profiles.find_one({"id": req.user_id}):
        raise HTTPException(status_code=404, detail="User not found")
    room, created = await find_or_create_dm_room(user_id, req.user_id)
    people = await display_fields([room["user_a_id"], room["user_b_id"]])
    return {"room": await present_room(room, user_id, people), "created": created}


@router.get("/dm")
async def dm_list(user_id: str = Depends(current_user_id)):
    db = await get_db()
    rooms = await db.dm_rooms.find(
        {"$or": [{"user_a_id": user_id}, {"user_b_id": user_id}]}, sort=[("created_at", -1)]
    ).to_list(length=None)
    people = await display_fields([u for r in rooms for u in (r["user_a_id"], r["user_b_id"])])
    return {"rooms": [await present_room(r, user_id, people) for r in rooms]}


@router.get("/dm/{room_id}")
async def dm_detail(room_id: str, user_id: str = Depends(current_user_id)):
    room = await get_dm_room_for(room_id, user_id)
    people = await display_fields([room["user_a_id"], room["user_b_id"]])
    return {"room": await present_room(room, user_id, people)}


@router.get("/dm/{room_id}/messages")
async def dm_messages(room_id: str, limit: int = Query(config.DM_PAGE_SIZE, ge=1, le=config.DM_PAGE_SIZE),
                      user_id: str = Depends(current_user_id)):
    await get_dm_room_for(room_id, user_id)
    return {"messages": await dm_history(room_id, limit)}


@router.get("/dm/{room_id}/messages/{message_id}")
async def dm_message_detail(room_id: str, message_id: str, user_id: str = Depends(current_user_id)):
    await get_dm_room_for(room_id, user_id)
    msg = await dm_message(room_id, message_id)
    if not msg:
        raise HTTPException(status_code=404, detail="Message not found")
    return {"message": msg}


@router.post("/dm/{room_id}/messages", status_code=201)
async def dm_send(room_id: str, req: MessageCreateRequest, user_id: str = Depends(current_user_id)):
    content = clean_content(req.content)
    if not content:
        raise HTTPException(status_code=400, detail="Message cannot be empty")
    await get_dm_room_for(room_id, user_id)
    return {"message": await insert_dm_message(room_id, user_id, content)}
