import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from . import config
from .bot import schedule_bot_reply
from .catalog import interest_map
from .db import get_db, public, utcnow
from .messages import clean_content, insert_room_message, last_room_message, room_history, room_message
from .profiles import selected_interest_ids
from .realtime import manager, room_channel
from .schemas import MessageCreateRequest
from .security import current_user_id

logger = logging.getLogger("chattr.rooms")

router = APIRouter()

NO_ROOMS_PLACEHOLDER = "Pick some interests in your profile to join chat rooms"


def with_interest(room: dict, interests: dict) -> dict:
    out = public(room)
    interest = interests.get(room.get("interest_id") or "")
    out["interests"] = {k: interest[k] for k in ("name", "icon", "color")} if interest else None
    return out


async def get_room_or_404(room_id: str) -> dict:
    db = await get_db()
    room = await db.chat_rooms.find_one({"id": room_id})
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


# ---------------------
# Room list + previews
# ---------------------
@router.get("/rooms")
async def rooms_list(q: Optional[str] = None, user_id: str = Depends(current_user_id)):
    interest_ids = await selected_interest_ids(user_id)
    if not interest_ids:
        return {"rooms": [], "placeholder": NO_ROOMS_PLACEHOLDER}

    db = await get_db()
    interests = await interest_map()
    rooms = await db.chat_rooms.find(
        {"interest_id": {"$in": interest_ids}}, sort=[("created_at", 1), ("_id", 1)]
    ).to_list(length=None)
    needle = (q or "").strip().lower()
    out = []
    for room in rooms:
        if needle and needle not in room.get("name", "").lower():
            continue
        item = with_interest(room, interests)
        item["last_message"] = await last_room_message(room["id"])
        item["online"] = manager.online_count(room_channel(room["id"]))
        out.append(item)
    return {"rooms": out, "placeholder": None if out else NO_ROOMS_PLACEHOLDER}


@router.get("/rooms/{room_id}")
async def room_detail(room_id: str, user_id: str = Depends(current_user_id)):
    room = await get_room_or_404(room_id)
    item = with_interest(room, await interest_map())
    item["online"] = manager.online_count(room_channel(room_id))
    return {"room": item}


# ---------------------
# Feed
# ---------------------
@router.get("/rooms/{room_id}/messages")
async def room_messages(room_id: str, limit: int = Query(config.ROOM_PAGE_SIZE, ge=1, le=config.ROOM_PAGE_SIZE),
                        user_id: str = Depends(current_user_id)):
    await get_room_or_404(room_id)
    return {"messages": await room_history(room_id, limit)}


@router.get("/rooms/{room_id}/messages/{message_id}")
async def room_message_detail(room_id: str, message_id: str, user_id: str = Depends(current_user_id)):
    msg = await room_message(room_id, message_id)
    if not msg:
        raise HTTPException(status_code=404, detail="Message not found")
    return {"message": msg}


@router.post("/rooms/{room_id}/messages", status_code=201)
async def room_send(room_id: str, req: MessageCreateRequest, user_id: str = Depends(current_user_id)):
    content = clean_content(req.content)
    if not content:
        raise HTTPException(status_code=400, detail="Message cannot be empty")
    room = await get_room_or_404(room_id)
    msg = await insert_room_message(room_id, user_id, content)
    interest = (await interest_map()).get(room.get("interest_id") or "")
    schedule_bot_reply(room_id, (interest or {}).get("name"), content)
    return {"message": msg}


# ---------------------
# Membership (presence timestamp only)
# ---------------------
async def touch_membership(room_id: str, user_id: str) -> dict:
    db = await get_db()
    now = utcnow()
    await db.room_members.update_one(
        {"room_id": room_id, "user_id": user_id},
        {"$set": {"last_seen": now}},
        upsert=True
    )
    return {"room_id": room_id, "user_id": user_id, "last_seen": now.isoformat()}


@router.post("/rooms/{room_id}/join")
async def room_join(room_id: str, user_id: str = Depends(current_user_id)):
    await get_room_or_404(room_id)
    return {"member": await touch_membership(room_id, user_id)}


@router.post("/rooms/{room_id}/leave")
async def room_leave(room_id: str, user_id: str = Depends(current_user_id)):
    await get_room_or_404(room_id)
    return {"member": await touch_membership(room_id, user_id)}
