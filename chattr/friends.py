import logging

from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .db import get_db, new_id, pair_key, public, utcnow
from .profiles import display_fields, find_username_query
from .realtime import friends_channel, manager
from .schemas import FriendRequestCreate
from .security import current_user_id

logger = logging.getLogger("chattr.friends")

router = APIRouter()

PENDING = "pending"
ACCEPTED = "accepted"
DECLINED = "declined"
BLOCKED = "blocked"

ALREADY_PENDING = "Request already pending"
ALREADY_FRIENDS = "You are already friends"


async def notify(row: dict, event: str):
    payload = {"type": "friends", "event": event, "id": row["id"], "status": row.get("status")}
    for uid in (row["sender_id"], row["receiver_id"]):
        await manager.publish(friends_channel(uid), {**payload, "channel": friends_channel(uid)})


def present(row: dict) -> dict:
    out = public(row)
    out.pop("pair_key", None)
    return out


async def get_request_or_404(request_id: str) -> dict:
    db = await get_db()
    row = await db.friends.find_one({"id": request_id})
    if not row:
        raise HTTPException(status_code=404, detail="Friend request not found")
    return row


# ---------------------
# Listing
# ---------------------
@router.get("/friends")
async def friends_list(user_id: str = Depends(current_user_id)):
    db = await get_db()
    rows = await db.friends.find(
        {"$or": [{"sender_id": user_id}, {"receiver_id": user_id}], "status": ACCEPTED},
        sort=[("created_at", 1)]
    ).to_list(length=None)
    others = [r["receiver_id"] if r["sender_id"] == user_id else r["sender_id"] for r in rows]
    people = await display_fields(others)
    online = manager.online_users()
    return {"friends": [
        {"id": r["id"], "other_user": people.get(o), "online": o in online}
        for r, o in zip(rows, others)
    ]}


@router.get("/friends/requests")
async def friend_requests(user_id: str = Depends(current_user_id)):
    db = await get_db()
    incoming = await db.friends.find({"receiver_id": user_id, "status": PENDING}, sort=[("created_at", 1)]).to_list(length=None)
    outgoing = await db.friends.find({"sender_id": user_id, "status": PENDING}, sort=[("created_at", 1)]).to_list(length=None)
    people = await display_fields([r["sender_id"] for r in incoming] + [r["receiver_id"] for r in outgoing])
    return {
        "incoming": [{**present(r), "sender": people.get(r["sender_id"])} for r in incoming],
        "outgoing": [{**present(r), "receiver": people.get(r["receiver_id"])} for r in outgoing],
    }


# ---------------------
# Transitions
# ---------------------
@router.post("/friends/requests", status_code=201)
async def friend_request_send(req: FriendRequestCreate, user_id: str = Depends(current_user_id)):
    username = req.username.strip()
    if not username:
        raise HTTPException(status_code=400, detail="Username required")
    db = await get_db()
    profile = await db.profiles.find_one(find_username_query(username))
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    if profile["id"] == user_id:
        raise HTTPException(status_code=400, detail="You cannot add yourself")

    key = pair_key(user_id, profile["id"])
    now = utcnow()
    existing = await db.friends.find_one({"pair_key": key})
    if existing:
        status = existing.get("status")
        if status == PENDING:
            raise HTTPException(status_code=409, detail=ALREADY_PENDING)
        if status == ACCEPTED:
            raise HTTPException(status_code=409, detail=ALREADY_FRIENDS)
        if status == BLOCKED:
            raise HTTPException(status_code=403, detail="Unable to send friend request")
        # declined: the pair's single row is reopened by whoever asks again
        row = await db.friends.find_one_and_update(
            {"id": existing["id"], "status": DECLINED},
            {"$set": {"sender_id": user_id, "receiver_id": profile["id"], "status": PENDING,
                      "created_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER
        )
        if not row:
            raise HTTPException(status_code=409, detail=ALREADY_PENDING)
    else:
        row = {
            "id": new_id(),
            "sender_id": user_id,
            "receiver_id": profile["id"],
            "pair_key": key,
            "status": PENDING,
            "created_at": now,
            "updated_at": now
        }
        try:
            await db.friends.insert_one(row)
        except DuplicateKeyError:
            raise HTTPException(status_code=409, detail=ALREADY_PENDING)

    logger.info(f"friend request {row['id']}: {user_id} -> {profile['id']}")
    await notify(row, "requested")
    people = await display_fields([profile["id"]])
    return {"request": {**present(row), "receiver": people.get(profile["id"])}}


async def _answer(request_id: str, user_id: str, status: str) -> dict:
    row = await get_request_or_404(request_id)
    if row["receiver_id"] != user_id:
        raise HTTPException(status_code=403, detail="Only the receiver can answer a request")
    db = await get_db()
    updated = await db.friends.find_one_and_update(
        {"id": request_id, "status": PENDING},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise HTTPException(status_code=409, detail="Request is no longer pending")
    await notify(updated, status)
    return {"request": present(updated)}


@router.post("/friends/requests/{request_id}/accept")
async def friend_request_accept(request_id: str, user_id: str = Depends(current_user_id)):
    return await _answer(request_id, user_id, ACCEPTED)


@router.post("/friends/requests/{request_id}/decline")
async def friend_request_decline(request_id: str, user_id: str = Depends(current_user_id)):
    return await _answer(request_id, user_id, DECLINED)


@router.delete("/friends/requests/{request_id}")
async def friend_request_cancel(request_id: str, user_id: str = Depends(current_user_id)):
    row = await get_request_or_404(request_id)
    if row["sender_id"] != user_id:
        raise HTTPException(status_code=403, detail="Only the sender can cancel a request")
    db = await get_db()
    res = await db.friends.delete_one({"id": request_id, "status": PENDING})
    if not res.deleted_count:
        raise HTTPException(status_code=409, detail="Request is no longer pending")
    await notify(row, "canceled")
    return {"ok": True}
