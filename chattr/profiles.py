import logging
from typing import Dict, Iterable

from fastapi import APIRouter, Depends, HTTPException
from pymongo.errors import DuplicateKeyError

from .catalog import interest_map, list_interests
from .db import get_db, new_id, public, utcnow
from .schemas import LoginRequest, ProfileUpdateRequest, SignupRequest
from .security import (
    create_session,
    current_user_id,
    hash_password,
    require_api_and_session,
    require_api_key,
    verify_password,
)

logger = logging.getLogger("chattr.profiles")

router = APIRouter()

NEXT_PROFILE_SETUP = "profile-setup"
NEXT_CHAT = "chat"


# ---------------------
# Helpers shared by the other routers
# ---------------------
async def display_fields(user_ids: Iterable[str]) -> Dict[str, Dict]:
    """id -> {id, username, avatar_url} for every known profile in user_ids."""
    ids = list({u for u in user_ids if u})
    if not ids:
        return {}
    db = await get_db()
    out = {}
    async for p in db.profiles.find({"id": {"$in": ids}}):
        out[p["id"]] = {"id": p["id"], "username": p.get("username"), "avatar_url": p.get("avatar_url")}
    return out


async def selected_interest_ids(user_id: str) -> list:
    db = await get_db()
    return [ui["interest_id"] async for ui in db.user_interests.find({"user_id": user_id})]


async def next_screen(user_id: str) -> str:
    db = await get_db()
    profile = await db.profiles.find_one({"id": user_id})
    has_username = bool(((profile or {}).get("username") or "").strip())
    has_interest = await db.user_interests.count_documents({"user_id": user_id}) > 0
    return NEXT_CHAT if has_username and has_interest else NEXT_PROFILE_SETUP


def find_username_query(username: str) -> dict:
    return {"username_lower": username.strip().lower()}


# ---------------------
# Auth routes
# ---------------------
@router.post("/auth/signup")
async def signup(req: SignupRequest, _: None = Depends(require_api_key)):
    db = await get_db()
    email = req.email.strip().lower()
    username = req.username.strip()
    if not email:
        raise HTTPException(status_code=400, detail="Email required")
    if not username:
        raise HTTPException(status_code=400, detail="Username required")
    if await db.users.find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    if await db.profiles.find_one(find_username_query(username)):
        raise HTTPException(status_code=400, detail="Username taken")

    user_id = new_id()
    h = hash_password(req.password)
    now = utcnow()
    try:
        await db.users.insert_one({
            "id": user_id,
            "email": email,
            "password_salt": h["salt"],
            "password_hash": h["hash"],
            "created_at": now
        })
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already registered")
    try:
        await db.profiles.insert_one({
            "id": user_id,
            "username": username,
            "username_lower": username.lower(),
            "bio": "",
            "avatar_url": None,
            "created_at": now
        })
    except DuplicateKeyError:
        await db.users.delete_one({"id": user_id})
        raise HTTPException(status_code=400, detail="Username taken")

    token = await create_session(user_id)
    logger.info(f"signup {user_id} ({username})")
    return {"token": token, "user": {"id": user_id, "email": email, "username": username}, "next": NEXT_PROFILE_SETUP}


@router.post("/auth/login")
async def login(req: LoginRequest, _: None = Depends(require_api_key)):
    db = await get_db()
    user = await db.users.find_one({"email": req.email.strip().lower()})
    if not user:
        raise HTTPException(status_code=401, detail="Invalid login credentials")
    if not verify_password(req.password, user.get("password_salt", ""), user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid login credentials")
    token = await create_session(user["id"])
    profile = await db.profiles.find_one({"id": user["id"]}) or {}
    return {
        "token": token,
        "user": {"id": user["id"], "email": user["email"], "username": profile.get("username")},
        "next": await next_screen(user["id"])
    }


@router.post("/auth/logout")
async def logout(sess=Depends(require_api_and_session)):
    db = await get_db()
    await db.sessions.delete_one({"token": sess["token"]})
    return {"ok": True}


# ---------------------
# Profile setup
# ---------------------
@router.get("/interests")
async def interests(_: None = Depends(require_api_key)):
    return {"interests": await list_interests()}


@router.get("/profiles/me")
async def profile_me(user_id: str = Depends(current_user_id)):
    db = await get_db()
    profile = await db.profiles.find_one({"id": user_id})
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    out = public(profile)
    out.pop("username_lower", None)
    return {
        "profile": out,
        "interest_ids": await selected_interest_ids(user_id),
        "next": await next_screen(user_id)
    }


@router.put("/profiles/me")
async def profile_save(req: ProfileUpdateRequest, user_id: str = Depends(current_user_id)):
    username = req.username.strip()
    selected = list(dict.fromkeys(req.interest_ids))
    if not username:
        raise HTTPException(status_code=400, detail="Username required")
    if not selected:
        raise HTTPException(status_code=400, detail="Please select at least one interest")
    known = await interest_map()
    unknown = [i for i in selected if i not in known]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown interest: {', '.join(unknown)}")

    db = await get_db()
    taken = await db.profiles.find_one({**find_username_query(username), "id": {"$ne": user_id}})
    if taken:
        raise HTTPException(status_code=400, detail="Username taken")
    try:
        await db.profiles.update_one(
            {"id": user_id},
            {"$set": {"username": username, "username_lower": username.lower(), "bio": (req.bio or "").strip()}}
        )
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Username taken")

    # memberships are replaced wholesale on every save
    await db.user_interests.delete_many({"user_id": user_id})
    await db.user_interests.insert_many([{"user_id": user_id, "interest_id": i} for i in selected])
    logger.info(f"profile saved {user_id}: {len(selected)} interests")
    return await profile_me(user_id)
