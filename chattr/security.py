import base64
import hashlib
import secrets
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException

from . import config
from .db import as_utc_aware, get_db, utcnow

PBKDF2_ROUNDS = 100_000


# ---------------------
# Password hashing
# ---------------------
def hash_password(password: str) -> Dict[str, str]:
    salt = secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ROUNDS)
    return {"salt": base64.b64encode(salt).decode(), "hash": base64.b64encode(dk).decode()}


def verify_password(password: str, salt_b64: str, hash_b64: str) -> bool:
    if not salt_b64 or not hash_b64:
        return False
    salt = base64.b64decode(salt_b64.encode())
    expected = base64.b64decode(hash_b64.encode())
    dk = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ROUNDS)
    return secrets.compare_digest(dk, expected)


# ---------------------
# Session tokens
# ---------------------
async def create_session(user_id: str) -> str:
    db = await get_db()
    token = str(uuid.uuid4())
    now = utcnow()
    await db.sessions.insert_one({
        "token": token,
        "user_id": user_id,
        "created_at": now,
        "expires_at": now + timedelta(minutes=config.SESSION_TTL_MIN)
    })
    return token


async def resolve_session(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return {"token", "user"} for a live session, else None."""
    if not token:
        return None
    db = await get_db()
    sess = await db.sessions.find_one({"token": token})
    if not sess or as_utc_aware(sess["expires_at"]) < utcnow():
        return None
    user = await db.users.find_one({"id": sess["user_id"]})
    if not user:
        return None
    return {"token": token, "user": user}


async def require_session(x_session_token: str = Header(...)) -> Dict[str, Any]:
    db = await get_db()
    sess = await db.sessions.find_one({"token": x_session_token})
    if not sess:
        raise HTTPException(status_code=401, detail="Invalid session")
    if as_utc_aware(sess["expires_at"]) < utcnow():
        raise HTTPException(status_code=401, detail="Session expired")
    user = await db.users.find_one({"id": sess["user_id"]})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return {"token": x_session_token, "user": user}


def require_api_key(x_api_key: Optional[str] = Header(None)):
    expected = (config.PUBLIC_UI_API_KEY or "").strip()
    # empty or "disabled" turns the check off
    if expected and expected.lower() != "disabled":
        if x_api_key != expected:
            raise HTTPException(status_code=401, detail="Invalid API key")


def require_api_and_session(sess=Depends(require_session), _: None = Depends(require_api_key)):
    return sess


def current_user_id(sess=Depends(require_api_and_session)) -> str:
    return sess["user"]["id"]
