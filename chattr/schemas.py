from typing import List, Optional

from pydantic import BaseModel, Field

from .config import MIN_PASSWORD_LENGTH


# ---------------------
# Pydantic models
# ---------------------
class SignupRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    username: str


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdateRequest(BaseModel):
    username: str
    bio: Optional[str] = ""
    interest_ids: List[str] = []


class MessageCreateRequest(BaseModel):
    content: str


class FriendRequestCreate(BaseModel):
    username: str


class DirectRoomOpenRequest(BaseModel):
    user_id: str


class ChatBotRequest(BaseModel):
    roomId: str
    roomTopic: Optional[str] = None
    userMessage: str


class ChatBotResponse(BaseModel):
    message: Optional[str] = None
    error: Optional[str] = None
