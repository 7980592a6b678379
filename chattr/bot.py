import asyncio
import logging
import threading
from typing import Dict, List, Optional, Set

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from openai import AsyncOpenAI

from . import config
from .catalog import interest_map
from .db import get_db, record_error
from .messages import insert_room_message
from .schemas import ChatBotRequest, ChatBotResponse
from .security import require_api_key

logger = logging.getLogger("chattr.bot")

router = APIRouter()

openai_client: Optional[AsyncOpenAI] = None
openai_lock = threading.Lock()

# strong refs so pending replies are not garbage collected
pending_replies: Set[asyncio.Task] = set()


async def get_openai_client() -> AsyncOpenAI:
    global openai_client
    if not config.OPENAI_API_KEY:
        raise RuntimeError("OPENAI_API_KEY not configured")
    with openai_lock:
        if openai_client is None:
            openai_client = AsyncOpenAI(api_key=config.OPENAI_API_KEY)
    return openai_client


def system_prompt(topic: str) -> str:
    return (
        f'You are a friendly AI chatbot in the "{topic}" chat room. '
        f"Keep responses conversational, helpful, and relevant to {topic}. "
        "Be enthusiastic about the topic and encourage discussion. "
        "Keep responses concise (2-3 sentences max)."
    )


def fallback_reply(topic: str) -> str:
    return f"I'm here to chat about {topic}! What would you like to discuss?"


def build_transcript(recent: List[Dict]) -> List[Dict[str, str]]:
    """Map stored messages (oldest first) to chat-completion roles."""
    return [
        {"role": "assistant" if m.get("is_bot") else "user", "content": m.get("content", "")}
        for m in recent
    ]


async def recent_room_messages(room_id: str, limit: int = config.BOT_HISTORY_LIMIT) -> List[Dict]:
    db = await get_db()
    rows = await db.messages.find(
        {"room_id": room_id},
        {"content": 1, "is_bot": 1},
        sort=[("created_at", -1), ("_id", -1)],
        limit=limit
    ).to_list(length=None)
    rows.reverse()
    return rows


class RoomNotFound(LookupError):
    pass


async def find_room(room_id: str) -> Dict:
    db = await get_db()
    room = await db.chat_rooms.find_one({"id": room_id})
    if not room:
        raise RoomNotFound(f"Room not found: {room_id}")
    return room


async def resolve_topic(room: Dict, topic: Optional[str]) -> str:
    if topic and topic.strip():
        return topic.strip()
    interest = (await interest_map()).get(room.get("interest_id") or "")
    return (interest or {}).get("name") or room.get("name") or "general"


async def generate_reply(room_id: str, topic: str, user_message: str) -> str:
    history = build_transcript(await recent_room_messages(room_id))
    resp = await (await get_openai_client()).chat.completions.create(
        model=config.BOT_MODEL,
        messages=[
            {"role": "system", "content": system_prompt(topic)},
            *history,
            {"role": "user", "content": user_message}
        ],
        max_tokens=200, temperature=0.7
    )
    text = ""
    if resp.choices:
        text = (resp.choices[0].message.content or "").strip()
    return text or fallback_reply(topic)


async def run_chat_bot(room_id: str, topic: Optional[str], user_message: str) -> str:
    room = await find_room(room_id)
    topic = await resolve_topic(room, topic)
    text = await generate_reply(room_id, topic, user_message)
    await insert_room_message(room_id, None, text, is_bot=True)
    logger.info(f"bot replied in {room_id}")
    return text


@router.post("/functions/chat-bot", response_model=ChatBotResponse, response_model_exclude_none=True)
async def chat_bot(req: ChatBotRequest, _: None = Depends(require_api_key)):
    try:
        text = await run_chat_bot(req.roomId, req.roomTopic, req.userMessage)
    except RoomNotFound as e:
        logger.warning(f"chat-bot: {e}")
        return JSONResponse(status_code=404, content={"error": "Room not found"})
    except Exception as e:
        await record_error(f"chat-bot failed: {e}", room_id=req.roomId)
        return JSONResponse(status_code=500, content={"error": str(e) or "Unknown error occurred"})
    return ChatBotResponse(message=text)


# ---------------------
# Background trigger
# ---------------------
async def _delayed_reply(room_id: str, topic: Optional[str], user_message: str, delay: float):
    await asyncio.sleep(delay)
    try:
        await run_chat_bot(room_id, topic, user_message)
    except Exception as e:
        await record_error(f"chat-bot failed: {e}", room_id=room_id)


def schedule_bot_reply(room_id: str, topic: Optional[str], user_message: str,
                       delay: Optional[float] = None) -> Optional[asyncio.Task]:
    if not config.ENABLE_BOT:
        return None
    task = asyncio.create_task(_delayed_reply(
        room_id, topic, user_message, config.BOT_REPLY_DELAY if delay is None else delay
    ))
    pending_replies.add(task)
    task.add_done_callback(pending_replies.discard)
    return task


async def cancel_pending_replies():
    """Stop replies still waiting on their delay; run before the DB client closes."""
    tasks = list(pending_replies)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"cancelled {len(tasks)} pending bot replies")
    pending_replies.clear()
