import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from . import __version__, config, db
from .bot import cancel_pending_replies
from .bot import router as bot_router
from .catalog import seed_catalog
from .direct import is_participant
from .direct import router as direct_router
from .friends import router as friends_router
from .profiles import router as profiles_router
from .realtime import manager
from .rooms import router as rooms_router
from .security import resolve_session

logger = logging.getLogger("chattr")


# ---------------------
# FastAPI app (+ healthcheck)
# ---------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    config.setup_logging()
    await db.get_db()
    if config.SEED_CATALOG:
        await seed_catalog()
    logger.info(f"chattr {__version__} ready (bot {'on' if config.ENABLE_BOT else 'off'})")
    yield
    await cancel_pending_replies()
    db.close()


app = FastAPI(title="Chattr API", version=__version__, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(profiles_router)
app.include_router(rooms_router)
app.include_router(direct_router)
app.include_router(friends_router)
app.include_router(bot_router)


@app.get("/healthz")
async def healthz():
    # no DB round trip so platform health checks stay cheap
    return {"ok": True}


@app.get("/", response_class=HTMLResponse)
async def index():
    return """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"/><title>Chattr</title></head>
<body style="font-family: system-ui, sans-serif; max-width: 40rem; margin: 4rem auto;">
<h1>Welcome to Chattr</h1>
<p>Connect instantly with people who share your passions. Real-time chat rooms for gaming, music, coding, and more.</p>
<p>API docs live at <a href="/docs">/docs</a>; push updates at <code>/ws?token=&lt;session token&gt;</code>.</p>
</body>
</html>"""


# ---------------------
# WebSocket push + presence
# ---------------------
async def may_subscribe(user_id: str, channel: str) -> bool:
    kind, _, ident = channel.partition(":")
    if not ident:
        return False
    database = await db.get_db()
    if kind == "room":
        return await database.chat_rooms.find_one({"id": ident}) is not None
    if kind == "dm":
        room = await database.dm_rooms.find_one({"id": ident})
        return bool(room) and is_participant(room, user_id)
    if kind == "friends":
        return ident == user_id
    return False


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    sess = await resolve_session(websocket.query_params.get("token"))
    if not sess:
        await websocket.close(code=4401)
        return

    user_id = sess["user"]["id"]
    conn_id = await manager.connect(user_id, websocket)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "detail": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await websocket.send_json({"type": "error", "detail": "Invalid frame"})
                continue
            kind = msg.get("type")
            channel = str(msg.get("channel") or "")
            if kind == "ping":
                await websocket.send_json({"type": "pong"})
            elif kind == "subscribe":
                if not await may_subscribe(user_id, channel):
                    await websocket.send_json({"type": "error", "channel": channel, "detail": "Subscription refused"})
                    continue
                await manager.subscribe(conn_id, channel)
                await websocket.send_json({"type": "subscribed", "channel": channel})
                await manager.sync_presence(channel)
            elif kind == "unsubscribe":
                await manager.unsubscribe(conn_id, channel)
                await manager.sync_presence(channel)
            else:
                await websocket.send_json({"type": "error", "detail": f"Unknown frame type: {kind}"})
    except WebSocketDisconnect:
        logger.debug(f"socket closed for {user_id}")
    finally:
        for channel in await manager.disconnect(conn_id):
            await manager.sync_presence(channel)
