"""Async client for the Chattr API.

One coroutine per screen interaction; non-2xx responses raise ChattrError
whose message is meant to be shown to the user as a transient notice.
"""
import json
import logging
from typing import AsyncIterator, Dict, Iterable, List, Optional

import aiohttp

logger = logging.getLogger("chattr.client")


class ChattrError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class ChattrClient:
    def __init__(self, base_url: str, api_key: Optional[str] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.token: Optional[str] = None
        self.user: Optional[Dict] = None
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def headers(self) -> Dict[str, str]:
        h = {}
        if self.api_key:
            h["X-API-Key"] = self.api_key
        if self.token:
            h["X-Session-Token"] = self.token
        return h

    async def _request(self, method: str, path: str, payload: Optional[dict] = None,
                       params: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(method, url, json=payload, params=params,
                                            headers=self.headers()) as resp:
                try:
                    body = await resp.json(content_type=None) or {}
                except json.JSONDecodeError:
                    body = {}
                if resp.status >= 400:
                    detail = body.get("detail") or body.get("error") or resp.reason
                    if isinstance(detail, list):
                        detail = "; ".join(str(d.get("msg", d)) for d in detail)
                    raise ChattrError(resp.status, str(detail))
                return body or {}
        except aiohttp.ClientError as e:
            raise ChattrError(0, f"Network error: {e}")

    @staticmethod
    def can_send(text: Optional[str]) -> bool:
        return bool((text or "").strip())

    # ---------------------
    # Auth / profile
    # ---------------------
    async def signup(self, email: str, password: str, username: str) -> str:
        data = await self._request("POST", "/auth/signup", {"email": email, "password": password, "username": username})
        self.token, self.user = data["token"], data["user"]
        return data["next"]

    async def login(self, email: str, password: str) -> str:
        """Sign in; returns the screen to show next ("chat" or "profile-setup")."""
        data = await self._request("POST", "/auth/login", {"email": email, "password": password})
        self.token, self.user = data["token"], data["user"]
        return data["next"]

    async def logout(self):
        await self._request("POST", "/auth/logout")
        self.token, self.user = None, None

    async def interests(self) -> List[Dict]:
        return (await self._request("GET", "/interests"))["interests"]

    async def me(self) -> Dict:
        return await self._request("GET", "/profiles/me")

    async def save_profile(self, username: str, bio: str, interest_ids: Iterable[str]) -> Dict:
        return await self._request("PUT", "/profiles/me", {
            "username": username, "bio": bio, "interest_ids": list(interest_ids)
        })

    # ---------------------
    # Rooms
    # ---------------------
    async def rooms(self, q: Optional[str] = None) -> Dict:
        return await self._request("GET", "/rooms", params={"q": q} if q else None)

    async def room_messages(self, room_id: str) -> List[Dict]:
        return (await self._request("GET", f"/rooms/{room_id}/messages"))["messages"]

    async def room_message(self, room_id: str, message_id: str) -> Optional[Dict]:
        try:
            return (await self._request("GET", f"/rooms/{room_id}/messages/{message_id}"))["message"]
        except ChattrError as e:
            if e.status == 404:
                return None
            raise

    async def send_room_message(self, room_id: str, content: str) -> Optional[Dict]:
        if not self.can_send(content):
            return None
        return (await self._request("POST", f"/rooms/{room_id}/messages", {"content": content.strip()}))["message"]

    async def join_room(self, room_id: str) -> Dict:
        return await self._request("POST", f"/rooms/{room_id}/join")

    async def leave_room(self, room_id: str) -> Dict:
        return await self._request("POST", f"/rooms/{room_id}/leave")

    async def trigger_bot(self, room_id: str, topic: Optional[str], user_message: str) -> Dict:
        return await self._request("POST", "/functions/chat-bot", {
            "roomId": room_id, "roomTopic": topic, "userMessage": user_message
        })

    # ---------------------
    # Friends
    # ---------------------
    async def friends(self) -> List[Dict]:
        return (await self._request("GET", "/friends"))["friends"]

    async def friend_requests(self) -> Dict:
        return await self._request("GET", "/friends/requests")

    async def send_friend_request(self, username: str) -> Optional[Dict]:
        if not username.strip():
            return None
        return (await self._request("POST", "/friends/requests", {"username": username.strip()}))["request"]

    async def accept_friend_request(self, request_id: str) -> Dict:
        return (await self._request("POST", f"/friends/requests/{request_id}/accept"))["request"]

    async def decline_friend_request(self, request_id: str) -> Dict:
        return (await self._request("POST", f"/friends/requests/{request_id}/decline"))["request"]

    async def cancel_friend_request(self, request_id: str):
        await self._request("DELETE", f"/friends/requests/{request_id}")

    # ---------------------
    # Direct messages
    # ---------------------
    async def open_dm(self, other_user_id: str) -> Dict:
        return (await self._request("POST", "/dm/open", {"user_id": other_user_id}))["room"]

    async def dm_rooms(self) -> List[Dict]:
        return (await self._request("GET", "/dm"))["rooms"]

    async def dm_messages(self, room_id: str) -> List[Dict]:
        return (await self._request("GET", f"/dm/{room_id}/messages"))["messages"]

    async def dm_message(self, room_id: str, message_id: str) -> Optional[Dict]:
        try:
            return (await self._request("GET", f"/dm/{room_id}/messages/{message_id}"))["message"]
        except ChattrError as e:
            if e.status == 404:
                return None
            raise

    async def send_dm(self, room_id: str, content: str) -> Optional[Dict]:
        if not self.can_send(content):
            return None
        return (await self._request("POST", f"/dm/{room_id}/messages", {"content": content.strip()}))["message"]

    # ---------------------
    # Push
    # ---------------------
    def ws_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws"
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):] + "/ws"
        return self.base_url + "/ws"

    async def subscribe(self, channels: Iterable[str]) -> AsyncIterator[Dict]:
        """Yield push frames for the given channels until the socket closes."""
        if not self.token:
            raise ChattrError(401, "Not signed in")
        async with self.session.ws_connect(self.ws_url(), params={"token": self.token}, heartbeat=20) as ws:
            for channel in channels:
                await ws.send_json({"type": "subscribe", "channel": channel})
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        yield json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.debug(f"skipping non-JSON frame: {msg.data!r}")
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
