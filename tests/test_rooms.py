import unittest

from chattr.db import utcnow
from tests.support import ApiTestCase


class RoomListTestCase(ApiTestCase):
    def test_no_interests_means_no_rooms(self):
        user = self.signup("alice")
        r = self.client.get("/rooms", headers=user["headers"])
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["rooms"], [])
        self.assertTrue(r.json()["placeholder"])

    def test_rooms_follow_selected_interests(self):
        user = self.onboard("alice", ["gaming", "music"])
        rooms = self.client.get("/rooms", headers=user["headers"]).json()["rooms"]
        self.assertEqual({r["interest_id"] for r in rooms}, {"gaming", "music"})
        gaming = next(r for r in rooms if r["interest_id"] == "gaming")
        self.assertEqual(gaming["interests"]["name"], "Gaming")
        self.assertIsNone(gaming["last_message"])
        self.assertEqual(gaming["online"], 0)

    def test_preview_shows_most_recent_message(self):
        user = self.onboard("alice", ["gaming"])
        for text in ("first", "second", "third"):
            self.client.post("/rooms/room-gaming/messages", headers=user["headers"], json={"content": text})
        rooms = self.client.get("/rooms", headers=user["headers"]).json()["rooms"]
        self.assertEqual(rooms[0]["last_message"]["content"], "third")
        self.assertTrue(rooms[0]["last_message"]["created_at"])

    def test_search_filters_room_names(self):
        user = self.onboard("alice", ["gaming", "music"])
        r = self.client.get("/rooms", params={"q": "MUS"}, headers=user["headers"]).json()
        self.assertEqual([room["name"] for room in r["rooms"]], ["Music"])
        r = self.client.get("/rooms", params={"q": "zzz"}, headers=user["headers"]).json()
        self.assertEqual(r["rooms"], [])


class RoomFeedTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.onboard("alice", ["gaming"])
        self.bob = self.onboard("bob", ["gaming"])

    def test_blank_message_is_a_no_op(self):
        r = self.client.post("/rooms/room-gaming/messages", headers=self.alice["headers"], json={"content": "   \n\t"})
        self.assertEqual(r.status_code, 400)
        count = self.run_async(self.mongo().messages.count_documents, {"room_id": "room-gaming"})
        self.assertEqual(count, 0)

    def test_messages_are_trimmed_and_joined_with_author(self):
        r = self.client.post("/rooms/room-gaming/messages", headers=self.alice["headers"], json={"content": "  hello  "})
        self.assertEqual(r.status_code, 201)
        msg = r.json()["message"]
        self.assertEqual(msg["content"], "hello")
        self.assertFalse(msg["is_bot"])
        self.assertEqual(msg["author"]["username"], "alice")
        self.assertNotIn("_id", msg)

        fetched = self.client.get(f"/rooms/room-gaming/messages/{msg['id']}", headers=self.bob["headers"])
        self.assertEqual(fetched.json()["message"]["id"], msg["id"])

    def test_sent_and_fetched_timestamps_agree(self):
        msg = self.client.post("/rooms/room-gaming/messages", headers=self.alice["headers"], json={"content": "tick"}).json()["message"]
        fetched = self.client.get(f"/rooms/room-gaming/messages/{msg['id']}", headers=self.bob["headers"]).json()["message"]
        self.assertEqual(fetched["created_at"], msg["created_at"])
        self.assertEqual(utcnow().microsecond % 1000, 0)

    def test_history_is_oldest_first(self):
        for i, user in enumerate([self.alice, self.bob, self.alice]):
            self.client.post("/rooms/room-gaming/messages", headers=user["headers"], json={"content": f"m{i}"})
        msgs = self.client.get("/rooms/room-gaming/messages", headers=self.bob["headers"]).json()["messages"]
        self.assertEqual([m["content"] for m in msgs], ["m0", "m1", "m2"])
        self.assertEqual([m["author"]["username"] for m in msgs], ["alice", "bob", "alice"])

    def test_history_page_keeps_the_latest(self):
        for i in range(5):
            self.client.post("/rooms/room-gaming/messages", headers=self.alice["headers"], json={"content": f"m{i}"})
        msgs = self.client.get("/rooms/room-gaming/messages", params={"limit": 2}, headers=self.bob["headers"]).json()["messages"]
        self.assertEqual([m["content"] for m in msgs], ["m3", "m4"])

    def test_page_size_is_capped(self):
        r = self.client.get("/rooms/room-gaming/messages", params={"limit": 101}, headers=self.bob["headers"])
        self.assertEqual(r.status_code, 422)

    def test_bot_messages_have_no_author(self):
        self.run_async(self.mongo().messages.insert_one, {
            "id": "bot-1", "room_id": "room-gaming", "user_id": None, "content": "beep",
            "is_bot": True, "created_at": None,
        })
        msg = self.client.get("/rooms/room-gaming/messages/bot-1", headers=self.bob["headers"]).json()["message"]
        self.assertTrue(msg["is_bot"])
        self.assertIsNone(msg["author"])

    def test_unknown_room(self):
        r = self.client.post("/rooms/nope/messages", headers=self.alice["headers"], json={"content": "hi"})
        self.assertEqual(r.status_code, 404)
        r = self.client.get("/rooms/nope/messages", headers=self.alice["headers"])
        self.assertEqual(r.status_code, 404)

    def test_join_and_leave_upsert_last_seen(self):
        r = self.client.post("/rooms/room-gaming/join", headers=self.alice["headers"])
        self.assertEqual(r.status_code, 200)
        first = r.json()["member"]["last_seen"]
        self.client.post("/rooms/room-gaming/leave", headers=self.alice["headers"])
        members = self.run_async(self.mongo().room_members.count_documents, {"room_id": "room-gaming"})
        self.assertEqual(members, 1)
        self.assertTrue(first)

    def test_room_detail(self):
        r = self.client.get("/rooms/room-gaming", headers=self.alice["headers"])
        self.assertEqual(r.json()["room"]["interests"]["icon"], "gamepad-2")


if __name__ == "__main__":
    unittest.main()
