import unittest

from chattr.direct import find_or_create_dm_room
from tests.support import ApiTestCase


class DirectMessageTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.onboard("alice")
        self.bob = self.onboard("bob")
        self.carol = self.onboard("carol")

    def open_room(self, user, other):
        r = self.client.post("/dm/open", headers=user["headers"], json={"user_id": other["id"]})
        self.assertEqual(r.status_code, 200, r.text)
        return r.json()

    def test_one_room_per_unordered_pair(self):
        first = self.open_room(self.alice, self.bob)
        second = self.open_room(self.bob, self.alice)
        self.assertTrue(first["created"])
        self.assertFalse(second["created"])
        self.assertEqual(first["room"]["id"], second["room"]["id"])
        self.assertEqual(second["room"]["other_user"]["username"], "alice")
        self.assertEqual(self.run_async(self.mongo().dm_rooms.count_documents, {}), 1)

    def test_find_or_create_is_stable_for_both_orderings(self):
        a, created_a = self.run_async(find_or_create_dm_room, self.alice["id"], self.carol["id"])
        b, created_b = self.run_async(find_or_create_dm_room, self.carol["id"], self.alice["id"])
        self.assertTrue(created_a)
        self.assertFalse(created_b)
        self.assertEqual(a["id"], b["id"])

    def test_cannot_open_with_self_or_stranger(self):
        r = self.client.post("/dm/open", headers=self.alice["headers"], json={"user_id": self.alice["id"]})
        self.assertEqual(r.status_code, 400)
        r = self.client.post("/dm/open", headers=self.alice["headers"], json={"user_id": "ghost"})
        self.assertEqual(r.status_code, 404)

    def test_messages_round_trip_between_participants(self):
        room_id = self.open_room(self.alice, self.bob)["room"]["id"]
        r = self.client.post(f"/dm/{room_id}/messages", headers=self.alice["headers"], json={"content": " hey bob "})
        self.assertEqual(r.status_code, 201)
        self.client.post(f"/dm/{room_id}/messages", headers=self.bob["headers"], json={"content": "hey!"})

        msgs = self.client.get(f"/dm/{room_id}/messages", headers=self.bob["headers"]).json()["messages"]
        self.assertEqual([m["content"] for m in msgs], ["hey bob", "hey!"])
        self.assertEqual(msgs[0]["sender"]["username"], "alice")

        one = self.client.get(f"/dm/{room_id}/messages/{msgs[1]['id']}", headers=self.alice["headers"])
        self.assertEqual(one.json()["message"]["content"], "hey!")

    def test_outsiders_are_refused(self):
        room_id = self.open_room(self.alice, self.bob)["room"]["id"]
        self.assertEqual(self.client.get(f"/dm/{room_id}", headers=self.carol["headers"]).status_code, 403)
        self.assertEqual(self.client.get(f"/dm/{room_id}/messages", headers=self.carol["headers"]).status_code, 403)
        r = self.client.post(f"/dm/{room_id}/messages", headers=self.carol["headers"], json={"content": "hi"})
        self.assertEqual(r.status_code, 403)

    def test_blank_dm_is_a_no_op(self):
        room_id = self.open_room(self.alice, self.bob)["room"]["id"]
        r = self.client.post(f"/dm/{room_id}/messages", headers=self.alice["headers"], json={"content": "  "})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(self.run_async(self.mongo().dm_messages.count_documents, {}), 0)

    def test_room_detail_and_listing(self):
        room_id = self.open_room(self.alice, self.bob)["room"]["id"]
        self.open_room(self.alice, self.carol)
        detail = self.client.get(f"/dm/{room_id}", headers=self.bob["headers"]).json()["room"]
        self.assertEqual(detail["user_a"]["username"], "alice")
        self.assertEqual(detail["user_b"]["username"], "bob")
        self.assertNotIn("pair_key", detail)

        rooms = self.client.get("/dm", headers=self.alice["headers"]).json()["rooms"]
        self.assertEqual({r["other_user"]["username"] for r in rooms}, {"bob", "carol"})
        self.assertEqual(len(self.client.get("/dm", headers=self.bob["headers"]).json()["rooms"]), 1)


if __name__ == "__main__":
    unittest.main()
