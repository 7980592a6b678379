import itertools
import unittest

from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from chattr import catalog, db
from chattr.main import app

_counter = itertools.count(1)


class ApiTestCase(unittest.TestCase):
    """Runs the app against a fresh in-memory Mongo per test."""

    def setUp(self):
        db.use_client(AsyncMongoMockClient(), f"chattr_test_{next(_counter)}")
        catalog.interest_cache.clear()
        self.client = TestClient(app)
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)
        catalog.interest_cache.clear()

    def run_async(self, fn, *args):
        return self.client.portal.call(fn, *args)

    def mongo(self):
        return db.db

    def signup(self, username, email=None, password="secret123"):
        email = email or f"{username.lower()}@example.com"
        r = self.client.post("/auth/signup", json={"email": email, "password": password, "username": username})
        self.assertEqual(r.status_code, 200, r.text)
        data = r.json()
        return {"id": data["user"]["id"], "token": data["token"], "headers": {"X-Session-Token": data["token"]}}

    def onboard(self, username, interest_ids=("gaming",)):
        user = self.signup(username)
        r = self.client.put("/profiles/me", headers=user["headers"],
                            json={"username": username, "bio": "", "interest_ids": list(interest_ids)})
        self.assertEqual(r.status_code, 200, r.text)
        return user
