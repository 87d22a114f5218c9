"""
Pytest configuration and fixtures for testing.
Provides an in-memory MongoDB, seeded users, tokens and a test client.
"""
import asyncio
from typing import Any, Dict, List

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from marketchat.core.config import settings
from marketchat.database import connection
from marketchat.main import app
from marketchat.utils.security import create_access_token


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="function")
def mongo_client(monkeypatch):
    """
    In-memory Mongo standing in for the server; the app's lifespan picks it
    up through the patched client factory.
    """
    client = AsyncMongoMockClient()
    monkeypatch.setattr(client, "close", lambda: None, raising=False)
    monkeypatch.setattr(connection, "AsyncIOMotorClient", lambda *args, **kwargs: client)
    return client


@pytest.fixture(scope="function")
def test_db(mongo_client):
    return mongo_client[settings.mongodb_db]


@pytest.fixture(scope="function")
def seed_test_users(test_db) -> List[Dict[str, Any]]:
    """Seed three users the way the auth service stores them."""
    users = [
        {
            "_id": ObjectId(),
            "name": f"Test User {i}",
            "email": f"user{i}@example.com",
            "photoURL": f"https://img.example.com/user{i}.png",
        }
        for i in range(1, 4)
    ]
    asyncio.run(test_db["users"].insert_many([dict(u) for u in users]))
    return users


@pytest.fixture(scope="function")
def seed_test_post(test_db, seed_test_users) -> Dict[str, Any]:
    post = {
        "_id": ObjectId(),
        "title": "Hand-painted Madhubani vase",
        "images": ["https://img.example.com/vase.png"],
        "author": seed_test_users[1]["_id"],
        "authorName": seed_test_users[1]["name"],
    }
    asyncio.run(test_db["posts"].insert_one(dict(post)))
    return post


@pytest.fixture(scope="function")
def test_client(mongo_client) -> TestClient:
    with TestClient(app) as client:
        yield client


def token_for(user: Dict[str, Any]) -> str:
    return create_access_token(str(user["_id"]))


def auth_headers(user: Dict[str, Any]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user)}"}
