import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from marketchat.core.config import settings
from marketchat.repositories.conversation_repository import ConversationRepository
from marketchat.repositories.message_repository import MessageRepository


logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo() -> None:
    global _client, _db
    _client = AsyncIOMotorClient(settings.mongodb_uri, tz_aware=True)
    _db = _client[settings.mongodb_db]
    await ConversationRepository(_db).ensure_indexes()
    await MessageRepository(_db).ensure_indexes()
    logger.info("Connected to MongoDB", extra={"database": settings.mongodb_db})


async def close_mongo_connection() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _db = None


def get_database() -> AsyncIOMotorDatabase:
    if _db is None:
        raise RuntimeError("MongoDB is not connected; call connect_to_mongo() first")
    return _db


def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()
