from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from marketchat.core.exceptions import InvalidConversationId, InvalidParticipant, SelfConversation
from marketchat.models.conversation import ConversationDocument
from marketchat.utils.mongo import decode_cursor, encode_cursor, parse_object_id, utcnow


def pair_key(user_a: ObjectId, user_b: ObjectId) -> str:
    return ":".join(sorted([str(user_a), str(user_b)]))


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True)
        await self.collection.create_index([("updated_at", DESCENDING)])

    def _participant_ids(self, user_a: Any, user_b: Any) -> Tuple[ObjectId, ObjectId]:
        oid_a = parse_object_id(user_a)
        oid_b = parse_object_id(user_b)
        if oid_a is None or oid_b is None:
            raise InvalidParticipant()
        if oid_a == oid_b:
            raise SelfConversation()
        return oid_a, oid_b

    async def get_by_id(self, conversation_id: Any) -> Optional[ConversationDocument]:
        oid = parse_object_id(conversation_id)
        if oid is None:
            raise InvalidConversationId()
        return await self.collection.find_one({"_id": oid})

    async def find_by_participants(self, user_a: Any, user_b: Any) -> Optional[ConversationDocument]:
        oid_a, oid_b = self._participant_ids(user_a, user_b)
        return await self.collection.find_one({"pair_key": pair_key(oid_a, oid_b)})

    async def create(self, user_a: Any, user_b: Any, related_listing: Optional[ObjectId] = None) -> ConversationDocument:
        oid_a, oid_b = self._participant_ids(user_a, user_b)
        now = utcnow()
        doc: ConversationDocument = {
            "participants": [oid_a, oid_b],
            "pair_key": pair_key(oid_a, oid_b),
            "related_listing": related_listing,
            "last_message": None,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def get_or_create(
        self,
        user_a: Any,
        user_b: Any,
        related_listing: Optional[ObjectId] = None,
    ) -> Tuple[ConversationDocument, bool]:
        existing = await self.find_by_participants(user_a, user_b)
        if existing:
            return existing, False
        try:
            return await self.create(user_a, user_b, related_listing), True
        except DuplicateKeyError:
            # lost the race on the unique pair index; the winner's document is the conversation
            existing = await self.find_by_participants(user_a, user_b)
            if existing is None:
                raise
            return existing, False

    async def attach_listing(self, conversation: ConversationDocument, listing_id: ObjectId) -> ConversationDocument:
        if conversation.get("related_listing"):
            return conversation
        updated = await self.collection.find_one_and_update(
            {"_id": conversation["_id"], "related_listing": None},
            {"$set": {"related_listing": listing_id}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            # someone else attached a listing first
            return await self.collection.find_one({"_id": conversation["_id"]}) or conversation
        return updated

    async def record_last_message(
        self,
        conversation_id: ObjectId,
        content: str,
        sender: ObjectId,
        timestamp: datetime,
    ) -> Optional[ConversationDocument]:
        return await self.collection.find_one_and_update(
            {"_id": conversation_id},
            {
                "$set": {"last_message": {"content": content, "sender": sender, "created_at": timestamp}},
                # inbox order and cursors rely on updated_at never moving backwards
                "$max": {"updated_at": utcnow()},
            },
            return_document=ReturnDocument.AFTER,
        )

    async def list_for_user(
        self,
        user_id: Any,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> Tuple[List[ConversationDocument], Optional[str]]:
        oid = parse_object_id(user_id)
        if oid is None:
            return [], None
        query: Dict[str, Any] = {"participants": oid}
        sort = [("updated_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            ts, last_oid = decode_cursor(cursor)
            query["$or"] = [
                {"updated_at": {"$lt": ts}},
                {"updated_at": ts, "_id": {"$lt": last_oid}},
            ]

        cursor_db = self.collection.find(query).sort(sort).limit(limit)
        items = await cursor_db.to_list(length=limit)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            next_cursor = encode_cursor(last["updated_at"], last["_id"])
        return items, next_cursor

    @staticmethod
    def is_participant(conversation: ConversationDocument, user_id: Any) -> bool:
        oid = parse_object_id(user_id)
        return oid is not None and oid in conversation.get("participants", [])
