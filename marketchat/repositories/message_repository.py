from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from marketchat.core.exceptions import ConversationNotFound, EmptyContent
from marketchat.models.message import MessageDocument
from marketchat.utils.mongo import decode_cursor, encode_cursor, parse_object_id, utcnow


class MessageRepository:
    """
    Ordered message log per conversation.

    Membership is not checked here: callers know the acting identity and
    must verify the sender participates before calling `append`.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("conversation", ASCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)]
        )

    async def append(self, conversation_id: Any, sender_id: ObjectId, content: Optional[str]) -> MessageDocument:
        text = (content or "").strip()
        if not text:
            raise EmptyContent()
        convo_oid = parse_object_id(conversation_id)
        if convo_oid is None:
            raise ConversationNotFound()
        exists = await self._db["conversations"].find_one({"_id": convo_oid}, {"_id": 1})
        if exists is None:
            raise ConversationNotFound()

        doc: MessageDocument = {
            "conversation": convo_oid,
            "sender": sender_id,
            "content": text,
            "read_by": [sender_id],
            "created_at": utcnow(),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def get_by_id(self, conversation_id: ObjectId, message_id: Any) -> Optional[MessageDocument]:
        oid = parse_object_id(message_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid, "conversation": conversation_id})

    async def list_for_conversation(
        self,
        conversation_id: ObjectId,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[MessageDocument], Optional[str]]:
        """
        Return the newest `limit` messages older than `cursor`, oldest first.

        `next_cursor` points at the oldest message of the page and fetches the
        page before it; it is None once the start of the conversation is reached.
        """
        query: Dict[str, Any] = {"conversation": conversation_id}
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            ts, last_oid = decode_cursor(cursor)
            query["$or"] = [
                {"created_at": {"$lt": ts}},
                {"created_at": ts, "_id": {"$lt": last_oid}},
            ]
        cur = self.collection.find(query).sort(sort).limit(limit)
        items = await cur.to_list(length=limit)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            next_cursor = encode_cursor(last["created_at"], last["_id"])
        # ascending chronological order for the UI
        return list(reversed(items)), next_cursor
