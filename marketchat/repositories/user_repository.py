from typing import Any, Dict, Iterable, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from marketchat.models.user import UserDocument
from marketchat.utils.mongo import parse_object_id


USER_PUBLIC_FIELDS = {"name": 1, "email": 1, "photoURL": 1}


class UserRepository:
    """Read-only access to the auth service's `users` collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def get_user_by_id(self, user_id: Any) -> Optional[UserDocument]:
        oid = parse_object_id(user_id)
        if oid is None:
            return None
        return await self._collection.find_one({"_id": oid}, USER_PUBLIC_FIELDS)

    async def get_users_by_ids(self, user_ids: Iterable[ObjectId]) -> Dict[ObjectId, UserDocument]:
        ids = list({oid for oid in user_ids if oid is not None})
        if not ids:
            return {}
        cursor = self._collection.find({"_id": {"$in": ids}}, USER_PUBLIC_FIELDS)
        users = await cursor.to_list(length=len(ids))
        return {user["_id"]: user for user in users}
