from typing import Any, Dict, Iterable, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from marketchat.models.post import PostDocument
from marketchat.utils.mongo import parse_object_id


POST_SUMMARY_FIELDS = {"title": 1, "images": 1, "author": 1, "authorName": 1}


class PostRepository:
    """Read-only access to marketplace listings."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("posts")

    async def get_post_by_id(self, post_id: Any) -> Optional[PostDocument]:
        oid = parse_object_id(post_id)
        if oid is None:
            return None
        return await self._collection.find_one({"_id": oid}, POST_SUMMARY_FIELDS)

    async def get_posts_by_ids(self, post_ids: Iterable[ObjectId]) -> Dict[ObjectId, PostDocument]:
        ids = list({oid for oid in post_ids if oid is not None})
        if not ids:
            return {}
        cursor = self._collection.find({"_id": {"$in": ids}}, POST_SUMMARY_FIELDS)
        posts = await cursor.to_list(length=len(ids))
        return {post["_id"]: post for post in posts}
