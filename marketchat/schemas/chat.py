from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from marketchat.schemas.user import UserPublic
from marketchat.utils.mongo import as_utc


class CamelModel(BaseModel):

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# Requests

class ConversationCreate(CamelModel):

    participant_id: Optional[str] = None
    post_id: Optional[str] = None


class MessageCreate(CamelModel):

    content: Optional[str] = None


# Responses

class ListingSummary(CamelModel):

    id: str = Field(alias="_id")
    title: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    author: Optional[str] = None
    author_name: Optional[str] = Field(None, alias="authorName")

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ListingSummary":
        author = doc.get("author")
        return cls(
            id=str(doc["_id"]),
            title=doc.get("title"),
            images=doc.get("images") or [],
            author=str(author) if author is not None else None,
            author_name=doc.get("authorName"),
        )


class LastMessageOut(CamelModel):

    content: str
    sender: str
    created_at: datetime

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "LastMessageOut":
        return cls(content=doc["content"], sender=str(doc["sender"]), created_at=as_utc(doc["created_at"]))


class MessageOut(CamelModel):

    id: str = Field(alias="_id")
    conversation: str
    sender: UserPublic
    content: str
    read_by: List[str]
    created_at: datetime

    @classmethod
    def from_document(cls, doc: Dict[str, Any], sender: Optional[Dict[str, Any]] = None) -> "MessageOut":
        return cls(
            id=str(doc["_id"]),
            conversation=str(doc["conversation"]),
            sender=_user_or_placeholder(doc["sender"], sender),
            content=doc["content"],
            read_by=[str(oid) for oid in doc.get("read_by", [])],
            created_at=as_utc(doc["created_at"]),
        )


class ConversationOut(CamelModel):

    id: str = Field(alias="_id")
    participants: List[UserPublic]
    related_listing: Optional[ListingSummary] = None
    last_message: Optional[LastMessageOut] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(
        cls,
        doc: Dict[str, Any],
        users: Dict[ObjectId, Dict[str, Any]],
        posts: Dict[ObjectId, Dict[str, Any]],
    ) -> "ConversationOut":
        listing = posts.get(doc.get("related_listing"))
        last = doc.get("last_message")
        return cls(
            id=str(doc["_id"]),
            participants=[_user_or_placeholder(oid, users.get(oid)) for oid in doc["participants"]],
            related_listing=ListingSummary.from_document(listing) if listing else None,
            last_message=LastMessageOut.from_document(last) if last else None,
            created_at=as_utc(doc["created_at"]),
            updated_at=as_utc(doc["updated_at"]),
        )


def _user_or_placeholder(oid: ObjectId, doc: Optional[Dict[str, Any]]) -> UserPublic:
    # deleted accounts still render as a bare id
    if doc is None:
        return UserPublic(id=str(oid))
    return UserPublic.from_document(doc)
