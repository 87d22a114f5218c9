from datetime import datetime
from typing import List, Optional, TypedDict

from bson import ObjectId


class LastMessageSummary(TypedDict):
    content: str
    sender: ObjectId
    created_at: datetime


class ConversationDocument(TypedDict, total=False):
    _id: ObjectId
    # fixed pair in creation order; lookups use pair_key
    participants: List[ObjectId]
    pair_key: str
    related_listing: Optional[ObjectId]
    last_message: Optional[LastMessageSummary]
    created_at: datetime
    updated_at: datetime
