from datetime import datetime
from typing import List, TypedDict

from bson import ObjectId


class MessageDocument(TypedDict, total=False):
    _id: ObjectId
    conversation: ObjectId
    sender: ObjectId
    content: str
    read_by: List[ObjectId]
    created_at: datetime
