from typing import List, TypedDict

from bson import ObjectId


class PostDocument(TypedDict, total=False):
    # written by the listings service
    _id: ObjectId
    title: str
    images: List[str]
    author: ObjectId
    authorName: str
