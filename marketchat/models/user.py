from typing import Optional, TypedDict

from bson import ObjectId


class UserDocument(TypedDict, total=False):
    # written by the auth service; field names follow its schema
    _id: ObjectId
    name: str
    email: str
    photoURL: Optional[str]
