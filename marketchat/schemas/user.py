from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserPublic(BaseModel):
    """Identity resolved from a credential, and the expanded form of user references."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = Field(None, alias="photoURL")

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "UserPublic":
        return cls(
            id=str(doc["_id"]),
            name=doc.get("name"),
            email=doc.get("email"),
            photo_url=doc.get("photoURL"),
        )


class TokenPayload(BaseModel):
    """Claims of an access token. The auth service issues `userId`; `sub` is accepted as a fallback."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: Optional[str] = Field(None, alias="userId")
    sub: Optional[str] = None
    exp: Optional[int] = None

    @property
    def subject(self) -> Optional[str]:
        return self.user_id or self.sub
