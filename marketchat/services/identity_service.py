import logging
from typing import Optional

from pydantic import ValidationError

from marketchat.core.exceptions import InvalidCredential, Unauthenticated, UnknownSubject
from marketchat.repositories.user_repository import UserRepository
from marketchat.schemas.user import TokenPayload, UserPublic
from marketchat.utils.mongo import parse_object_id
from marketchat.utils.security import decode_access_token, looks_like_jwt


logger = logging.getLogger(__name__)


class IdentityVerifier:
    """Resolves a bearer credential to the user it was issued for."""

    def __init__(self, user_repository: UserRepository) -> None:
        self.user_repository = user_repository

    async def verify(self, token: Optional[str]) -> UserPublic:
        """
        Verify a credential and load its subject.

        - Unauthenticated: no token, or not shaped like a JWT
        - InvalidCredential: bad signature, expired, or no usable `userId`/`sub`
        - UnknownSubject: valid token for a user that no longer exists
        """
        if not token or not looks_like_jwt(token):
            raise Unauthenticated()

        payload = decode_access_token(token)
        if payload is None:
            raise InvalidCredential()
        try:
            claims = TokenPayload.model_validate(payload)
        except ValidationError:
            raise InvalidCredential()

        user_oid = parse_object_id(claims.subject)
        if user_oid is None:
            raise InvalidCredential()

        user = await self.user_repository.get_user_by_id(user_oid)
        if not user:
            logger.info("Credential subject no longer exists", extra={"user_id": str(user_oid)})
            raise UnknownSubject()

        return UserPublic.from_document(user)
