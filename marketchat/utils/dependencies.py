from typing import Optional

from fastapi import Depends, Request, WebSocket
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from marketchat.core.exceptions import Unauthenticated
from marketchat.database.connection import mongo_db_dependency
from marketchat.repositories.conversation_repository import ConversationRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.repositories.post_repository import PostRepository
from marketchat.repositories.user_repository import UserRepository
from marketchat.schemas.user import UserPublic
from marketchat.services.chat_service import ChatService
from marketchat.services.identity_service import IdentityVerifier
from marketchat.utils.websocket_manager import ConnectionManager


bearer_scheme = HTTPBearer(auto_error=False)


def get_identity_verifier(db=Depends(mongo_db_dependency)) -> IdentityVerifier:
    return IdentityVerifier(UserRepository(db))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> UserPublic:
    if credentials is None:
        raise Unauthenticated()
    return await verifier.verify(credentials.credentials)


def get_connection_manager(request: Request) -> ConnectionManager:
    return request.app.state.connections


def get_ws_connection_manager(websocket: WebSocket) -> ConnectionManager:
    return websocket.app.state.connections


def build_chat_service(db, connections: ConnectionManager) -> ChatService:
    return ChatService(
        MessageRepository(db),
        ConversationRepository(db),
        UserRepository(db),
        PostRepository(db),
        connections,
    )


def get_chat_service(
    db=Depends(mongo_db_dependency),
    connections: ConnectionManager = Depends(get_connection_manager),
) -> ChatService:
    return build_chat_service(db, connections)


def get_ws_chat_service(
    db=Depends(mongo_db_dependency),
    connections: ConnectionManager = Depends(get_ws_connection_manager),
) -> ChatService:
    return build_chat_service(db, connections)
