import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

from marketchat.core.exceptions import (
    ChatError,
    ConversationNotFound,
    EmptyContent,
    InvalidParticipant,
    MessageNotFound,
    NotAParticipant,
    ParticipantNotFound,
    SelfConversation,
    StoreFailure,
)
from marketchat.repositories.conversation_repository import ConversationRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.repositories.post_repository import PostRepository
from marketchat.repositories.user_repository import UserRepository
from marketchat.schemas.chat import ConversationOut, LastMessageOut, MessageOut
from marketchat.schemas.events import conversation_update, message_new
from marketchat.schemas.user import UserPublic
from marketchat.utils.mongo import as_utc, parse_object_id
from marketchat.utils.websocket_manager import ConnectionManager


logger = logging.getLogger(__name__)


class ChatService:
    """
    Conversation and message operations shared by the REST routes and the
    live socket.

    Every send, whichever path it arrives on, runs the same pipeline:
    validate, check membership, persist the message, refresh the
    conversation summary, then broadcast to the conversation's room.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        post_repo: PostRepository,
        connections: ConnectionManager,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._post_repo = post_repo
        self._connections = connections

    async def start_conversation(
        self,
        user: UserPublic,
        participant_id: Optional[str],
        post_id: Optional[str] = None,
    ) -> Tuple[ConversationOut, bool]:
        participant_oid = parse_object_id(participant_id)
        if participant_oid is None:
            raise InvalidParticipant()
        if str(participant_oid) == user.id:
            raise SelfConversation()

        participant = await self._user_repo.get_user_by_id(participant_oid)
        if not participant:
            raise ParticipantNotFound()

        listing_oid = None
        if post_id:
            post = await self._post_repo.get_post_by_id(post_id)
            if post:
                listing_oid = post["_id"]

        conversation, created = await self._conversation_repo.get_or_create(user.id, participant_oid, listing_oid)
        if not created and listing_oid is not None and not conversation.get("related_listing"):
            conversation = await self._conversation_repo.attach_listing(conversation, listing_oid)

        if created:
            logger.info(
                "Conversation created",
                extra={"conversation_id": str(conversation["_id"]), "user_id": user.id},
            )
        expanded = await self._expand_conversations([conversation])
        return expanded[0], created

    async def list_conversations(
        self,
        user: UserPublic,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> Tuple[List[ConversationOut], Optional[str]]:
        items, next_cursor = await self._conversation_repo.list_for_user(user.id, limit=limit, cursor=cursor)
        return await self._expand_conversations(items), next_cursor

    async def get_history(
        self,
        user: UserPublic,
        conversation_id: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[MessageOut], Optional[str]]:
        conversation = await self._conversation_for(user, conversation_id)
        items, next_cursor = await self._message_repo.list_for_conversation(
            conversation["_id"], limit=limit, cursor=cursor
        )
        senders = await self._user_repo.get_users_by_ids(m["sender"] for m in items)
        return [MessageOut.from_document(m, senders.get(m["sender"])) for m in items], next_cursor

    async def get_message(self, user: UserPublic, conversation_id: str, message_id: str) -> MessageOut:
        conversation = await self._conversation_for(user, conversation_id)
        message = await self._message_repo.get_by_id(conversation["_id"], message_id)
        if not message:
            raise MessageNotFound()
        sender = await self._user_repo.get_user_by_id(message["sender"])
        return MessageOut.from_document(message, sender)

    async def can_join(self, user: UserPublic, conversation_id: str) -> bool:
        try:
            await self._conversation_for(user, conversation_id)
        except ChatError:
            return False
        return True

    async def send_message(self, user: UserPublic, conversation_id: str, content: Optional[str]) -> MessageOut:
        text = (content or "").strip()
        if not text:
            raise EmptyContent()

        conversation = await self._conversation_for(user, conversation_id)
        sender_oid = parse_object_id(user.id)

        try:
            message = await self._message_repo.append(conversation["_id"], sender_oid, text)
            updated = await self._conversation_repo.record_last_message(
                conversation["_id"], message["content"], sender_oid, message["created_at"]
            )
        except PyMongoError as exc:
            logger.exception(
                "Failed to persist message",
                extra={"conversation_id": str(conversation["_id"]), "user_id": user.id},
            )
            raise StoreFailure("Failed to send message", str(exc)) from exc

        message_out = MessageOut.from_document(message, user.model_dump(by_alias=True))
        summary = LastMessageOut.from_document(
            {"content": message["content"], "sender": sender_oid, "created_at": message["created_at"]}
        )
        updated_at = as_utc(updated["updated_at"]) if updated else summary.created_at

        room = str(conversation["_id"])
        await self._connections.broadcast(room, message_new(room, message_out))
        await self._connections.broadcast(room, conversation_update(room, summary, updated_at))
        return message_out

    async def _conversation_for(self, user: UserPublic, conversation_id: Any) -> Dict[str, Any]:
        conversation = await self._conversation_repo.get_by_id(conversation_id)
        if not conversation:
            raise ConversationNotFound()
        if not self._conversation_repo.is_participant(conversation, user.id):
            raise NotAParticipant()
        return conversation

    async def _expand_conversations(self, docs: List[Dict[str, Any]]) -> List[ConversationOut]:
        users = await self._user_repo.get_users_by_ids(oid for doc in docs for oid in doc["participants"])
        posts = await self._post_repo.get_posts_by_ids(doc.get("related_listing") for doc in docs)
        return [ConversationOut.from_document(doc, users, posts) for doc in docs]
