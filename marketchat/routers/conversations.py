from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from marketchat.schemas.chat import ConversationCreate, MessageCreate
from marketchat.schemas.user import UserPublic
from marketchat.services.chat_service import ChatService
from marketchat.utils.dependencies import get_chat_service, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.post("")
async def create_conversation(body: ConversationCreate, response: Response, current_user: UserPublic = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    conversation, created = await service.start_conversation(current_user, body.participant_id, body.post_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return {"success": True, "conversation": conversation.to_json()}


@router.get("")
async def list_conversations(limit: int = Query(20, ge=1, le=100), cursor: Optional[str] = None, current_user: UserPublic = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    items, next_cursor = await service.list_conversations(current_user, limit=limit, cursor=cursor)
    return {"success": True, "conversations": [c.to_json() for c in items], "nextCursor": next_cursor}


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: str, limit: int = Query(50, ge=1, le=200), cursor: Optional[str] = None, current_user: UserPublic = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    messages, next_cursor = await service.get_history(current_user, conversation_id, limit=limit, cursor=cursor)
    return {"success": True, "messages": [m.to_json() for m in messages], "nextCursor": next_cursor}


@router.get("/{conversation_id}/messages/{message_id}")
async def get_message(conversation_id: str, message_id: str, current_user: UserPublic = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    message = await service.get_message(current_user, conversation_id, message_id)
    return {"success": True, "message": message.to_json()}


@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, body: MessageCreate, current_user: UserPublic = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    # same pipeline as the live channel; joined sockets get message:new / conversation:update
    message = await service.send_message(current_user, conversation_id, body.content)
    return {"success": True, "message": message.to_json()}
