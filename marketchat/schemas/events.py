"""
Live channel frames.

Every frame is a JSON object `{"event": <name>, "data": <payload>}`.
Inbound frames are validated against the tagged union `ClientEvent` before
dispatch; outbound frames are built from the `*Event` models below.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from marketchat.schemas.chat import CamelModel, LastMessageOut, MessageOut


# Client -> server

class JoinConversation(BaseModel):

    event: Literal["conversation:join"]
    data: Optional[str] = None


class LeaveConversation(BaseModel):

    event: Literal["conversation:leave"]
    data: Optional[str] = None


class SendMessagePayload(CamelModel):

    conversation_id: Optional[str] = None
    content: Optional[str] = None


class SendMessage(BaseModel):

    event: Literal["message:send"]
    data: SendMessagePayload = Field(default_factory=SendMessagePayload)


ClientEvent = Annotated[
    Union[JoinConversation, LeaveConversation, SendMessage],
    Field(discriminator="event"),
]

_client_event_adapter: TypeAdapter = TypeAdapter(ClientEvent)


def parse_client_event(raw: Union[str, bytes]) -> Union[JoinConversation, LeaveConversation, SendMessage]:
    """Raises pydantic.ValidationError for malformed JSON or unknown events."""
    return _client_event_adapter.validate_json(raw)


# Server -> client

class ServerEvent(BaseModel):

    event: str
    data: Any

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ConnectionReadyData(CamelModel):

    user_id: str


class ConnectionReady(ServerEvent):

    event: Literal["connection:ready"] = "connection:ready"
    data: ConnectionReadyData


class MessageNewData(CamelModel):

    conversation_id: str
    message: MessageOut


class MessageNew(ServerEvent):

    event: Literal["message:new"] = "message:new"
    data: MessageNewData


class ConversationUpdateData(CamelModel):

    conversation_id: str
    last_message: LastMessageOut
    updated_at: datetime


class ConversationUpdate(ServerEvent):

    event: Literal["conversation:update"] = "conversation:update"
    data: ConversationUpdateData


class MessageErrorData(BaseModel):

    message: str


class MessageError(ServerEvent):

    event: Literal["message:error"] = "message:error"
    data: MessageErrorData


def connection_ready(user_id: str) -> ConnectionReady:
    return ConnectionReady(data=ConnectionReadyData(user_id=user_id))


def message_new(conversation_id: str, message: MessageOut) -> MessageNew:
    return MessageNew(data=MessageNewData(conversation_id=conversation_id, message=message))


def conversation_update(conversation_id: str, last_message: LastMessageOut, updated_at: datetime) -> ConversationUpdate:
    return ConversationUpdate(
        data=ConversationUpdateData(
            conversation_id=conversation_id,
            last_message=last_message,
            updated_at=updated_at,
        )
    )


def message_error(text: str) -> MessageError:
    return MessageError(data=MessageErrorData(message=text))
